"""
Database-specific exception classes.
"""
import sqlite3
from dataclasses import dataclass

import oracledb
import psycopg
import sqlalchemy as sa


@dataclass(frozen=True)
class StatementError:
    """Structured driver error left in the shared error slot.
    """
    code: str
    message: str
    sql: str = ''

    def __str__(self) -> str:
        return f'{self.code} - {self.message}\n{self.sql}'


class DatabaseError(Exception):
    """Base class for all dbsession errors.
    """

    def __init__(self, message: str, error: StatementError | None = None) -> None:
        super().__init__(message)
        self.error = error


class NotConnected(DatabaseError):
    """Operation attempted before connect.
    """


class ConnectFailed(DatabaseError):
    """Driver rejected the connection.
    """


class ParseFailed(DatabaseError):
    """Driver could not parse the statement.
    """


class ExecuteFailed(DatabaseError):
    """Driver could not execute the statement.
    """


class LobWriteFailed(DatabaseError):
    """Writing a temporary large object failed.
    """


class MissingIndexField(DatabaseError):
    """ALL_ROWS_ASSOC query issued without an index field.
    """


class UnknownResultMode(DatabaseError):
    """Query issued with an unsupported result mode.
    """


class QueryError(DatabaseError):
    """Statement the current dialect cannot express.
    """


class ValidationError(DatabaseError):
    """Error in input validation.
    """


DriverError = (
    oracledb.Error,
    psycopg.Error,
    sqlite3.Error,
    sa.exc.DBAPIError,
    )
