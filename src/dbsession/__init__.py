"""
Database session layer for Oracle, PostgreSQL, and SQLite.

All operations can be called either as:
- Connection methods: cn.query(ResultMode.ALL_ROWS, sql)
- Module functions: db.query(cn, ResultMode.ALL_ROWS, sql)

The module functions are facades over the `Connection` methods.
"""
__version__ = '0.1.0'

from typing import Any

from dbsession.connection import Connection, connect, dispose_all_engines
from dbsession.exceptions import ConnectFailed, DatabaseError, ExecuteFailed
from dbsession.exceptions import LobWriteFailed, MissingIndexField
from dbsession.exceptions import NotConnected, ParseFailed, QueryError
from dbsession.exceptions import StatementError, UnknownResultMode
from dbsession.exceptions import ValidationError
from dbsession.options import SessionOptions
from dbsession.results import ResultMode
from dbsession.sql import quote_or_default, quote_or_null, to_list
from dbsession.store import ParameterSource, ParameterStore
from dbsession.transaction import Transaction as transaction
from dbsession.variables import BindRegistry, BoundVariable


def disconnect(cn: Connection) -> None:
    """Roll back any open transaction and close the connection.
    """
    cn.disconnect()


def start_transaction(cn: Connection, savepoint: str | None = None) -> None:
    cn.start_transaction(savepoint)


def commit(cn: Connection) -> None:
    cn.commit()


def rollback(cn: Connection, savepoint: str | None = None) -> None:
    cn.rollback(savepoint)


def query(cn: Connection, mode: ResultMode | int | str, sql: str,
          index_field: str | None = None, strict: bool | None = None) -> Any:
    """Run a query and shape the rows per ``mode``.
    """
    return cn.query(mode, sql, index_field=index_field, strict=strict)


def execute_dml(cn: Connection, sql: str, strict: bool | None = None) -> int | bool:
    """Execute a statement and return the number of rows modified.
    """
    return cn.execute_dml(sql, strict=strict)


def execute_prepared_dml(cn: Connection, sql: str, variables: BindRegistry,
                         strict: bool | None = None) -> int | bool:
    """Execute a statement with bind variables.
    """
    return cn.execute_prepared_dml(sql, variables, strict=strict)


def execute_stored_procedure(cn: Connection, name: str, variables: BindRegistry,
                             strict: bool | None = None) -> dict[str, Any] | bool:
    """Call a stored procedure and return the final variable values.
    """
    return cn.execute_stored_procedure(name, variables, strict=strict)


__all__ = [
    # Connection
    'connect',
    'disconnect',
    'Connection',
    'SessionOptions',
    'dispose_all_engines',
    # Transactions
    'transaction',
    'start_transaction',
    'commit',
    'rollback',
    # Statements
    'ResultMode',
    'query',
    'execute_dml',
    'execute_prepared_dml',
    'execute_stored_procedure',
    'BindRegistry',
    'BoundVariable',
    # Parameter store
    'ParameterSource',
    'ParameterStore',
    # SQL literals
    'quote_or_null',
    'quote_or_default',
    'to_list',
    # Exceptions
    'DatabaseError',
    'StatementError',
    'NotConnected',
    'ConnectFailed',
    'ParseFailed',
    'ExecuteFailed',
    'LobWriteFailed',
    'MissingIndexField',
    'UnknownResultMode',
    'QueryError',
    'ValidationError',
]
