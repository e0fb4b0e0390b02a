"""
SQLite-specific strategy implementation.

This module implements the DatabaseStrategy interface on the standard
library sqlite3 driver. SQLite accepts ``:name`` placeholders natively and
stores large text inline, so large objects are staged in memory and bound
as strings. It has no stored procedures and no session date format.
"""
import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbsession.exceptions import QueryError
from dbsession.strategy.base import DatabaseStrategy, register_strategy
from dbsession.types import convert_date, convert_datetime

if TYPE_CHECKING:
    from dbsession.options import SessionOptions

logger = logging.getLogger(__name__)


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['connection']

    def build_connection_url(self, options: 'SessionOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create('sqlite', database=options.connection)

    def get_engine_kwargs(self, options: 'SessionOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite."""
        return {
            'connect_args': {
                'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
            }
        }

    def configure_connection(self, raw_conn: Any, options: 'SessionOptions') -> None:
        """Register type adapters and converters for SQLite.

        SQLite needs adapters to handle complex types like dict and list,
        and converters to handle date/datetime coming from the database.
        """
        sqlite3.register_adapter(dict, json.dumps)
        sqlite3.register_adapter(list, json.dumps)
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)

    def server_version(self, raw_conn: Any) -> str:
        return f'SQLite {sqlite3.sqlite_version}'

    def procedure_sql(self, name: str, arguments: list[str]) -> str:
        raise QueryError(f'SQLite does not support stored procedures: {name}')

    def _error_details(self, exc: BaseException) -> tuple[str, str]:
        if isinstance(exc, sqlite3.Error):
            code = getattr(exc, 'sqlite_errorname', None) or type(exc).__name__
            return code, str(exc).strip()
        return super()._error_details(exc)
