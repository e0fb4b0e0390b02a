"""
PostgreSQL-specific strategy implementation.

This module implements the DatabaseStrategy interface on psycopg:
- ``:name`` placeholders rewritten to ``%(name)s`` when binding
- Large objects bound as plain text
- Procedures invoked with ``CALL`` in named notation, OUT and INOUT
  values read back from the row the call returns
"""
import logging
from typing import TYPE_CHECKING, Any

import psycopg
import sqlalchemy as sa
from dbsession.sql import named_to_pyformat
from dbsession.strategy.base import DatabaseStrategy, register_strategy

if TYPE_CHECKING:
    from dbsession.options import SessionOptions
    from dbsession.variables import BoundVariable

logger = logging.getLogger(__name__)


@register_strategy('postgresql')
class PostgresStrategy(DatabaseStrategy):
    """PostgreSQL-specific operations.
    """

    date_format_marker = 'datestyle'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for PostgreSQL."""
        return 'postgresql'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for PostgreSQL connections."""
        return ['connection']

    def build_connection_url(self, options: 'SessionOptions') -> sa.URL:
        """Credentials go in the URL, the descriptor as a libpq conninfo."""
        return sa.URL.create('postgresql+psycopg', username=options.username,
                             password=options.password)

    def get_engine_kwargs(self, options: 'SessionOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for PostgreSQL."""
        connect_args = {
            'conninfo': options.connection,
            'application_name': options.appname,
        }
        if options.character_set:
            connect_args['client_encoding'] = options.character_set
        return {'connect_args': connect_args}

    def server_version(self, raw_conn: Any) -> str:
        return f'PostgreSQL {raw_conn.info.server_version}'

    def default_session_sql(self) -> str:
        return "SET DateStyle TO 'ISO, YMD'"

    def standardize_sql(self, sql: str) -> str:
        return named_to_pyformat(sql)

    def procedure_sql(self, name: str, arguments: list[str]) -> str:
        return self.named_call('CALL', name, arguments)

    def collect_outputs(self, cursor: Any, variables: list['BoundVariable']) -> None:
        """OUT and INOUT values come back as a single result row."""
        outs = [v for v in variables if v.is_out]
        if not outs or cursor.description is None:
            return
        row = cursor.fetchone()
        if row is None:
            return
        values = {desc.name.lower(): value for desc, value in zip(cursor.description, row)}
        for variable in outs:
            if variable.name.lower() in values:
                variable.output = values[variable.name.lower()]
                variable.has_output = True

    def _error_details(self, exc: BaseException) -> tuple[str, str]:
        if isinstance(exc, psycopg.Error) and exc.sqlstate:
            return exc.sqlstate, (exc.diag.message_primary or str(exc)).strip()
        return super()._error_details(exc)
