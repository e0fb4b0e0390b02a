"""
Oracle-specific strategy implementation.

This module implements the DatabaseStrategy interface on python-oracledb.
It handles Oracle's bind semantics:
- Native ``:name`` placeholders
- Temporary CLOBs staged through ``Connection.createlob``
- OUT and IN_OUT binds through cursor variables
- ROWID and REF CURSOR binds
- CLOB columns fetched as plain strings
- Anonymous PL/SQL blocks for stored procedure calls
"""
import logging
from typing import TYPE_CHECKING, Any

import oracledb
import sqlalchemy as sa
from dbsession.sql import procedure_arguments
from dbsession.strategy.base import DatabaseStrategy, register_strategy
from dbsession.types import BindType

if TYPE_CHECKING:
    from dbsession.options import SessionOptions
    from dbsession.variables import BoundVariable

logger = logging.getLogger(__name__)

NATIVE_TYPES = {
    BindType.CHAR: oracledb.DB_TYPE_VARCHAR,
    BindType.CLOB: oracledb.DB_TYPE_CLOB,
    BindType.ROWID: oracledb.DB_TYPE_ROWID,
    BindType.CURSOR: oracledb.DB_TYPE_CURSOR,
}


def output_type_handler(cursor: Any, metadata: Any) -> Any:
    """Fetch CLOB/NCLOB columns as strings instead of LOB locators."""
    if metadata.type_code in {oracledb.DB_TYPE_CLOB, oracledb.DB_TYPE_NCLOB}:
        return cursor.var(oracledb.DB_TYPE_LONG, arraysize=cursor.arraysize)
    return None


def _read(value: Any) -> Any:
    """Materialize LOBs and REF CURSORs returned through OUT binds."""
    if isinstance(value, oracledb.LOB):
        return value.read()
    if isinstance(value, oracledb.Cursor):
        with value:
            if value.description is None:
                return []
            columns = [desc[0] for desc in value.description]
            return [dict(zip(columns, row)) for row in value]
    return value


@register_strategy('oracle')
class OracleStrategy(DatabaseStrategy):
    """Oracle-specific operations.
    """

    date_format_marker = 'nls_date_format'

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for Oracle."""
        return 'oracle'

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for Oracle connections."""
        return ['username', 'password', 'connection']

    def build_connection_url(self, options: 'SessionOptions') -> sa.URL:
        """Credentials and descriptor travel in connect_args."""
        return sa.URL.create('oracle+oracledb')

    def get_engine_kwargs(self, options: 'SessionOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for Oracle."""
        if options.character_set and options.character_set.upper() not in {'AL32UTF8', 'UTF8'}:
            logger.debug(f'Ignoring character set {options.character_set}: oracledb always uses UTF-8')
        return {
            'connect_args': {
                'user': options.username,
                'password': options.password,
                'dsn': options.connection,
            }
        }

    def configure_connection(self, raw_conn: Any, options: 'SessionOptions') -> None:
        """Tag the session with the application name and fetch CLOBs as text."""
        raw_conn.module = options.appname
        raw_conn.outputtypehandler = output_type_handler

    def server_version(self, raw_conn: Any) -> str:
        return f'Oracle {raw_conn.version}'

    def default_session_sql(self) -> str:
        return "ALTER SESSION SET NLS_DATE_FORMAT='YYYY-MM-DD HH24:MI:SS'"

    def procedure_sql(self, name: str, arguments: list[str]) -> str:
        return f'BEGIN {name}({procedure_arguments(arguments)}); END;'

    def create_lob(self, raw_conn: Any) -> Any:
        return raw_conn.createlob(oracledb.DB_TYPE_CLOB)

    def write_lob(self, handle: Any, value: Any) -> int:
        handle.write('' if value is None else str(value))
        return handle.size()

    def free_lob(self, handle: Any) -> None:
        """Close the LOB; the temporary segment is freed with the last reference."""
        if handle.isopen():
            handle.close()

    def bind_value(self, cursor: Any, variable: 'BoundVariable') -> Any:
        """Cursor variables for OUT and REF CURSOR binds.
        """
        native = NATIVE_TYPES[variable.bind_type]
        if variable.bind_type is BindType.CURSOR:
            variable.driver_var = cursor.var(native)
            return variable.driver_var
        if not variable.is_out:
            return variable.bound_value

        if variable.bind_type is BindType.CHAR:
            var = cursor.var(native, size=variable.length)
        else:
            var = cursor.var(native)
        if variable.is_in and variable.bound_value not in {None, ''}:
            value = variable.bound_value
            var.setvalue(0, value if variable.bind_type is not BindType.CHAR else str(value))
        variable.driver_var = var
        return var

    def collect_outputs(self, cursor: Any, variables: list['BoundVariable']) -> None:
        for variable in variables:
            if variable.driver_var is None:
                continue
            variable.output = _read(variable.driver_var.getvalue())
            variable.has_output = True

    def _error_details(self, exc: BaseException) -> tuple[str, str]:
        if isinstance(exc, oracledb.Error) and exc.args:
            err = exc.args[0]
            if hasattr(err, 'full_code'):
                return err.full_code, err.message
        return super()._error_details(exc)
