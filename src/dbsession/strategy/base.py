"""
Base strategy interface for dialect-specific driver behaviour.

Defines the abstract base class that all dialect strategy implementations
must inherit from. The connection, statement and bind registry only talk to
the driver through a strategy, so the statement lifecycle is the same for
every backend while URL building, native bind types, large-object staging,
OUT-value retrieval and error decoding vary per dialect.
"""
import io
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from dbsession.sql import procedure_arguments

if TYPE_CHECKING:
    from dbsession.options import SessionOptions
    from dbsession.variables import BoundVariable

logger = logging.getLogger(__name__)

# Registry of dialect name -> strategy class
# Defined here to avoid circular imports (concrete strategies import from base)
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('oracle')
        class OracleStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    #: substring that marks a session statement setting the date format
    date_format_marker: str | None = None

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'oracle', 'sqlite')."""

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.
        """

    @classmethod
    def validate_options(cls, options: 'SessionOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or empty
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or empty')

    @abstractmethod
    def build_connection_url(self, options: 'SessionOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for this dialect.
        """

    def get_engine_kwargs(self, options: 'SessionOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.
        """
        return {}

    def configure_connection(self, raw_conn: Any, options: 'SessionOptions') -> None:
        """Apply per-connection driver settings after connect.

        Args:
            raw_conn: The driver connection (not wrapped)
            options: Options the connection was opened with
        """

    def server_version(self, raw_conn: Any) -> str:
        """Describe the server for the connect trace."""
        return 'unknown server version'

    def default_session_sql(self) -> str | None:
        """Statement injected into the session SQL unless the caller sets one.
        """
        return None

    def session_statements(self, connect_sql: str) -> str:
        """Prepend the default date-format statement when it is missing.
        """
        default = self.default_session_sql()
        if not default or self.date_format_marker.lower() in (connect_sql or '').lower():
            return connect_sql or ''
        return f'{default};{connect_sql or ""}'

    def standardize_sql(self, sql: str) -> str:
        """Convert ``:name`` placeholders to this dialect's style.

        Default implementation is a no-op.
        """
        return sql

    def open_cursor(self, raw_conn: Any) -> Any:
        """Allocate a cursor for a new statement."""
        return raw_conn.cursor()

    def savepoint_sql(self, name: str) -> str:
        return f'SAVEPOINT {name}'

    def rollback_to_savepoint_sql(self, name: str) -> str:
        return f'ROLLBACK TO SAVEPOINT {name}'

    @abstractmethod
    def procedure_sql(self, name: str, arguments: list[str]) -> str:
        """Build the call statement for a stored procedure.

        Args:
            name: Procedure name, optionally package or schema qualified
            arguments: Parameter names, bound by name as ``:argument``
        """

    def create_lob(self, raw_conn: Any) -> Any:
        """Acquire a temporary large-object staging handle.

        Default stages text in memory for drivers that bind large text
        values directly.
        """
        return io.StringIO()

    def write_lob(self, handle: Any, value: Any) -> int:
        """Write ``value`` into a staging handle, returning the size written."""
        return handle.write('' if value is None else str(value))

    def free_lob(self, handle: Any) -> None:
        """Release a staging handle."""
        handle.close()

    def bind_value(self, cursor: Any, variable: 'BoundVariable') -> Any:
        """Return the object handed to the driver for ``variable``.

        Called right before execute, after any large-object staging writes.
        """
        if isinstance(variable.bound_value, io.StringIO):
            return variable.bound_value.getvalue()
        return variable.bound_value

    def collect_outputs(self, cursor: Any, variables: list['BoundVariable']) -> None:
        """Read values the driver wrote into OUT variables after execute.

        Default is a no-op for drivers without OUT binds.
        """

    def error_details(self, exc: BaseException) -> tuple[str, str]:
        """Return the (code, message) pair describing a driver error."""
        if isinstance(exc, sa.exc.DBAPIError) and exc.orig is not None:
            exc = exc.orig
        return self._error_details(exc)

    def _error_details(self, exc: BaseException) -> tuple[str, str]:
        return type(exc).__name__, str(exc).strip()

    def named_call(self, keyword: str, name: str, arguments: list[str]) -> str:
        """``<keyword> name(a => :a, ...)``"""
        return f'{keyword} {name}({procedure_arguments(arguments)})'
