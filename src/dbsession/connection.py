"""
Database session handling with SQLAlchemy.

This module provides:
1. The `Connection` class owning one driver connection and its transaction
   state, with the query/DML/stored procedure verbs
2. The `connect()` function returning a connected `Connection`
3. Engine creation through a thread-safe registry for cached and
   persistent connect modes

SQLAlchemy is used for engine and pool management only. Statements run on
the DBAPI connection so that driver bind semantics (cursor variables,
temporary LOBs) stay available.

Every data operation takes ``strict``. Strict calls raise `ParseFailed` or
`ExecuteFailed` on driver failure; non-strict calls return ``False`` instead.
Either way the structured error is left in the parameter store slot named
by ``options.error_param`` and on `Connection.last_error`.
"""
import atexit
import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any, Self

import sqlalchemy as sa
from dbsession.cursor import Statement
from dbsession.exceptions import ConnectFailed, DatabaseError, DriverError
from dbsession.exceptions import ExecuteFailed, LobWriteFailed, MissingIndexField
from dbsession.exceptions import NotConnected, ParseFailed, StatementError
from dbsession.options import SessionOptions
from dbsession.results import ResultMode, resolve_mode, transform
from dbsession.sql import normalize_line_endings, quote_or_default, quote_or_null
from dbsession.sql import split_statements, to_list
from dbsession.store import ParameterSource, ParameterStore
from dbsession.strategy import DatabaseStrategy, get_strategy
from dbsession.types import KeyCase, change_key_case
from dbsession.variables import BindRegistry, BoundVariable
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool

from libb import load_options

__all__ = [
    'Connection',
    'connect',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)

_engine_registry: dict[tuple, Engine] = {}
_engine_registry_lock = threading.RLock()


def get_engine_for_options(options: SessionOptions,
                           engine_factory: Callable[..., Engine] = sa.create_engine) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    Plain connections get a private engine without a pool. Cached and
    persistent connections share a registered pooled engine; persistent
    pools never recycle their connections.
    """
    strategy = get_strategy(options.drivername)
    url = strategy.build_connection_url(options)
    engine_kwargs: dict[str, Any] = {'echo': False}
    engine_kwargs.update(strategy.get_engine_kwargs(options))

    mode = options.effective_connect_mode
    if not mode:
        engine_kwargs['poolclass'] = NullPool
        return engine_factory(url, **engine_kwargs)

    key = (mode, options.drivername, options.username, options.password,
           options.connection, options.character_set, options.appname)

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing {mode} engine for {options.drivername}')
            return _engine_registry[key]

        engine_kwargs['pool_size'] = options.pool_max_connections
        engine_kwargs['pool_timeout'] = options.pool_wait_timeout
        engine_kwargs['pool_recycle'] = options.pool_max_idle_time if mode == 'cached' else -1
        engine_kwargs['max_overflow'] = 10
        engine_kwargs['pool_pre_ping'] = True
        engine_kwargs['pool_reset_on_return'] = 'rollback'

        engine = engine_factory(url, **engine_kwargs)
        _engine_registry[key] = engine
        logger.debug(f'Created new {mode} engine for {options.drivername}')
        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for engine in _engine_registry.values():
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


def _load_session_options(options: SessionOptions | Mapping[str, Any] | str,
                          config: Any | None = None, **kw: Any) -> SessionOptions:
    """Resolve options from an instance, a raw section or a config name."""
    if isinstance(options, SessionOptions):
        return replace(options, **kw) if kw else options
    if isinstance(options, Mapping):
        return SessionOptions.from_section(options, **kw)
    options_func = load_options(cls=SessionOptions)(lambda o, c: o)
    return options_func(options, config, **kw)


class Connection:
    """One database session: connection handle, transaction state and the
    statement lifecycle.

    A connection is not thread-safe; use one instance per thread or worker.

    Examples
        cn = Connection().connect('Database', config)
        cn.start_transaction()
        cn.execute_dml("update t set x = 1")
        cn.rollback()
        cn.query(ResultMode.FIRST_ROW, 'select x from t')
        cn.disconnect()
    """

    def __init__(self, store: ParameterSource | None = None,
                 logger: logging.Logger | None = None) -> None:
        """Create a disconnected session.

        Args:
            store: Parameter store used for `bind_param` and the error slot
            logger: Trace sink, defaults to this module's logger
        """
        self.store = store if store is not None else ParameterStore()
        self.logger = logger or logging.getLogger(__name__)
        self.options: SessionOptions | None = None
        self.strategy: DatabaseStrategy | None = None
        self.engine: Engine | None = None
        self.sa_connection: sa.engine.Connection | None = None
        self.dbapi_connection: Any = None
        self.auto_commit = False
        self.query_key_case = KeyCase.UPPER
        self.procedure_key_case = KeyCase.UPPER
        self.last_error: StatementError | None = None
        self._in_transaction = False
        self._last_query_columns: list[str] = []
        self._last_query_total_rows = 0
        self.calls = 0
        self.time = 0

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.disconnect()

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    # connection state

    @property
    def connected(self) -> bool:
        return self.sa_connection is not None

    @property
    def driver_connection(self) -> Any:
        """The driver's own connection object (oracledb, psycopg, sqlite3)."""
        return self.dbapi_connection.driver_connection

    @property
    def handle(self) -> Any:
        self._check_connection()
        return self.driver_connection

    @property
    def db_syntax(self) -> str:
        self._check_connection()
        return self.strategy.dialect_name

    @property
    def in_transaction(self) -> bool:
        """True while in explicit-transaction mode (no commit per statement)."""
        self._check_connection()
        return self._in_transaction

    @property
    def last_query_columns(self) -> list[str]:
        return list(self._last_query_columns)

    @property
    def last_query_total_rows(self) -> int:
        return self._last_query_total_rows

    def _check_connection(self) -> None:
        if not self.connected:
            raise NotConnected('Database connection not established')

    def connect(self, options: SessionOptions | Mapping[str, Any] | str = 'Database',
                config: Any | None = None, persistent: bool = False, **kw: Any) -> Self:
        """Open the session. A no-op when already connected.

        Args:
            options: Options instance, raw configuration section, or the name
                of a section in ``config``
            config: Configuration object (for loading from config files)
            persistent: Force the persistent connect mode
            **kw: Additional keyword arguments to override options

        Raises
            ConnectFailed: If the driver rejects the connection
        """
        if self.connected:
            return self

        if persistent:
            kw['persistent'] = True
        options = _load_session_options(options, config, **kw)
        strategy = get_strategy(options.drivername)
        engine = get_engine_for_options(options)

        try:
            sa_connection = engine.connect()
        except DriverError as exc:
            if not options.effective_connect_mode:
                engine.dispose()
            code, message = strategy.error_details(exc)
            error = StatementError(code, message, options.connection or '')
            self._record_error(error, options.error_param)
            raise ConnectFailed('Database open error', error) from exc

        self.options = options
        self.strategy = strategy
        self.engine = engine
        self.sa_connection = sa_connection
        self.dbapi_connection = sa_connection.connection
        strategy.configure_connection(self.driver_connection, options)

        self.auto_commit = options.auto_commit
        self.query_key_case = options.query_key_case
        self.procedure_key_case = options.procedure_key_case
        self._in_transaction = False

        self.logger.debug(f'Database connected - {strategy.server_version(self.driver_connection)} - {options.connection}')

        # session settings are committed before explicit mode begins
        try:
            for sql in split_statements(strategy.session_statements(options.connect_sql)):
                self.query(ResultMode.FIRST_ROW_FIRST_COLUMN, sql, strict=True)
        except DatabaseError:
            self.disconnect()
            raise
        self._in_transaction = not self.auto_commit
        return self

    def disconnect(self) -> None:
        """Roll back an open transaction and release the connection.

        A no-op when not connected.
        """
        if not self.connected:
            return
        try:
            if self._in_transaction:
                self.dbapi_connection.rollback()
                self.logger.debug('Rolled back open transaction on disconnect')
        finally:
            self.sa_connection.close()
            if not self.options.effective_connect_mode:
                self.engine.dispose()
            self.sa_connection = None
            self.dbapi_connection = None
            self.engine = None
            self._in_transaction = False
            self.logger.debug(f'Database disconnected: {self.calls} statements in {self.time:.2f}s (avg: {self.time/max(1,self.calls):.3f}s per statement)')

    # transactions

    def start_transaction(self, savepoint: str | None = None) -> None:
        """Enter explicit-transaction mode, optionally setting a savepoint.

        A no-op when already in a transaction.
        """
        self._check_connection()
        if self._in_transaction:
            return
        self._in_transaction = True
        if savepoint:
            try:
                self.query(ResultMode.RAW, self.strategy.savepoint_sql(savepoint), strict=True)
            except DatabaseError:
                self._in_transaction = False
                raise
        self.logger.debug('Transaction started')

    def commit(self) -> None:
        """Commit the open transaction. The session stays in explicit mode.
        """
        self._check_connection()
        if not self._in_transaction:
            return
        self.dbapi_connection.commit()
        self.logger.debug('Transaction committed')

    def rollback(self, savepoint: str | None = None) -> None:
        """Roll back to ``savepoint``, or the whole transaction.
        """
        self._check_connection()
        if not self._in_transaction:
            return
        if savepoint is not None:
            self.query(ResultMode.RAW, self.strategy.rollback_to_savepoint_sql(savepoint), strict=True)
            self.logger.debug(f'Transaction rolled back to savepoint: {savepoint}')
        else:
            self.dbapi_connection.rollback()
            self.logger.debug('Transaction rolled back')

    # statement lifecycle

    def _strict(self, strict: bool | None) -> bool:
        return self.options.strict if strict is None else strict

    def _record_error(self, error: StatementError, slot: str | None = None) -> None:
        self.last_error = error
        self.store.set_param(slot or self.options.error_param, str(error))

    def _statement_error(self, exc: BaseException, sql: str) -> StatementError:
        code, message = self.strategy.error_details(exc)
        return StatementError(code, message, sql)

    def _failure(self, exc_cls: type[DatabaseError], message: str,
                 exc: BaseException, sql: str, strict: bool) -> bool:
        error = self._statement_error(exc, sql)
        self._record_error(error)
        self.logger.debug(f'{message} - {error}')
        if strict:
            raise exc_cls(message, error) from exc
        return False

    def _parse(self, sql: str, strict: bool) -> Statement | bool:
        sql = normalize_line_endings(sql)
        try:
            cursor = self.strategy.open_cursor(self.dbapi_connection)
        except DriverError as exc:
            return self._failure(ParseFailed, 'Could not parse query', exc, sql, strict)
        return Statement(self, cursor, sql)

    def _rollback_quietly(self) -> None:
        try:
            self.dbapi_connection.rollback()
        except DriverError as err:
            self.logger.debug(f'Rollback after failed statement failed: {err}')

    def _execute(self, statement: Statement, strict: bool) -> int | bool:
        """Execute, committing on success unless in explicit-transaction mode.
        """
        try:
            rowcount = statement.execute()
            if not self._in_transaction:
                self.dbapi_connection.commit()
            return rowcount
        except DriverError as exc:
            if not self._in_transaction:
                self._rollback_quietly()
            return self._failure(ExecuteFailed, 'Could not execute statement', exc, statement.sql, strict)

    def _execute_bound(self, statement: Statement, variables: BindRegistry,
                       strict: bool) -> int | bool:
        """Bind, execute and always free the registry."""
        try:
            try:
                variables.bind_to(statement)
            except LobWriteFailed as exc:
                exc.error = self._statement_error(exc.__cause__, statement.sql)
                self._record_error(exc.error)
                raise
            return self._execute(statement, strict)
        finally:
            variables.free(statement)

    def query(self, mode: ResultMode | int | str, sql: str, index_field: str | None = None,
              strict: bool | None = None) -> Any:
        """Run a query and shape its rows per ``mode``.

        Args:
            mode: Result shape, see `dbsession.results`
            sql: Query text
            index_field: Key column, mandatory for ALL_ROWS_ASSOC
            strict: Raise on failure instead of returning ``False``

        Column names and the row count are available afterwards through
        `last_query_columns` and `last_query_total_rows`; both are reset at
        the start of every call.
        """
        self._last_query_columns = []
        self._last_query_total_rows = 0
        self._check_connection()

        mode = resolve_mode(mode)
        if mode is ResultMode.ALL_ROWS_ASSOC and not index_field:
            raise MissingIndexField('Index field name is mandatory on ALL_ROWS_ASSOC result type')
        strict = self._strict(strict)

        self.logger.debug(f'Running query:\n{sql}')

        statement = self._parse(sql, strict)
        if statement is False:
            return False

        with statement:
            if self._execute(statement, strict) is False:
                return False
            self._last_query_columns = [self.query_key_case.apply(c) for c in statement.column_names()]
            try:
                result, total_rows = transform(statement, mode, self.query_key_case, index_field)
            except DriverError as exc:
                return self._failure(ExecuteFailed, 'Could not fetch rows', exc, statement.sql, strict)

        self._last_query_total_rows = total_rows
        return result

    def query_frame(self, sql: str, data_loader: Callable[..., Any] | None = None,
                    strict: bool | None = None) -> Any:
        """Run a query and load all rows with the configured data loader.

        The default loader builds a pandas DataFrame.
        """
        rows = self.query(ResultMode.ALL_ROWS, sql, strict=strict)
        if rows is False:
            return False
        data_loader = data_loader or self.options.data_loader
        return data_loader(rows, self.last_query_columns)

    def execute_dml(self, sql: str, strict: bool | None = None) -> int | bool:
        """Execute a statement without bind variables.

        Returns
            Number of rows modified, or False on a non-strict failure
        """
        self._check_connection()
        strict = self._strict(strict)

        self.logger.debug(f'Executing DML:\n{sql}')

        statement = self._parse(sql, strict)
        if statement is False:
            return False
        with statement:
            rowcount = self._execute(statement, strict)
        if rowcount is False:
            return False

        self.logger.debug(f'Number of rows modified: {rowcount}')
        return rowcount

    def bind(self, variables: BindRegistry, name: str, logical_type: str, value: Any,
             direction: str = 'IN') -> BoundVariable:
        """Register a bind variable in ``variables``."""
        return variables.bind(name, logical_type, value, direction)

    def bind_param(self, variables: BindRegistry, name: str, logical_type: str) -> BoundVariable:
        """Bind the parameter store's current value of ``name``."""
        return variables.bind_param(name, logical_type, store=self.store)

    def execute_prepared_dml(self, sql: str, variables: BindRegistry,
                             strict: bool | None = None) -> int | bool:
        """Execute a statement with ``:name`` bind variables.

        Final variable values are published in ``variables.results``.

        Returns
            Number of rows modified, or False on a non-strict failure
        """
        self._check_connection()
        strict = self._strict(strict)

        self.logger.debug(f'Executing DML:\n{sql}')

        statement = self._parse(sql, strict)
        if statement is False:
            return False
        with statement:
            rowcount = self._execute_bound(statement, variables, strict)
        if rowcount is False:
            return False

        self.logger.debug(f'Number of rows modified: {rowcount}')
        return rowcount

    execute_prepared_dml2 = execute_prepared_dml

    def execute_stored_procedure(self, name: str, variables: BindRegistry,
                                 strict: bool | None = None) -> dict[str, Any] | bool:
        """Call a stored procedure passing every variable by name.

        Returns
            Final variable values keyed per the stored procedure key case
            (also left in ``variables.results``), or False on a non-strict
            failure
        """
        self._check_connection()
        strict = self._strict(strict)

        sql = self.strategy.procedure_sql(name, variables.names())
        self.logger.debug(f'Executing stored procedure:\n{sql}')

        statement = self._parse(sql, strict)
        if statement is False:
            return False
        with statement:
            try:
                outcome = self._execute_bound(statement, variables, strict)
            finally:
                variables.results = self._procedure_results(variables.results)
        if outcome is False:
            return False
        return variables.results

    def _procedure_results(self, results: dict[str, Any]) -> dict[str, Any]:
        case = self.procedure_key_case
        shaped = change_key_case(results, case)
        for key, value in shaped.items():
            if isinstance(value, list) and all(isinstance(row, dict) for row in value):
                shaped[key] = [change_key_case(row, case) for row in value]
        return shaped

    # SQL literal helpers

    quote_or_null = staticmethod(quote_or_null)
    quote_or_default = staticmethod(quote_or_default)
    to_list = staticmethod(to_list)

    def quote_or_null_param(self, name: str, is_string: bool = True, max_length: int = 0,
                            exception: str = '', with_comma: bool = False) -> str:
        """`quote_or_null` applied to a parameter store value."""
        return quote_or_null(self.store.get_param(name), is_string, max_length, exception, with_comma)

    def quote_or_default_param(self, name: str, is_string: bool = True, max_length: int = 0,
                               exception: str = '', with_comma: bool = False) -> str:
        """`quote_or_default` applied to a parameter store value."""
        return quote_or_default(self.store.get_param(name), is_string, max_length, exception, with_comma)


def connect(options: SessionOptions | Mapping[str, Any] | str,
            config: Any | None = None, store: ParameterSource | None = None,
            **kw: Any) -> Connection:
    """Connect to a database and return the open `Connection`.

    Args:
        options: Can be:
                - SessionOptions object
                - Dictionary holding a configuration section
                - Name of a section in ``config``
        config: Configuration object (for loading from config files)
        store: Parameter store for the error slot and `bind_param`
        **kw: Additional keyword arguments to override options
    """
    return Connection(store=store).connect(options, config, **kw)
