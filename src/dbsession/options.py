from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields
from typing import Any

import pandas as pd
import pyarrow as pa
from dbsession.strategy import get_available_dialects, get_strategy_class
from dbsession.strategy import is_supported_dialect
from dbsession.types import KeyCase

from libb import ConfigOptions, scriptname

__all__ = [
    'SessionOptions',
    'CONNECT_MODES',
    'pandas_numpy_data_loader',
    'pandas_pyarrow_data_loader',
    'iterdict_data_loader',
]

CONNECT_MODES = ('', 'cached', 'persistent')

# configuration section keys (lowercased) -> option fields
_SECTION_KEYS = {
    'drivername': 'drivername',
    'connectmode': 'connect_mode',
    'username': 'username',
    'password': 'password',
    'connection': 'connection',
    'characterset': 'character_set',
    'autocommit': 'auto_commit',
    'connectsql': 'connect_sql',
    'casequery': 'case_query',
    'casestoredprocedure': 'case_stored_procedure',
    'persistent': 'persistent',
    'strict': 'strict',
    'errorparam': 'error_param',
    'appname': 'appname',
}

_BOOLEAN_FIELDS = {'auto_commit', 'persistent', 'strict'}


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {'true', '1', 'yes', 'on'}
    return bool(value)


def iterdict_data_loader(data, columns, **kwargs) -> list[dict]:
    """Minimal data loader.
    """
    if not data:
        return []
    return list(data)


def pandas_numpy_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """Standard pandas DataFrame loader using NumPy.

    Always returns a DataFrame, with columns preserved for empty results.
    """
    if not data:
        return pd.DataFrame(columns=list(columns))
    return pd.DataFrame.from_records(list(data), columns=list(columns))


def pandas_pyarrow_data_loader(data, columns, **kwargs) -> pd.DataFrame:
    """PyArrow-based pandas DataFrame loader.
    """
    if not data:
        return pd.DataFrame(columns=list(columns))
    columns_data = [[row[col] for row in data] for col in columns]
    return pa.table(columns_data, names=list(columns)).to_pandas(types_mapper=pd.ArrowDtype)


@dataclass
class SessionOptions(ConfigOptions):
    """Options

    supported driver names: `oracle`, `postgresql`, `sqlite`

    `connection` is the connect descriptor: an Oracle easy-connect string or
    TNS alias, a libpq conninfo string or URI, or a SQLite database path.

    Connect modes:
    - '' (default): a dedicated connection, closed on disconnect
    - 'cached': a connection shared through a registered engine pool
    - 'persistent': like 'cached' but the pooled connection is never recycled
    """
    drivername: str = 'oracle'
    connect_mode: str = ''
    username: str = None
    password: str = None
    connection: str = None
    character_set: str = None
    auto_commit: bool = False
    connect_sql: str = ''
    case_query: str = 'upper'
    case_stored_procedure: str = 'upper'
    persistent: bool = False
    strict: bool = True
    error_param: str = 'DBError'
    appname: str = None
    data_loader: Callable[..., Any] | None = None
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30

    def __post_init__(self):
        if not is_supported_dialect(self.drivername):
            available = get_available_dialects()
            raise ValueError(f'drivername must be one of: {available}')
        self.connect_mode = (self.connect_mode or '').strip().lower()
        if self.connect_mode not in CONNECT_MODES:
            raise ValueError(f'connect_mode must be one of: {CONNECT_MODES}')
        for name in _BOOLEAN_FIELDS:
            setattr(self, name, _as_bool(getattr(self, name)))
        self.case_query = KeyCase.parse(self.case_query).value
        self.case_stored_procedure = KeyCase.parse(self.case_stored_procedure).value
        self.connect_sql = self.connect_sql or ''
        self.appname = self.appname or scriptname() or 'python_console'
        strategy_cls = get_strategy_class(self.drivername)
        strategy_cls.validate_options(self)
        if self.data_loader is None:
            self.data_loader = pandas_numpy_data_loader

    @property
    def query_key_case(self) -> KeyCase:
        return KeyCase(self.case_query)

    @property
    def procedure_key_case(self) -> KeyCase:
        return KeyCase(self.case_stored_procedure)

    @property
    def effective_connect_mode(self) -> str:
        """Connect mode after applying the `persistent` override."""
        return 'persistent' if self.persistent else self.connect_mode

    @classmethod
    def from_section(cls, section: Mapping[str, Any], **kw: Any) -> 'SessionOptions':
        """Build options from a raw configuration section.

        Keys are matched case-insensitively, so both ``connectMode`` and
        ``connect_mode`` style keys are accepted. Unknown keys are ignored.
        """
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in section.items():
            name = str(key).lower()
            name = _SECTION_KEYS.get(name.replace('_', ''), name)
            if name in known:
                values[name] = value
        values.update(kw)
        return cls(**values)
