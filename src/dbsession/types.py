"""
Bind type resolution and value conversion.

Maps the logical type names callers use when binding (``text``, ``clob``,
``rowid``, ``cursor``) onto dialect-neutral bind types and buffer lengths.
Dialect strategies translate a `BindType` into the native driver type.
"""
import datetime
import enum
import math
from typing import Any

import numpy as np
import pandas as pd
import pyarrow as pa

__all__ = [
    'BindType',
    'Direction',
    'KeyCase',
    'MAX_CHAR_LENGTH',
    'UNBOUNDED_LENGTH',
    'TypeConverter',
    'is_empty_value',
    'resolve_bind_type',
    'change_key_case',
    'convert_date',
    'convert_datetime',
]

# driver buffer unit halved to leave room for multi-byte characters
MAX_CHAR_LENGTH = 32766 // 2
UNBOUNDED_LENGTH = -1


class BindType(enum.Enum):
    """Dialect-neutral bind types."""
    CHAR = 'char'
    CLOB = 'clob'
    ROWID = 'rowid'
    CURSOR = 'cursor'

    @property
    def is_unbounded(self) -> bool:
        return self is not BindType.CHAR


class Direction(enum.Flag):
    """Parameter direction parsed from an ``IN``/``OUT``/``IN_OUT`` string.

    >>> Direction.parse('IN_OUT') == Direction.IN | Direction.OUT
    True
    >>> Direction.parse('out')
    <Direction.OUT: 2>
    """
    IN = 1
    OUT = 2

    @classmethod
    def parse(cls, mode: 'str | Direction | None') -> 'Direction':
        if isinstance(mode, Direction):
            return mode
        mode = (mode or 'IN').upper()
        direction = cls(0)
        if 'IN' in mode:
            direction |= cls.IN
        if 'OUT' in mode:
            direction |= cls.OUT
        if not direction:
            raise ValueError(f'Unknown bind direction: {mode}')
        return direction


class KeyCase(str, enum.Enum):
    """Case convention applied to result keys."""
    UPPER = 'upper'
    LOWER = 'lower'

    @classmethod
    def parse(cls, value: 'str | KeyCase | None') -> 'KeyCase':
        if isinstance(value, KeyCase):
            return value
        return cls.LOWER if (value or '').strip().lower() == 'lower' else cls.UPPER

    def apply(self, name: str) -> str:
        return name.lower() if self is KeyCase.LOWER else name.upper()


def change_key_case(mapping: dict[str, Any], case: KeyCase) -> dict[str, Any]:
    """Return a copy of ``mapping`` with every key converted to ``case``.
    """
    return {case.apply(k): v for k, v in mapping.items()}


def is_empty_value(value: Any) -> bool:
    """Value that binds as an empty string."""
    return value is None or (isinstance(value, str) and value == '')


_LOGICAL_TYPES = {
    'clob': BindType.CLOB,
    'rowid': BindType.ROWID,
    'cursor': BindType.CURSOR,
}


def resolve_bind_type(logical_type: str | None, value: Any) -> tuple[BindType, int, Any]:
    """Resolve a logical type name and value to a bind type and length.

    Returns the bind type, the maximum buffer length (`UNBOUNDED_LENGTH` for
    large objects, row identifiers and cursors) and the coerced value.

    >>> resolve_bind_type('CLOB', 'text')[:2]
    (<BindType.CLOB: 'clob'>, -1)
    >>> resolve_bind_type('varchar', 'text')[:2]
    (<BindType.CHAR: 'char'>, 16383)
    >>> resolve_bind_type('clob', '')[:2]
    (<BindType.CHAR: 'char'>, 16383)
    """
    value = TypeConverter.convert_value(value)
    logical_type = (logical_type or '').strip().lower()
    if not logical_type or is_empty_value(value):
        return BindType.CHAR, MAX_CHAR_LENGTH, value
    bind_type = _LOGICAL_TYPES.get(logical_type, BindType.CHAR)
    length = UNBOUNDED_LENGTH if bind_type.is_unbounded else MAX_CHAR_LENGTH
    return bind_type, length, value


NUMPY_INT_TYPES = (np.int8, np.int16, np.int32, np.int64,
                   np.uint8, np.uint16, np.uint32, np.uint64)
NUMPY_FLOAT_TYPES = (np.float16, np.float32, np.float64)


def _convert_numpy_value(val: Any) -> Any:
    """Convert a numpy scalar to its Python equivalent."""
    if isinstance(val, NUMPY_FLOAT_TYPES):
        return None if np.isnan(val) else float(val)
    if isinstance(val, NUMPY_INT_TYPES):
        return int(val)
    if isinstance(val, np.datetime64):
        if np.isnat(val):
            return None
        return pd.Timestamp(val).to_pydatetime()
    return val.item()


class TypeConverter:
    """Bind value conversion.

    Handles NumPy, Pandas and PyArrow scalars so that values taken straight
    from a DataFrame bind as plain Python values.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if isinstance(value, pa.Scalar):
            return value.as_py()

        if isinstance(value, np.generic):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return None if pd.isna(value) else value.to_pydatetime()

        if value is pd.NaT or value is pd.NA:
            return None

        return value


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date to datetime.date object."""
    return datetime.date.fromisoformat(val.decode())


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime to datetime.datetime object."""
    return datetime.datetime.fromisoformat(val.decode())
