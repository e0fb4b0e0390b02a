"""
Parsed statement wrapper.

A `Statement` owns one DBAPI cursor for the parse → bind → execute → fetch
→ free cycle of a single call. It is a context manager: leaving the block
releases the cursor whatever happened inside it.
"""
import logging
import time
from collections.abc import Iterator
from functools import wraps
from typing import TYPE_CHECKING, Any

from dbsession.variables import BoundVariable

if TYPE_CHECKING:
    from dbsession.connection import Connection

logger = logging.getLogger(__name__)

__all__ = ['Statement', 'IterChunk']


def dumpsql(func):
    """Decorator for logging executed SQL and timing the driver call."""
    @wraps(func)
    def wrapper(self, *args: Any, **kwargs: Any):
        start = time.time()
        try:
            return func(self, *args, **kwargs)
        except Exception:
            logger.debug(f'Error with statement:\nSQL:\n{self.sql}')
            raise
        finally:
            elapsed = time.time() - start
            self.connection.addcall(elapsed)
            logger.debug(f'Statement time: {elapsed:.4f}s')
    return wrapper


def IterChunk(cursor: Any, size: int = 5000) -> Iterator[tuple]:
    """Iterate through cursor results in chunks."""
    while True:
        chunked = cursor.fetchmany(size)
        if not chunked:
            break
        yield from chunked


class Statement:
    """One parsed statement and its bound variables.
    """

    def __init__(self, connection: 'Connection', cursor: Any, sql: str) -> None:
        self.connection = connection
        self.strategy = connection.strategy
        self.dbapi_cursor = cursor
        self.sql = sql
        self.variables: dict[str, BoundVariable] = {}
        self.closed = False

    def __enter__(self) -> 'Statement':
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None,
                 exc_tb: Any | None) -> None:
        self.close()

    def bind(self, variable: BoundVariable) -> None:
        """Register a variable under its ``:name`` placeholder."""
        self.variables[variable.name] = variable

    def create_lob(self) -> Any:
        return self.strategy.create_lob(self.connection.driver_connection)

    def write_lob(self, handle: Any, value: Any) -> int:
        return self.strategy.write_lob(handle, value)

    def free_lob(self, handle: Any) -> None:
        self.strategy.free_lob(handle)

    @dumpsql
    def execute(self) -> int:
        """Execute with the bound variables and return the driver row count.

        OUT values are collected before returning.
        """
        if self.variables:
            params = {name: self.strategy.bind_value(self.dbapi_cursor, variable)
                      for name, variable in self.variables.items()}
            self.dbapi_cursor.execute(self.strategy.standardize_sql(self.sql), params)
            self.strategy.collect_outputs(self.dbapi_cursor, list(self.variables.values()))
        else:
            self.dbapi_cursor.execute(self.sql)
        return self.rowcount

    @property
    def rowcount(self) -> int:
        """Number of rows affected by the last execute, 0 when unknown."""
        rowcount = self.dbapi_cursor.rowcount
        return rowcount if rowcount is not None and rowcount >= 0 else 0

    @property
    def has_result_set(self) -> bool:
        return self.dbapi_cursor.description is not None

    def column_names(self) -> list[str]:
        if not self.has_result_set:
            return []
        return [desc[0] for desc in self.dbapi_cursor.description]

    def fetchone(self) -> tuple | None:
        if not self.has_result_set:
            return None
        return self.dbapi_cursor.fetchone()

    def __iter__(self) -> Iterator[tuple]:
        if not self.has_result_set:
            return iter(())
        return IterChunk(self.dbapi_cursor)

    def close(self) -> None:
        """Release the cursor. Safe to call more than once."""
        if self.closed:
            return
        self.closed = True
        self.dbapi_cursor.close()
