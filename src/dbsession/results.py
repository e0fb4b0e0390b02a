"""
Result shaping for queries.

`transform` turns an executed statement into the shape selected by a
`ResultMode`, with result keys converted to the connection's key case.
It returns the shaped result and the row count recorded for the query.

Zero-row results never collide with the ``False`` failure sentinel that a
non-strict failed query returns:

========================  ===================================  =========
mode                      result                               zero rows
========================  ===================================  =========
RAW                       list of row dicts                    ``[]``
FIRST_ROW                 row as attrdict                      ``None``
FIRST_ROW_FIRST_COLUMN    first column of the first row        ``''``
ALL_KEY_VALUE_PAIRS       ``{col0: col1}``                     ``{}``
ALL_FIRST_COLUMN_VALUES   ``[col0, ...]``                      ``[]``
ALL_ROWS                  list of row dicts                    ``[]``
ALL_ROWS_ASSOC            ``{row[index_field]: row}``          ``{}``
========================  ===================================  =========
"""
import enum
import logging
from typing import TYPE_CHECKING, Any

from dbsession.exceptions import MissingIndexField, UnknownResultMode
from dbsession.types import KeyCase

from libb import attrdict

if TYPE_CHECKING:
    from dbsession.cursor import Statement

logger = logging.getLogger(__name__)

__all__ = ['ResultMode', 'resolve_mode', 'transform']


class ResultMode(enum.IntEnum):
    RAW = 0
    FIRST_ROW = 1
    FIRST_ROW_FIRST_COLUMN = 2
    ALL_KEY_VALUE_PAIRS = 3
    ALL_FIRST_COLUMN_VALUES = 4
    ALL_ROWS = 5
    ALL_ROWS_ASSOC = 6


def resolve_mode(mode: Any) -> ResultMode:
    """Coerce a mode given as a member, its value or its name.

    >>> resolve_mode('all_rows')
    <ResultMode.ALL_ROWS: 5>
    >>> resolve_mode(2)
    <ResultMode.FIRST_ROW_FIRST_COLUMN: 2>
    """
    if isinstance(mode, ResultMode):
        return mode
    try:
        if isinstance(mode, str):
            return ResultMode[mode.strip().upper()]
        return ResultMode(mode)
    except (KeyError, ValueError):
        raise UnknownResultMode(f'Unknown query result type: {mode!r}') from None


def _rows(statement: 'Statement', columns: list[str]) -> list[dict]:
    return [dict(zip(columns, row)) for row in statement]


def transform(statement: 'Statement', mode: ResultMode, key_case: KeyCase,
              index_field: str | None = None) -> tuple[Any, int]:
    """Shape the rows of an executed statement.

    Returns
        (result, row count)
    """
    columns = [key_case.apply(name) for name in statement.column_names()]

    if mode is ResultMode.RAW or mode is ResultMode.ALL_ROWS:
        rows = _rows(statement, columns)
        return rows, len(rows)

    if mode is ResultMode.FIRST_ROW:
        row = statement.fetchone()
        if row is None:
            return None, 0
        return attrdict(dict(zip(columns, row))), 1

    if mode is ResultMode.FIRST_ROW_FIRST_COLUMN:
        row = statement.fetchone()
        if row is None:
            return '', 0
        return row[0], 1

    if mode is ResultMode.ALL_KEY_VALUE_PAIRS:
        pairs = {row[0]: row[1] for row in statement}
        return pairs, len(pairs)

    if mode is ResultMode.ALL_FIRST_COLUMN_VALUES:
        values = [row[0] for row in statement]
        return values, len(values)

    if mode is ResultMode.ALL_ROWS_ASSOC:
        if not index_field:
            raise MissingIndexField('Index field name is mandatory on ALL_ROWS_ASSOC result type')
        index_field = key_case.apply(index_field)
        if columns and index_field not in columns:
            raise MissingIndexField(f'Index field {index_field} is not a result column')
        keyed = {}
        for row in statement:
            record = dict(zip(columns, row))
            keyed[record[index_field]] = record
        return keyed, len(keyed)

    raise UnknownResultMode(f'Unknown query result type: {mode!r}')
