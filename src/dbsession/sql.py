"""
SQL text helpers.

Line-ending normalization, session SQL splitting, named placeholder
rewriting for pyformat drivers and the SQL literal builders used when a
value is spliced into statement text instead of bound.
"""
import re
from typing import Any

from dbsession.exceptions import ValidationError

__all__ = [
    'normalize_line_endings',
    'split_statements',
    'named_to_pyformat',
    'procedure_arguments',
    'quote_or_null',
    'quote_or_default',
    'to_list',
]

# string literals, quoted identifiers, casts and named placeholders
_NAMED_TOKEN = re.compile(r"'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|::|:([A-Za-z_]\w*)|%")


def normalize_line_endings(sql: str) -> str:
    r"""Convert CR-LF line endings to LF.

    PL/SQL blocks authored on Windows fail to compile with CR-LF endings.

    >>> normalize_line_endings('BEGIN\r\n  NULL;\r\nEND;')
    'BEGIN\n  NULL;\nEND;'
    """
    return sql.replace('\r\n', '\n')


def split_statements(sql: str | None) -> list[str]:
    """Split a semicolon-delimited statement list, dropping empty entries.

    >>> split_statements("SET a=1; ;SET b='x';")
    ['SET a=1', "SET b='x'"]
    """
    return [stmt.strip() for stmt in (sql or '').split(';') if stmt.strip()]


def named_to_pyformat(sql: str) -> str:
    """Rewrite ``:name`` placeholders to ``%(name)s``.

    Quoted text and ``::`` casts are left alone, literal percent signs are
    doubled.

    >>> named_to_pyformat("select :id::int, ':skip', 'a%' from t where x = :x")
    "select %(id)s::int, ':skip', 'a%%' from t where x = %(x)s"
    """
    def replace(match: re.Match) -> str:
        token = match.group(0)
        if match.group(1):
            return f'%({match.group(1)})s'
        if token == '%':
            return '%%'
        if token.startswith("'"):
            return token.replace('%', '%%')
        return token

    return _NAMED_TOKEN.sub(replace, sql)


def procedure_arguments(names: list[str]) -> str:
    """Named-notation argument list for a procedure call.

    >>> procedure_arguments(['a', 'b'])
    'a => :a, b => :b'
    """
    return ', '.join(f'{name} => :{name}' for name in names)


def _literal(value: Any, is_string: bool, max_length: int, exception: str,
             with_comma: bool, keyword: str) -> str:
    if value is None or value == '':
        result = keyword
    elif is_string:
        value = str(value)
        if max_length > 0 and len(value) > max_length:
            if exception:
                raise ValidationError(exception)
            value = value[:max_length]
        result = "'" + value.replace("'", "''") + "'"
    else:
        result = str(value)
    if with_comma:
        result += ', '
    return result


def quote_or_null(value: Any, is_string: bool = True, max_length: int = 0,
                  exception: str = '', with_comma: bool = False) -> str:
    """Render ``value`` as a SQL literal, or ``NULL`` when empty.

    Values longer than ``max_length`` are truncated, or rejected with a
    `ValidationError` carrying ``exception`` when one is given.

    >>> quote_or_null("O'Brien")
    "'O''Brien'"
    >>> quote_or_null('')
    'NULL'
    >>> quote_or_null(42, is_string=False, with_comma=True)
    '42, '
    >>> quote_or_null('abcdef', max_length=3)
    "'abc'"
    """
    return _literal(value, is_string, max_length, exception, with_comma, 'NULL')


def quote_or_default(value: Any, is_string: bool = True, max_length: int = 0,
                     exception: str = '', with_comma: bool = False) -> str:
    """Render ``value`` as a SQL literal, or ``DEFAULT`` when empty.

    >>> quote_or_default('')
    'DEFAULT'
    >>> quote_or_default('x', with_comma=True)
    "'x', "
    """
    return _literal(value, is_string, max_length, exception, with_comma, 'DEFAULT')


def to_list(value: str, is_string: bool = True, max_length: int = 0,
            exception: str = '', with_comma: bool = False) -> str:
    """Build a parenthesized literal list from a comma-separated string.

    >>> to_list('a, b,c')
    "('a','b','c')"
    >>> to_list('1,,3', is_string=False)
    '(1,NULL,3)'
    """
    items = [quote_or_null(item.strip(), is_string, max_length, exception)
             for item in str(value).split(',')]
    result = '(' + ','.join(items) + ')'
    if with_comma:
        result += ', '
    return result
