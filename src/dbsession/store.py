"""
Parameter store collaborator.

The connection reads named scalar values from the store for convenience
binding and writes the structured error of a failed statement into a named
slot of the same store. Any object with ``get_param``/``set_param`` works;
`ParameterStore` is the in-process default.
"""
from typing import Any, Protocol

from libb import attrdict

__all__ = ['ParameterSource', 'ParameterStore']


class ParameterSource(Protocol):

    def get_param(self, name: str, default: Any = '') -> Any:
        ...

    def set_param(self, name: str, value: Any) -> None:
        ...


class ParameterStore:
    """Dictionary-backed parameter store.

    Names are case-insensitive.

    >>> store = ParameterStore(Name='x')
    >>> store.get_param('NAME')
    'x'
    >>> store.get_param('missing')
    ''
    """

    def __init__(self, **params: Any) -> None:
        self._params = attrdict()
        for name, value in params.items():
            self.set_param(name, value)

    def get_param(self, name: str, default: Any = '') -> Any:
        return self._params.get(name.lower(), default)

    def set_param(self, name: str, value: Any) -> None:
        self._params[name.lower()] = value

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._params

    def __repr__(self) -> str:
        return f'{type(self).__name__}({dict(self._params)!r})'
