"""
Bound variable registry.

A `BindRegistry` holds the named variables of one prepared DML or stored
procedure call. The connection binds every variable against the parsed
statement, executes, then frees the registry: large-object staging handles
are released and each variable's final value (driver OUT value when the
driver wrote one) is published in `BindRegistry.results`.

Example
    variables = BindRegistry()
    variables.bind('p_id', 'text', '42')
    variables.bind('p_doc', 'clob', long_text)
    variables.bind('p_status', 'text', '', 'OUT')
    cn.execute_stored_procedure('pkg.save_doc', variables)
    variables.results['p_status']
"""
import logging
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dbsession.exceptions import DriverError, LobWriteFailed
from dbsession.store import ParameterSource
from dbsession.types import MAX_CHAR_LENGTH, UNBOUNDED_LENGTH, BindType
from dbsession.types import Direction, is_empty_value, resolve_bind_type

if TYPE_CHECKING:
    from dbsession.cursor import Statement

logger = logging.getLogger(__name__)

__all__ = ['BoundVariable', 'BindRegistry']

# bind values longer than this are logged as a character count
_TRACE_VALUE_LIMIT = 255


@dataclass
class BoundVariable:
    """One named bind variable and its per-call driver state."""
    name: str
    logical_type: str = 'text'
    raw_value: Any = ''
    direction: Direction = Direction.IN
    bind_type: BindType | None = None
    length: int = MAX_CHAR_LENGTH
    bound_value: Any = None
    staged: Any = None
    driver_var: Any = None
    output: Any = None
    has_output: bool = False

    @property
    def is_out(self) -> bool:
        return Direction.OUT in self.direction

    @property
    def is_in(self) -> bool:
        return Direction.IN in self.direction

    @property
    def value(self) -> Any:
        """Caller-visible value after execution."""
        if self.has_output:
            return self.output
        if self.bind_type is BindType.CLOB:
            return self.raw_value
        return self.bound_value

    def describe(self) -> str:
        if self.staged is not None:
            shown = 'LOB staging handle'
        else:
            text = '' if self.bound_value is None else str(self.bound_value)
            shown = f'({len(text)} characters of data)' if len(text) > _TRACE_VALUE_LIMIT else text
        return f'{self.name} - {shown} - {self.bind_type.value} - {self.length}'

    def reset(self) -> None:
        self.bound_value = None
        self.staged = None
        self.driver_var = None
        self.output = None
        self.has_output = False


class BindRegistry:
    """Named bind variables for a single call.

    The registry is owned by the caller and passed to the connection by
    reference. After the call returns, `results` maps every variable name to
    its final value; OUT and IN_OUT variables carry what the driver wrote.
    """

    def __init__(self, store: ParameterSource | None = None) -> None:
        self.store = store
        self.variables: dict[str, BoundVariable] = {}
        self.results: dict[str, Any] = {}
        self._bound = False

    def __len__(self) -> int:
        return len(self.variables)

    def __iter__(self) -> Iterator[BoundVariable]:
        return iter(self.variables.values())

    def __contains__(self, name: str) -> bool:
        return name in self.variables

    def __getitem__(self, name: str) -> BoundVariable:
        return self.variables[name]

    def names(self) -> list[str]:
        return list(self.variables)

    def bind(self, name: str, logical_type: str, value: Any,
             direction: str | Direction = 'IN') -> BoundVariable:
        """Register (or overwrite) a bind variable.

        An empty value bound as ``clob`` is registered as ``text``, an empty
        temporary LOB being an invalid locator.
        """
        if (logical_type or '').lower() == 'clob' and is_empty_value(value):
            logical_type = 'text'
        variable = BoundVariable(name=name, logical_type=logical_type or 'text',
                                 raw_value=value, direction=Direction.parse(direction))
        self.variables[name] = variable
        return variable

    def bind_param(self, name: str, logical_type: str,
                   store: ParameterSource | None = None) -> BoundVariable:
        """Bind the current value of parameter ``name`` from the store."""
        store = store or self.store
        if store is None:
            raise ValueError('No parameter store available to bind from')
        return self.bind(name, logical_type, store.get_param(name))

    def bind_to(self, statement: 'Statement') -> None:
        """Bind every variable against a parsed statement.

        Raises `LobWriteFailed` if a large object cannot be created or
        written; the caller frees the registry regardless.
        """
        self._bound = True
        for variable in self.variables.values():
            variable.reset()
            bind_type, length, value = resolve_bind_type(variable.logical_type, variable.raw_value)
            variable.bind_type = bind_type
            variable.length = length
            variable.raw_value = value

            if bind_type is BindType.CLOB:
                try:
                    variable.staged = statement.create_lob()
                except DriverError as err:
                    raise LobWriteFailed(f'Could not create temporary LOB for parameter {variable.name}') from err
                variable.bound_value = variable.staged
                variable.length = UNBOUNDED_LENGTH
            else:
                variable.bound_value = variable.raw_value
                variable.raw_value = ''

            logger.debug(f'Binding variable: {variable.describe()}')
            statement.bind(variable)

            if variable.staged is not None and variable.is_in:
                try:
                    written = statement.write_lob(variable.staged, variable.raw_value)
                except DriverError as err:
                    raise LobWriteFailed(f'Could not write temporary LOB for parameter {variable.name}') from err
                logger.debug(f'LOB for parameter {variable.name} written with {written} characters')

    def free(self, statement: 'Statement | None' = None) -> dict[str, Any]:
        """Release staged handles and publish final values into `results`.

        Safe to call more than once and after a failed execute.
        """
        if not self._bound:
            return self.results
        self._bound = False
        for variable in self.variables.values():
            try:
                self.results[variable.name] = variable.value
            finally:
                if variable.is_out:
                    variable.bound_value = None
                if variable.staged is not None:
                    handle, variable.staged = variable.staged, None
                    variable.bound_value = None
                    if statement is not None:
                        statement.free_lob(handle)
                variable.driver_var = None
        return self.results
