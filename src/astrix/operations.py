"""
Operation definitions.

An ``Operation`` is the static description of one contract capability:
which function it calls, how its parameters are validated, how its result
is decoded and, for writes, which event carries the result and which cached
reads it makes stale. Domain modules define them once and hand them to the
executor.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Sequence, Union

import jsonschema
from jsonschema import FormatChecker

from .anamnesis.cache import serialize_params
from .errors import ValidationError
from .pneuma.abi import FieldRef, find_event, find_function

Invalidation = Union[str, Callable[[Sequence[Any]], str]]

ZERO_ADDRESS = "0x" + "0" * 40
_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
MAX_TOKEN_AMOUNT = 2**128


class OperationKind(str, Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Operation:
    name: str
    kind: OperationKind
    contract: str
    abi: list[dict[str, Any]] = field(compare=False, repr=False)
    function: str = ""
    params_schema: Optional[dict[str, Any]] = field(default=None, compare=False, repr=False)
    decoder: Optional[Callable[[Any], Any]] = field(default=None, compare=False, repr=False)
    event: Optional[str] = None
    event_fields: tuple[FieldRef, ...] = ()
    invalidates: tuple[Invalidation, ...] = field(default=(), compare=False)
    gas_limit: Optional[int] = None
    _validator: Optional[jsonschema.Validator] = field(
        default=None, init=False, compare=False, repr=False
    )

    def __post_init__(self) -> None:
        if not self.function:
            object.__setattr__(self, "function", self.name)
        # Fail at definition time, not at first call
        find_function(self.abi, self.function)
        if self.event is not None:
            if self.kind is not OperationKind.WRITE:
                raise ValueError(f"Read operation {self.name} cannot expect an event")
            find_event(self.abi, self.event)
        if self.params_schema is not None:
            validator_cls = jsonschema.validators.validator_for(self.params_schema)
            validator_cls.check_schema(self.params_schema)
            object.__setattr__(
                self,
                "_validator",
                validator_cls(self.params_schema, format_checker=FormatChecker()),
            )

    @classmethod
    def read(cls, name: str, contract: str, abi: list[dict[str, Any]], **kwargs: Any) -> "Operation":
        return cls(name=name, kind=OperationKind.READ, contract=contract, abi=abi, **kwargs)

    @classmethod
    def write(cls, name: str, contract: str, abi: list[dict[str, Any]], **kwargs: Any) -> "Operation":
        return cls(name=name, kind=OperationKind.WRITE, contract=contract, abi=abi, **kwargs)

    @property
    def requires_identity(self) -> bool:
        return self.kind is OperationKind.WRITE

    def validate(self, params: Sequence[Any]) -> None:
        """
        Check parameters against the declared schema and the ABI arity.

        Raises:
            ValidationError: With one formatted message per schema violation
        """
        arity = len(find_function(self.abi, self.function).get("inputs", []))
        if len(params) != arity:
            raise ValidationError(
                f"{self.name} expects {arity} parameters, got {len(params)}"
            )

        if self._validator is None:
            return
        errors = sorted(self._validator.iter_errors(list(params)), key=lambda e: list(e.path))
        if errors:
            formatted = [_format_error(err) for err in errors]
            raise ValidationError(
                f"Invalid parameters for {self.name}: {'; '.join(formatted)}",
                cause=errors[0],
                errors=formatted,
            )

    def invalidation_prefixes(self, params: Sequence[Any]) -> list[str]:
        """Resolve declared invalidations (static or parameter-derived) to key prefixes."""
        prefixes = []
        for item in self.invalidates:
            prefixes.append(item(params) if callable(item) else item)
        return prefixes


def read_prefix(operation_name: str, params: Optional[Sequence[Any]] = None) -> str:
    """
    Invalidation prefix for cached reads of ``operation_name``.

    Without ``params`` it covers every cached call of the operation; with
    ``params`` it covers exactly the call made with those parameters.
    """
    if params is None:
        return f"{operation_name}:"
    return f"{operation_name}:{serialize_params(params)}"


def _format_error(error: jsonschema.ValidationError) -> str:
    location = "/".join(str(part) for part in error.path) or "<root>"
    return f"{location}: {error.message}"


# ---------------------------------------------------------------------------
# Parameter validators for domain modules
# ---------------------------------------------------------------------------


def validate_address(address: Any, param_name: str = "address") -> None:
    if not isinstance(address, str) or not _ADDRESS_RE.match(address):
        raise ValidationError(f"Invalid {param_name}: {address}")
    if address.lower() == ZERO_ADDRESS:
        raise ValidationError(f"{param_name} cannot be zero address")


def validate_positive_int(value: Any, param_name: str = "value") -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{param_name} must be a positive integer")


def validate_non_empty_string(value: Any, param_name: str = "value") -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{param_name} must be a non-empty string")


def validate_token_amount(amount: Any, param_name: str = "amount") -> None:
    validate_positive_int(amount, param_name)
    # Amounts this large are almost always a decimals mistake
    if amount > MAX_TOKEN_AMOUNT:
        raise ValidationError(f"{param_name} is unreasonably large, might be a mistake")
