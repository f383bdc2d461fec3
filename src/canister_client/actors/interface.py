"""Canister interface descriptors and argument validation.

A descriptor lists a canister's callable methods, whether each is a
``query`` (read-only, bare value) or an ``update`` (may mutate state,
usually a tagged ``{ok}``/``{err}`` result), and its positional parameters.

Before a call leaves the process its arguments are validated against a
pydantic model generated from the parameter list, so a wrong argument fails
locally with ``InvalidArgumentError`` instead of costing a round trip.
"""

from __future__ import annotations

import dataclasses
import enum
import functools
from typing import Annotated, Any, Mapping, Sequence

import pydantic
from pydantic import AfterValidator, BeforeValidator, Field, create_model

from canister_client.errors import InvalidArgumentError
from canister_client.identity.principal import InvalidPrincipalError, Principal


class MethodMode(enum.Enum):
    QUERY = "query"
    UPDATE = "update"


def _principal_text(value: Any) -> Any:
    return value.to_text() if isinstance(value, Principal) else value


def _check_principal(value: str) -> str:
    try:
        Principal.from_text(value)
    except InvalidPrincipalError as exc:
        raise ValueError(str(exc)) from exc
    return value


def _variant(value: dict[str, Any] | str) -> dict[str, Any]:
    if isinstance(value, str):
        return {value: None}
    if len(value) != 1:
        raise ValueError("a variant value must have exactly one tag")
    return value


_Nat = Annotated[int, Field(ge=0)]

_TYPE_MAP: dict[str, Any] = {
    "text": str,
    "bool": bool,
    "int": int,
    "nat": _Nat,
    "nat8": Annotated[int, Field(ge=0, lt=2**8)],
    "nat32": Annotated[int, Field(ge=0, lt=2**32)],
    "nat64": Annotated[int, Field(ge=0, lt=2**64)],
    "float64": float,
    "principal": Annotated[str, BeforeValidator(_principal_text), AfterValidator(_check_principal)],
    "vec": list,
    "record": dict,
    "variant": Annotated[dict[str, Any] | str, AfterValidator(_variant)],
}


@dataclasses.dataclass(frozen=True)
class Param:
    name: str
    type: str
    description: str = ""

    def __post_init__(self) -> None:
        if self.type not in _TYPE_MAP:
            raise ValueError(f"Unsupported parameter type {self.type!r} for '{self.name}'")


@dataclasses.dataclass(frozen=True)
class MethodSpec:
    name: str
    mode: MethodMode
    params: tuple[Param, ...] = ()

    @property
    def is_query(self) -> bool:
        return self.mode is MethodMode.QUERY

    def prepare_args(self, args: Sequence[Any], kwargs: Mapping[str, Any]) -> list[Any]:
        """Bind positional and keyword arguments and validate them in order."""
        names = [p.name for p in self.params]
        if len(args) > len(names):
            raise InvalidArgumentError(
                f"{self.name}() takes {len(names)} arguments but {len(args)} were given"
            )
        values = dict(zip(names, args))
        for key, value in kwargs.items():
            if key in values:
                raise InvalidArgumentError(f"{self.name}() got multiple values for '{key}'")
            values[key] = value

        try:
            validated = _args_model(self)(**values)
        except pydantic.ValidationError as exc:
            raise InvalidArgumentError(f"Invalid arguments for {self.name}(): {exc}") from exc
        return [getattr(validated, name) for name in names]


@dataclasses.dataclass(frozen=True)
class InterfaceDescriptor:
    name: str
    methods: tuple[MethodSpec, ...]

    @property
    def method_names(self) -> list[str]:
        return [m.name for m in self.methods]

    def method(self, name: str) -> MethodSpec | None:
        for spec in self.methods:
            if spec.name == name:
                return spec
        return None


def query(name: str, *params: Param) -> MethodSpec:
    return MethodSpec(name, MethodMode.QUERY, params)


def update(name: str, *params: Param) -> MethodSpec:
    return MethodSpec(name, MethodMode.UPDATE, params)


@functools.lru_cache(maxsize=None)
def _args_model(spec: MethodSpec) -> type[pydantic.BaseModel]:
    fields: dict[str, Any] = {
        param.name: (_TYPE_MAP[param.type], Field(description=param.description))
        for param in spec.params
    }
    class_name = spec.name[:1].upper() + spec.name[1:] + "Args"
    return create_model(
        class_name,
        __config__=pydantic.ConfigDict(extra="forbid"),
        **fields,
    )
