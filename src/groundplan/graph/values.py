"""
Typed attribute values.

Resource attributes are modelled as a tagged union instead of loose dicts so
that references between resources are explicit and type checks happen when
the graph is built rather than at apply time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Union

REFERENCE_PATTERN = re.compile(
    r"^\$\{(?P<type>[A-Za-z][A-Za-z0-9_]*)\.(?P<name>[A-Za-z_][A-Za-z0-9_-]*)"
    r"\.(?P<attribute>[A-Za-z_][A-Za-z0-9_]*)\}$"
)


class _Unknown:
    """Marker for values only known after apply."""

    _instance: _Unknown | None = None

    def __new__(cls) -> _Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "(known after apply)"

    def __bool__(self) -> bool:
        return False


UNKNOWN = _Unknown()


@dataclass(frozen=True)
class StringValue:
    value: str


@dataclass(frozen=True)
class NumberValue:
    value: int | float


@dataclass(frozen=True)
class BoolValue:
    value: bool


@dataclass(frozen=True)
class Reference:
    """Reference to another resource's attribute or output."""

    target_type: str
    target: str
    attribute: str

    @property
    def address(self) -> str:
        return f"{self.target_type}.{self.target}"

    def __str__(self) -> str:
        return f"${{{self.target_type}.{self.target}.{self.attribute}}}"


@dataclass(frozen=True)
class ListValue:
    items: tuple[AttributeValue, ...]


@dataclass(frozen=True)
class MapValue:
    items: tuple[tuple[str, AttributeValue], ...]

    def as_dict(self) -> dict[str, AttributeValue]:
        return dict(self.items)


AttributeValue = Union[StringValue, NumberValue, BoolValue, Reference, ListValue, MapValue]

Resolver = Callable[[Reference], Any]


def parse_reference(text: str) -> Reference | None:
    """Parse ``${type.name.attribute}`` into a Reference, or None if not a reference."""
    match = REFERENCE_PATTERN.match(text)
    if not match:
        return None
    return Reference(
        target_type=match.group("type"),
        target=match.group("name"),
        attribute=match.group("attribute"),
    )


def to_value(raw: Any) -> AttributeValue:
    """
    Convert a raw document value into an AttributeValue.

    Strings of the form ``${type.name.attribute}`` and mappings of the form
    ``{"ref": "type.name.attribute"}`` become references.

    Raises:
        ValueError: For unsupported values or malformed references
    """
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(raw)
    if isinstance(raw, str):
        ref = parse_reference(raw)
        if ref is not None:
            return ref
        if "${" in raw:
            raise ValueError(
                f"unsupported interpolation in {raw!r}; references must be the whole value"
            )
        return StringValue(raw)
    if isinstance(raw, Mapping):
        if set(raw.keys()) == {"ref"}:
            ref = parse_reference("${" + str(raw["ref"]) + "}")
            if ref is None:
                raise ValueError(f"malformed reference {raw['ref']!r}")
            return ref
        return MapValue(tuple((str(k), to_value(v)) for k, v in sorted(raw.items())))
    if isinstance(raw, (list, tuple)):
        return ListValue(tuple(to_value(item) for item in raw))
    raise ValueError(f"unsupported attribute value {raw!r} ({type(raw).__name__})")


def kind_of(value: AttributeValue) -> str:
    """Return the schema type name of a value."""
    if isinstance(value, StringValue):
        return "string"
    if isinstance(value, BoolValue):
        return "bool"
    if isinstance(value, NumberValue):
        return "number"
    if isinstance(value, ListValue):
        return "list"
    if isinstance(value, MapValue):
        return "map"
    return "reference"


def iter_references(value: AttributeValue) -> Iterator[Reference]:
    """Yield every reference contained in a value."""
    if isinstance(value, Reference):
        yield value
    elif isinstance(value, ListValue):
        for item in value.items:
            yield from iter_references(item)
    elif isinstance(value, MapValue):
        for _, item in value.items:
            yield from iter_references(item)


def to_plain(value: AttributeValue, resolve: Resolver | None = None) -> Any:
    """
    Convert an AttributeValue back into plain Python data.

    References are passed to ``resolve``; without a resolver, or when the
    resolver returns UNKNOWN, the result contains UNKNOWN.
    """
    if isinstance(value, (StringValue, NumberValue, BoolValue)):
        return value.value
    if isinstance(value, Reference):
        return resolve(value) if resolve is not None else UNKNOWN
    if isinstance(value, ListValue):
        return [to_plain(item, resolve) for item in value.items]
    return {key: to_plain(item, resolve) for key, item in value.items}


def contains_unknown(plain: Any) -> bool:
    """Whether a plain value still holds an unresolved reference."""
    if plain is UNKNOWN:
        return True
    if isinstance(plain, list):
        return any(contains_unknown(item) for item in plain)
    if isinstance(plain, dict):
        return any(contains_unknown(item) for item in plain.values())
    return False


def to_raw(value: AttributeValue) -> Any:
    """Inverse of ``to_value``: references render as ``${type.name.attribute}``."""
    if isinstance(value, Reference):
        return str(value)
    if isinstance(value, (StringValue, NumberValue, BoolValue)):
        return value.value
    if isinstance(value, ListValue):
        return [to_raw(item) for item in value.items]
    return {key: to_raw(item) for key, item in value.items}
