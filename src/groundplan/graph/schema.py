"""Resource type schemas used to validate declared attributes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from groundplan.core.errors import AttributeValidationError
from groundplan.graph.values import AttributeValue, Reference, kind_of

ATTRIBUTE_TYPES = ("string", "number", "bool", "list", "map", "any")


@dataclass(frozen=True)
class AttributeSpec:
    """Declared attribute of a resource type."""

    type: str = "string"
    required: bool = False
    replace: bool = False  # changing the value forces destroy + create
    description: str = ""

    def __post_init__(self) -> None:
        if self.type not in ATTRIBUTE_TYPES:
            raise ValueError(f"unknown attribute type {self.type!r}")


@dataclass(frozen=True)
class ResourceTypeSchema:
    """Attributes a resource type accepts and the outputs it produces."""

    name: str
    attributes: Mapping[str, AttributeSpec] = field(default_factory=dict)
    outputs: tuple[str, ...] = ("id",)
    allow_extra: bool = False

    @property
    def replace_triggering(self) -> frozenset[str]:
        return frozenset(name for name, spec in self.attributes.items() if spec.replace)

    def exposes(self, attribute: str) -> bool:
        """Whether other resources may reference ``attribute``."""
        return self.allow_extra or attribute in self.attributes or attribute in self.outputs

    def validate(self, address: str, attributes: Mapping[str, AttributeValue]) -> None:
        """
        Validate declared attributes against the schema.

        Raises:
            AttributeValidationError: On missing, unknown or mistyped attributes
        """
        problems: list[str] = []

        for name, spec in sorted(self.attributes.items()):
            if spec.required and name not in attributes:
                problems.append(f"missing required attribute '{name}'")

        for name, value in sorted(attributes.items()):
            spec = self.attributes.get(name)
            if spec is None:
                if not self.allow_extra:
                    problems.append(f"unknown attribute '{name}'")
                continue
            if isinstance(value, Reference) or spec.type == "any":
                continue
            actual = kind_of(value)
            if actual != spec.type:
                problems.append(f"attribute '{name}' must be {spec.type}, got {actual}")

        if problems:
            raise AttributeValidationError(
                f"Invalid attributes for {address}: " + "; ".join(problems),
                {"resource": address},
            )
