"""Build a validated ResourceGraph from a desired-state document."""

from __future__ import annotations

from typing import Any, Mapping

import structlog

from groundplan.core.errors import (
    AttributeValidationError,
    CycleDetected,
    DuplicateResource,
    UnknownResourceType,
    UnresolvedReference,
)
from groundplan.graph.document import DesiredStateDocument, parse_document
from groundplan.graph.models import ResourceGraph, ResourceNode
from groundplan.graph.schema import ResourceTypeSchema
from groundplan.graph.values import AttributeValue, to_value

logger = structlog.get_logger()


class GraphBuilder:
    """
    Turns resource declarations into a ResourceGraph.

    Every reference to another resource's attribute becomes an edge from the
    referencing node to the referenced one; ``depends_on`` entries add
    explicit edges. The transformation is pure.

    When ``schemas`` is given, every resource type must have a schema and
    attributes are validated against it.
    """

    def __init__(self, schemas: Mapping[str, ResourceTypeSchema] | None = None) -> None:
        self._schemas = schemas

    def build(self, document: DesiredStateDocument | Mapping[str, Any]) -> ResourceGraph:
        """
        Build and validate the graph.

        Raises:
            DocumentError: Invalid document structure
            DuplicateResource: Two resources share a name
            UnknownResourceType: No schema for a resource type
            AttributeValidationError: Attributes do not match the type schema
            UnresolvedReference: A reference or dependency targets nothing
            CycleDetected: The dependency relation is cyclic
        """
        if not isinstance(document, DesiredStateDocument):
            document = parse_document(document)

        graph = ResourceGraph()
        for decl in document.resources:
            if decl.name in graph:
                raise DuplicateResource(decl.name)
            schema = self._schema_for(decl.type, decl.address)
            attributes = self._convert_attributes(decl.address, decl.attributes)
            if schema is not None:
                schema.validate(decl.address, attributes)
            graph.add(
                ResourceNode(
                    type=decl.type,
                    name=decl.name,
                    attributes=attributes,
                    depends_on=frozenset(decl.depends_on),
                )
            )

        for node in list(graph):
            graph.add(self._link(graph, node))

        cycle = graph.find_cycle()
        if cycle:
            raise CycleDetected(cycle)

        logger.debug("graph_built", resources=len(graph))
        return graph

    def _schema_for(self, resource_type: str, address: str) -> ResourceTypeSchema | None:
        if self._schemas is None:
            return None
        schema = self._schemas.get(resource_type)
        if schema is None:
            raise UnknownResourceType(resource_type, address)
        return schema

    @staticmethod
    def _convert_attributes(address: str, raw: Mapping[str, Any]) -> dict[str, AttributeValue]:
        attributes: dict[str, AttributeValue] = {}
        for key, value in raw.items():
            if value is None:
                continue
            try:
                attributes[key] = to_value(value)
            except ValueError as e:
                raise AttributeValidationError(
                    f"Invalid attribute '{key}' on {address}: {e}",
                    {"resource": address, "attribute": key},
                ) from e
        return attributes

    def _link(self, graph: ResourceGraph, node: ResourceNode) -> ResourceNode:
        """Resolve references and explicit dependencies into edges."""
        edges: set[str] = set()

        for explicit in node.depends_on:
            target_name = explicit.split(".", 1)[1] if "." in explicit else explicit
            target = graph.get(target_name)
            if target is None or ("." in explicit and target.address != explicit):
                raise UnresolvedReference(node.address, explicit)
            edges.add(target.name)

        for ref in node.references():
            target = graph.get(ref.target)
            if target is None:
                raise UnresolvedReference(node.address, ref.address)
            if target.type != ref.target_type:
                raise UnresolvedReference(
                    node.address, ref.address, f"resource is of type {target.type}"
                )
            schema = self._schemas.get(target.type) if self._schemas is not None else None
            if schema is not None and not schema.exposes(ref.attribute):
                raise UnresolvedReference(
                    node.address,
                    f"{ref.address}.{ref.attribute}",
                    f"{target.type} has no attribute '{ref.attribute}'",
                )
            edges.add(target.name)

        return ResourceNode(
            type=node.type,
            name=node.name,
            attributes=node.attributes,
            depends_on=frozenset(edges),
            status=node.status,
        )
