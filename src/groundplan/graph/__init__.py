"""Desired-state documents and resource dependency graphs."""

from groundplan.graph.builder import GraphBuilder
from groundplan.graph.document import (
    DesiredStateDocument,
    ResourceDeclaration,
    load_document,
    parse_document,
)
from groundplan.graph.models import NodeStatus, ResourceGraph, ResourceNode
from groundplan.graph.schema import AttributeSpec, ResourceTypeSchema
from groundplan.graph.values import (
    UNKNOWN,
    AttributeValue,
    BoolValue,
    ListValue,
    MapValue,
    NumberValue,
    Reference,
    StringValue,
    to_plain,
    to_value,
)

__all__ = [
    "AttributeSpec",
    "AttributeValue",
    "BoolValue",
    "DesiredStateDocument",
    "GraphBuilder",
    "ListValue",
    "MapValue",
    "NodeStatus",
    "NumberValue",
    "Reference",
    "ResourceDeclaration",
    "ResourceGraph",
    "ResourceNode",
    "ResourceTypeSchema",
    "StringValue",
    "UNKNOWN",
    "load_document",
    "parse_document",
    "to_plain",
    "to_value",
]
