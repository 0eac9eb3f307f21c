"""
Desired-state document parser.

Expected structure (YAML or JSON):
    variables:
      cidr: 10.0.0.0/16

    resources:
      - type: network
        name: main
        attributes:
          cidr: ${var.cidr}
      - type: instance
        name: web
        attributes:
          network_id: ${network.main.id}
          size: small

Environment overrides (optional), ``environments/<env>.yaml`` next to the
document:
    variables:
      cidr: 10.1.0.0/16
    resources:
      - name: web
        attributes:
          size: large
"""

from __future__ import annotations

import copy
import re
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from groundplan.core.errors import DocumentError

logger = structlog.get_logger()

NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_-]*$"
TYPE_PATTERN = r"^[A-Za-z][A-Za-z0-9_]*$"
VARIABLE_PATTERN = re.compile(r"\$\{var\.([A-Za-z_][A-Za-z0-9_]*)\}")


class ResourceDeclaration(BaseModel):
    type: str = Field(pattern=TYPE_PATTERN)
    name: str = Field(pattern=NAME_PATTERN)
    attributes: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)

    @property
    def address(self) -> str:
        return f"{self.type}.{self.name}"


class DesiredStateDocument(BaseModel):
    variables: dict[str, Any] = Field(default_factory=dict)
    resources: list[ResourceDeclaration] = Field(default_factory=list)


def parse_document(
    data: Mapping[str, Any] | None,
    *,
    source: str = "<document>",
    variables: Mapping[str, Any] | None = None,
) -> DesiredStateDocument:
    """
    Validate raw document data and substitute ``${var.NAME}`` placeholders.

    Raises:
        DocumentError: If the structure is invalid or a variable is undefined
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise DocumentError(f"Desired-state document {source} must be a mapping")

    merged_vars = dict(data.get("variables") or {})
    merged_vars.update(variables or {})

    raw = dict(data)
    raw["variables"] = merged_vars
    raw["resources"] = _substitute(raw.get("resources") or [], merged_vars, source)

    try:
        return DesiredStateDocument.model_validate(raw)
    except PydanticValidationError as e:
        raise DocumentError(
            f"Invalid desired-state document {source}: {e.error_count()} error(s)",
            {"errors": "; ".join(_format_pydantic_error(err) for err in e.errors())},
        ) from e


def load_document(
    file_path: str | Path,
    environment: str | None = None,
    variables: Mapping[str, Any] | None = None,
) -> DesiredStateDocument:
    """
    Load a desired-state document with optional environment overrides.

    Args:
        file_path: Path to the YAML/JSON document
        environment: Optional environment name; merges environments/<env>.yaml
        variables: Extra variables taking precedence over the document's own

    Raises:
        DocumentError: If the file is missing, unreadable or invalid
    """
    file_path = Path(file_path)
    data = _read_yaml(file_path)

    if environment:
        overlay_path = file_path.parent / "environments" / f"{environment}.yaml"
        if overlay_path.exists():
            data = merge_overlay(data, _read_yaml(overlay_path))
            logger.debug("environment_overlay_applied", path=str(overlay_path))

    return parse_document(data, source=str(file_path), variables=variables)


def merge_overlay(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Deep-merge an environment overlay into a document, matching resources by name."""
    merged = copy.deepcopy(dict(base))

    variables = dict(merged.get("variables") or {})
    variables.update(overlay.get("variables") or {})
    merged["variables"] = variables

    resources = list(merged.get("resources") or [])
    index = {r.get("name"): i for i, r in enumerate(resources) if isinstance(r, dict)}
    for override in overlay.get("resources") or []:
        name = override.get("name")
        if name in index:
            resources[index[name]] = _deep_merge(resources[index[name]], override)
        else:
            resources.append(copy.deepcopy(override))
    merged["resources"] = resources
    return merged


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise DocumentError(f"Desired-state document not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise DocumentError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DocumentError(f"Desired-state document {path} must be a mapping")
    return data


def _substitute(value: Any, variables: Mapping[str, Any], source: str) -> Any:
    if isinstance(value, str):
        whole = VARIABLE_PATTERN.fullmatch(value)
        if whole:
            return _lookup(whole.group(1), variables, source)
        return VARIABLE_PATTERN.sub(
            lambda m: str(_lookup(m.group(1), variables, source)), value
        )
    if isinstance(value, list):
        return [_substitute(item, variables, source) for item in value]
    if isinstance(value, dict):
        return {key: _substitute(item, variables, source) for key, item in value.items()}
    return value


def _lookup(name: str, variables: Mapping[str, Any], source: str) -> Any:
    if name not in variables:
        raise DocumentError(f"Undefined variable '{name}' in {source}", {"variable": name})
    return variables[name]


def _format_pydantic_error(err: Mapping[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err.get('msg')}"
