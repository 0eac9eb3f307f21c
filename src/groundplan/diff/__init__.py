"""Diff of the desired graph against recorded state."""

from groundplan.diff.engine import DiffEngine
from groundplan.diff.models import ChangeAction, ChangeOperation, ChangeSet
from groundplan.diff.refresh import refresh_snapshot

__all__ = [
    "ChangeAction",
    "ChangeOperation",
    "ChangeSet",
    "DiffEngine",
    "refresh_snapshot",
]
