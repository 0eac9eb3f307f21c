"""
CLI commands for groundplan.
"""

from groundplan.cli.apply import apply_command
from groundplan.cli.plan import plan_command
from groundplan.cli.state import (
    force_unlock_command,
    lock_status_command,
    show_command,
    versions_command,
)
from groundplan.cli.validate import validate_command

__all__ = [
    "apply_command",
    "force_unlock_command",
    "lock_status_command",
    "plan_command",
    "show_command",
    "validate_command",
    "versions_command",
]
