"""CLI commands: inspect state snapshots and manage scope locks."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from rich.markup import escape

from groundplan.cli.runtime import cli_context
from groundplan.cli.ux import (
    confirm,
    console,
    header,
    info,
    print_key_value,
    print_table,
    success,
    warning,
)
from groundplan.core.errors import BlockedError, StateError, main_with_error_handling


def _when(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat(timespec="seconds")


@main_with_error_handling()
def show_command(
    scope: str | None = None,
    version: int | None = None,
    config_path: str | None = None,
    output_format: str = "text",
) -> int:
    """Show the latest (or a specific) state snapshot of a scope."""

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            target = ctx.scope(scope)
            if version is not None:
                snapshot = await ctx.store.read_version(target, version)
                if snapshot is None:
                    raise StateError(
                        f"Scope '{target}' has no state version {version}",
                        {"scope": target, "version": version},
                    )
            else:
                snapshot = await ctx.store.read_snapshot(target)

            if snapshot is None:
                if output_format == "json":
                    print(json.dumps({"scope": target, "version": 0, "resources": {}}, indent=2))
                else:
                    info(f"Scope '{target}' has no recorded state")
                return 0

            if output_format == "json":
                print(json.dumps(snapshot.to_dict(), indent=2))
                return 0

            header(f"State of {target} (version {snapshot.version})")
            rows = [
                [
                    f"{state.type}.{name}",
                    state.external_id or "-",
                    escape(json.dumps(dict(state.attributes), sort_keys=True, default=str)),
                ]
                for name, state in sorted(snapshot.resources.items())
            ]
            print_table("Resources", ["Resource", "External ID", "Attributes"], rows)
            return 0

    return asyncio.run(run())


@main_with_error_handling()
def versions_command(
    scope: str | None = None,
    config_path: str | None = None,
    output_format: str = "text",
) -> int:
    """List the stored snapshot versions of a scope."""

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            target = ctx.scope(scope)
            versions = await ctx.store.list_versions(target)

            if output_format == "json":
                print(
                    json.dumps(
                        [
                            {
                                "version": v.version,
                                "created_at": v.created_at.isoformat(),
                                "run_id": v.run_id,
                                "resource_count": v.resource_count,
                            }
                            for v in versions
                        ],
                        indent=2,
                    )
                )
                return 0

            if not versions:
                info(f"Scope '{target}' has no recorded state")
                return 0
            rows = [
                [
                    str(v.version),
                    v.created_at.isoformat(timespec="seconds"),
                    v.run_id or "-",
                    str(v.resource_count),
                ]
                for v in versions
            ]
            print_table(
                f"State versions of {target}", ["Version", "Created", "Run", "Resources"], rows
            )
            return 0

    return asyncio.run(run())


@main_with_error_handling()
def lock_status_command(
    scope: str | None = None,
    config_path: str | None = None,
    output_format: str = "text",
) -> int:
    """Show who holds a scope's lock."""

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            target = ctx.scope(scope)
            token = await ctx.store.get_lock(target)

            if output_format == "json":
                print(json.dumps(token.to_dict() if token else {"scope": target}, indent=2))
                return 0

            if token is None:
                success(f"Scope '{target}' is not locked")
                return 0
            print_key_value(
                {
                    "lock id": token.lock_id,
                    "holder": token.holder,
                    "acquired": _when(token.acquired_at),
                    "lease expires": _when(token.lease_expires_at),
                },
                title=f"Lock on {target}",
            )
            return 0

    return asyncio.run(run())


@main_with_error_handling()
def force_unlock_command(
    lock_id: str,
    scope: str | None = None,
    config_path: str | None = None,
    yes: bool = False,
) -> int:
    """
    Break a scope's lock.

    Only safe when the holder is known to be gone; the lock id must match the
    current holder so a lock taken over in the meantime is left alone.
    """

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            target = ctx.scope(scope)
            if not yes:
                warning("Forcing a lock open while its holder is still running can corrupt state.")
                console.print()
                if not confirm(f"Force-unlock {target} (lock {lock_id})?", default=False):
                    raise BlockedError(
                        "Force-unlock not confirmed", {"scope": target, "lock_id": lock_id}
                    )
            await ctx.store.force_unlock(target, lock_id)
            success(f"Lock {lock_id} on '{target}' released")
            return 0

    return asyncio.run(run())
