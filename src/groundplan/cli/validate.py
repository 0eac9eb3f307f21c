"""CLI command: validate a desired-state document without touching state."""

from __future__ import annotations

import asyncio
import json

from groundplan.cli.runtime import cli_context
from groundplan.cli.ux import console, print_table, success
from groundplan.core.errors import main_with_error_handling
from groundplan.graph import GraphBuilder


@main_with_error_handling()
def validate_command(
    document: str,
    scope: str | None = None,
    env: str | None = None,
    config_path: str | None = None,
    output_format: str = "text",
) -> int:
    """
    Build the resource graph for a document.

    Returns:
        Exit code (0 when the document is valid)
    """

    async def run() -> int:
        async with cli_context(config_path) as ctx:
            target = ctx.scope(scope)
            desired = ctx.load(document, target, env)
            graph = GraphBuilder(ctx.handlers.schemas()).build(desired)
            order = graph.topological_order()

            if output_format == "json":
                print(
                    json.dumps(
                        {
                            "valid": True,
                            "resources": len(graph),
                            "order": [graph[name].address for name in order],
                        },
                        indent=2,
                    )
                )
                return 0

            rows = [
                [graph[name].address, ", ".join(sorted(graph.dependencies(name))) or "-"]
                for name in order
            ]
            print_table("Resources", ["Resource", "Depends on"], rows)
            console.print()
            success(f"{document} is valid ({len(graph)} resources)")
            return 0

    return asyncio.run(run())
