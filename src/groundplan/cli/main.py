from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from groundplan.logging import configure_logging


def _add_common(parser: argparse.ArgumentParser, *, scoped: bool = True) -> None:
    if scoped:
        parser.add_argument("--scope", help="Target scope (default: GROUNDPLAN_DEFAULT_SCOPE)")
    parser.add_argument("--config", dest="config_path", help="Project config file")
    parser.add_argument(
        "--output", choices=["text", "json"], default="text", help="Output format"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="groundplan", description="Declarative infrastructure reconciliation"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show engine logs")
    subparsers = parser.add_subparsers(dest="command")

    validate_parser = subparsers.add_parser("validate", help="Validate a desired-state document")
    validate_parser.add_argument("document", help="Path to the desired-state document")
    validate_parser.add_argument("--env", help="Environment overlay (default: the scope)")
    _add_common(validate_parser)

    plan_parser = subparsers.add_parser("plan", help="Preview changes (dry-run)")
    plan_parser.add_argument("document", help="Path to the desired-state document")
    plan_parser.add_argument("--env", help="Environment overlay (default: the scope)")
    plan_parser.add_argument("--out", help="Save the plan as JSON for apply --plan")
    plan_parser.add_argument(
        "--refresh", action="store_true", help="Read live state through handlers first"
    )
    _add_common(plan_parser)

    apply_parser = subparsers.add_parser("apply", help="Apply a document or a saved plan")
    source = apply_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("document", nargs="?", help="Path to the desired-state document")
    source.add_argument("--plan", dest="plan_file", help="Saved plan produced by plan --out")
    apply_parser.add_argument("--env", help="Environment overlay (default: the scope)")
    apply_parser.add_argument(
        "--approve", action="store_true", help="Approve the plan for scopes that require it"
    )
    apply_parser.add_argument(
        "--refresh", action="store_true", help="Read live state through handlers first"
    )
    _add_common(apply_parser)

    show_parser = subparsers.add_parser("show", help="Show recorded state")
    show_parser.add_argument("--version", type=int, help="Snapshot version (default: latest)")
    _add_common(show_parser)

    state_parser = subparsers.add_parser("state", help="State history")
    state_subparsers = state_parser.add_subparsers(dest="state_command")
    versions_parser = state_subparsers.add_parser("versions", help="List snapshot versions")
    _add_common(versions_parser)

    lock_parser = subparsers.add_parser("lock", help="Scope locks")
    lock_subparsers = lock_parser.add_subparsers(dest="lock_command")
    status_parser = lock_subparsers.add_parser("status", help="Show the lock holder")
    _add_common(status_parser)
    unlock_parser = lock_subparsers.add_parser(
        "force-unlock", help="Break a lock left by a crashed run"
    )
    unlock_parser.add_argument("lock_id", help="Lock id reported by lock status")
    unlock_parser.add_argument("--scope", help="Target scope")
    unlock_parser.add_argument("--config", dest="config_path", help="Project config file")
    unlock_parser.add_argument("-y", "--yes", action="store_true", help="Skip confirmation")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(logging.INFO if args.verbose else logging.WARNING, json=False)

    if args.command == "validate":
        from groundplan.cli.validate import validate_command

        sys.exit(
            validate_command(
                args.document,
                scope=args.scope,
                env=args.env,
                config_path=args.config_path,
                output_format=args.output,
            )
        )

    if args.command == "plan":
        from groundplan.cli.plan import plan_command

        sys.exit(
            plan_command(
                args.document,
                scope=args.scope,
                env=args.env,
                config_path=args.config_path,
                out=args.out,
                refresh=args.refresh,
                output_format=args.output,
            )
        )

    if args.command == "apply":
        from groundplan.cli.apply import apply_command

        sys.exit(
            apply_command(
                document=args.document,
                plan_file=args.plan_file,
                scope=args.scope,
                env=args.env,
                config_path=args.config_path,
                approve=args.approve,
                refresh=args.refresh,
                output_format=args.output,
            )
        )

    if args.command == "show":
        from groundplan.cli.state import show_command

        sys.exit(
            show_command(
                scope=args.scope,
                version=args.version,
                config_path=args.config_path,
                output_format=args.output,
            )
        )

    if args.command == "state" and args.state_command == "versions":
        from groundplan.cli.state import versions_command

        sys.exit(
            versions_command(
                scope=args.scope, config_path=args.config_path, output_format=args.output
            )
        )

    if args.command == "lock" and args.lock_command == "status":
        from groundplan.cli.state import lock_status_command

        sys.exit(
            lock_status_command(
                scope=args.scope, config_path=args.config_path, output_format=args.output
            )
        )

    if args.command == "lock" and args.lock_command == "force-unlock":
        from groundplan.cli.state import force_unlock_command

        sys.exit(
            force_unlock_command(
                args.lock_id, scope=args.scope, config_path=args.config_path, yes=args.yes
            )
        )

    parser.print_help()


if __name__ == "__main__":
    main()
