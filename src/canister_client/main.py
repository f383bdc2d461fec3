"""CLI entry point: loads settings, configures logging, dispatches a subcommand."""

from __future__ import annotations

import argparse
import logging

from canister_client.config.settings import DEFAULT_CONFIG_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canister-client",
        description="Authenticated, rate-limited client for the rewards, lending, portfolio and swap canisters",
    )
    parser.add_argument(
        "--config",
        default=str(DEFAULT_CONFIG_PATH),
        help="Path to settings.yaml",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", help="Show the resolved configuration and any problems with it")

    connect = commands.add_parser("connect", help="Connect an identity and print its principal")
    connect.add_argument("provider", help="internet-identity, wizz, unisat or xverse")

    call = commands.add_parser("call", help="Call a canister method and print the raw reply")
    call.add_argument("canister", help="rewards, lending, portfolio or swap")
    call.add_argument("method", help="Method name, e.g. getStores")
    call.add_argument(
        "args",
        nargs="?",
        default="[]",
        help="JSON array of positional arguments (a single JSON value is also accepted)",
    )
    call.add_argument(
        "--provider",
        default=None,
        help="Connect with this provider before calling",
    )
    call.add_argument(
        "--operation-class",
        default="general",
        help="Rate-limit class the call is charged to (default: general)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    from canister_client.prompt.cli import run_cli

    return run_cli(args)


if __name__ == "__main__":
    raise SystemExit(main())
