"""Console front end for the canister client.

Pattern: Prompt Renderer
-------------------------
The CLI is the human-facing boundary.  Each subcommand maps onto one
library operation:

  1. **status**: load settings and report ``validate_environment`` issues.
  2. **connect**: run ``SessionManager.connect`` and print the principal.
  3. **call**: send one call through ``CanisterGateway`` and print the
     reply exactly as the canister returned it.

Rich is used for display.  The CLI knows nothing about envelopes, windows or
backoff; it delegates everything to the library and turns its errors into
readable messages and exit codes.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from canister_client.actors.canisters import CANISTER_INTERFACES
from canister_client.actors.gateway import CanisterGateway
from canister_client.auth.manager import SessionManager
from canister_client.config.settings import Settings, load_settings
from canister_client.errors import CanisterClientError, ConfigError, RateLimitError

logger = logging.getLogger(__name__)
console = Console()


def _print_banner(settings: Settings) -> None:
    console.print(
        Panel(
            "[bold]Canister Client[/bold]\n"
            f"Network: {settings.network}  Host: {settings.host}",
            border_style="blue",
        )
    )


def _show_status(settings: Settings) -> int:
    table = Table(title="Canisters")
    table.add_column("Canister", style="cyan")
    table.add_column("Id", style="bold")
    table.add_column("Methods", style="green")

    for name, interface in CANISTER_INTERFACES.items():
        configured = getattr(settings.canister_ids, name) or "(unset)"
        table.add_row(name, configured, ", ".join(interface.method_names))
    console.print(table)
    console.print(f"  Identity provider: {settings.identity_provider_url or '(not configured)'}")

    issues = settings.validate_environment()
    if not issues:
        console.print("\n  [green]Configuration OK[/green]\n")
        return 0

    console.print("\n[bold yellow]Configuration issues[/bold yellow]")
    for issue in issues:
        console.print(f"  - [bold]{issue.variable}[/bold]: {issue.message}")
    return 1


async def _connect(sessions: SessionManager, provider: str) -> bool:
    principal = await sessions.connect(provider)
    if principal is None:
        console.print("[yellow]No identity established (provider not configured or login cancelled).[/yellow]")
        return False
    console.print(f"\n  [green]Connected[/green] as [bold]{principal}[/bold]")
    console.print(f"  {sessions.session}\n")
    return True


def _parse_call_args(raw: str) -> list[Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Arguments must be JSON: {exc}") from exc
    return parsed if isinstance(parsed, list) else [parsed]


async def _call(settings: Settings, args: argparse.Namespace) -> int:
    async with SessionManager(settings) as sessions:
        if args.provider and not await _connect(sessions, args.provider):
            return 1
        async with CanisterGateway(settings, sessions) as gateway:
            reply = await gateway.call(
                args.canister,
                args.method,
                *_parse_call_args(args.args),
                operation_class=args.operation_class,
            )
    console.print_json(json.dumps(reply, default=str))
    return 0


async def _connect_only(settings: Settings, provider: str) -> int:
    async with SessionManager(settings) as sessions:
        return 0 if await _connect(sessions, provider) else 1


def run_cli(args: argparse.Namespace) -> int:
    """Main entry point for the console front end; returns the exit code."""
    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        return 2

    _print_banner(settings)
    try:
        if args.command == "status":
            return _show_status(settings)
        if args.command == "connect":
            return asyncio.run(_connect_only(settings, args.provider))
        if args.command == "call":
            return asyncio.run(_call(settings, args))
    except RateLimitError as exc:
        console.print(f"[yellow]{exc}[/yellow]")
        return 1
    except CanisterClientError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        return 1

    console.print(f"[red]Unknown command:[/red] {args.command}")
    return 2
