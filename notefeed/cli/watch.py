"""Watch command.

Loads each configured account's feed and follows it live.
"""

import asyncio
from pathlib import Path
from typing import List, Optional, Set

import typer

from notefeed.cli.utils import (
    build_registry,
    display_info,
    display_warning,
    format_item,
    handle_errors,
    load_config,
)
from notefeed.models.config import NotefeedConfig
from notefeed.models.feed import ConnectionState, FeedSnapshot


@handle_errors
def watch_command(
    config_path: Path = typer.Option(
        Path("config/notefeed.yaml"), "--config", "-c", help="Config file"
    ),
    account: Optional[List[str]] = typer.Option(
        None, "--account", "-a", help="Owner to watch (repeatable, default all)"
    ),
    duration: Optional[float] = typer.Option(
        None, "--duration", "-d", help="Stop after N seconds"
    ),
):
    """Print notifications for one or more accounts as they arrive."""
    config = load_config(config_path)
    owners = account or [a.owner for a in config.accounts]
    unknown = [o for o in owners if config.get_account(o) is None]
    if unknown:
        display_warning(f"Unknown account(s): {', '.join(unknown)}")
        raise typer.Exit(code=1)
    if not owners:
        display_warning("No accounts configured")
        raise typer.Exit(code=1)

    asyncio.run(_watch(config, owners, duration))


async def _watch(
    config: NotefeedConfig, owners: List[str], duration: Optional[float]
) -> None:
    registry, cache = build_registry(config)
    try:
        for owner in owners:
            feed = registry.get(owner)
            feed.add_listener(_printer(owner))
            feed.add_connection_listener(
                lambda state, owner=owner: _print_connection(owner, state)
            )
            await feed.initial_load()

        if duration is not None:
            await asyncio.sleep(duration)
        else:
            await asyncio.Event().wait()
    finally:
        await registry.close()
        cache.close()


def _printer(owner: str):
    printed: Set[str] = set()

    def on_change(snapshot: FeedSnapshot) -> None:
        for item in reversed(snapshot.items):
            if item.id in printed:
                continue
            printed.add(item.id)
            typer.echo(f"{owner} {format_item(item)}")

    return on_change


def _print_connection(owner: str, state: ConnectionState) -> None:
    if state == ConnectionState.CONNECTED:
        display_info(f"{owner}: live")
    else:
        display_warning(f"{owner}: {state.value}")
