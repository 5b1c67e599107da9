"""Page command.

Fetches and prints one normalized page, for debugging cursors.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer

from notefeed.cli.utils import format_item, handle_errors, load_config
from notefeed.services.cache_service import LatestNotificationCache
from notefeed.services.deduplicator import NotificationDeduplicator
from notefeed.services.normalizer import NotificationNormalizer
from notefeed.services.pagination import PaginationFetcher
from notefeed.services.providers.misskey import MisskeyClient


@handle_errors
def page_command(
    account: str = typer.Option(..., "--account", "-a", help="Owner to fetch for"),
    config_path: Path = typer.Option(
        Path("config/notefeed.yaml"), "--config", "-c", help="Config file"
    ),
    until_id: Optional[str] = typer.Option(
        None, "--until-id", help="Fetch notifications older than this id"
    ),
    limit: int = typer.Option(20, "--limit", "-n", min=1, max=100),
):
    """Print one page of normalized notifications."""
    config = load_config(config_path)
    if config.get_account(account) is None:
        typer.secho(f"Unknown account: {account}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    cache = LatestNotificationCache(config.cache)
    try:
        fetcher = PaginationFetcher(MisskeyClient(config.accounts), cache=cache)
        page = asyncio.run(fetcher.fetch_older_page(until_id, limit, account))
        latest_id = cache.get_latest_id(account)
    finally:
        cache.close()

    items = NotificationNormalizer().normalize_many(page.records, owner=account)
    items = NotificationDeduplicator().dedupe(items)

    for item in items:
        typer.echo(format_item(item))
    typer.secho(
        f"{len(items)} of {page.received} records shown", fg=typer.colors.CYAN
    )
    if page.next_cursor:
        typer.echo(f"next cursor: {page.next_cursor}")
    if latest_id:
        typer.echo(f"latest cached id: {latest_id}")
