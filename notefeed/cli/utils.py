"""Shared CLI utilities.

Provides config loading, error handling, output helpers and the wiring
that turns a config into fetchers, subscribers and feed controllers.
"""

import functools
from pathlib import Path
from typing import Callable, TypeVar

import structlog
import typer

from notefeed.models.config import NotefeedConfig
from notefeed.models.notification import NotificationItem, NotificationKind
from notefeed.observability.logging import configure_logging
from notefeed.services.cache_service import LatestNotificationCache
from notefeed.services.config_manager import ConfigManager
from notefeed.services.feed_controller import FeedRegistry, NotificationFeedController
from notefeed.services.pagination import PaginationFetcher
from notefeed.services.providers.misskey import MisskeyClient
from notefeed.services.stream import StreamSubscriber
from notefeed.utils.exceptions import ConfigValidationError, TransportError

logger = structlog.get_logger()

F = TypeVar("F", bound=Callable)


def load_config(config_path: Path) -> NotefeedConfig:
    """Load and validate configuration, then configure logging from it.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    config_manager = ConfigManager(config_path=str(config_path))
    try:
        config = config_manager.load_config()
    except (FileNotFoundError, ConfigValidationError) as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    configure_logging(level=config.logging.level, json_output=config.logging.json_output)
    return config


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except TransportError as e:
            typer.secho(f"Connection Error ({e.kind.value}): {e}", fg=typer.colors.RED)
            raise typer.Exit(code=2)
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_warning(message: str) -> None:
    typer.secho(message, fg=typer.colors.YELLOW)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)


def format_item(item: NotificationItem) -> str:
    """One-line rendering of a notification for terminal output."""
    actor = f"{item.from_user.display_name} (@{item.from_user.acct})"
    when = item.created_at.strftime("%Y-%m-%d %H:%M")

    if item.kind == NotificationKind.FOLLOW:
        summary = "followed you"
    elif item.kind == NotificationKind.REACTION:
        summary = f"reacted {item.reaction}: {_excerpt(item.primary_note)}"
    elif item.kind in (NotificationKind.REPLY, NotificationKind.MENTION):
        summary = f"{item.kind.value}: {_excerpt(item.context_note)}"
    elif item.kind == NotificationKind.QUOTE:
        summary = f"quoted: {_excerpt(item.context_note)}"
    else:
        summary = f"renoted: {_excerpt(item.primary_note)}"

    return f"[{when}] {item.id} {actor} {summary}"


def _excerpt(note, width: int = 60) -> str:
    if note is None or not note.text:
        return ""
    text = " ".join(note.text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def build_registry(
    config: NotefeedConfig,
) -> tuple[FeedRegistry, LatestNotificationCache]:
    """Wire one controller per configured account over a shared client."""
    client = MisskeyClient(config.accounts)
    cache = LatestNotificationCache(config.cache)
    fetcher = PaginationFetcher(client, cache=cache)
    subscriber = StreamSubscriber(client)

    def factory(owner: str) -> NotificationFeedController:
        return NotificationFeedController(
            owner, fetcher, subscriber, config=config.feed
        )

    return FeedRegistry(factory), cache
