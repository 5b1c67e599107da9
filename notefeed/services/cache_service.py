"""
Latest-notification cache.

Remembers, per account, the id of the newest notification seen on the
first page of a fetch. The value is opaque to the cache; push delivery
and unread badges read it back.
"""

from pathlib import Path
from typing import Optional

import diskcache
import structlog

from notefeed.models.config import CacheConfig

logger = structlog.get_logger()

_LATEST_KEY = "latest_notification_id:{owner}"


class LatestNotificationCache:
    """
    Key-value store for the latest notification id per owner.

    Backed by diskcache; a disabled cache answers None and ignores writes.
    """

    def __init__(self, config: CacheConfig):
        self.config = config
        self.enabled = config.enabled
        self._cache: Optional[diskcache.Cache] = None

        if not config.enabled:
            logger.info("notification_cache_disabled")
            return

        cache_dir = Path(config.cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
        self._cache = diskcache.Cache(cache_dir / "notifications")

        logger.info("notification_cache_initialized", cache_dir=str(cache_dir))

    def get_latest_id(self, owner: str) -> Optional[str]:
        if self._cache is None:
            return None

        try:
            value = self._cache.get(_LATEST_KEY.format(owner=owner))
        except Exception as e:
            logger.error("notification_cache_error", owner=owner, error=str(e))
            return None
        return value if isinstance(value, str) else None

    def set_latest_id(self, owner: str, notification_id: str) -> None:
        if self._cache is None:
            return

        try:
            self._cache.set(_LATEST_KEY.format(owner=owner), notification_id)
            logger.debug(
                "latest_notification_cached",
                owner=owner,
                notification_id=notification_id,
            )
        except Exception as e:
            logger.error("notification_cache_set_error", owner=owner, error=str(e))

    def clear(self, owner: Optional[str] = None) -> None:
        """Forget one owner's latest id, or everything."""
        if self._cache is None:
            return
        if owner is None:
            self._cache.clear()
        else:
            self._cache.delete(_LATEST_KEY.format(owner=owner))

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()
