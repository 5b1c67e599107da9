import asyncio
import json
import uuid
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import aiohttp
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from notefeed.models.config import AccountConfig
from notefeed.services.providers.base import (
    MAIN_CHANNEL,
    NotificationSource,
    StreamFrame,
)
from notefeed.utils.exceptions import (
    StreamErrorKind,
    TransportError,
    TransportErrorKind,
)

logger = structlog.get_logger()

MAX_PAGE_LIMIT = 100


class ServerError(aiohttp.ClientError):
    """5xx answer, retried like a connection error"""

    def __init__(self, status: int) -> None:
        super().__init__(f"Server error: {status}")
        self.status = status


class MisskeyClient(NotificationSource):
    """Notification source backed by a Misskey instance's REST and streaming APIs"""

    NOTIFICATIONS_PATH = "/api/i/notifications"
    STREAMING_PATH = "/streaming"

    def __init__(self, accounts: Iterable[AccountConfig], timeout_seconds: float = 30.0):
        self._accounts: Dict[str, AccountConfig] = {a.owner: a for a in accounts}
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return "misskey"

    def _account(self, owner: str) -> AccountConfig:
        account = self._accounts.get(owner)
        if account is None or not account.api_token:
            raise TransportError(
                f"No credentials for account {owner!r}",
                kind=TransportErrorKind.UNAUTHORIZED,
            )
        return account

    async def fetch_notifications(
        self, owner: str, limit: int, until_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Fetch one page of notifications for `owner`"""
        account = self._account(owner)

        payload: Dict[str, Any] = {
            "i": account.api_token,
            "limit": max(1, min(limit, MAX_PAGE_LIMIT)),
        }
        if until_id:
            payload["untilId"] = until_id

        try:
            data = await self._post(account.host + self.NOTIFICATIONS_PATH, payload)
        except ServerError as e:
            raise TransportError(str(e), status=e.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error("notifications_fetch_failed", owner=owner, error=str(e))
            raise TransportError(f"Cannot reach {account.host}: {e}")

        if not isinstance(data, list):
            raise TransportError(
                f"Unexpected notifications response: {type(data).__name__}"
            )
        return data

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        reraise=True,
    )
    async def _post(self, url: str, payload: Dict[str, Any]) -> Any:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds),
            ) as response:

                if response.status in (401, 403):
                    raise TransportError(
                        f"Credentials rejected: {response.status}",
                        kind=TransportErrorKind.UNAUTHORIZED,
                        status=response.status,
                    )

                if response.status >= 500:
                    raise ServerError(response.status)

                if response.status != 200:
                    text = await response.text()
                    logger.error("api_error", status=response.status, body=text[:200])
                    raise TransportError(
                        f"API request failed: {response.status}",
                        status=response.status,
                    )

                return await response.json()

    async def stream(self, owner: str) -> AsyncIterator[StreamFrame]:
        """Connect the main channel and yield its messages"""
        try:
            account = self._account(owner)
        except TransportError:
            yield StreamFrame(error=StreamErrorKind.CANNOT_CONNECT)
            return

        url = streaming_url(account.host)
        channel_id = str(uuid.uuid4())

        async with aiohttp.ClientSession() as session:
            try:
                ws = await session.ws_connect(
                    url, params={"i": account.api_token or ""}, heartbeat=30.0
                )
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning("stream_connect_failed", owner=owner, error=str(e))
                yield StreamFrame(error=StreamErrorKind.CANNOT_CONNECT)
                return

            async with ws:
                await ws.send_json(
                    {
                        "type": "connect",
                        "body": {"channel": MAIN_CHANNEL, "id": channel_id},
                    }
                )
                logger.info("stream_opened", owner=owner, host=account.host)

                async for message in ws:
                    if message.type != aiohttp.WSMsgType.TEXT:
                        if message.type in (
                            aiohttp.WSMsgType.ERROR,
                            aiohttp.WSMsgType.CLOSE,
                            aiohttp.WSMsgType.CLOSED,
                        ):
                            break
                        continue

                    frame = parse_stream_message(message.data, channel_id)
                    if frame is not None:
                        yield frame

            yield StreamFrame(error=StreamErrorKind.NO_CONNECTION)


def streaming_url(host: str) -> str:
    if host.startswith("https://"):
        return "wss://" + host[len("https://"):] + MisskeyClient.STREAMING_PATH
    return "ws://" + host[len("http://"):] + MisskeyClient.STREAMING_PATH


def parse_stream_message(data: str, channel_id: str) -> Optional[StreamFrame]:
    """Turn a websocket text message into a frame

    Only `channel` messages addressed to our connection are kept; the
    channel name is resolved from the id we connected with.
    """
    try:
        message = json.loads(data)
    except ValueError:
        logger.warning("stream_message_invalid_json", size=len(data))
        return None

    if not isinstance(message, dict) or message.get("type") != "channel":
        return None

    body = message.get("body") or {}
    channel = MAIN_CHANNEL if body.get("id") == channel_id else body.get("id")
    return StreamFrame(
        channel=channel,
        event_type=body.get("type"),
        body=body.get("body"),
    )
