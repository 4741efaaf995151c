import asyncio
from typing import Optional, Protocol, Set

import httpx
from loguru import logger

from config import Settings
from errors import NotificationError
from models import Booking


def confirmation_text(booking: Booking) -> str:
    return (
        "✅ Your booking is confirmed\n\n"
        f"Name: {booking.name}\n"
        f"Date: {booking.date}\n"
        f"Time: {booking.time}\n"
        f"Booking number: #{booking.id}"
    )


class LineMessagingClient:
    """Thin async wrapper over the LINE Messaging API push/reply endpoints."""

    def __init__(
        self,
        access_token: str,
        base_url: str = "https://api.line.me",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {access_token}"},
        )

    async def push_text(self, to: str, text: str) -> None:
        await self._post("/v2/bot/message/push", {"to": to, "messages": [_text(text)]})

    async def reply_text(self, reply_token: str, text: str) -> None:
        await self._post(
            "/v2/bot/message/reply", {"replyToken": reply_token, "messages": [_text(text)]}
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> None:
        try:
            response = await self._client.post(path, json=payload)
        except httpx.HTTPError as exc:
            raise NotificationError(f"LINE request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise NotificationError(
                f"LINE API {path} returned {response.status_code}: {response.text.strip()}"
            )


def _text(text: str) -> dict:
    return {"type": "text", "text": text}


class NotificationDispatcher(Protocol):
    def notify(self, user_id: str, booking: Booking) -> None:
        """Deliver a confirmation without blocking the caller."""

    async def aclose(self) -> None: ...


class LogNotifier:
    """Used when no LINE access token is configured."""

    def notify(self, user_id: str, booking: Booking) -> None:
        logger.info("Confirmation for {}: {!r}", user_id, confirmation_text(booking))

    async def aclose(self) -> None:
        return None


class LineNotifier:
    """Pushes booking confirmations to LINE in background tasks.

    Delivery is best effort: failures are logged and dropped, never retried.
    """

    def __init__(self, client: LineMessagingClient):
        self.client = client
        self._pending: Set[asyncio.Task] = set()

    def notify(self, user_id: str, booking: Booking) -> None:
        task = asyncio.create_task(self._push(user_id, booking))
        # Keep a reference so the task isn't garbage collected mid-flight
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _push(self, user_id: str, booking: Booking) -> None:
        try:
            await self.client.push_text(user_id, confirmation_text(booking))
        except NotificationError as exc:
            logger.warning("LINE push error for booking #{}: {}", booking.id, exc.message)
        except Exception:
            logger.exception("Unexpected error pushing confirmation for booking #{}", booking.id)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self.client.aclose()


def build_line_client(settings: Settings) -> Optional[LineMessagingClient]:
    if not settings.line_channel_access_token:
        logger.warning("LINE_CHANNEL_ACCESS_TOKEN not set, LINE messages will only be logged")
        return None
    return LineMessagingClient(settings.line_channel_access_token, settings.line_api_base)


def build_dispatcher(client: Optional[LineMessagingClient]) -> NotificationDispatcher:
    if client is None:
        return LogNotifier()
    return LineNotifier(client)
