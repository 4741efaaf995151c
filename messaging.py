"""
LINE chat front door.

Incoming webhook events are authenticated with the channel secret and then
answered with either the user's booking list or a short help message.
"""
import asyncio
import base64
import hashlib
import hmac
from typing import Awaitable, Callable, List, Optional

from loguru import logger
from pydantic import ValidationError as PayloadError

from errors import InvalidSignature, ValidationError
from models import Booking, CamelModel
from service import ReservationService

MY_BOOKINGS_COMMANDS = frozenset({"my bookings", "คิวของฉัน"})

HELP_TEXT = (
    'To book a slot, tap "Book" in the menu below, '
    'or type "my bookings" to see your upcoming bookings.'
)
NO_BOOKINGS_TEXT = "You don't have any bookings yet."

ReplyFunc = Callable[[str, str], Awaitable[None]]


# LINE webhook payload (only the fields we use)
class LineSource(CamelModel):
    type: str = "user"
    user_id: Optional[str] = None


class LineMessage(CamelModel):
    type: str
    text: Optional[str] = None


class LineEvent(CamelModel):
    type: str
    reply_token: Optional[str] = None
    source: Optional[LineSource] = None
    message: Optional[LineMessage] = None


class LineWebhook(CamelModel):
    destination: Optional[str] = None
    events: List[LineEvent] = []


def verify_signature(channel_secret: Optional[str], body: bytes, signature: Optional[str]) -> None:
    if not channel_secret:
        raise InvalidSignature("LINE channel secret is not configured")
    if not signature:
        raise InvalidSignature("missing X-Line-Signature header")
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    if not hmac.compare_digest(expected, signature):
        raise InvalidSignature()


def parse_webhook(body: bytes) -> LineWebhook:
    try:
        return LineWebhook.model_validate_json(body)
    except PayloadError as exc:
        raise ValidationError(f"malformed webhook payload: {exc.error_count()} error(s)") from exc


def bookings_text(bookings: List[Booking]) -> str:
    if not bookings:
        return NO_BOOKINGS_TEXT
    lines = [f"• {b.date} at {b.time} (#{b.id})" for b in bookings]
    return "🗓 Your bookings\n\n" + "\n".join(lines)


class ChatCommandHandler:
    def __init__(self, service: ReservationService, reply: ReplyFunc):
        self.service = service
        self.reply = reply

    async def reply_for(self, user_id: str, text: str) -> str:
        if text.strip().lower() in MY_BOOKINGS_COMMANDS:
            bookings = await self.service.list_my_bookings(user_id)
            return bookings_text(bookings)
        return HELP_TEXT

    async def handle_event(self, event: LineEvent) -> bool:
        # Only text messages are answered
        if event.type != "message" or event.message is None or event.message.type != "text":
            return False
        if event.source is None or not event.source.user_id or not event.reply_token:
            logger.debug("Skipping text event without user or reply token")
            return False

        text = await self.reply_for(event.source.user_id, event.message.text or "")
        await self.reply(event.reply_token, text)
        return True

    async def handle(self, webhook: LineWebhook) -> int:
        results = await asyncio.gather(*(self.handle_event(e) for e in webhook.events))
        return sum(1 for handled in results if handled)
