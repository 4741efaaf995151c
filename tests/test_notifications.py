import asyncio
import json

import httpx
import pytest

from config import Settings
from errors import NotificationError
from models import Booking, BookingStatus
from notifications import (
    LineMessagingClient,
    LineNotifier,
    LogNotifier,
    build_dispatcher,
    build_line_client,
    confirmation_text,
)
from service import ReservationService


def committed_booking():
    return Booking(
        id=42,
        user_id="U1",
        name="Alice",
        date="2024-01-01",
        time="09:00",
        status=BookingStatus.CONFIRMED,
        created_at="2024-01-01T00:00:00.000Z",
    )


def line_client(handler):
    return LineMessagingClient("token-123", transport=httpx.MockTransport(handler))


def test_confirmation_text_mentions_booking_details():
    text = confirmation_text(committed_booking())
    assert "Alice" in text
    assert "2024-01-01" in text
    assert "09:00" in text
    assert "#42" in text


@pytest.mark.asyncio
async def test_push_sends_text_message_with_bearer_token():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={})

    notifier = LineNotifier(line_client(handler))
    notifier.notify("U1", committed_booking())
    await notifier.aclose()

    [request] = requests
    assert request.url.path == "/v2/bot/message/push"
    assert request.headers["Authorization"] == "Bearer token-123"
    payload = json.loads(request.content)
    assert payload["to"] == "U1"
    assert payload["messages"][0]["type"] == "text"
    assert "#42" in payload["messages"][0]["text"]


@pytest.mark.asyncio
async def test_client_raises_notification_error_on_api_failure():
    client = line_client(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(NotificationError) as excinfo:
        await client.reply_text("reply-token", "hi")
    assert "500" in excinfo.value.message
    await client.aclose()


@pytest.mark.asyncio
async def test_client_wraps_transport_errors():
    def handler(request):
        raise httpx.ConnectError("no route", request=request)

    client = line_client(handler)
    with pytest.raises(NotificationError):
        await client.push_text("U1", "hi")
    await client.aclose()


@pytest.mark.asyncio
async def test_failed_push_is_logged_not_raised(catalog, store):
    notifier = LineNotifier(line_client(lambda request: httpx.Response(503)))
    service = ReservationService(catalog, store, notifier)

    booking = await service.reserve_slot("U1", "Alice", "2024-01-01", "09:00")
    await notifier.drain()

    assert booking.id is not None
    assert await store.count_active("2024-01-01", "09:00") == 1
    await notifier.aclose()


def test_dispatcher_falls_back_to_logging_without_token():
    assert build_line_client(Settings(line_channel_access_token=None)) is None
    assert isinstance(build_dispatcher(None), LogNotifier)


@pytest.mark.asyncio
async def test_dispatcher_uses_line_when_token_configured():
    client = build_line_client(Settings(line_channel_access_token="abc"))
    dispatcher = build_dispatcher(client)
    assert isinstance(dispatcher, LineNotifier)
    await dispatcher.aclose()


@pytest.mark.asyncio
async def test_reservation_returns_while_push_is_still_in_flight(catalog, store):
    push_started = asyncio.Event()
    release_push = asyncio.Event()
    delivered = []

    async def slow_handler(request):
        push_started.set()
        await release_push.wait()
        delivered.append(json.loads(request.content)["to"])
        return httpx.Response(200, json={})

    notifier = LineNotifier(line_client(slow_handler))
    service = ReservationService(catalog, store, notifier)

    booking = await asyncio.wait_for(
        service.reserve_slot("U1", "Alice", "2024-01-01", "09:00"), timeout=5
    )
    await asyncio.wait_for(push_started.wait(), timeout=5)

    # Booking is committed and returned, confirmation not yet delivered
    assert booking.id is not None
    assert await store.count_active("2024-01-01", "09:00") == 1
    assert delivered == []
    assert len(notifier._pending) == 1

    release_push.set()
    await notifier.aclose()
    assert delivered == ["U1"]
