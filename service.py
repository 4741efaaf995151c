from datetime import datetime
from typing import List, Optional

from loguru import logger

from errors import SlotFull, ValidationError
from models import Booking, SlotAvailability
from notifications import NotificationDispatcher
from slots import SlotCatalog
from store import ReservationStore


def _require(**fields: Optional[str]) -> None:
    missing = [name for name, value in fields.items() if not value or not value.strip()]
    if missing:
        raise ValidationError(f"{', '.join(missing)} {'is' if len(missing) == 1 else 'are'} required")


def normalize_date(date: str) -> str:
    """Return ``date`` as zero-padded YYYY-MM-DD, the form used as ledger key."""
    try:
        return datetime.strptime(date.strip(), "%Y-%m-%d").date().isoformat()
    except ValueError:
        raise ValidationError(f"date must be YYYY-MM-DD, got {date!r}") from None


class ReservationService:
    """Reserves slots without ever letting a (date, time) go over capacity.

    The service validates input and decides nothing about capacity itself:
    the check and the commit both happen inside ``ReservationStore.insert_atomic``.
    """

    def __init__(self, catalog: SlotCatalog, store: ReservationStore, dispatcher: NotificationDispatcher):
        self.catalog = catalog
        self.store = store
        self.dispatcher = dispatcher

    async def reserve_slot(
        self, user_id: str, name: str, date: str, time: str, note: Optional[str] = ""
    ) -> Booking:
        # Validation happens before any store interaction
        _require(userId=user_id, name=name, date=date, time=time)
        date = normalize_date(date)
        if time not in self.catalog:
            raise ValidationError(f"unknown time slot {time!r}")

        draft = Booking(user_id=user_id, name=name, date=date, time=time, note=note or "")
        try:
            booking = await self.store.insert_atomic(date, time, self.catalog.capacity_of(time), draft)
        except SlotFull:
            logger.info("Slot {} {} is full, rejected {}", date, time, user_id)
            raise

        self._emit_confirmation(user_id, booking)
        return booking

    async def get_availability(self, date: str) -> List[SlotAvailability]:
        _require(date=date)
        date = normalize_date(date)
        booked_by_time = await self.store.count_by_date(date)

        slots = []
        for time in self.catalog.list_slots():
            capacity = self.catalog.capacity_of(time)
            booked = booked_by_time.get(time, 0)
            available = capacity - booked
            slots.append(
                SlotAvailability(
                    time=time,
                    capacity=capacity,
                    booked=booked,
                    available=available,
                    is_full=available <= 0,
                )
            )
        return slots

    async def list_my_bookings(self, user_id: str) -> List[Booking]:
        _require(userId=user_id)
        return await self.store.list_by_user(user_id)

    def _emit_confirmation(self, user_id: str, booking: Booking) -> None:
        # The booking is already committed; delivery problems must not undo it
        try:
            self.dispatcher.notify(user_id, booking)
        except Exception:
            logger.exception("Could not dispatch confirmation for booking #{}", booking.id)
