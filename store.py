import asyncio
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, Iterator, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from database import create_engine, init_db, session_factory
from errors import SlotFull, StorageError
from models import Booking, BookingStatus


def utc_timestamp() -> str:
    # UTC with millisecond precision, e.g. 2024-01-01T09:00:00.000Z
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class ReservationStore:
    """Booking ledger on top of an async SQLAlchemy engine.

    Admission control happens in ``insert_atomic``. Two things keep a slot
    from going over capacity:

    1. callers in this process take a per-(date, time) ``asyncio.Lock``
       around count + insert, so they never race each other;
    2. every row stores its ordinal inside the slot and
       ``(date, time, slot_ordinal)`` is unique. A writer in another process
       that read the same count loses on commit with ``IntegrityError``,
       recounts and tries the next ordinal. Ordinals are always below the
       capacity, so the table can never hold more rows than that.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._sessions: Optional[async_sessionmaker[AsyncSession]] = None
        self._locks: Dict[Tuple[str, str], _KeyLock] = {}

    # --- lifecycle ---

    async def open(self) -> "ReservationStore":
        if self._engine is not None:
            return self
        engine = create_engine(self.database_url, echo=self._echo)
        try:
            with self._storage_errors("open ledger"):
                await init_db(engine)
        except StorageError:
            await engine.dispose()
            raise
        self._engine = engine
        self._sessions = session_factory(engine)
        logger.info("Booking ledger ready at {}", engine.url.render_as_string(hide_password=True))
        return self

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None

    async def __aenter__(self) -> "ReservationStore":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- queries ---

    async def count_active(self, date: str, time: str) -> int:
        with self._storage_errors("count bookings"):
            async with self._session() as session:
                return await self._count(session, date, time)

    async def count_by_date(self, date: str) -> Dict[str, int]:
        """Return {time: confirmed bookings} for every booked slot on ``date``."""
        statement = (
            select(Booking.time, func.count())
            .where(Booking.date == date, Booking.status == BookingStatus.CONFIRMED)
            .group_by(Booking.time)
        )
        with self._storage_errors("count bookings by date"):
            async with self._session() as session:
                result = await session.execute(statement)
                return {time: count for time, count in result.all()}

    async def list_by_user(self, user_id: str) -> List[Booking]:
        statement = (
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.date, Booking.time, Booking.id)
        )
        return await self._fetch_all(statement, "list bookings by user")

    async def list_by_slot(self, date: str, time: str) -> List[Booking]:
        statement = (
            select(Booking)
            .where(Booking.date == date, Booking.time == time)
            .order_by(Booking.id)
        )
        return await self._fetch_all(statement, "list bookings by slot")

    # --- writes ---

    async def insert_atomic(self, date: str, time: str, capacity: int, booking: Booking) -> Booking:
        async with self._slot_lock(date, time):
            conflicted_at = -1
            # Each genuine ordinal conflict raises the count, so capacity + 1
            # attempts always end in a commit or SlotFull
            for _ in range(capacity + 1):
                with self._storage_errors("insert booking"):
                    async with self._session() as session:
                        booked = await self._count(session, date, time)
                        if booked >= capacity:
                            raise SlotFull(date, time)
                        if booked <= conflicted_at:
                            # The failed insert did not lose an ordinal race
                            logger.error("Insert into {} {} keeps violating a constraint", date, time)
                            raise StorageError("insert booking failed")

                        row = Booking(
                            user_id=booking.user_id,
                            name=booking.name,
                            date=date,
                            time=time,
                            note=booking.note or "",
                            status=BookingStatus.CONFIRMED,
                            slot_ordinal=booked,
                            created_at=utc_timestamp(),
                        )
                        session.add(row)
                        try:
                            await session.commit()
                        except IntegrityError:
                            # Usually another process took this ordinal first
                            await session.rollback()
                            logger.info("Ordinal {} of {} {} already taken, recounting", booked, date, time)
                            conflicted_at = booked
                            continue

                logger.info("Booking #{} committed for {} {} ({}/{})", row.id, date, time, booked + 1, capacity)
                return row

            raise StorageError("insert booking failed after repeated conflicts")

    # --- helpers ---

    @asynccontextmanager
    async def _slot_lock(self, date: str, time: str) -> AsyncIterator[None]:
        key = (date, time)
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            # Drop the lock once nobody holds or waits for it
            if entry.users == 0:
                del self._locks[key]

    def _session(self) -> AsyncSession:
        if self._sessions is None:
            raise StorageError("booking ledger is not open")
        return self._sessions()

    @staticmethod
    async def _count(session: AsyncSession, date: str, time: str) -> int:
        statement = (
            select(func.count())
            .select_from(Booking)
            .where(
                Booking.date == date,
                Booking.time == time,
                Booking.status == BookingStatus.CONFIRMED,
            )
        )
        result = await session.execute(statement)
        return result.scalar_one()

    async def _fetch_all(self, statement, operation: str) -> List[Booking]:
        with self._storage_errors(operation):
            async with self._session() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())

    @staticmethod
    @contextmanager
    def _storage_errors(operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.opt(exception=exc).error("Ledger failure during {}", operation)
            raise StorageError(f"{operation} failed") from exc
