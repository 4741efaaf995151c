from typing import List, Tuple

import pytest
import pytest_asyncio

from config import DEFAULT_SLOT_TIMES
from models import Booking
from service import ReservationService
from slots import SlotCatalog
from store import ReservationStore


class RecordingNotifier:
    def __init__(self):
        self.sent: List[Tuple[str, Booking]] = []

    def notify(self, user_id: str, booking: Booking) -> None:
        self.sent.append((user_id, booking))

    async def aclose(self) -> None:
        pass


@pytest.fixture
def database_url(tmp_path):
    # Fresh SQLite file per test, never the repo's queue.db
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest_asyncio.fixture
async def store(database_url):
    async with ReservationStore(database_url) as ledger:
        yield ledger


@pytest.fixture
def catalog():
    return SlotCatalog(DEFAULT_SLOT_TIMES, capacity=1)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(catalog, store, notifier):
    return ReservationService(catalog, store, notifier)


@pytest.fixture
def make_service(store, notifier):
    def _make(capacity: int) -> ReservationService:
        return ReservationService(SlotCatalog(DEFAULT_SLOT_TIMES, capacity=capacity), store, notifier)

    return _make
