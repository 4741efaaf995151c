from typing import Iterable, Tuple

from config import Settings


class SlotCatalog:
    """Fixed daily sequence of time slots, all with the same capacity."""

    def __init__(self, times: Iterable[str], capacity: int = 1):
        self._times: Tuple[str, ...] = tuple(times)
        if not self._times:
            raise ValueError("slot catalog needs at least one time slot")
        if len(set(self._times)) != len(self._times):
            raise ValueError("duplicate time slot labels")
        if capacity < 1:
            raise ValueError("slot capacity must be a positive integer")
        self._capacity = capacity

    @classmethod
    def from_settings(cls, settings: Settings) -> "SlotCatalog":
        return cls(settings.slot_times, settings.slot_capacity)

    def list_slots(self) -> Tuple[str, ...]:
        return self._times

    def capacity_of(self, time: str) -> int:
        return self._capacity

    def __contains__(self, time: object) -> bool:
        return time in self._times

    def __len__(self) -> int:
        return len(self._times)
