from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class BookingStatus(str, Enum):
    CONFIRMED = "CONFIRMED"


class Booking(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # Each slot has exactly `capacity` ordinals (0 .. capacity-1), so a
        # concurrent writer that lost the race hits this constraint
        UniqueConstraint("date", "time", "slot_ordinal", name="unique_slot_ordinal"),
        {"sqlite_autoincrement": True},
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    date: str = Field(index=True)  # YYYY-MM-DD
    time: str  # one of the catalog labels, e.g. "09:30"
    note: str = ""
    status: BookingStatus = Field(default=BookingStatus.CONFIRMED)
    slot_ordinal: int = 0
    created_at: str = ""


# Pydantic Schemas for Request/Response
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingCreate(CamelModel):
    user_id: str
    name: str
    date: str
    time: str
    note: Optional[str] = ""


class BookingRead(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    user_id: str
    name: str
    date: str
    time: str
    note: str
    status: BookingStatus
    created_at: str


class SlotAvailability(CamelModel):
    time: str
    capacity: int
    booked: int
    available: int
    is_full: bool


class DayAvailability(CamelModel):
    date: str
    slots: List[SlotAvailability]
