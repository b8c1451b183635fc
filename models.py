from typing import Optional

from pydantic import BaseModel, ConfigDict, Field as PydanticField
from sqlmodel import SQLModel, Field
from sqlalchemy import Index


class Booking(BaseModel):
    """A reserved interval on one date, as exchanged over the API."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    name: str
    start_time: str = PydanticField(alias="startTime")
    end_time: str = PydanticField(alias="endTime")
    date: str
    calendar_id: Optional[str] = PydanticField(default=None, alias="calendarId")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class BookingRow(SQLModel, table=True):
    __tablename__ = "bookings"
    __table_args__ = (
        # Every query is scoped to a (calendar, date) partition
        Index("ix_bookings_partition", "calendar_id", "booking_date"),
    )

    # Surrogate key keeps insertion order; booking_id is the public id
    pk: Optional[int] = Field(default=None, primary_key=True)
    booking_id: str = Field(unique=True, index=True)
    name: str
    booking_date: str
    start_time: str
    end_time: str
    calendar_id: Optional[str] = Field(default=None)

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingRow":
        return cls(
            booking_id=booking.id,
            name=booking.name,
            booking_date=booking.date,
            start_time=booking.start_time,
            end_time=booking.end_time,
            calendar_id=booking.calendar_id,
        )

    def to_booking(self) -> Booking:
        return Booking(
            id=self.booking_id,
            name=self.name,
            date=self.booking_date,
            start_time=self.start_time,
            end_time=self.end_time,
            calendar_id=self.calendar_id,
        )
