"""Booking stores.

Every backend implements :class:`BookingStore`. The durable ones (file,
database) are normally wrapped in :class:`FallbackBookingStore`, which moves
to a process-local :class:`MemoryBookingStore` when the primary raises
:class:`BackendUnavailableError`.
"""

import json
import logging
import os
import secrets
import string
import tempfile
import time
from abc import ABC, abstractmethod
from typing import List, Optional

from calendar_view import booking_minutes, ensure_available, parse_date, parse_time
from errors import BackendUnavailableError, NotFoundError, ValidationError
from models import Booking

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def new_booking_id(now_ms: Optional[int] = None) -> str:
    """``<epoch-millis>-<9 random base36 chars>``."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"{now_ms}-{suffix}"


def build_booking(name, start_time, end_time, date, calendar_id=None) -> Booking:
    received = {"name": name, "startTime": start_time, "endTime": end_time, "date": date}
    missing = [key for key, value in received.items() if value is None or not str(value).strip()]
    if missing:
        raise ValidationError("Missing required fields", received=received)

    try:
        start = parse_time(start_time)
        end = parse_time(end_time)
        parse_date(date)
    except ValidationError as exc:
        raise ValidationError(exc.message, received=received) from None
    if end <= start:
        raise ValidationError("End time must be after start time", received=received)

    return Booking(
        id=new_booking_id(),
        name=str(name).strip(),
        start_time=start_time,
        end_time=end_time,
        date=date,
        calendar_id=calendar_id,
    )


def _matches(booking: Booking, date: Optional[str], calendar_id: Optional[str]) -> bool:
    if date and booking.date != date:
        return False
    if calendar_id and booking.calendar_id != calendar_id:
        return False
    return True


class BookingStore(ABC):
    name = "abstract"

    def __init__(self, enforce_overlap: bool = False):
        # Off by default: overlap is the client's job unless explicitly enabled
        self.enforce_overlap = enforce_overlap

    async def init(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def list(self, date: Optional[str] = None, calendar_id: Optional[str] = None) -> List[Booking]:
        """Bookings of the partition in insertion order."""

    async def create(self, name, start_time, end_time, date, calendar_id: Optional[str] = None) -> Booking:
        booking = build_booking(name, start_time, end_time, date, calendar_id)
        if self.enforce_overlap:
            existing = await self.list(date=booking.date, calendar_id=calendar_id)
            ensure_available(existing, *booking_minutes(booking))
        await self._insert(booking)
        logger.info("Created booking %s on %s %s-%s", booking.id, booking.date, booking.start_time, booking.end_time)
        return booking

    @abstractmethod
    async def _insert(self, booking: Booking) -> None:
        ...

    @abstractmethod
    async def delete(self, booking_id: str, calendar_id: Optional[str] = None) -> None:
        """Remove a booking or raise :class:`NotFoundError`."""


class MemoryBookingStore(BookingStore):
    name = "memory"

    def __init__(self, enforce_overlap: bool = False):
        super().__init__(enforce_overlap)
        self._bookings: List[Booking] = []

    async def list(self, date=None, calendar_id=None):
        return [b for b in self._bookings if _matches(b, date, calendar_id)]

    async def _insert(self, booking):
        self._bookings.append(booking)

    async def delete(self, booking_id, calendar_id=None):
        for index, booking in enumerate(self._bookings):
            if booking.id == booking_id and _matches(booking, None, calendar_id):
                del self._bookings[index]
                return
        raise NotFoundError("Booking not found")

    def __len__(self):
        return len(self._bookings)


class FileBookingStore(BookingStore):
    """JSON array on disk, rewritten on every mutation."""

    name = "file"

    def __init__(self, path: str, enforce_overlap: bool = False):
        super().__init__(enforce_overlap)
        self.path = path

    def _ensure_dir(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    def _load(self) -> List[Booking]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            logger.warning("Bookings file %s is not valid JSON, treating as empty", self.path)
            return []
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot read {self.path}: {exc}") from exc
        return [Booking.model_validate(item) for item in raw]

    def _save(self, bookings: List[Booking]) -> None:
        # Write beside the target and swap it in, so readers never see a half-written file
        tmp_path = None
        try:
            self._ensure_dir()
            fd, tmp_path = tempfile.mkstemp(
                prefix=".bookings-", suffix=".tmp", dir=os.path.dirname(self.path) or "."
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump([b.to_json() for b in bookings], fh, indent=2)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as exc:
            raise BackendUnavailableError(f"Cannot write {self.path}: {exc}") from exc
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.remove(tmp_path)

    async def list(self, date=None, calendar_id=None):
        return [b for b in self._load() if _matches(b, date, calendar_id)]

    async def _insert(self, booking):
        bookings = self._load()
        bookings.append(booking)
        self._save(bookings)

    async def delete(self, booking_id, calendar_id=None):
        bookings = self._load()
        remaining = [
            b for b in bookings if not (b.id == booking_id and _matches(b, None, calendar_id))
        ]
        if len(remaining) == len(bookings):
            raise NotFoundError("Booking not found")
        self._save(remaining)


class FallbackBookingStore(BookingStore):
    """Try ``primary``; when it is unavailable, serve from ``transient``.

    Writes made while degraded live only in this process.
    """

    def __init__(self, primary: BookingStore, transient: BookingStore, enforce_overlap: bool = False):
        super().__init__(enforce_overlap)
        self.primary = primary
        self.transient = transient
        self.degraded = False

    @property
    def name(self):
        return f"{self.primary.name}+{self.transient.name}"

    def _degrade(self, operation: str, exc: BackendUnavailableError) -> None:
        self.degraded = True
        logger.warning(
            "%s backend unavailable during %s (%s); using %s storage",
            self.primary.name, operation, exc, self.transient.name,
        )

    async def init(self):
        await self.transient.init()
        try:
            await self.primary.init()
        except BackendUnavailableError as exc:
            self._degrade("init", exc)

    async def close(self):
        await self.primary.close()
        await self.transient.close()

    async def list(self, date=None, calendar_id=None):
        try:
            bookings = await self.primary.list(date=date, calendar_id=calendar_id)
        except BackendUnavailableError as exc:
            self._degrade("list", exc)
            return await self.transient.list(date=date, calendar_id=calendar_id)
        self.degraded = False
        return bookings

    async def _insert(self, booking):
        try:
            await self.primary._insert(booking)
        except BackendUnavailableError as exc:
            self._degrade("create", exc)
            await self.transient._insert(booking)
            return
        self.degraded = False

    async def delete(self, booking_id, calendar_id=None):
        try:
            await self.primary.delete(booking_id, calendar_id=calendar_id)
        except BackendUnavailableError as exc:
            self._degrade("delete", exc)
            await self.transient.delete(booking_id, calendar_id=calendar_id)
            return
        self.degraded = False
