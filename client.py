"""HTTP client for the bookings API and the day calendar session built on it."""

import asyncio
import logging
from datetime import date as Date, timedelta
from typing import List, Optional, Union

import httpx

from calendar_view import (
    DEFAULT_WINDOW,
    BookingBlock,
    BookingCache,
    TimeWindow,
    ensure_available,
    format_minutes,
    layout_day,
    parse_time,
    partition_key,
    validate_interval,
)
from errors import (
    BackendUnavailableError,
    BookingError,
    NetworkError,
    NotFoundError,
    OverlapError,
    ValidationError,
)
from models import Booking

logger = logging.getLogger(__name__)

_STATUS_ERRORS = {
    404: NotFoundError,
    409: OverlapError,
    503: BackendUnavailableError,
}


def _error_from_response(response: httpx.Response) -> BookingError:
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    message = payload.get("error") or f"HTTP {response.status_code}"
    if response.status_code == 400:
        return ValidationError(message, received=payload.get("received"))
    error_class = _STATUS_ERRORS.get(response.status_code, BookingError)
    return error_class(message)


class BookingClient:
    """Thin async wrapper over ``/api/bookings``. Failed calls are not retried."""

    def __init__(self, base_url: str = "http://localhost:8000", calendar_id: Optional[str] = None,
                 http: Optional[httpx.AsyncClient] = None, timeout: float = 10.0):
        self.calendar_id = calendar_id
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def _params(self, **extra) -> dict:
        params = {key: value for key, value in extra.items() if value is not None}
        if self.calendar_id:
            params["calendar"] = self.calendar_id
        return params

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc
        if response.is_error:
            raise _error_from_response(response)
        return response.json()

    async def list_bookings(self, date: str) -> List[Booking]:
        data = await self._request("GET", "/api/bookings", params=self._params(date=date))
        return [Booking.model_validate(item) for item in data.get("bookings", [])]

    async def create_booking(self, name: str, start_time: str, end_time: str, date: str) -> Booking:
        body = {"name": name, "startTime": start_time, "endTime": end_time, "date": date}
        data = await self._request("POST", "/api/bookings", params=self._params(), json=body)
        return Booking.model_validate(data["booking"])

    async def delete_booking(self, booking_id: str) -> None:
        await self._request("DELETE", f"/api/bookings/{booking_id}", params=self._params())


def _as_minutes(value: Union[int, str]) -> int:
    return parse_time(value) if isinstance(value, str) else value


class DayCalendar:
    """One user's view of a calendar, a day at a time.

    Cached days are shown immediately and refreshed in the background. A
    refresh always updates the cache for the day it asked about, but only
    replaces ``bookings`` if the user is still looking at that day.
    """

    def __init__(self, client: BookingClient, initial_date: Optional[Date] = None,
                 window: TimeWindow = DEFAULT_WINDOW, cache: Optional[BookingCache] = None):
        self.client = client
        self.window = window
        self.cache = cache if cache is not None else BookingCache()
        self.current_date = initial_date or Date.today()
        self.bookings: List[Booking] = []
        self.error: Optional[str] = None
        self._pending: set = set()

    @property
    def date_key(self) -> str:
        return self.current_date.isoformat()

    def _cache_key(self, date_key: str):
        return partition_key(date_key, self.client.calendar_id)

    def dismiss_error(self) -> None:
        self.error = None

    async def refresh(self, date_key: Optional[str] = None) -> List[Booking]:
        date_key = date_key or self.date_key
        try:
            bookings = await self.client.list_bookings(date_key)
        except BookingError as exc:
            self.error = exc.message
            logger.warning("Could not load bookings for %s: %s", date_key, exc.message)
            raise
        self.cache.put(self._cache_key(date_key), bookings)
        if date_key == self.date_key:
            self.bookings = bookings
        else:
            logger.debug("Discarding refresh for %s, now showing %s", date_key, self.date_key)
        return bookings

    async def _background_refresh(self, date_key: str) -> None:
        try:
            await self.refresh(date_key)
        except BookingError:
            # already surfaced through self.error
            pass

    def _schedule_refresh(self, date_key: str) -> None:
        task = asyncio.ensure_future(self._background_refresh(date_key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def settle(self) -> None:
        """Wait for background refreshes started so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def navigate(self, day: Date) -> List[Booking]:
        self.current_date = day
        date_key = self.date_key
        cached = self.cache.get(self._cache_key(date_key))
        if cached is not None:
            self.bookings = cached
            self._schedule_refresh(date_key)
            return self.bookings

        self.bookings = []
        try:
            await self.refresh(date_key)
        except BookingError:
            pass
        return self.bookings

    async def next_day(self) -> List[Booking]:
        return await self.navigate(self.current_date + timedelta(days=1))

    async def previous_day(self) -> List[Booking]:
        return await self.navigate(self.current_date - timedelta(days=1))

    async def today(self) -> List[Booking]:
        return await self.navigate(Date.today())

    async def propose(self, start: Union[int, str], end: Union[int, str]) -> None:
        """Raise unless ``[start, end)`` is a bookable, free interval today."""
        start, end = _as_minutes(start), _as_minutes(end)
        validate_interval(start, end, self.window)
        try:
            latest = await self.refresh()
        except NetworkError:
            latest = self.bookings
        ensure_available(latest, start, end)

    async def book(self, name: str, start: Union[int, str], end: Union[int, str]) -> Booking:
        if not name or not name.strip():
            raise ValidationError("Name is required")
        start, end = _as_minutes(start), _as_minutes(end)
        await self.propose(start, end)

        try:
            booking = await self.client.create_booking(
                name.strip(), format_minutes(start), format_minutes(end), self.date_key
            )
        except NetworkError as exc:
            self.error = exc.message
            raise

        self.cache.invalidate(self._cache_key(self.date_key))
        try:
            await self.refresh()
        except NetworkError:
            self.bookings = self.bookings + [booking]
        return booking

    async def cancel(self, booking_id: str) -> None:
        try:
            await self.client.delete_booking(booking_id)
        except NetworkError as exc:
            self.error = exc.message
            raise

        self.cache.invalidate(self._cache_key(self.date_key))
        try:
            await self.refresh()
        except NetworkError:
            self.bookings = [b for b in self.bookings if b.id != booking_id]

    def layout(self) -> List[BookingBlock]:
        return layout_day(self.bookings, self.window)
