from datetime import date as Date

import httpx
import pytest

from calendar_view import partition_key
from client import BookingClient, DayCalendar
from errors import BackendUnavailableError, NetworkError, NotFoundError, OverlapError, ValidationError
from main import create_app
from storage import MemoryBookingStore
from tests.conftest import make_booking

JUNE_1 = Date(2024, 6, 1)
JUNE_2 = Date(2024, 6, 2)


def api_client(app, calendar_id=None):
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return BookingClient(calendar_id=calendar_id, http=http)


def offline_client():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://test")
    return BookingClient(http=http)


@pytest.mark.asyncio
async def test_client_round_trip(app):
    async with api_client(app) as client:
        booking = await client.create_booking("Alice", "09:00", "10:00", "2024-06-01")
        assert await client.list_bookings("2024-06-01") == [booking]
        await client.delete_booking(booking.id)
        assert await client.list_bookings("2024-06-01") == []
        with pytest.raises(NotFoundError):
            await client.delete_booking(booking.id)


@pytest.mark.asyncio
async def test_client_maps_bad_request_to_validation_error(app):
    async with api_client(app) as client:
        with pytest.raises(ValidationError) as excinfo:
            await client.create_booking("", "09:00", "10:00", "2024-06-01")
    assert excinfo.value.message == "Missing required fields"
    assert excinfo.value.received["name"] == ""


@pytest.mark.asyncio
async def test_client_scopes_requests_to_calendar(app, store):
    async with api_client(app, calendar_id="garage") as client:
        booking = await client.create_booking("Alice", "09:00", "10:00", "2024-06-01")
    assert booking.calendar_id == "garage"
    assert await store.list(calendar_id="fastlandbox") == []


@pytest.mark.asyncio
async def test_client_network_failure_is_network_error():
    async with offline_client() as client:
        with pytest.raises(NetworkError):
            await client.list_bookings("2024-06-01")


@pytest.mark.asyncio
async def test_double_booking_is_rejected_before_submit(app, store):
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)
    await calendar.navigate(JUNE_1)

    alice = await calendar.book("Alice", "09:00", "10:00")
    assert calendar.bookings == [alice]

    with pytest.raises(OverlapError):
        await calendar.book("Bob", "09:30", "09:45")
    assert len(store) == 1
    assert [b.name for b in await store.list(date="2024-06-01")] == ["Alice"]

    await calendar.book("Bob", "10:00", "10:30")
    assert [b.name for b in calendar.bookings] == ["Alice", "Bob"]
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_propose_checks_the_freshest_list(app, store):
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)
    await calendar.navigate(JUNE_1)
    assert calendar.bookings == []

    # someone else books after our list was loaded
    await store.create("Carol", "11:00", "12:00", "2024-06-01")
    with pytest.raises(OverlapError):
        await calendar.propose(11 * 60, 11 * 60 + 30)
    assert [b.name for b in calendar.bookings] == ["Carol"]
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_propose_rejects_invalid_intervals(app):
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)
    with pytest.raises(ValidationError):
        await calendar.propose("10:00", "10:00")
    with pytest.raises(ValidationError):
        await calendar.propose("06:00", "07:00")
    with pytest.raises(ValidationError):
        await calendar.book("  ", "09:00", "10:00")
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_cached_day_is_shown_then_refreshed(app, store):
    await store.create("Alice", "09:00", "10:00", "2024-06-01")
    calendar = DayCalendar(api_client(app), initial_date=JUNE_2)
    calendar.cache.put(partition_key("2024-06-01"), [])

    shown = await calendar.navigate(JUNE_1)
    assert shown == []

    await calendar.settle()
    assert [b.name for b in calendar.bookings] == ["Alice"]
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_refresh_for_a_day_left_behind_is_not_shown(app, store):
    await store.create("Alice", "09:00", "10:00", "2024-06-01")
    await store.create("Carol", "11:00", "12:00", "2024-06-02")
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)
    calendar.cache.put(partition_key("2024-06-01"), [])

    await calendar.navigate(JUNE_1)
    await calendar.next_day()
    await calendar.settle()

    assert calendar.current_date == JUNE_2
    assert [b.name for b in calendar.bookings] == ["Carol"]
    assert [b.name for b in calendar.cache.get(partition_key("2024-06-01"))] == ["Alice"]

    await calendar.previous_day()
    assert [b.name for b in calendar.bookings] == ["Alice"]
    await calendar.settle()
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_cancel_removes_booking(app, store):
    booking = await store.create("Alice", "09:00", "10:00", "2024-06-01")
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)
    await calendar.navigate(JUNE_1)
    assert calendar.bookings == [booking]

    await calendar.cancel(booking.id)
    assert calendar.bookings == []
    with pytest.raises(NotFoundError):
        await calendar.cancel(booking.id)
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_offline_navigation_sets_error_banner():
    calendar = DayCalendar(offline_client(), initial_date=JUNE_1)
    shown = await calendar.navigate(JUNE_1)
    assert shown == []
    assert "connection refused" in calendar.error
    calendar.dismiss_error()
    assert calendar.error is None
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_offline_propose_uses_loaded_list():
    calendar = DayCalendar(offline_client(), initial_date=JUNE_1)
    calendar.bookings = [make_booking("09:00", "10:00")]
    with pytest.raises(OverlapError):
        await calendar.propose("09:30", "10:30")
    with pytest.raises(NetworkError):
        await calendar.book("Bob", "10:00", "10:30")
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_layout_uses_visible_bookings():
    calendar = DayCalendar(offline_client(), initial_date=JUNE_1)
    calendar.bookings = [make_booking("09:00", "10:00")]
    blocks = calendar.layout()
    assert (blocks[0].top, blocks[0].height) == (124.0, 58.0)
    await calendar.client.aclose()


class DownStore(MemoryBookingStore):
    async def list(self, date=None, calendar_id=None):
        raise BackendUnavailableError("down")


@pytest.mark.asyncio
async def test_background_refresh_failure_is_surfaced(settings):
    app = create_app(settings=settings, store=DownStore())
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)
    calendar.cache.put(partition_key("2024-06-01"), [])

    shown = await calendar.navigate(JUNE_1)
    assert shown == []
    await calendar.settle()

    assert calendar.error == "down"
    assert calendar.bookings == []
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_uncached_navigation_failure_is_surfaced(settings):
    app = create_app(settings=settings, store=DownStore())
    calendar = DayCalendar(api_client(app), initial_date=JUNE_1)

    assert await calendar.navigate(JUNE_2) == []
    assert calendar.error == "down"
    await calendar.client.aclose()


@pytest.mark.asyncio
async def test_today_refreshes_when_already_on_today(app, store):
    today = Date.today()
    calendar = DayCalendar(api_client(app), initial_date=today)
    await calendar.navigate(today)
    assert calendar.bookings == []

    await store.create("Alice", "09:00", "10:00", today.isoformat())
    await calendar.today()
    await calendar.settle()
    assert [b.name for b in calendar.bookings] == ["Alice"]
    await calendar.client.aclose()
