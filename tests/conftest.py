import pytest
from fastapi.testclient import TestClient

from main import create_app
from models import Booking
from settings import Settings
from storage import MemoryBookingStore


def make_booking(start_time, end_time, name="Alice", date="2024-06-01", booking_id="1717200000000-abc123xyz"):
    return Booking(id=booking_id, name=name, start_time=start_time, end_time=end_time, date=date)


@pytest.fixture
def settings():
    return Settings(
        backend="memory",
        calendars={"fastlandbox": "Fastland Box", "garage": "Garage"},
        ping_message="pong",
    )


@pytest.fixture
def store():
    return MemoryBookingStore()


@pytest.fixture
def app(settings, store):
    return create_app(settings=settings, store=store)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
