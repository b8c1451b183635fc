import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from calendar_view import (
    DEFAULT_WINDOW,
    FULL_DAY,
    PIXELS_PER_HOUR,
    TOP_OFFSET,
    hour_labels,
    is_recently_created,
    layout_day,
    parse_date,
)
from errors import BookingError, NotFoundError, ValidationError
from models import Booking
from settings import Settings
from storage import BookingStore, FallbackBookingStore, FileBookingStore, MemoryBookingStore

logger = logging.getLogger(__name__)


# Pydantic Schemas for Request/Response
class BookingCreate(BaseModel):
    # Everything optional so missing fields reach our own 400 instead of a 422
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    start_time: Optional[str] = Field(default=None, alias="startTime")
    end_time: Optional[str] = Field(default=None, alias="endTime")
    date: Optional[str] = None


class BookingsResponse(BaseModel):
    bookings: List[Booking]


class BookingResponse(BaseModel):
    booking: Booking


class GridBlock(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    booking: Booking
    top: float
    height: float
    is_new: bool = Field(alias="isNew")


class DayGrid(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str
    calendar_id: Optional[str] = Field(default=None, alias="calendarId")
    labels: List[str]
    blocks: List[GridBlock]


class CalendarInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    display_name: str = Field(alias="displayName")


def build_store(settings: Settings) -> BookingStore:
    """Pick the backend named by the settings, wrapped for fallback if asked."""
    if settings.backend == "memory":
        return MemoryBookingStore(enforce_overlap=settings.enforce_overlap)

    if settings.backend == "database":
        from database import SqlBookingStore

        primary = SqlBookingStore(settings.database_url)
    else:
        primary = FileBookingStore(settings.bookings_file)

    if not settings.fallback:
        primary.enforce_overlap = settings.enforce_overlap
        return primary
    return FallbackBookingStore(primary, MemoryBookingStore(), enforce_overlap=settings.enforce_overlap)


def get_store(request: Request) -> BookingStore:
    return request.app.state.store


def get_calendar(request: Request, calendar: Optional[str] = None) -> Optional[str]:
    if calendar is None:
        return None
    if calendar not in request.app.state.settings.calendars:
        raise NotFoundError(f"Calendar {calendar!r} not found")
    return calendar


router = APIRouter()


# --- Endpoint 1: GET /bookings ---
@router.get("/bookings", response_model=BookingsResponse, response_model_exclude_none=True)
async def list_bookings(
    date: Optional[str] = None,
    calendar_id: Optional[str] = Depends(get_calendar),
    store: BookingStore = Depends(get_store),
):
    if date:
        parse_date(date)
    bookings = await store.list(date=date, calendar_id=calendar_id)
    logger.debug("Found %d bookings for %s", len(bookings), date or "all dates")
    return BookingsResponse(bookings=bookings)


# --- Endpoint 2: POST /bookings ---
@router.post(
    "/bookings",
    response_model=BookingResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_booking(
    booking_data: BookingCreate,
    calendar_id: Optional[str] = Depends(get_calendar),
    store: BookingStore = Depends(get_store),
):
    booking = await store.create(
        booking_data.name,
        booking_data.start_time,
        booking_data.end_time,
        booking_data.date,
        calendar_id=calendar_id,
    )
    return BookingResponse(booking=booking)


# --- Endpoint 3: DELETE /bookings/{id} ---
@router.delete("/bookings/{booking_id}")
async def delete_booking(
    booking_id: str,
    calendar_id: Optional[str] = Depends(get_calendar),
    store: BookingStore = Depends(get_store),
):
    await store.delete(booking_id, calendar_id=calendar_id)
    logger.info("Deleted booking %s", booking_id)
    return {"success": True}


# --- Endpoint 4: GET /day-grid ---
@router.get("/day-grid", response_model=DayGrid, response_model_exclude_none=True)
async def get_day_grid(
    date: str,
    full_day: bool = Query(default=False, alias="fullDay"),
    pixels_per_hour: float = Query(default=PIXELS_PER_HOUR, alias="pixelsPerHour", gt=0),
    top_offset: float = Query(default=TOP_OFFSET, alias="topOffset"),
    calendar_id: Optional[str] = Depends(get_calendar),
    store: BookingStore = Depends(get_store),
):
    parse_date(date)
    window = FULL_DAY if full_day else DEFAULT_WINDOW

    # Step 1: one query for the whole partition
    bookings = await store.list(date=date, calendar_id=calendar_id)

    # Step 2: turn each booking into a positioned block
    blocks = [
        GridBlock(
            booking=block.booking,
            top=block.top,
            height=block.height,
            is_new=is_recently_created(block.booking.id),
        )
        for block in layout_day(bookings, window, pixels_per_hour, top_offset)
    ]

    return DayGrid(date=date, calendar_id=calendar_id, labels=hour_labels(window), blocks=blocks)


@router.get("/calendars", response_model=List[CalendarInfo])
async def list_calendars(request: Request):
    calendars = request.app.state.settings.calendars
    return [CalendarInfo(id=key, display_name=name) for key, name in calendars.items()]


@router.get("/ping")
async def ping(request: Request):
    return {"message": request.app.state.settings.ping_message}


@router.get("/health")
async def health(request: Request):
    store = request.app.state.store
    return {
        "status": "ok",
        "backend": store.name,
        "degraded": bool(getattr(store, "degraded", False)),
    }


async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "received": exc.received})


async def booking_error_handler(request: Request, exc: BookingError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error", "details": str(exc)},
    )


def create_app(settings: Optional[Settings] = None, store: Optional[BookingStore] = None) -> FastAPI:
    if settings is None:
        settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if store is None:
        store = build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.store.init()
        logger.info("Booking store ready (%s)", app.state.store.name)
        yield
        await app.state.store.close()

    app = FastAPI(title="Book-a-thing", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store

    # Both prefixes are served; some hosts strip /api before forwarding
    app.include_router(router, prefix="/api")
    app.include_router(router)

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
