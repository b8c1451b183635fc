import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlmodel import SQLModel, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from errors import BackendUnavailableError, BookingError, NotFoundError
from models import Booking, BookingRow
from storage import BookingStore

logger = logging.getLogger(__name__)

# Driver-level failures that mean "the database is not reachable right now"
UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, OSError)


def make_engine(database_url: str) -> AsyncEngine:
    return create_async_engine(database_url, echo=False, future=True)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)


class SqlBookingStore(BookingStore):
    """Bookings in the ``bookings`` table of any async SQLAlchemy database."""

    name = "database"

    def __init__(self, database_url: Optional[str] = None, engine: Optional[AsyncEngine] = None,
                 enforce_overlap: bool = False):
        super().__init__(enforce_overlap)
        if engine is None:
            if not database_url:
                raise ValueError("DATABASE_URL is not set. Please check your .env file.")
            engine = make_engine(database_url)
        self.engine = engine
        self._sessions = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._sessions() as session:
                yield session
        except UNAVAILABLE_ERRORS as exc:
            raise BackendUnavailableError(f"Database unavailable: {exc}") from exc

    async def init(self):
        try:
            await init_db(self.engine)
        except UNAVAILABLE_ERRORS as exc:
            raise BackendUnavailableError(f"Database unavailable: {exc}") from exc

    async def close(self):
        await self.engine.dispose()

    async def list(self, date=None, calendar_id=None) -> List[Booking]:
        statement = select(BookingRow)
        if date:
            statement = statement.where(BookingRow.booking_date == date)
        if calendar_id:
            statement = statement.where(BookingRow.calendar_id == calendar_id)
        statement = statement.order_by(BookingRow.pk)

        async with self.session() as session:
            result = await session.execute(statement)
            rows = result.scalars().all()
        return [row.to_booking() for row in rows]

    async def _insert(self, booking):
        async with self.session() as session:
            try:
                session.add(BookingRow.from_booking(booking))
                await session.commit()
            except IntegrityError:
                # booking_id is unique; a clash means the id generator repeated itself
                await session.rollback()
                raise BookingError(f"Booking id {booking.id} collided with an existing booking") from None

    async def delete(self, booking_id, calendar_id=None):
        statement = select(BookingRow).where(BookingRow.booking_id == booking_id)
        if calendar_id:
            statement = statement.where(BookingRow.calendar_id == calendar_id)

        async with self.session() as session:
            result = await session.execute(statement)
            row = result.scalars().first()
            if row is None:
                raise NotFoundError("Booking not found")
            await session.delete(row)
            await session.commit()
