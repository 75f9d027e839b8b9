"""
Shared fixtures: an in-memory database, a seeding helper and an API client.
"""

from datetime import timedelta
from decimal import Decimal
from itertools import count
from typing import List, Optional, Tuple

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from waitlist_reassignment.database import get_db
from waitlist_reassignment.models import (
    Base,
    Event,
    PaymentMethod,
    Ticket,
    TicketStatus,
    TicketType,
    Transaction,
    TransactionStatus,
    User,
    WaitlistEntry,
)
from waitlist_reassignment.services.inventory_service import InventoryService
from waitlist_reassignment.utils.auth import create_access_token
from waitlist_reassignment.utils.clock import utcnow

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


class Seeder:
    """Creates users, events and purchased tickets directly in the database."""

    _sequence = count(1)

    def __init__(self, session: AsyncSession):
        self.session = session
        self.inventory = InventoryService(session)

    async def user(self, is_admin: bool = False, name: Optional[str] = None) -> User:
        number = next(self._sequence)
        user = User(
            email=f"user{number}@example.com",
            first_name=name or f"User{number}",
            last_name="Test",
            is_admin=is_admin,
        )
        self.session.add(user)
        await self.session.commit()
        return user

    async def event(
        self,
        organizer: User,
        starts_in: timedelta = timedelta(days=7),
        ends_in: Optional[timedelta] = None,
    ) -> Event:
        start = utcnow() + starts_in
        event = Event(
            title="Concert",
            organizer_id=organizer.id,
            start_datetime=start,
            end_datetime=utcnow() + ends_in if ends_in is not None else None,
        )
        self.session.add(event)
        await self.session.commit()
        return event

    async def ticket_type(
        self,
        event: Event,
        total: int = 2,
        price: Decimal = Decimal("50.00"),
        type: str = "General",
    ) -> TicketType:
        ticket_type = TicketType(event_id=event.id, type=type, price=price, total_tickets=total)
        self.session.add(ticket_type)
        await self.session.flush()
        await self.inventory.sync_event_totals(event.id)
        await self.session.commit()
        return ticket_type

    async def purchase(self, buyer: User, ticket_type: TicketType) -> Ticket:
        """Record an ordinary completed purchase of one ticket."""
        transaction = Transaction(
            user_id=buyer.id,
            total_price=ticket_type.price,
            status=TransactionStatus.COMPLETED,
            payment_method=PaymentMethod.CARD,
        )
        self.session.add(transaction)
        await self.session.flush()

        ticket = Ticket(
            user_id=buyer.id,
            event_id=ticket_type.event_id,
            ticket_type_id=ticket_type.id,
            transaction_id=transaction.id,
            status=TicketStatus.ACTIVE,
        )
        self.session.add(ticket)
        await self.inventory.increment_sold(ticket_type.id)
        await self.session.commit()
        return ticket

    async def sold_out_event(
        self,
        capacity: int = 2,
        price: Decimal = Decimal("50.00"),
    ) -> Tuple[User, Event, TicketType, List[Ticket]]:
        """An event with a single ticket type whose every ticket is sold."""
        organizer = await self.user(name="Organizer")
        event = await self.event(organizer)
        ticket_type = await self.ticket_type(event, total=capacity, price=price)
        tickets = [await self.purchase(await self.user(), ticket_type) for _ in range(capacity)]
        return organizer, event, ticket_type, tickets

    async def waitlist(self, user: User, event: Event, joined_ago: timedelta = timedelta(0)) -> WaitlistEntry:
        """Queue a user directly, bypassing the sold-out check."""
        entry = WaitlistEntry(user_id=user.id, event_id=event.id, joined_at=utcnow() - joined_ago)
        self.session.add(entry)
        await self.session.commit()
        return entry


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)


@pytest.fixture
async def race_db(tmp_path):
    """A SQLite file shared by several connections, for units of work that race.

    Yields a session factory and a seeder on its own session. SQLite lets one
    writer in at a time; the others wait up to the connect timeout.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'race.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield factory, Seeder(session)
    await engine.dispose()


@pytest.fixture
def reload(db_session):
    """Read a row again, overwriting whatever the session has cached."""

    async def _reload(model, row_id):
        result = await db_session.execute(
            select(model)
            .where(model.id == row_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    return _reload


@pytest.fixture
def auth_headers():
    """Bearer headers for a user."""

    def _headers(user: User) -> dict:
        token = create_access_token({"sub": str(user.id), "email": user.email})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def client(db_session):
    from waitlist_reassignment.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
