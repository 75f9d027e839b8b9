"""
Tests for self-service returns and organizer refunds.
"""

from decimal import Decimal
from datetime import timedelta

import pytest
from sqlalchemy import func, select

from waitlist_reassignment.models import (
    Event,
    Ticket,
    TicketStatus,
    TicketType,
    Transaction,
    TransactionStatus,
)
from waitlist_reassignment.services.refund_service import RefundService
from waitlist_reassignment.utils.exceptions import (
    AuthorizationError,
    EventNotSoldOutError,
    InvalidTicketStateError,
    TicketNotFoundError,
)


class TestSelfRefund:
    """Owners hand tickets of sold-out events back to the waitlist."""

    async def test_return_offers_ticket_to_waitlist(self, db_session, seed, reload):
        # Given
        _, event, ticket_type, tickets = await seed.sold_out_event()
        waiter = await seed.user()
        await seed.waitlist(waiter, event)

        # When
        result = await RefundService(db_session).self_refund(tickets[0].id, tickets[0].user_id)

        # Then: the owner keeps the ticket until the offer is accepted
        assert result.ticket.status == TicketStatus.PENDING_RETURN
        assert result.waitlist_assigned is True

        offer = await reload(Transaction, result.offer_transaction_id)
        assert offer.user_id == waiter.id
        assert (await reload(TicketType, ticket_type.id)).tickets_sold == 2
        assert (await reload(Event, event.id)).tickets_sold == 2

    async def test_return_without_waiters_stays_pending(self, db_session, seed):
        _, _, _, tickets = await seed.sold_out_event()

        result = await RefundService(db_session).self_refund(tickets[0].id, tickets[0].user_id)

        assert result.ticket.status == TicketStatus.PENDING_RETURN
        assert result.waitlist_assigned is False
        assert result.offer_transaction_id is None

    async def test_return_for_event_with_capacity_changes_nothing(self, db_session, seed, reload):
        # Given: an event that still has tickets on sale
        organizer = await seed.user()
        event = await seed.event(organizer)
        ticket_type = await seed.ticket_type(event, total=3)
        ticket = await seed.purchase(await seed.user(), ticket_type)
        ticket_id, ticket_type_id = ticket.id, ticket_type.id
        transactions_before = (await db_session.execute(select(func.count(Transaction.id)))).scalar_one()

        # When / Then
        with pytest.raises(EventNotSoldOutError) as exc_info:
            await RefundService(db_session).self_refund(ticket_id, ticket.user_id)
        assert exc_info.value.message == "Tickets can only be returned for sold-out events"

        # Rollback expired the loaded rows
        assert (await reload(Ticket, ticket_id)).status == TicketStatus.ACTIVE
        assert (await reload(TicketType, ticket_type_id)).tickets_sold == 1
        transactions_after = (await db_session.execute(select(func.count(Transaction.id)))).scalar_one()
        assert transactions_after == transactions_before

    async def test_return_someone_elses_ticket(self, db_session, seed):
        _, _, _, tickets = await seed.sold_out_event()
        stranger = await seed.user()

        with pytest.raises(AuthorizationError):
            await RefundService(db_session).self_refund(tickets[0].id, stranger.id)

    async def test_return_twice(self, db_session, seed):
        _, _, _, tickets = await seed.sold_out_event()
        service = RefundService(db_session)
        await service.self_refund(tickets[0].id, tickets[0].user_id)

        with pytest.raises(InvalidTicketStateError):
            await service.self_refund(tickets[0].id, tickets[0].user_id)

    async def test_return_unknown_ticket(self, db_session, seed):
        user = await seed.user()

        with pytest.raises(TicketNotFoundError):
            await RefundService(db_session).self_refund(404, user.id)


class TestOrganizerRefund:
    """Organizers refund immediately and free capacity."""

    async def test_refund_of_sold_out_event_offers_slot(self, db_session, seed, reload):
        # Given
        organizer, event, ticket_type, tickets = await seed.sold_out_event()
        waiter = await seed.user()
        await seed.waitlist(waiter, event)

        # When
        result = await RefundService(db_session).organizer_refund(tickets[0].id, organizer.id)

        # Then
        assert result.tickets_available == 1
        assert result.waitlist_assigned is True

        refunded = await reload(Ticket, tickets[0].id)
        assert refunded.status == TicketStatus.REFUNDED
        purchase = await reload(Transaction, refunded.transaction_id)
        assert purchase.status == TransactionStatus.REFUNDED
        assert (await reload(TicketType, ticket_type.id)).tickets_sold == 1

        offer = await reload(Transaction, result.offer_transaction_id)
        assert offer.user_id == waiter.id

    async def test_refund_keeps_aggregate_equal_to_type_sums(self, db_session, seed, reload):
        # Given: two ticket types, both sold out
        organizer = await seed.user()
        event = await seed.event(organizer)
        vip = await seed.ticket_type(event, total=1, price=Decimal("120.00"), type="VIP")
        general = await seed.ticket_type(event, total=2, type="General")
        vip_ticket = await seed.purchase(await seed.user(), vip)
        for _ in range(2):
            await seed.purchase(await seed.user(), general)

        # When
        await RefundService(db_session).organizer_refund(vip_ticket.id, organizer.id)

        # Then
        event = await reload(Event, event.id)
        types = (await db_session.execute(
            select(TicketType)
            .where(TicketType.event_id == event.id)
            .execution_options(populate_existing=True)
        )).scalars().all()
        assert event.tickets_sold == sum(t.tickets_sold for t in types) == 2
        assert event.total_tickets == sum(t.total_tickets for t in types) == 3

    async def test_refund_of_event_with_capacity_skips_waitlist(self, db_session, seed):
        # Given: a first refund already opened the event up
        organizer, event, _, tickets = await seed.sold_out_event(capacity=3)
        first, second = await seed.user(), await seed.user()
        await seed.waitlist(first, event, joined_ago=timedelta(minutes=2))
        await seed.waitlist(second, event, joined_ago=timedelta(minutes=1))
        service = RefundService(db_session)
        first_refund = await service.organizer_refund(tickets[0].id, organizer.id)
        assert first_refund.waitlist_assigned is True

        # When
        second_refund = await service.organizer_refund(tickets[1].id, organizer.id)

        # Then
        assert second_refund.waitlist_assigned is False
        assert second_refund.tickets_available == 2

    async def test_refund_by_non_organizer(self, db_session, seed):
        _, _, _, tickets = await seed.sold_out_event()

        with pytest.raises(AuthorizationError) as exc_info:
            await RefundService(db_session).organizer_refund(tickets[0].id, tickets[0].user_id)
        assert exc_info.value.message == "Only the event organizer can refund tickets"

    async def test_refund_of_returned_ticket(self, db_session, seed):
        organizer, _, _, tickets = await seed.sold_out_event()
        service = RefundService(db_session)
        await service.self_refund(tickets[0].id, tickets[0].user_id)

        with pytest.raises(InvalidTicketStateError):
            await service.organizer_refund(tickets[0].id, organizer.id)
