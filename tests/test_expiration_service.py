"""
Tests for the expired-offer sweep.
"""

from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from waitlist_reassignment.models import Ticket, TicketStatus, Transaction, TransactionStatus
from waitlist_reassignment.services.expiration_service import ExpirationService
from waitlist_reassignment.services.refund_service import RefundService
from waitlist_reassignment.services.waitlist_service import WaitlistService
from waitlist_reassignment.utils.clock import as_utc


async def offer_deadline(db_session, user, event):
    entry = await WaitlistService(db_session).get_entry(user.id, event.id)
    return as_utc(entry.reservation_expires_at)


class TestExpirationSweep:
    """The sweep rolls back lapsed offers and passes their slots on."""

    async def test_sweep_expires_and_reoffers(self, db_session, seed, reload):
        # Given: two waiters, the first holding an offer
        _, event, _, tickets = await seed.sold_out_event(price=Decimal("50.00"))
        first, second = await seed.user(), await seed.user()
        await seed.waitlist(first, event, joined_ago=timedelta(minutes=2))
        await seed.waitlist(second, event, joined_ago=timedelta(minutes=1))
        refund = await RefundService(db_session).self_refund(tickets[0].id, tickets[0].user_id)
        deadline = await offer_deadline(db_session, first, event)

        # When
        result = await ExpirationService(db_session).run_expiration_sweep(now=deadline + timedelta(seconds=1))

        # Then
        assert result.cleaned_count == 1
        assert result.reassigned_count == 1
        assert result.failed_count == 0
        assert (await reload(Transaction, refund.offer_transaction_id)).status == TransactionStatus.EXPIRED
        assert await WaitlistService(db_session).get_entry(first.id, event.id) is None

        reserved = (await db_session.execute(
            select(Ticket).where(Ticket.status == TicketStatus.RESERVED)
        )).scalars().all()
        assert [ticket.user_id for ticket in reserved] == [second.id]

    async def test_sweep_leaves_live_offers_alone(self, db_session, seed, reload):
        _, event, _, tickets = await seed.sold_out_event()
        waiter = await seed.user()
        await seed.waitlist(waiter, event)
        refund = await RefundService(db_session).self_refund(tickets[0].id, tickets[0].user_id)
        deadline = await offer_deadline(db_session, waiter, event)

        result = await ExpirationService(db_session).run_expiration_sweep(now=deadline - timedelta(seconds=1))

        assert result.cleaned_count == 0
        assert (await reload(Transaction, refund.offer_transaction_id)).status == TransactionStatus.PENDING

    async def test_second_sweep_finds_nothing(self, db_session, seed):
        # Given: a lapsed offer with nobody behind it
        _, event, _, tickets = await seed.sold_out_event()
        waiter = await seed.user()
        await seed.waitlist(waiter, event)
        await RefundService(db_session).self_refund(tickets[0].id, tickets[0].user_id)
        now = await offer_deadline(db_session, waiter, event) + timedelta(seconds=1)
        service = ExpirationService(db_session)

        # When
        first_pass = await service.run_expiration_sweep(now=now)
        second_pass = await service.run_expiration_sweep(now=now)

        # Then
        assert first_pass.cleaned_count == 1
        assert first_pass.reassigned_count == 0
        assert second_pass.cleaned_count == 0
        assert second_pass.reassigned_count == 0

    async def test_failure_on_one_offer_does_not_stop_the_pass(self, db_session, seed, monkeypatch):
        # Given: two returned tickets offered to two waiters
        _, event, _, tickets = await seed.sold_out_event()
        first, second = await seed.user(), await seed.user()
        await seed.waitlist(first, event, joined_ago=timedelta(minutes=2))
        await seed.waitlist(second, event, joined_ago=timedelta(minutes=1))
        refunds = [
            await RefundService(db_session).self_refund(ticket.id, ticket.user_id)
            for ticket in tickets
        ]
        broken_offer = refunds[0].offer_transaction_id
        now = await offer_deadline(db_session, second, event) + timedelta(seconds=1)

        service = ExpirationService(db_session)
        withdraw = service.offer_service.withdraw_offer

        async def flaky_withdraw(ticket, transaction, entry, status):
            if transaction.id == broken_offer:
                raise RuntimeError("lost connection")
            await withdraw(ticket, transaction, entry, status)

        monkeypatch.setattr(service.offer_service, "withdraw_offer", flaky_withdraw)

        # When
        result = await service.run_expiration_sweep(now=now)

        # Then
        assert result.failed_count == 1
        assert result.cleaned_count == 1
