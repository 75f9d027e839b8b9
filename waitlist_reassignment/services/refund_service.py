"""
Return and refund coordination for tickets, with waitlist hand-off.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.event import Event
from ..models.ticket import Ticket, TicketStatus
from ..models.transaction import Transaction, TransactionStatus
from ..utils.exceptions import (
    AuthorizationError,
    ConcurrencyError,
    EventNotFoundError,
    EventNotSoldOutError,
    InvalidTicketStateError,
    TicketNotFoundError,
)
from ..utils.logging_config import log_business_event
from .inventory_service import InventoryService
from .offer_service import OfferService

logger = logging.getLogger(__name__)


@dataclass
class SelfRefundResult:
    """Outcome of a ticket owner returning a ticket."""
    ticket: Ticket
    waitlist_assigned: bool
    offer_transaction_id: Optional[int] = None


@dataclass
class OrganizerRefundResult:
    """Outcome of an organizer refunding a ticket."""
    ticket_id: int
    event_id: int
    tickets_available: int
    waitlist_assigned: bool
    offer_transaction_id: Optional[int] = None


class RefundService:
    """Service for self-service returns and organizer refunds."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.inventory_service = InventoryService(session)
        self.offer_service = OfferService(session)

    async def self_refund(self, ticket_id: int, caller_id: int) -> SelfRefundResult:
        """
        Return a ticket of a sold-out event to the waitlist.

        The ticket becomes ``pending_return``; the owner keeps it until a
        waitlisted user accepts the resulting offer. Sold counters do not
        change.

        Args:
            ticket_id: ID of the ticket to return
            caller_id: ID of the acting user, must own the ticket

        Returns:
            SelfRefundResult with the ticket and whether an offer was made

        Raises:
            TicketNotFoundError: When the ticket does not exist
            AuthorizationError: When the caller does not own the ticket
            InvalidTicketStateError: When the ticket is not active
            EventNotSoldOutError: When the event still has capacity
        """
        logger.info(f"User {caller_id} returning ticket {ticket_id}")

        try:
            ticket = await self._get_ticket_for_update(ticket_id)

            if ticket.user_id != caller_id:
                raise AuthorizationError("You can only return your own tickets")

            if ticket.status != TicketStatus.ACTIVE:
                raise InvalidTicketStateError(ticket_id, ticket.status.value, TicketStatus.ACTIVE.value)

            event = await self._get_event(ticket.event_id)
            if not event.is_sold_out:
                raise EventNotSoldOutError(
                    event.id,
                    available=event.total_tickets - event.tickets_sold,
                    message="Tickets can only be returned for sold-out events"
                )

            await self._transition(ticket, TicketStatus.ACTIVE, TicketStatus.PENDING_RETURN)
            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        log_business_event(
            "ticket_returned",
            {"ticket_id": ticket_id, "event_id": ticket.event_id},
            user_id=caller_id
        )

        assignment = await self.offer_service.cascade(ticket.event_id, ticket.ticket_type_id)
        await self.session.refresh(ticket)

        return SelfRefundResult(
            ticket=ticket,
            waitlist_assigned=assignment.assigned,
            offer_transaction_id=assignment.transaction_id
        )

    async def organizer_refund(self, ticket_id: int, caller_id: int) -> OrganizerRefundResult:
        """
        Refund a ticket immediately on behalf of the event organizer.

        The ticket and its transaction become ``refunded`` and the sold
        counters drop by one. The freed slot goes to the waitlist only when
        the event was sold out before the refund.

        Args:
            ticket_id: ID of the ticket to refund
            caller_id: ID of the acting user, must organize the event

        Returns:
            OrganizerRefundResult with the remaining availability

        Raises:
            TicketNotFoundError: When the ticket does not exist
            AuthorizationError: When the caller is not the organizer
            InvalidTicketStateError: When the ticket is not active
        """
        logger.info(f"Organizer {caller_id} refunding ticket {ticket_id}")

        try:
            ticket = await self._get_ticket_for_update(ticket_id)
            event = await self._get_event(ticket.event_id)

            if event.organizer_id != caller_id:
                raise AuthorizationError("Only the event organizer can refund tickets")

            if ticket.status != TicketStatus.ACTIVE:
                raise InvalidTicketStateError(ticket_id, ticket.status.value, TicketStatus.ACTIVE.value)

            was_sold_out = event.is_sold_out

            await self._transition(ticket, TicketStatus.ACTIVE, TicketStatus.REFUNDED)
            await self.inventory_service.decrement_sold(ticket.ticket_type_id)
            await self.session.execute(
                update(Transaction)
                .where(Transaction.id == ticket.transaction_id)
                .values(status=TransactionStatus.REFUNDED)
            )
            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        log_business_event(
            "ticket_refunded_by_organizer",
            {"ticket_id": ticket_id, "event_id": event.id, "was_sold_out": was_sold_out},
            user_id=caller_id
        )

        waitlist_assigned = False
        offer_transaction_id = None
        if was_sold_out:
            assignment = await self.offer_service.cascade(event.id, ticket.ticket_type_id)
            waitlist_assigned = assignment.assigned
            offer_transaction_id = assignment.transaction_id

        await self.session.refresh(event)
        return OrganizerRefundResult(
            ticket_id=ticket_id,
            event_id=event.id,
            tickets_available=event.total_tickets - event.tickets_sold,
            waitlist_assigned=waitlist_assigned,
            offer_transaction_id=offer_transaction_id
        )

    async def _get_ticket_for_update(self, ticket_id: int) -> Ticket:
        """Load and lock a ticket."""
        result = await self.session.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def _get_event(self, event_id: int) -> Event:
        """Load an event with fresh counters."""
        result = await self.session.execute(
            select(Event)
            .where(Event.id == event_id)
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if not event:
            raise EventNotFoundError(event_id)
        return event

    async def _transition(self, ticket: Ticket, current: TicketStatus, target: TicketStatus) -> None:
        """Move a ticket between statuses only if it is still in ``current``."""
        result = await self.session.execute(
            update(Ticket)
            .where(and_(Ticket.id == ticket.id, Ticket.status == current))
            .values(status=target)
        )
        if result.rowcount != 1:
            raise ConcurrencyError(f"Ticket {ticket.id} was modified by another transaction")
