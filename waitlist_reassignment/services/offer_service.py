"""
Reservation offer engine: promotes the front of a waitlist onto a freed ticket slot.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import select, update, delete, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.event import Event
from ..models.ticket import Ticket, TicketStatus
from ..models.ticket_type import TicketType
from ..models.transaction import Transaction, TransactionStatus, PaymentMethod
from ..models.waitlist import WaitlistEntry
from ..config import get_settings
from ..utils.clock import utcnow
from ..utils.exceptions import ConcurrencyError
from ..utils.logging_config import log_business_event
from .waitlist_service import WaitlistService

logger = logging.getLogger(__name__)


@dataclass
class OfferAssignment:
    """Result of trying to hand a freed slot to the waitlist."""
    assigned: bool
    user_id: Optional[int] = None
    transaction_id: Optional[int] = None
    ticket_id: Optional[int] = None
    expires_at: Optional[datetime] = None


class OfferService:
    """
    Service creating and withdrawing waitlist offers.

    An offer is a claimed waitlist entry plus a ``pending`` transaction with
    payment method ``waitlist`` and a ``reserved`` ticket pointing at it.
    Creating an offer never touches sold counters.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.waitlist_service = WaitlistService(session)

    async def assign_ticket_to_waitlist(
        self,
        event_id: int,
        ticket_type_id: int,
        only_if_open: bool = False
    ) -> OfferAssignment:
        """
        Offer a freed ticket slot to the next person on the event's waitlist.

        The queue is event-wide, so the front of the queue is offered the slot
        whatever its ticket type. Runs as its own unit of work and commits.

        Args:
            event_id: Event the slot belongs to
            ticket_type_id: Ticket type of the freed slot
            only_if_open: Take the event lock first and offer only while the
                ticket type has more returned or unsold tickets than
                outstanding offers

        Returns:
            OfferAssignment describing the offer, ``assigned=False`` when
            nobody is waiting or the slot is already promised
        """
        now = utcnow()

        try:
            if only_if_open:
                await self._lock_event(event_id)
                if not await self.has_open_slot(ticket_type_id):
                    await self.session.commit()
                    logger.info(f"Every free slot of ticket type {ticket_type_id} is already offered")
                    return OfferAssignment(assigned=False)

            entry = await self.waitlist_service.claim_next_unclaimed(event_id, now=now)
            if entry is None:
                await self.session.commit()
                logger.info(f"No unclaimed waitlist entries for event {event_id}")
                return OfferAssignment(assigned=False)

            price = await self._get_price(ticket_type_id)

            transaction = Transaction(
                user_id=entry.user_id,
                total_price=price,
                status=TransactionStatus.PENDING,
                payment_method=PaymentMethod.WAITLIST
            )
            self.session.add(transaction)
            await self.session.flush()

            ticket = Ticket(
                user_id=entry.user_id,
                event_id=event_id,
                ticket_type_id=ticket_type_id,
                transaction_id=transaction.id,
                status=TicketStatus.RESERVED,
                issued_at=now
            )
            self.session.add(ticket)
            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        log_business_event(
            "waitlist_offer_created",
            {
                "event_id": event_id,
                "ticket_type_id": ticket_type_id,
                "transaction_id": transaction.id,
                "ticket_id": ticket.id,
                "expires_at": entry.reservation_expires_at,
            },
            user_id=entry.user_id
        )
        logger.info(
            f"Offered ticket type {ticket_type_id} of event {event_id} to user {entry.user_id} "
            f"(transaction {transaction.id})"
        )

        return OfferAssignment(
            assigned=True,
            user_id=entry.user_id,
            transaction_id=transaction.id,
            ticket_id=ticket.id,
            expires_at=entry.reservation_expires_at
        )

    async def cascade(self, event_id: int, ticket_type_id: int) -> OfferAssignment:
        """
        Best-effort follow-up offer after a primary state change has committed.

        The slot is re-checked under the event lock, so two follow-ups racing
        for the same returned ticket produce one offer. A failure is logged
        and reported as ``assigned=False`` rather than raised, so it never
        undoes the change that freed the slot.
        """
        try:
            return await self.assign_ticket_to_waitlist(event_id, ticket_type_id, only_if_open=True)
        except Exception as e:
            logger.error(
                f"Failed to offer ticket type {ticket_type_id} of event {event_id} "
                f"to the waitlist: {e}",
                exc_info=True
            )
            return OfferAssignment(assigned=False)

    async def withdraw_offer(
        self,
        ticket: Ticket,
        transaction: Transaction,
        entry: Optional[WaitlistEntry],
        status: TransactionStatus
    ) -> None:
        """
        Roll back an outstanding offer without committing.

        The transaction moves from ``pending`` to ``status`` only if it is
        still pending, then the reserved ticket and the claimed entry are
        deleted.

        Raises:
            ConcurrencyError: When another caller resolved the offer first
        """
        result = await self.session.execute(
            update(Transaction)
            .where(
                and_(
                    Transaction.id == transaction.id,
                    Transaction.status == TransactionStatus.PENDING
                )
            )
            .values(status=status)
        )
        if result.rowcount != 1:
            raise ConcurrencyError(f"Offer {transaction.id} was already resolved")

        await self.session.execute(delete(Ticket).where(Ticket.id == ticket.id))
        if entry is not None:
            await self.session.execute(
                delete(WaitlistEntry).where(WaitlistEntry.id == entry.id)
            )

        logger.info(f"Withdrew offer {transaction.id} as {status.value}")

    async def find_offer(
        self,
        transaction_id: int,
        lock: bool = False
    ) -> Optional[Tuple[Ticket, Transaction, Optional[WaitlistEntry]]]:
        """
        Load an outstanding offer by its transaction.

        Args:
            transaction_id: ID of the offer transaction
            lock: Lock the ticket and transaction rows, skipping them when
                another caller holds them

        Returns:
            (reserved ticket, pending transaction, waitlist entry or None),
            or None when no outstanding offer matches
        """
        query = (
            select(Ticket, Transaction)
            .join(Transaction, Ticket.transaction_id == Transaction.id)
            .where(
                and_(
                    Transaction.id == transaction_id,
                    Transaction.status == TransactionStatus.PENDING,
                    Transaction.payment_method == PaymentMethod.WAITLIST,
                    Ticket.status == TicketStatus.RESERVED
                )
            )
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update(skip_locked=True)

        row = (await self.session.execute(query)).first()
        if row is None:
            return None

        ticket, transaction = row
        entry = await self.waitlist_service.get_entry(ticket.user_id, ticket.event_id)
        return ticket, transaction, entry

    async def find_outstanding_offer(self, user_id: int, event_id: int) -> Optional[Tuple[Ticket, Transaction]]:
        """Find the reserved ticket and pending transaction a user holds for an event."""
        result = await self.session.execute(
            select(Ticket, Transaction)
            .join(Transaction, Ticket.transaction_id == Transaction.id)
            .where(
                and_(
                    Ticket.user_id == user_id,
                    Ticket.event_id == event_id,
                    Ticket.status == TicketStatus.RESERVED,
                    Transaction.status == TransactionStatus.PENDING,
                    Transaction.payment_method == PaymentMethod.WAITLIST
                )
            )
            .order_by(Ticket.id)
            .limit(1)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def find_unpromised_return(self, event_id: int) -> Optional[int]:
        """
        Find a ticket type holding a returned ticket not yet covered by an offer.

        Returned (``pending_return``) tickets and outstanding offers are
        counted per ticket type; the first type, by its oldest return, with
        more returns than offers is reported.

        Returns:
            The ticket type ID, or None
        """
        returns = await self.session.execute(
            select(
                Ticket.ticket_type_id,
                func.count(Ticket.id).label("returned"),
                func.min(Ticket.issued_at).label("oldest")
            )
            .where(
                and_(
                    Ticket.event_id == event_id,
                    Ticket.status == TicketStatus.PENDING_RETURN
                )
            )
            .group_by(Ticket.ticket_type_id)
            .order_by(func.min(Ticket.issued_at), Ticket.ticket_type_id)
        )
        returned_by_type = [(row.ticket_type_id, row.returned) for row in returns]
        if not returned_by_type:
            return None

        offers = await self.session.execute(
            select(Ticket.ticket_type_id, func.count(Ticket.id).label("offered"))
            .join(Transaction, Ticket.transaction_id == Transaction.id)
            .where(
                and_(
                    Ticket.event_id == event_id,
                    Ticket.status == TicketStatus.RESERVED,
                    Transaction.status == TransactionStatus.PENDING
                )
            )
            .group_by(Ticket.ticket_type_id)
        )
        offered_by_type = {row.ticket_type_id: row.offered for row in offers}

        for ticket_type_id, returned in returned_by_type:
            if returned > offered_by_type.get(ticket_type_id, 0):
                return ticket_type_id
        return None

    async def has_open_slot(self, ticket_type_id: int) -> bool:
        """Whether returned plus unsold tickets of a type outnumber its outstanding offers."""
        ticket_type = (await self.session.execute(
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if ticket_type is None:
            return False

        returned = (await self.session.execute(
            select(func.count(Ticket.id)).where(
                and_(
                    Ticket.ticket_type_id == ticket_type_id,
                    Ticket.status == TicketStatus.PENDING_RETURN
                )
            )
        )).scalar_one()
        offered = (await self.session.execute(
            select(func.count(Ticket.id))
            .join(Transaction, Ticket.transaction_id == Transaction.id)
            .where(
                and_(
                    Ticket.ticket_type_id == ticket_type_id,
                    Ticket.status == TicketStatus.RESERVED,
                    Transaction.status == TransactionStatus.PENDING
                )
            )
        )).scalar_one()

        unsold = max(ticket_type.total_tickets - ticket_type.tickets_sold, 0)
        return returned + unsold > offered

    async def _lock_event(self, event_id: int) -> None:
        """Hold the event row until the unit commits.

        A write rather than ``FOR UPDATE`` so SQLite serializes too.
        """
        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    async def _get_price(self, ticket_type_id: int) -> Decimal:
        """Current price of a ticket type, zero when it cannot be found."""
        ticket_type = await self.session.get(TicketType, ticket_type_id)
        if ticket_type is None:
            logger.warning(f"Ticket type {ticket_type_id} not found, offering at zero price")
            return Decimal("0.00")
        return ticket_type.price
