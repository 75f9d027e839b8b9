"""
Accept and decline handling for outstanding waitlist offers.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Tuple

from sqlalchemy import select, update, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.ticket import Ticket, TicketStatus
from ..models.transaction import Transaction, TransactionStatus, PaymentMethod
from ..models.waitlist import WaitlistEntry
from ..config import get_settings
from ..utils.clock import utcnow
from ..utils.exceptions import (
    AuthorizationError,
    ConcurrencyError,
    OfferNotFoundError,
    ReservationExpiredError,
)
from ..utils.logging_config import log_business_event
from .inventory_service import InventoryService
from .offer_service import OfferService

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class AcceptResult:
    """Outcome of accepting an offer."""
    ticket: Ticket
    refunded_ticket_id: Optional[int] = None
    refund_amount: Decimal = Decimal("0.00")
    platform_fee: Decimal = Decimal("0.00")


@dataclass
class DeclineResult:
    """Outcome of declining an offer."""
    assigned_to_next: bool
    next_transaction_id: Optional[int] = None


def split_refund(price: Decimal, fee_rate: Decimal) -> Tuple[Decimal, Decimal]:
    """
    Split a ticket price into the refund owed and the platform fee kept.

    The refund is rounded half-up to cents and the fee is whatever remains,
    so the two always add up to the price.
    """
    refund = (price * (Decimal("1") - fee_rate)).quantize(CENTS, rounding=ROUND_HALF_UP)
    return refund, price - refund


class OfferResponseService:
    """Service finalizing or cancelling waitlist offers."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.inventory_service = InventoryService(session)
        self.offer_service = OfferService(session)

    async def accept_offer(
        self,
        transaction_id: int,
        user_id: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> AcceptResult:
        """
        Accept a waitlist offer and complete the ownership transfer.

        The reservation window is checked again here. An expired offer is
        rolled back exactly like the sweep does, cascaded to the next person,
        and reported as ReservationExpiredError.

        On success the transaction is ``completed`` and the ticket ``active``.
        If the slot came from a returned ticket, the oldest ``pending_return``
        ticket of the same event and type is refunded to its owner minus the
        platform fee, and counters stay as they are. Otherwise the accepted
        ticket is added to the sold count.

        Args:
            transaction_id: ID of the offer transaction
            user_id: Acting user, must be the offeree when given
            now: Reference time, defaults to the current time

        Returns:
            AcceptResult with the ticket and the refund breakdown

        Raises:
            OfferNotFoundError: When no outstanding offer matches
            AuthorizationError: When the acting user is not the offeree
            ConcurrencyError: When the offer is being processed elsewhere
            ReservationExpiredError: When the reservation window has lapsed
        """
        now = now or utcnow()
        logger.info(f"Accepting waitlist offer {transaction_id}")

        result: Optional[AcceptResult] = None
        try:
            ticket, transaction, entry = await self._load_offer(transaction_id, user_id)

            if entry is not None and entry.is_expired(now):
                await self.offer_service.withdraw_offer(
                    ticket, transaction, entry, TransactionStatus.EXPIRED
                )
            else:
                result = await self._complete_offer(ticket, transaction, entry)

            await self.session.commit()

        except Exception:
            await self.session.rollback()
            raise

        if result is None:
            log_business_event(
                "waitlist_offer_expired",
                {"transaction_id": transaction_id, "event_id": ticket.event_id, "on_accept": True},
                user_id=ticket.user_id
            )
            await self.offer_service.cascade(ticket.event_id, ticket.ticket_type_id)
            raise ReservationExpiredError(transaction_id, self.settings.waitlist_offer_window_minutes)

        await self.session.refresh(result.ticket)

        log_business_event(
            "waitlist_offer_accepted",
            {
                "transaction_id": transaction_id,
                "ticket_id": result.ticket.id,
                "event_id": result.ticket.event_id,
                "refunded_ticket_id": result.refunded_ticket_id,
                "refund_amount": str(result.refund_amount),
                "platform_fee": str(result.platform_fee),
            },
            user_id=result.ticket.user_id
        )
        return result

    async def decline_offer(self, transaction_id: int, user_id: Optional[int] = None) -> DeclineResult:
        """
        Decline a waitlist offer and pass the slot to the next person.

        The transaction is ``cancelled`` and the reserved ticket and the
        decliner's waitlist entry are deleted. The decliner is not re-queued.

        Raises:
            OfferNotFoundError: When no outstanding offer matches
            AuthorizationError: When the acting user is not the offeree
            ConcurrencyError: When the offer is being processed elsewhere
        """
        logger.info(f"Declining waitlist offer {transaction_id}")

        try:
            ticket, transaction, entry = await self._load_offer(transaction_id, user_id)
            await self.offer_service.withdraw_offer(
                ticket, transaction, entry, TransactionStatus.CANCELLED
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        log_business_event(
            "waitlist_offer_declined",
            {"transaction_id": transaction_id, "event_id": ticket.event_id},
            user_id=ticket.user_id
        )

        assignment = await self.offer_service.cascade(ticket.event_id, ticket.ticket_type_id)
        return DeclineResult(
            assigned_to_next=assignment.assigned,
            next_transaction_id=assignment.transaction_id
        )

    async def _load_offer(
        self,
        transaction_id: int,
        user_id: Optional[int]
    ) -> Tuple[Ticket, Transaction, Optional[WaitlistEntry]]:
        """Lock an outstanding offer and check the acting user."""
        offer = await self.offer_service.find_offer(transaction_id, lock=True)
        if offer is None:
            if await self.offer_service.find_offer(transaction_id) is not None:
                raise ConcurrencyError(f"Offer {transaction_id} is being processed, please retry")
            raise OfferNotFoundError(transaction_id)

        ticket, transaction, entry = offer
        if user_id is not None and transaction.user_id != user_id:
            raise AuthorizationError("This reservation belongs to another user")
        return offer

    async def _complete_offer(
        self,
        ticket: Ticket,
        transaction: Transaction,
        entry: Optional[WaitlistEntry]
    ) -> AcceptResult:
        """Finalize an offer inside the caller's unit of work."""
        completed = await self.session.execute(
            update(Transaction)
            .where(
                and_(
                    Transaction.id == transaction.id,
                    Transaction.status == TransactionStatus.PENDING
                )
            )
            .values(status=TransactionStatus.COMPLETED)
        )
        if completed.rowcount != 1:
            raise ConcurrencyError(f"Offer {transaction.id} was already resolved")

        await self.session.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id)
            .values(status=TicketStatus.ACTIVE)
        )

        result = AcceptResult(ticket=ticket)

        displaced = await self._find_displaced_ticket(ticket)
        if displaced is not None:
            original = await self.session.get(Transaction, displaced.transaction_id)
            price = original.total_price if original else Decimal("0.00")
            refund_amount, platform_fee = split_refund(price, self.settings.platform_fee_rate)

            await self.session.execute(
                update(Ticket)
                .where(Ticket.id == displaced.id)
                .values(status=TicketStatus.REFUNDED)
            )
            self.session.add(Transaction(
                user_id=displaced.user_id,
                total_price=-refund_amount,
                status=TransactionStatus.REFUNDED,
                payment_method=PaymentMethod.WAITLIST_RETURN
            ))

            result.refunded_ticket_id = displaced.id
            result.refund_amount = refund_amount
            result.platform_fee = platform_fee
            logger.info(
                f"Ticket {displaced.id} transferred to user {ticket.user_id}, "
                f"refunding {refund_amount} to user {displaced.user_id} (fee {platform_fee})"
            )
        else:
            # Slot came from an organizer refund, so the accepted ticket is new capacity use
            await self.inventory_service.increment_sold(ticket.ticket_type_id)

        if entry is not None:
            await self.session.execute(
                delete(WaitlistEntry).where(WaitlistEntry.id == entry.id)
            )

        return result

    async def _find_displaced_ticket(self, ticket: Ticket) -> Optional[Ticket]:
        """Lock the oldest returned ticket of the same event and type."""
        result = await self.session.execute(
            select(Ticket)
            .where(
                and_(
                    Ticket.event_id == ticket.event_id,
                    Ticket.ticket_type_id == ticket.ticket_type_id,
                    Ticket.status == TicketStatus.PENDING_RETURN
                )
            )
            .order_by(Ticket.issued_at, Ticket.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()
