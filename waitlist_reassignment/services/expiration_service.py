"""
Expiration sweep for waitlist offers whose reservation window has lapsed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.ticket import Ticket, TicketStatus
from ..models.transaction import Transaction, TransactionStatus, PaymentMethod
from ..models.waitlist import WaitlistEntry
from ..config import get_settings
from ..utils.clock import utcnow
from ..utils.exceptions import ConcurrencyError
from ..utils.logging_config import log_business_event
from .offer_service import OfferService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counts from one expiration sweep pass."""
    cleaned_count: int = 0
    reassigned_count: int = 0
    failed_count: int = 0


class ExpirationService:
    """Service reclaiming expired waitlist offers and re-offering their slots."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()
        self.offer_service = OfferService(session)

    async def run_expiration_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Expire every outstanding offer past its reservation window.

        Each expired offer is processed in its own unit of work: the
        transaction becomes ``expired``, the reserved ticket and the waitlist
        entry are deleted, then the slot is offered to the next person.
        Rows locked by a concurrent accept or decline are skipped, and a
        failure on one row is logged without stopping the pass.

        Args:
            now: Reference time, defaults to the current time

        Returns:
            SweepResult with the number of offers cleaned, re-offered and failed
        """
        now = now or utcnow()
        result = SweepResult()

        candidates = await self._find_expired_offers(now)
        if not candidates:
            logger.debug("No expired waitlist offers found")
            return result

        logger.info(f"Found {len(candidates)} expired waitlist offers")

        for transaction_id in candidates:
            try:
                freed = await self._expire_offer(transaction_id, now)
            except Exception as e:
                await self.session.rollback()
                result.failed_count += 1
                logger.error(f"Failed to expire waitlist offer {transaction_id}: {e}", exc_info=True)
                continue

            if freed is None:
                continue

            result.cleaned_count += 1
            event_id, ticket_type_id = freed
            assignment = await self.offer_service.cascade(event_id, ticket_type_id)
            if assignment.assigned:
                result.reassigned_count += 1

        logger.info(
            f"Expiration sweep finished: {result.cleaned_count} cleaned, "
            f"{result.reassigned_count} re-offered, {result.failed_count} failed"
        )
        return result

    async def _find_expired_offers(self, now: datetime) -> List[int]:
        """Collect the transaction IDs of outstanding offers whose window has lapsed."""
        try:
            result = await self.session.execute(
                select(Transaction.id)
                .join(Ticket, Ticket.transaction_id == Transaction.id)
                .join(
                    WaitlistEntry,
                    and_(
                        WaitlistEntry.user_id == Ticket.user_id,
                        WaitlistEntry.event_id == Ticket.event_id
                    )
                )
                .where(
                    and_(
                        Ticket.status == TicketStatus.RESERVED,
                        Transaction.status == TransactionStatus.PENDING,
                        Transaction.payment_method == PaymentMethod.WAITLIST,
                        WaitlistEntry.offered_at.is_not(None),
                        WaitlistEntry.reservation_expires_at < now
                    )
                )
                .order_by(WaitlistEntry.reservation_expires_at, Transaction.id)
                .limit(self.settings.waitlist_sweep_batch_size)
            )
            transaction_ids = list(result.scalars().all())
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        return transaction_ids

    async def _expire_offer(self, transaction_id: int, now: datetime) -> Optional[Tuple[int, int]]:
        """
        Expire one offer in its own unit of work.

        Returns:
            (event_id, ticket_type_id) of the freed slot, or None when the
            offer was resolved or locked by someone else in the meantime
        """
        offer = await self.offer_service.find_offer(transaction_id, lock=True)
        if offer is None:
            await self.session.commit()
            logger.debug(f"Offer {transaction_id} already resolved or locked, skipping")
            return None

        ticket, transaction, entry = offer
        if entry is None or not entry.is_expired(now):
            await self.session.commit()
            return None

        try:
            await self.offer_service.withdraw_offer(ticket, transaction, entry, TransactionStatus.EXPIRED)
        except ConcurrencyError:
            await self.session.rollback()
            logger.debug(f"Offer {transaction_id} resolved concurrently, skipping")
            return None

        await self.session.commit()

        log_business_event(
            "waitlist_offer_expired",
            {
                "event_id": ticket.event_id,
                "ticket_type_id": ticket.ticket_type_id,
                "transaction_id": transaction_id,
            },
            user_id=ticket.user_id
        )
        return ticket.event_id, ticket.ticket_type_id
