"""
Waitlist service: the single FIFO queue per event.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Dict, Any, Set

from sqlalchemy import select, update, delete, and_, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.event import Event
from ..models.transaction import TransactionStatus
from ..models.user import User
from ..models.waitlist import WaitlistEntry
from ..config import get_settings
from ..utils.clock import utcnow, as_utc
from ..utils.exceptions import (
    AlreadyOnWaitlistError,
    AuthorizationError,
    EventEndedError,
    EventNotFoundError,
    EventNotSoldOutError,
    UserNotFoundError,
    WaitlistEntryNotFoundError,
)
from ..utils.logging_config import log_business_event

logger = logging.getLogger(__name__)


@dataclass
class JoinResult:
    """Outcome of joining a waitlist."""
    entry: Optional[WaitlistEntry] = None
    position: Optional[int] = None
    offered_immediately: bool = False
    transaction_id: Optional[int] = None


@dataclass
class QueuedEntry:
    """A waitlist entry annotated with its event-wide position."""
    entry: WaitlistEntry
    position: int


class WaitlistService:
    """Service for the per-event waitlist queue."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.settings = get_settings()

    async def join_waitlist(self, user_id: int, event_id: int) -> JoinResult:
        """
        Add a user to the waitlist for a sold-out event.

        When the event already holds a returned ticket that no outstanding
        offer covers, the offer engine runs straight away and the joiner may
        receive the offer immediately.

        Args:
            user_id: ID of the user joining the waitlist
            event_id: ID of the event to join waitlist for

        Returns:
            JoinResult with either the entry and its position, or the
            transaction of the immediate offer

        Raises:
            UserNotFoundError: When the user does not exist
            EventNotFoundError: When the event does not exist
            EventEndedError: When the event is over
            EventNotSoldOutError: When the event still has capacity
            AlreadyOnWaitlistError: When user is already on waitlist
        """
        logger.info(f"User {user_id} joining waitlist for event {event_id}")

        try:
            user = await self.session.get(User, user_id)
            if not user:
                raise UserNotFoundError(user_id)

            event = await self.session.get(Event, event_id, populate_existing=True)
            if not event:
                raise EventNotFoundError(event_id)

            if utcnow() > as_utc(event.ends_at):
                raise EventEndedError(event_id)

            if not event.is_sold_out:
                raise EventNotSoldOutError(
                    event_id,
                    available=event.total_tickets - event.tickets_sold,
                    message="Event has available tickets. Please purchase directly."
                )

            if await self.get_entry(user_id, event_id):
                raise AlreadyOnWaitlistError(user_id, event_id)

            entry = WaitlistEntry(user_id=user_id, event_id=event_id, joined_at=utcnow())
            self.session.add(entry)
            await self.session.commit()

        except IntegrityError:
            # Lost a race against a concurrent join for the same pair
            await self.session.rollback()
            raise AlreadyOnWaitlistError(user_id, event_id)
        except Exception:
            await self.session.rollback()
            raise

        log_business_event(
            "waitlist_joined",
            {"event_id": event_id, "entry_id": entry.id},
            user_id=user_id
        )

        offer = await self._offer_unpromised_return(event_id)
        if offer is not None and offer.assigned and offer.user_id == user_id:
            logger.info(f"User {user_id} received immediate offer {offer.transaction_id}")
            return JoinResult(offered_immediately=True, transaction_id=offer.transaction_id)

        await self.session.refresh(entry)
        position = await self.get_position(user_id, event_id)
        logger.info(f"User {user_id} added to waitlist for event {event_id} at position {position}")
        return JoinResult(entry=entry, position=position)

    async def leave_waitlist(self, entry_id: int, requested_by: Optional[int] = None) -> WaitlistEntry:
        """
        Remove a waitlist entry by ID.

        Args:
            entry_id: ID of the entry to remove
            requested_by: Acting user; must own the entry when given

        Returns:
            The deleted entry

        Raises:
            WaitlistEntryNotFoundError: When the entry does not exist
            AuthorizationError: When the acting user does not own the entry
        """
        entry = await self.session.get(WaitlistEntry, entry_id)
        if not entry:
            raise WaitlistEntryNotFoundError(entry_id=entry_id)

        if requested_by is not None and entry.user_id != requested_by:
            raise AuthorizationError("You can only remove your own waitlist entries")

        return await self._remove_entry(entry)

    async def leave_by_user(self, event_id: int, user_id: int) -> WaitlistEntry:
        """
        Remove the waitlist entry of a user for an event.

        Raises:
            WaitlistEntryNotFoundError: When the user is not on the waitlist
        """
        entry = await self.get_entry(user_id, event_id)
        if not entry:
            raise WaitlistEntryNotFoundError(
                f"User {user_id} is not on the waitlist for event {event_id}"
            )
        return await self._remove_entry(entry)

    async def get_entry(self, user_id: int, event_id: int) -> Optional[WaitlistEntry]:
        """Get the waitlist entry of a user for an event, if any."""
        result = await self.session.execute(
            select(WaitlistEntry).where(
                and_(
                    WaitlistEntry.user_id == user_id,
                    WaitlistEntry.event_id == event_id
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_position(self, user_id: int, event_id: int) -> int:
        """
        Get the 1-based position of a user in an event's waitlist.

        Ranking is by join time across the whole event, ties broken by
        entry ID.

        Raises:
            WaitlistEntryNotFoundError: When the user is not on the waitlist
        """
        entry = await self.get_entry(user_id, event_id)
        if not entry:
            raise WaitlistEntryNotFoundError(
                f"User {user_id} is not on the waitlist for event {event_id}"
            )
        return await self._rank(entry)

    async def claim_next_unclaimed(
        self,
        event_id: int,
        now: Optional[datetime] = None
    ) -> Optional[WaitlistEntry]:
        """
        Claim the earliest-joined unclaimed entry of an event.

        Candidates are read with ``FOR UPDATE SKIP LOCKED`` and stamped with a
        conditional update on ``offered_at IS NULL``, so a row is claimed by
        exactly one caller. A candidate lost to a concurrent claimant is
        skipped in favour of the next one. Does not commit.

        Args:
            event_id: Event whose queue to claim from
            now: Offer timestamp, defaults to the current time

        Returns:
            The claimed entry, or None when nobody is waiting
        """
        now = now or utcnow()
        expires_at = now + timedelta(minutes=self.settings.waitlist_offer_window_minutes)
        skipped: Set[int] = set()

        while True:
            query = (
                select(WaitlistEntry)
                .where(
                    and_(
                        WaitlistEntry.event_id == event_id,
                        WaitlistEntry.offered_at.is_(None)
                    )
                )
                .order_by(WaitlistEntry.joined_at, WaitlistEntry.id)
                .limit(1)
                .with_for_update(skip_locked=True)
                .execution_options(populate_existing=True)
            )
            if skipped:
                query = query.where(WaitlistEntry.id.notin_(list(skipped)))

            entry = (await self.session.execute(query)).scalar_one_or_none()
            if entry is None:
                return None

            if await self.try_claim(entry.id, now, expires_at):
                await self.session.refresh(entry)
                logger.debug(f"Claimed waitlist entry {entry.id} for event {event_id}")
                return entry

            logger.debug(f"Waitlist entry {entry.id} was claimed concurrently, trying next")
            skipped.add(entry.id)

    async def try_claim(self, entry_id: int, now: datetime, expires_at: datetime) -> bool:
        """Stamp an entry's offer window if it is still unclaimed."""
        result = await self.session.execute(
            update(WaitlistEntry)
            .where(
                and_(
                    WaitlistEntry.id == entry_id,
                    WaitlistEntry.offered_at.is_(None)
                )
            )
            .values(offered_at=now, reservation_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_event_waitlist(self, event_id: int) -> List[QueuedEntry]:
        """
        List an event's waitlist in queue order.

        Raises:
            EventNotFoundError: When the event does not exist
        """
        event = await self.session.get(Event, event_id)
        if not event:
            raise EventNotFoundError(event_id)

        result = await self.session.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.event_id == event_id)
            .order_by(WaitlistEntry.joined_at, WaitlistEntry.id)
        )
        return [
            QueuedEntry(entry=entry, position=index)
            for index, entry in enumerate(result.scalars().all(), start=1)
        ]

    async def list_user_waitlist(self, user_id: int) -> List[QueuedEntry]:
        """List every waitlist entry of a user with its position in that event's queue."""
        result = await self.session.execute(
            select(WaitlistEntry)
            .where(WaitlistEntry.user_id == user_id)
            .order_by(WaitlistEntry.joined_at, WaitlistEntry.id)
        )
        return [
            QueuedEntry(entry=entry, position=await self._rank(entry))
            for entry in result.scalars().all()
        ]

    async def get_waitlist_stats(self, event_id: int) -> Dict[str, Any]:
        """Count waiting and claimed entries of an event."""
        result = await self.session.execute(
            select(
                func.count(WaitlistEntry.id).label("total"),
                func.count(WaitlistEntry.offered_at).label("claimed"),
            )
            .where(WaitlistEntry.event_id == event_id)
        )
        row = result.one()
        return {
            "event_id": event_id,
            "total_entries": row.total,
            "claimed_entries": row.claimed,
            "waiting_entries": row.total - row.claimed,
        }

    async def _rank(self, entry: WaitlistEntry) -> int:
        """Compute the 1-based rank of an entry by join time within its event."""
        result = await self.session.execute(
            select(func.count(WaitlistEntry.id)).where(
                and_(
                    WaitlistEntry.event_id == entry.event_id,
                    or_(
                        WaitlistEntry.joined_at < entry.joined_at,
                        and_(
                            WaitlistEntry.joined_at == entry.joined_at,
                            WaitlistEntry.id <= entry.id
                        )
                    )
                )
            )
        )
        return result.scalar_one()

    async def _remove_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        """
        Delete an entry, withdrawing any outstanding offer made against it.

        The withdrawn slot is cascaded to the next person as a separate unit
        after the removal has been committed.
        """
        from .offer_service import OfferService

        offer_service = OfferService(self.session)
        user_id, event_id = entry.user_id, entry.event_id
        freed_ticket_type_id = None

        try:
            offer = await offer_service.find_outstanding_offer(user_id, event_id)
            if offer is not None:
                ticket, transaction = offer
                freed_ticket_type_id = ticket.ticket_type_id
                await offer_service.withdraw_offer(
                    ticket, transaction, entry, TransactionStatus.CANCELLED
                )
            else:
                await self.session.execute(
                    delete(WaitlistEntry).where(WaitlistEntry.id == entry.id)
                )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        log_business_event(
            "waitlist_left",
            {"event_id": event_id, "entry_id": entry.id, "offer_withdrawn": freed_ticket_type_id is not None},
            user_id=user_id
        )

        if freed_ticket_type_id is not None:
            await offer_service.cascade(event_id, freed_ticket_type_id)

        return entry

    async def _offer_unpromised_return(self, event_id: int):
        """Run the offer engine when a returned ticket looks unpromised.

        The lookup is unlocked; ``cascade`` re-checks the slot under the event lock.
        """
        from .offer_service import OfferService

        offer_service = OfferService(self.session)
        try:
            ticket_type_id = await offer_service.find_unpromised_return(event_id)
        except Exception as e:
            logger.warning(f"Failed to look up returned tickets for event {event_id}: {e}")
            await self.session.rollback()
            return None

        if ticket_type_id is None:
            return None
        return await offer_service.cascade(event_id, ticket_type_id)
