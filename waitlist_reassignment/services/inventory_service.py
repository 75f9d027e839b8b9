"""
Inventory ledger: ticket-type capacity, sold counters and event aggregates.
"""

import logging
from typing import Any, Dict, List

from sqlalchemy import case, select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.event import Event
from ..models.ticket import Ticket, SOLD_TICKET_STATUSES
from ..models.ticket_type import TicketType
from ..utils.exceptions import EventNotFoundError, TicketTypeNotFoundError

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Service owning the sold counters of ticket types and events.

    Event-level ``total_tickets`` and ``tickets_sold`` are never adjusted by
    delta. Every write to a ticket type is followed by a recomputation of its
    event's sums from the ticket-type rows in the same transaction. None of
    the methods commit; the caller owns the unit of work.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_ticket_type(self, ticket_type_id: int) -> TicketType:
        """Load a ticket type or raise TicketTypeNotFoundError."""
        ticket_type = await self.session.get(TicketType, ticket_type_id)
        if not ticket_type:
            raise TicketTypeNotFoundError(ticket_type_id)
        return ticket_type

    async def is_sold_out(self, ticket_type_id: int) -> bool:
        """Check whether the ticket type has no remaining capacity."""
        result = await self.session.execute(
            select(TicketType.tickets_sold, TicketType.total_tickets)
            .where(TicketType.id == ticket_type_id)
        )
        row = result.one_or_none()
        if row is None:
            raise TicketTypeNotFoundError(ticket_type_id)
        return row.tickets_sold >= row.total_tickets

    async def is_event_sold_out(self, event_id: int) -> bool:
        """Check whether the event aggregate has no remaining capacity."""
        result = await self.session.execute(
            select(Event.tickets_sold, Event.total_tickets).where(Event.id == event_id)
        )
        row = result.one_or_none()
        if row is None:
            raise EventNotFoundError(event_id)
        return row.tickets_sold >= row.total_tickets

    async def increment_sold(self, ticket_type_id: int, quantity: int = 1) -> TicketType:
        """
        Add ``quantity`` units to a ticket type's sold count.

        Args:
            ticket_type_id: Ticket type to update
            quantity: Units to add

        Returns:
            The refreshed ticket type
        """
        return await self._adjust_sold(ticket_type_id, quantity)

    async def decrement_sold(self, ticket_type_id: int, quantity: int = 1) -> TicketType:
        """
        Remove ``quantity`` units from a ticket type's sold count, never below zero.

        Args:
            ticket_type_id: Ticket type to update
            quantity: Units to remove

        Returns:
            The refreshed ticket type
        """
        return await self._adjust_sold(ticket_type_id, -quantity)

    async def recount(self, ticket_type_id: int) -> TicketType:
        """
        Recompute a ticket type's sold count from its ticket rows.

        Tickets in a status that occupies capacity (active, pending_return)
        are counted. The event aggregate is recomputed afterwards.
        """
        ticket_type = await self.get_ticket_type(ticket_type_id)
        actual = await self._count_sold_tickets(ticket_type_id)

        if actual != ticket_type.tickets_sold:
            logger.warning(
                f"Ticket type {ticket_type_id} sold count drifted: "
                f"stored {ticket_type.tickets_sold}, actual {actual}"
            )

        await self.session.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .values(tickets_sold=actual)
        )
        await self.sync_event_totals(ticket_type.event_id)
        await self.session.refresh(ticket_type)
        return ticket_type

    async def sync_event_totals(self, event_id: int) -> Event:
        """Recompute an event's total and sold counts as sums over its ticket types."""
        totals = (
            select(
                func.coalesce(func.sum(TicketType.total_tickets), 0).label("total"),
                func.coalesce(func.sum(TicketType.tickets_sold), 0).label("sold"),
            )
            .where(TicketType.event_id == event_id)
        )
        row = (await self.session.execute(totals)).one()

        await self.session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(total_tickets=row.total, tickets_sold=row.sold)
        )

        event = await self.session.get(Event, event_id)
        if not event:
            raise EventNotFoundError(event_id)
        await self.session.refresh(event)
        return event

    async def sync_all(self) -> Dict[str, int]:
        """
        Recount every ticket type and recompute every event aggregate.

        Returns:
            Number of ticket types and events processed
        """
        type_ids = (await self.session.execute(select(TicketType.id))).scalars().all()
        for ticket_type_id in type_ids:
            actual = await self._count_sold_tickets(ticket_type_id)
            await self.session.execute(
                update(TicketType)
                .where(TicketType.id == ticket_type_id)
                .values(tickets_sold=actual)
            )

        event_ids = (await self.session.execute(select(Event.id))).scalars().all()
        for event_id in event_ids:
            await self.sync_event_totals(event_id)

        logger.info(f"Synchronized {len(type_ids)} ticket types across {len(event_ids)} events")
        return {"ticket_types": len(type_ids), "events": len(event_ids)}

    async def audit_event(self, event_id: int) -> Dict[str, Any]:
        """
        Compare stored sold counts with actual ticket rows for an event.

        Returns:
            Event totals plus one row per ticket type with stored and actual
            sold counts
        """
        event = await self.session.get(Event, event_id)
        if not event:
            raise EventNotFoundError(event_id)

        result = await self.session.execute(
            select(TicketType)
            .where(TicketType.event_id == event_id)
            .order_by(TicketType.id)
        )

        ticket_types: List[Dict[str, Any]] = []
        for ticket_type in result.scalars().all():
            actual = await self._count_sold_tickets(ticket_type.id)
            ticket_types.append({
                "ticket_type_id": ticket_type.id,
                "type": ticket_type.type,
                "total_tickets": ticket_type.total_tickets,
                "stored_sold": ticket_type.tickets_sold,
                "actual_sold": actual,
                "in_sync": actual == ticket_type.tickets_sold,
            })

        return {
            "event_id": event.id,
            "total_tickets": event.total_tickets,
            "tickets_sold": event.tickets_sold,
            "ticket_types": ticket_types,
            "in_sync": all(row["in_sync"] for row in ticket_types)
            and event.tickets_sold == sum(row["stored_sold"] for row in ticket_types)
            and event.total_tickets == sum(row["total_tickets"] for row in ticket_types),
        }

    async def _adjust_sold(self, ticket_type_id: int, delta: int) -> TicketType:
        """Apply a sold-count change to one ticket type and resync its event."""
        ticket_type = await self.get_ticket_type(ticket_type_id)

        # Applied in SQL so concurrent writers never overwrite each other
        adjusted = TicketType.tickets_sold + delta
        await self.session.execute(
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .values(tickets_sold=case((adjusted < 0, 0), else_=adjusted))
            .execution_options(synchronize_session=False)
        )
        await self.sync_event_totals(ticket_type.event_id)
        await self.session.refresh(ticket_type)

        logger.debug(
            f"Ticket type {ticket_type_id} sold count adjusted by {delta} "
            f"to {ticket_type.tickets_sold}"
        )
        return ticket_type

    async def _count_sold_tickets(self, ticket_type_id: int) -> int:
        """Count tickets of a type that occupy capacity."""
        result = await self.session.execute(
            select(func.count(Ticket.id)).where(
                Ticket.ticket_type_id == ticket_type_id,
                Ticket.status.in_(SOLD_TICKET_STATUSES)
            )
        )
        return result.scalar_one()
