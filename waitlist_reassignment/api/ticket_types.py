"""
Ledger maintenance endpoints for ticket-type sold counts.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.event import Event
from ..models.user import User
from ..schemas.ticket_type import TicketTypeResponse, EventAuditResponse, SyncAllResponse
from ..services.inventory_service import InventoryService
from ..utils.dependencies import get_current_user, get_current_admin_user
from ..utils.exceptions import AuthorizationError, EventNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ticket-types", tags=["ticket-types"])


async def _require_organizer(db: AsyncSession, event_id: int, user: User) -> None:
    """Allow the event organizer and admins only."""
    event = await db.get(Event, event_id)
    if not event:
        raise EventNotFoundError(event_id)
    if event.organizer_id != user.id and not user.is_admin:
        raise AuthorizationError("Only the event organizer can manage ticket counts")


@router.put("/{ticket_type_id}/recount", response_model=TicketTypeResponse)
async def recount_ticket_type(
    ticket_type_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Recompute a ticket type's sold count from its tickets."""
    inventory = InventoryService(db)
    ticket_type = await inventory.get_ticket_type(ticket_type_id)
    await _require_organizer(db, ticket_type.event_id, current_user)

    ticket_type = await inventory.recount(ticket_type_id)
    await db.commit()

    logger.info(f"Ticket type {ticket_type_id} recounted to {ticket_type.tickets_sold} sold")
    return TicketTypeResponse.model_validate(ticket_type)


@router.post("/sync-all", response_model=SyncAllResponse)
async def sync_all_ticket_types(
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Recount every ticket type and event (admin only)."""
    counts = await InventoryService(db).sync_all()
    await db.commit()

    return SyncAllResponse(
        message="Ticket counts synchronized",
        ticket_types=counts["ticket_types"],
        events=counts["events"],
    )


@router.get("/audit/{event_id}", response_model=EventAuditResponse)
async def audit_event_ticket_types(
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Compare stored sold counts with the actual tickets of an event."""
    await _require_organizer(db, event_id, current_user)
    return EventAuditResponse(**await InventoryService(db).audit_event(event_id))
