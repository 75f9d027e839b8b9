"""
Ticket refund endpoints that hand freed tickets to the waitlist.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.user import User
from ..schemas.ticket import TicketResponse, SelfRefundResponse, OrganizerRefundResponse
from ..services.refund_service import RefundService
from ..utils.dependencies import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.put("/{ticket_id}/refund", response_model=SelfRefundResponse)
async def refund_ticket(
    ticket_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Return your ticket for a sold-out event.

    The ticket stays valid until someone from the waitlist accepts it, at
    which point it is refunded minus the platform fee.
    """
    result = await RefundService(db).self_refund(ticket_id, current_user.id)

    if result.waitlist_assigned:
        message = "Ticket offered to the next person on the waitlist. You keep it until they accept."
    else:
        message = "Ticket marked for return. It will be offered when someone joins the waitlist."

    return SelfRefundResponse(
        message=message,
        ticket=TicketResponse.model_validate(result.ticket),
        waitlist_assigned=result.waitlist_assigned,
        offer_transaction_id=result.offer_transaction_id,
    )


@router.put("/{ticket_id}/organizer-refund", response_model=OrganizerRefundResponse)
async def organizer_refund_ticket(
    ticket_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Refund a ticket of an event you organize."""
    result = await RefundService(db).organizer_refund(ticket_id, current_user.id)

    logger.info(f"Organizer {current_user.id} refunded ticket {ticket_id}")
    return OrganizerRefundResponse(
        message="Ticket refunded",
        ticket_id=result.ticket_id,
        event_id=result.event_id,
        tickets_available=result.tickets_available,
        waitlist_assigned=result.waitlist_assigned,
        offer_transaction_id=result.offer_transaction_id,
    )
