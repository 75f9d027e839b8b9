"""
Waitlist API endpoints: joining, leaving, queue positions and offer responses.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.user import User
from ..schemas.ticket import TicketResponse
from ..schemas.waitlist import (
    WaitlistJoinRequest,
    WaitlistJoinResponse,
    WaitlistEntryResponse,
    WaitlistLeaveResponse,
    WaitlistPositionEntry,
    WaitlistPositionResponse,
    EventWaitlistResponse,
    UserWaitlistResponse,
    AcceptOfferResponse,
    DeclineOfferResponse,
    SweepResponse,
)
from ..services.expiration_service import ExpirationService
from ..services.offer_response_service import OfferResponseService
from ..services.waitlist_service import WaitlistService, QueuedEntry
from ..utils.dependencies import get_current_user, get_current_admin_user, ensure_self_or_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/waitlist", tags=["waitlist"])


def _position_entry(queued: QueuedEntry) -> WaitlistPositionEntry:
    entry = queued.entry
    return WaitlistPositionEntry(
        id=entry.id,
        user_id=entry.user_id,
        event_id=entry.event_id,
        joined_at=entry.joined_at,
        offered_at=entry.offered_at,
        reservation_expires_at=entry.reservation_expires_at,
        position=queued.position,
        is_claimed=entry.is_claimed,
    )


@router.post("", response_model=WaitlistJoinResponse, status_code=status.HTTP_201_CREATED)
async def join_waitlist(
    request: WaitlistJoinRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Join the waitlist for a sold-out event.

    If a returned ticket is already waiting for a taker, the response may
    carry an immediate offer instead of a queue position.
    """
    result = await WaitlistService(db).join_waitlist(current_user.id, request.event_id)

    if result.offered_immediately:
        return WaitlistJoinResponse(
            message="A ticket is available. You have 30 minutes to accept.",
            offered_immediately=True,
            transaction_id=result.transaction_id,
        )

    return WaitlistJoinResponse(
        message="Successfully joined waitlist",
        entry=WaitlistEntryResponse.model_validate(result.entry),
        position=result.position,
    )


@router.delete("/{entry_id}", response_model=WaitlistLeaveResponse)
async def leave_waitlist(
    entry_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Remove one of your waitlist entries by ID."""
    requested_by = None if current_user.is_admin else current_user.id
    entry = await WaitlistService(db).leave_waitlist(entry_id, requested_by=requested_by)
    return WaitlistLeaveResponse(
        message="Successfully left waitlist",
        deleted=WaitlistEntryResponse.model_validate(entry),
    )


@router.delete("/event/{event_id}/user/{user_id}", response_model=WaitlistLeaveResponse)
async def leave_waitlist_for_event(
    event_id: int,
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Remove a user's entry from an event's waitlist."""
    ensure_self_or_admin(current_user, user_id, "You can only remove your own waitlist entries")

    entry = await WaitlistService(db).leave_by_user(event_id, user_id)
    return WaitlistLeaveResponse(
        message="Successfully left waitlist",
        deleted=WaitlistEntryResponse.model_validate(entry),
    )


@router.get("/position/{event_id}", response_model=WaitlistPositionResponse)
async def get_waitlist_position(
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get your position in an event's waitlist."""
    waitlist_service = WaitlistService(db)
    position = await waitlist_service.get_position(current_user.id, event_id)
    entry = await waitlist_service.get_entry(current_user.id, event_id)

    return WaitlistPositionResponse(
        user_id=current_user.id,
        event_id=event_id,
        position=position,
        offered_at=entry.offered_at if entry else None,
        reservation_expires_at=entry.reservation_expires_at if entry else None,
    )


@router.get("/event/{event_id}", response_model=EventWaitlistResponse)
async def get_event_waitlist(
    event_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List an event's waitlist in queue order."""
    entries = await WaitlistService(db).list_event_waitlist(event_id)
    return EventWaitlistResponse(
        event_id=event_id,
        total=len(entries),
        entries=[_position_entry(queued) for queued in entries],
    )


@router.get("/user/{user_id}", response_model=UserWaitlistResponse)
async def get_user_waitlist(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List the waitlists a user is on, with positions."""
    ensure_self_or_admin(current_user, user_id, "You can only view your own waitlist entries")

    entries = await WaitlistService(db).list_user_waitlist(user_id)
    return UserWaitlistResponse(
        user_id=user_id,
        total=len(entries),
        entries=[_position_entry(queued) for queued in entries],
    )


@router.post("/accept-ticket/{transaction_id}", response_model=AcceptOfferResponse)
async def accept_ticket(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept a ticket offered from the waitlist.

    Fails with 410 when the 30-minute reservation window has passed; the
    ticket is then offered to the next person in line.
    """
    result = await OfferResponseService(db).accept_offer(transaction_id, user_id=current_user.id)

    logger.info(f"User {current_user.id} accepted waitlist offer {transaction_id}")
    return AcceptOfferResponse(
        message="Ticket accepted successfully",
        ticket=TicketResponse.model_validate(result.ticket),
        transaction_id=transaction_id,
        refunded_ticket_id=result.refunded_ticket_id,
        refund_amount=result.refund_amount,
        platform_fee=result.platform_fee,
    )


@router.post("/decline-ticket/{transaction_id}", response_model=DeclineOfferResponse)
async def decline_ticket(
    transaction_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Decline a ticket offered from the waitlist and pass it to the next person."""
    result = await OfferResponseService(db).decline_offer(transaction_id, user_id=current_user.id)

    logger.info(f"User {current_user.id} declined waitlist offer {transaction_id}")
    return DeclineOfferResponse(
        message="Ticket declined",
        assigned_to_next=result.assigned_to_next,
        next_transaction_id=result.next_transaction_id,
    )


@router.post("/admin/sweep", response_model=SweepResponse)
async def run_sweep(
    current_user: User = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db)
):
    """Run the expired-offer sweep immediately (admin only)."""
    result = await ExpirationService(db).run_expiration_sweep()
    logger.info(f"Admin {current_user.id} ran expiration sweep: {result.cleaned_count} cleaned")
    return SweepResponse(
        cleaned_count=result.cleaned_count,
        reassigned_count=result.reassigned_count,
        failed_count=result.failed_count,
    )
