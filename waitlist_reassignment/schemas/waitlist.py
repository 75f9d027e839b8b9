"""
Pydantic schemas for waitlist management.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, ConfigDict

from .ticket import TicketResponse


class WaitlistJoinRequest(BaseModel):
    """Schema for joining a waitlist."""
    event_id: int = Field(..., gt=0, description="ID of the event to join waitlist for")


class WaitlistEntryResponse(BaseModel):
    """Schema for waitlist entry responses."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    event_id: int
    joined_at: datetime
    offered_at: Optional[datetime] = None
    reservation_expires_at: Optional[datetime] = None


class WaitlistPositionEntry(WaitlistEntryResponse):
    """Waitlist entry with its position in the event queue."""
    position: int = Field(..., description="1-based position in the event's waitlist")
    is_claimed: bool = Field(..., description="Whether an offer is outstanding for this entry")


class WaitlistJoinResponse(BaseModel):
    """Schema for the outcome of joining a waitlist."""
    message: str
    offered_immediately: bool = False
    entry: Optional[WaitlistEntryResponse] = None
    position: Optional[int] = None
    transaction_id: Optional[int] = Field(None, description="Offer transaction when offered immediately")


class WaitlistLeaveResponse(BaseModel):
    """Schema for the outcome of leaving a waitlist."""
    message: str
    deleted: WaitlistEntryResponse


class WaitlistPositionResponse(BaseModel):
    """Schema for a user's position in an event waitlist."""
    user_id: int
    event_id: int
    position: int
    offered_at: Optional[datetime] = None
    reservation_expires_at: Optional[datetime] = None


class EventWaitlistResponse(BaseModel):
    """Schema for an event's waitlist in queue order."""
    event_id: int
    total: int
    entries: List[WaitlistPositionEntry]


class UserWaitlistResponse(BaseModel):
    """Schema for the waitlists a user is on."""
    user_id: int
    total: int
    entries: List[WaitlistPositionEntry]


class AcceptOfferResponse(BaseModel):
    """Schema for an accepted waitlist offer."""
    message: str
    ticket: TicketResponse
    transaction_id: int
    refunded_ticket_id: Optional[int] = None
    refund_amount: Decimal = Field(Decimal("0.00"), description="Refund paid to the displaced ticket holder")
    platform_fee: Decimal = Field(Decimal("0.00"), description="Fee retained by the platform")


class DeclineOfferResponse(BaseModel):
    """Schema for a declined waitlist offer."""
    message: str
    assigned_to_next: bool
    next_transaction_id: Optional[int] = None


class SweepResponse(BaseModel):
    """Schema for an on-demand expiration sweep."""
    cleaned_count: int
    reassigned_count: int
    failed_count: int
