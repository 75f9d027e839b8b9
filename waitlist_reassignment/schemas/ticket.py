"""
Pydantic schemas for tickets and refunds.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from ..models.ticket import TicketStatus


class TicketResponse(BaseModel):
    """Schema for ticket responses."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    event_id: int
    ticket_type_id: int
    transaction_id: int
    status: TicketStatus
    issued_at: datetime


class SelfRefundResponse(BaseModel):
    """Schema for a ticket returned by its owner."""
    message: str
    ticket: TicketResponse
    waitlist_assigned: bool
    offer_transaction_id: Optional[int] = None


class OrganizerRefundResponse(BaseModel):
    """Schema for a ticket refunded by the organizer."""
    message: str
    ticket_id: int
    event_id: int
    tickets_available: int
    waitlist_assigned: bool
    offer_transaction_id: Optional[int] = None
