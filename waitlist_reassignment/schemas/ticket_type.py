"""
Pydantic schemas for ticket-type ledger maintenance.
"""

from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict


class TicketTypeResponse(BaseModel):
    """Schema for ticket type responses."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_id: int
    type: str
    price: Decimal
    total_tickets: int
    tickets_sold: int


class TicketTypeAuditRow(BaseModel):
    """Stored and actual sold counts for one ticket type."""
    ticket_type_id: int
    type: str
    total_tickets: int
    stored_sold: int
    actual_sold: int
    in_sync: bool


class EventAuditResponse(BaseModel):
    """Schema for an event's ledger audit."""
    event_id: int
    total_tickets: int
    tickets_sold: int
    in_sync: bool
    ticket_types: List[TicketTypeAuditRow]


class SyncAllResponse(BaseModel):
    """Schema for a full ledger resynchronization."""
    message: str
    ticket_types: int
    events: int
