"""
Database models for the waitlist reassignment service.
"""

from .base import Base
from .user import User
from .event import Event
from .ticket_type import TicketType
from .transaction import Transaction, TransactionStatus, PaymentMethod
from .ticket import Ticket, TicketStatus, SOLD_TICKET_STATUSES
from .waitlist import WaitlistEntry

__all__ = [
    "Base",
    "User",
    "Event",
    "TicketType",
    "Transaction",
    "TransactionStatus",
    "PaymentMethod",
    "Ticket",
    "TicketStatus",
    "SOLD_TICKET_STATUSES",
    "WaitlistEntry",
]
