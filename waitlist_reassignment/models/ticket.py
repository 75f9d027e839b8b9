"""
Ticket model for individual admission units.
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base
from ..utils.clock import utcnow


class TicketStatus(enum.Enum):
    """Enumeration for ticket status."""
    ACTIVE = "active"
    RESERVED = "reserved"
    PENDING_RETURN = "pending_return"
    REFUNDED = "refunded"


# Statuses that occupy a unit of capacity
SOLD_TICKET_STATUSES = (TicketStatus.ACTIVE, TicketStatus.PENDING_RETURN)


class Ticket(Base):
    """
    Ticket model.

    Lifecycle: ``active`` on purchase or ``reserved`` on promotion;
    ``active -> pending_return`` on a self-service return,
    ``active -> refunded`` on an organizer refund, ``reserved -> active``
    on accept (a declined or expired reservation is deleted), and
    ``pending_return -> refunded`` once the offer covering it is accepted.
    """

    __tablename__ = "tickets"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    event_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    ticket_type_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("ticket_types.id"),
        nullable=False,
        index=True
    )

    transaction_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("transactions.id"),
        nullable=False,
        index=True
    )

    status: Mapped[TicketStatus] = mapped_column(
        Enum(TicketStatus),
        default=TicketStatus.ACTIVE,
        nullable=False,
        index=True
    )

    issued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        """String representation of the ticket."""
        return (
            f"<Ticket(id={self.id}, user_id={self.user_id}, event_id={self.event_id}, "
            f"ticket_type_id={self.ticket_type_id}, status={self.status.value})>"
        )
