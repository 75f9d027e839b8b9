"""
Event model holding the aggregate ticket counters.
"""

from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .user import User
    from .ticket_type import TicketType
    from .waitlist import WaitlistEntry


class Event(Base):
    """
    Event model.

    ``total_tickets`` and ``tickets_sold`` are derived sums over the event's
    ticket types and are only ever written by the inventory ledger.
    """

    __tablename__ = "events"

    title: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    organizer_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Event timing
    start_datetime: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    end_datetime: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Aggregate counters
    total_tickets: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tickets_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    organizer: Mapped["User"] = relationship("User", back_populates="organized_events")

    ticket_types: Mapped[List["TicketType"]] = relationship(
        "TicketType",
        back_populates="event",
        cascade="all, delete-orphan"
    )

    waitlist_entries: Mapped[List["WaitlistEntry"]] = relationship(
        "WaitlistEntry",
        back_populates="event",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("total_tickets >= 0", name="ck_events_total_tickets_non_negative"),
        CheckConstraint("tickets_sold >= 0", name="ck_events_tickets_sold_non_negative"),
    )

    @property
    def is_sold_out(self) -> bool:
        """Check if the event is sold out."""
        return self.tickets_sold >= self.total_tickets

    @property
    def ends_at(self) -> datetime:
        """End of the event, falling back to the start when no end is recorded."""
        return self.end_datetime or self.start_datetime

    def __repr__(self) -> str:
        """String representation of the event."""
        return (
            f"<Event(id={self.id}, title='{self.title}', "
            f"sold={self.tickets_sold}/{self.total_tickets})>"
        )
