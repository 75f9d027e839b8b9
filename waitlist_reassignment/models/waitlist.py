"""
Waitlist model for the per-event FIFO queue.
"""

from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from ..utils.clock import utcnow, as_utc

if TYPE_CHECKING:
    from .event import Event


class WaitlistEntry(Base):
    """
    Waitlist entry for a (user, event) pair.

    Position is not stored; it is the entry's rank by ``joined_at`` among
    all entries of the event. An entry with ``offered_at`` set is claimed
    and cannot be offered again until it is removed.
    """

    __tablename__ = "waitlist"

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

    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )

    offered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )

    reservation_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        index=True
    )

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="waitlist_entries")

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_waitlist_user_event"),
    )

    @property
    def is_claimed(self) -> bool:
        """Check if an offer has been made against this entry."""
        return self.offered_at is not None

    def is_expired(self, now: datetime) -> bool:
        """Check if the entry's offer window has lapsed at ``now``."""
        if self.offered_at is None or self.reservation_expires_at is None:
            return False
        return as_utc(self.reservation_expires_at) < as_utc(now)

    def __repr__(self) -> str:
        """String representation of the waitlist entry."""
        return (
            f"<WaitlistEntry(id={self.id}, user_id={self.user_id}, "
            f"event_id={self.event_id}, claimed={self.is_claimed})>"
        )
