"""
TicketType model: per-category capacity within an event.
"""

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .event import Event


class TicketType(Base):
    """TicketType model tracking capacity and sold count for one category."""

    __tablename__ = "ticket_types"

    event_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    type: Mapped[str] = mapped_column(String(100), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00')
    )

    total_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    tickets_sold: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="ticket_types")

    # sold may briefly exceed total when an accepted offer fills a slot that
    # ordinary purchase already took, so only non-negativity is enforced
    __table_args__ = (
        CheckConstraint("total_tickets > 0", name="ck_ticket_types_total_positive"),
        CheckConstraint("tickets_sold >= 0", name="ck_ticket_types_sold_non_negative"),
        CheckConstraint("price >= 0", name="ck_ticket_types_price_non_negative"),
    )

    @property
    def is_sold_out(self) -> bool:
        """Check if this ticket type is sold out."""
        return self.tickets_sold >= self.total_tickets

    def __repr__(self) -> str:
        """String representation of the ticket type."""
        return (
            f"<TicketType(id={self.id}, event_id={self.event_id}, type='{self.type}', "
            f"sold={self.tickets_sold}/{self.total_tickets})>"
        )
