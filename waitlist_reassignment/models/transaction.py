"""
Transaction model for purchases, waitlist offers and compensating refunds.
"""

import enum
from decimal import Decimal

from sqlalchemy import Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class TransactionStatus(enum.Enum):
    """Enumeration for transaction status."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    REFUNDED = "refunded"


class PaymentMethod:
    """Payment method labels the platform assigns itself."""
    CARD = "card"
    WAITLIST = "waitlist"
    WAITLIST_RETURN = "waitlist_return"


class Transaction(Base):
    """Transaction model. Refunds to a displaced owner carry a negative price."""

    __tablename__ = "transactions"

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    total_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00')
    )

    status: Mapped[TransactionStatus] = mapped_column(
        Enum(TransactionStatus),
        default=TransactionStatus.COMPLETED,
        nullable=False,
        index=True
    )

    payment_method: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=PaymentMethod.CARD
    )

    @property
    def is_waitlist_offer(self) -> bool:
        """Check if this is an outstanding offer to a waitlisted user."""
        return (
            self.status == TransactionStatus.PENDING
            and self.payment_method == PaymentMethod.WAITLIST
        )

    def __repr__(self) -> str:
        """String representation of the transaction."""
        return (
            f"<Transaction(id={self.id}, user_id={self.user_id}, total_price={self.total_price}, "
            f"status={self.status.value}, payment_method='{self.payment_method}')>"
        )
