"""
Users as seen by this service: ticket holders, waiters and organizers.
"""

from typing import List, TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .event import Event


class User(Base):
    """Identity row referenced by tickets, transactions and waitlist entries.

    Accounts are created upstream. ``is_admin`` unlocks the sweep and recount
    endpoints; inactive users are rejected at authentication.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    organized_events: Mapped[List["Event"]] = relationship("Event", back_populates="organizer")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', admin={self.is_admin})>"
