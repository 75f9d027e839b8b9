"""Business logic services for the waitlist reassignment engine."""

from .inventory_service import InventoryService
from .waitlist_service import WaitlistService
from .offer_service import OfferService
from .expiration_service import ExpirationService
from .refund_service import RefundService
from .offer_response_service import OfferResponseService

__all__ = [
    "InventoryService",
    "WaitlistService",
    "OfferService",
    "ExpirationService",
    "RefundService",
    "OfferResponseService",
]
