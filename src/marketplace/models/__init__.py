"""Core data models for the marketplace settlement system."""

from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.payment import (
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentCalculation,
    PaymentMethod,
    PaymentStatus,
    Transaction,
    TransactionType,
)
from marketplace.models.tax import (
    ProviderIncomeSummary,
    TaxDocument,
    TaxDocumentType,
)

__all__ = [
    "PAYMENT_TRANSITIONS",
    "Booking",
    "BookingStatus",
    "Payment",
    "PaymentCalculation",
    "PaymentMethod",
    "PaymentStatus",
    "ProviderIncomeSummary",
    "TaxDocument",
    "TaxDocumentType",
    "Transaction",
    "TransactionType",
]
