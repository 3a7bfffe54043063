"""Provider income and tax document models.

Providers receive an annual income summary and one withholding-tax
certificate per settled booking.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


class TaxDocumentType(str, enum.Enum):
    """Kind of tax document issued to a provider."""
    PND3 = "pnd3"  # Withholding tax certificate (ภงด.3)
    INVOICE = "invoice"
    RECEIPT = "receipt"


@dataclass(frozen=True)
class ProviderIncomeSummary:
    """Annual income totals for one provider.

    Invariant: total_commission + total_withholding_tax + total_net_income
    == total_gross_income
    """
    provider_id: str
    year: int
    total_gross_income: Decimal
    total_commission: Decimal
    total_withholding_tax: Decimal
    total_net_income: Decimal
    total_completed_bookings: int


@dataclass(frozen=True)
class TaxDocument:
    """A tax document issued to a provider for one booking."""
    document_id: str
    provider_id: str
    booking_id: str
    document_type: TaxDocumentType
    document_number: str
    year: int
    amount: Decimal
    issued_utc: datetime
    document_url: str = ""
