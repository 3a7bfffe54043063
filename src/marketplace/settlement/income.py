"""Provider income reporting — annual summaries and withholding certificates.

A payment counts toward a provider's income for a year when:
- its booking belongs to the provider
- it was captured (paid_utc) in that year
- it has not been refunded or failed (status PAID, HELD or RELEASED)

Totals are sums of the stored payment breakdowns; nothing is recomputed
from rates, so a rate change never rewrites past income.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from marketplace.models.booking import Booking
from marketplace.models.payment import Payment, PaymentStatus
from marketplace.models.tax import (
    ProviderIncomeSummary,
    TaxDocument,
    TaxDocumentType,
)
from marketplace.policy.resolver import SettlementPolicy

_SETTLED = frozenset({
    PaymentStatus.PAID,
    PaymentStatus.HELD,
    PaymentStatus.RELEASED,
})


class IncomeReporter:
    """Builds provider income summaries and tax documents.

    Usage:
        reporter = IncomeReporter(policy)
        summary = reporter.summarize("prov_1", 2026, bookings, payments)
        docs = reporter.withholding_certificates("prov_1", 2026, bookings, payments)
    """

    def __init__(self, policy: Optional[SettlementPolicy] = None) -> None:
        self._policy = policy if policy is not None else SettlementPolicy.default()

    def counted_payments(
        self,
        provider_id: str,
        year: int,
        bookings: Mapping[str, Booking],
        payments: Iterable[Payment],
    ) -> list[Payment]:
        """Payments that count toward provider_id's income in year, by paid time."""
        result = []
        for payment in payments:
            booking = bookings.get(payment.booking_id)
            if booking is None or booking.provider_id != provider_id:
                continue
            if payment.status not in _SETTLED or payment.paid_utc is None:
                continue
            if payment.paid_utc.year != year:
                continue
            result.append(payment)
        return sorted(result, key=lambda p: (p.paid_utc, p.payment_id))

    def summarize(
        self,
        provider_id: str,
        year: int,
        bookings: Mapping[str, Booking],
        payments: Iterable[Payment],
    ) -> ProviderIncomeSummary:
        counted = self.counted_payments(provider_id, year, bookings, payments)
        zero = Decimal("0")
        return ProviderIncomeSummary(
            provider_id=provider_id,
            year=year,
            total_gross_income=sum((p.amount for p in counted), zero),
            total_commission=sum((p.commission_amount for p in counted), zero),
            total_withholding_tax=sum((p.withholding_tax_amount for p in counted), zero),
            total_net_income=sum((p.net_amount for p in counted), zero),
            total_completed_bookings=len(counted),
        )

    def withholding_certificates(
        self,
        provider_id: str,
        year: int,
        bookings: Mapping[str, Booking],
        payments: Iterable[Payment],
        start_sequence: int = 1,
        now: Optional[datetime] = None,
    ) -> list[TaxDocument]:
        """One withholding-tax certificate per counted payment with tax withheld.

        Document numbers are <TAG>-<year>-<seq:06d>, starting at
        start_sequence and increasing in capture order.
        """
        if start_sequence < 1:
            raise ValueError("start_sequence must be >= 1")
        if now is None:
            now = datetime.now(timezone.utc)

        tag = self._policy.withholding_tax_document
        documents: list[TaxDocument] = []
        seq = start_sequence
        for payment in self.counted_payments(provider_id, year, bookings, payments):
            if payment.withholding_tax_amount <= 0:
                continue
            number = f"{tag}-{year}-{seq:06d}"
            documents.append(TaxDocument(
                document_id=f"doc_{number.lower()}",
                provider_id=provider_id,
                booking_id=payment.booking_id,
                document_type=TaxDocumentType.PND3,
                document_number=number,
                year=year,
                amount=payment.withholding_tax_amount,
                issued_utc=now,
            ))
            seq += 1
        return documents
