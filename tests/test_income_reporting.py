"""Tests for provider income reporting — annual summaries and PND3 certificates."""

import pytest
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.payment import Payment, PaymentMethod, PaymentStatus
from marketplace.models.tax import TaxDocumentType
from marketplace.settlement.engine import SettlementEngine
from marketplace.settlement.income import IncomeReporter


def _now() -> datetime:
    return datetime(2026, 12, 31, 23, 0, 0, tzinfo=timezone.utc)


def _make_booking(booking_id: str, provider_id: str, gross: str) -> Booking:
    return Booking(
        booking_id=booking_id,
        client_id="client_1",
        provider_id=provider_id,
        total_amount=Decimal(gross),
        status=BookingStatus.COMPLETED,
    )


def _make_payment(
    booking: Booking,
    status: PaymentStatus = PaymentStatus.RELEASED,
    paid_utc: Optional[datetime] = None,
) -> Payment:
    calc = SettlementEngine().calculate_payment(booking.total_amount)
    payment = Payment.from_calculation(
        payment_id=f"pay_{booking.booking_id}",
        booking_id=booking.booking_id,
        calculation=calc,
        payment_method=PaymentMethod.MOBILE_WALLET,
    )
    payment.status = status
    payment.paid_utc = paid_utc or datetime(2026, 6, 1, tzinfo=timezone.utc)
    return payment


@pytest.fixture
def reporter() -> IncomeReporter:
    return IncomeReporter()


def _fixture_data() -> tuple[dict[str, Booking], list[Payment]]:
    bookings = {
        "b1": _make_booking("b1", "prov_1", "1000.00"),
        "b2": _make_booking("b2", "prov_1", "500.00"),
        "b3": _make_booking("b3", "prov_2", "800.00"),
        "b4": _make_booking("b4", "prov_1", "300.00"),
        "b5": _make_booking("b5", "prov_1", "200.00"),
    }
    payments = [
        _make_payment(bookings["b1"], PaymentStatus.RELEASED,
                      datetime(2026, 2, 1, tzinfo=timezone.utc)),
        _make_payment(bookings["b2"], PaymentStatus.HELD,
                      datetime(2026, 1, 15, tzinfo=timezone.utc)),
        _make_payment(bookings["b3"]),
        _make_payment(bookings["b4"], PaymentStatus.REFUNDED),
        _make_payment(bookings["b5"], PaymentStatus.RELEASED,
                      datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc)),
    ]
    return bookings, payments


class TestIncomeSummary:
    def test_totals(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        summary = reporter.summarize("prov_1", 2026, bookings, payments)
        assert summary.total_completed_bookings == 2
        assert summary.total_gross_income == Decimal("1500.00")
        assert summary.total_commission == Decimal("150.00")
        assert summary.total_withholding_tax == Decimal("45.00")
        assert summary.total_net_income == Decimal("1305.00")

    def test_totals_add_up(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        s = reporter.summarize("prov_1", 2026, bookings, payments)
        assert s.total_commission + s.total_withholding_tax + s.total_net_income == s.total_gross_income

    def test_refunded_excluded(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        counted = reporter.counted_payments("prov_1", 2026, bookings, payments)
        assert "b4" not in {p.booking_id for p in counted}

    def test_year_boundary(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        summary = reporter.summarize("prov_1", 2025, bookings, payments)
        assert summary.total_completed_bookings == 1
        assert summary.total_gross_income == Decimal("200.00")

    def test_pending_not_counted(self, reporter: IncomeReporter) -> None:
        booking = _make_booking("b9", "prov_9", "100.00")
        payment = _make_payment(booking, PaymentStatus.PENDING)
        summary = reporter.summarize("prov_9", 2026, {"b9": booking}, [payment])
        assert summary.total_completed_bookings == 0
        assert summary.total_gross_income == Decimal("0")

    def test_unknown_provider_is_empty(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        summary = reporter.summarize("nobody", 2026, bookings, payments)
        assert summary.total_completed_bookings == 0
        assert summary.total_net_income == Decimal("0")

    def test_ordered_by_paid_time(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        counted = reporter.counted_payments("prov_1", 2026, bookings, payments)
        assert [p.booking_id for p in counted] == ["b2", "b1"]


class TestWithholdingCertificates:
    def test_one_per_counted_payment(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        docs = reporter.withholding_certificates(
            "prov_1", 2026, bookings, payments, now=_now(),
        )
        assert [d.booking_id for d in docs] == ["b2", "b1"]
        assert [d.document_number for d in docs] == ["PND3-2026-000001", "PND3-2026-000002"]
        assert all(d.document_type == TaxDocumentType.PND3 for d in docs)
        assert docs[0].amount == Decimal("15.00")
        assert docs[1].amount == Decimal("30.00")
        assert docs[0].issued_utc == _now()

    def test_start_sequence(self, reporter: IncomeReporter) -> None:
        bookings, payments = _fixture_data()
        docs = reporter.withholding_certificates(
            "prov_1", 2026, bookings, payments, start_sequence=42, now=_now(),
        )
        assert docs[0].document_number == "PND3-2026-000042"

    def test_invalid_start_sequence(self, reporter: IncomeReporter) -> None:
        with pytest.raises(ValueError):
            reporter.withholding_certificates("prov_1", 2026, {}, [], start_sequence=0)

    def test_zero_tax_skipped(self, reporter: IncomeReporter) -> None:
        booking = _make_booking("b0", "prov_0", "0.00")
        payment = _make_payment(booking)
        docs = reporter.withholding_certificates(
            "prov_0", 2026, {"b0": booking}, [payment], now=_now(),
        )
        assert docs == []
