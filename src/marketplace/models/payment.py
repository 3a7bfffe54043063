"""Payment models — settlement breakdown, payment records, ledger entries.

All monetary values use Decimal for exact arithmetic. No floats in finance.

Invariants enforced by these models:
- commission + withholding tax + net == gross for every breakdown
- Payment lifecycle is a strict state machine (no skipped states)
- Ledger transactions are immutable once constructed
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional


class PaymentStatus(str, enum.Enum):
    """Lifecycle state of a payment.

    State machine:
        PENDING → PAID → HELD → RELEASED
        PAID → REFUNDED
        HELD → REFUNDED
        PENDING | PAID | HELD → FAILED
    """
    PENDING = "pending"
    PAID = "paid"
    HELD = "held"  # In escrow
    RELEASED = "released"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, enum.Enum):
    """How the client paid for the booking."""
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_WALLET = "mobile_wallet"
    OTHER = "other"


class TransactionType(str, enum.Enum):
    """Kind of monetary movement recorded in the ledger.

    REFUND is a recognised ledger kind, but refunds are computed by an
    external process; the settlement engine never produces one.
    """
    PAYMENT = "payment"
    COMMISSION = "commission"
    WITHHOLDING_TAX = "withholding_tax"
    RELEASE = "release"
    REFUND = "refund"


# Valid payment state transitions
PAYMENT_TRANSITIONS: Dict[PaymentStatus, frozenset] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PAID,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.PAID: frozenset({
        PaymentStatus.HELD,
        PaymentStatus.REFUNDED,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.HELD: frozenset({
        PaymentStatus.RELEASED,
        PaymentStatus.REFUNDED,
        PaymentStatus.FAILED,
    }),
    PaymentStatus.RELEASED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class PaymentCalculation:
    """Split of a gross amount into commission, withholding tax and net.

    Not persisted. Invariant:
        commission_amount + withholding_tax_amount + net_amount == gross_amount
    """
    gross_amount: Decimal
    commission_amount: Decimal
    withholding_tax_amount: Decimal
    net_amount: Decimal

    @property
    def total_deductions(self) -> Decimal:
        return self.commission_amount + self.withholding_tax_amount


@dataclass(frozen=True)
class Transaction:
    """A single immutable ledger entry tied to a payment.

    transaction_id is None until the ledger assigns one on append.
    """
    payment_id: str
    transaction_type: TransactionType
    amount: Decimal
    description: str
    created_utc: datetime
    reference: Optional[str] = None
    transaction_id: Optional[str] = None


@dataclass
class Payment:
    """Payment for a completed booking (one per booking).

    Mutable — status transitions happen as gateway and release events
    arrive. A payment is never deleted, only transitioned. All transitions
    are validated against the PAYMENT_TRANSITIONS map.
    """
    payment_id: str
    booking_id: str
    amount: Decimal
    commission_amount: Decimal
    withholding_tax_amount: Decimal
    net_amount: Decimal
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    gateway: Optional[str] = None  # e.g. Stripe, Omise, TrueMoney
    gateway_transaction_id: Optional[str] = None
    created_utc: Optional[datetime] = None
    paid_utc: Optional[datetime] = None
    released_utc: Optional[datetime] = None
    refunded_utc: Optional[datetime] = None
    failed_utc: Optional[datetime] = None
    updated_utc: Optional[datetime] = None

    @staticmethod
    def from_calculation(
        payment_id: str,
        booking_id: str,
        calculation: PaymentCalculation,
        payment_method: PaymentMethod,
        gateway: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Payment:
        """Create a PENDING payment carrying a computed breakdown."""
        return Payment(
            payment_id=payment_id,
            booking_id=booking_id,
            amount=calculation.gross_amount,
            commission_amount=calculation.commission_amount,
            withholding_tax_amount=calculation.withholding_tax_amount,
            net_amount=calculation.net_amount,
            payment_method=payment_method,
            gateway=gateway,
            created_utc=now,
            updated_utc=now,
        )

    def transition_to(self, new_status: PaymentStatus) -> None:
        """Transition to a new status, validating the transition is legal."""
        allowed = PAYMENT_TRANSITIONS.get(self.status, frozenset())
        if new_status not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed)) or "none"
            raise ValueError(
                f"Invalid payment transition: {self.status.value} → {new_status.value}. "
                f"Allowed: {allowed_str}"
            )
        self.status = new_status
