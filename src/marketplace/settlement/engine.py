"""Settlement engine — splits a gross booking amount and builds ledger entries.

The split is fully deterministic:

    commission = round(gross × commission_rate)
    withholding_tax = round(gross × withholding_tax_rate)
    net = gross − commission − withholding_tax

Rounding uses the policy quantum and rounding mode (0.01, half-even by
default). Net absorbs the rounding residual, so

    commission + withholding_tax + net == gross

holds exactly for every input.

The engine is invoked twice per successful booking:
- when the payment is captured (PAID): PAYMENT, COMMISSION and
  WITHHOLDING_TAX transactions
- when escrowed funds are released (HELD → RELEASED): one RELEASE
  transaction for the net amount

The engine holds no mutable state and performs no I/O. Arithmetic runs
in the engine's own decimal context, so the caller's thread-local
context (precision, rounding, traps) never changes a result. It does not
enforce payment status or prevent duplicate releases; the caller gates
those on the payment state machine and the ledger.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import (
    Context,
    Decimal,
    DecimalException,
    Inexact,
    InvalidOperation,
    Overflow,
)
from typing import Any, Optional

from marketplace.models.payment import (
    Payment,
    PaymentCalculation,
    Transaction,
    TransactionType,
)
from marketplace.policy.resolver import SettlementPolicy

# Working precision for settlement arithmetic. Amounts whose split needs
# more digits are rejected.
_PRECISION = 50

# Products and differences must be exact; only quantize may round.
_EXACT = Context(prec=_PRECISION, traps=[InvalidOperation, Inexact, Overflow])


class InvalidAmountError(ValueError):
    """Raised when a monetary amount is negative, non-finite, or not a decimal."""


def validate_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Return value as a Decimal, or raise InvalidAmountError.

    Accepts Decimal and int. Floats are rejected: they cannot carry an
    exact fixed-point amount.
    """
    if isinstance(value, bool) or not isinstance(value, (Decimal, int)):
        raise InvalidAmountError(
            f"{field_name} must be a Decimal, got {type(value).__name__}: {value!r}"
        )
    amount = Decimal(value)
    if not amount.is_finite():
        raise InvalidAmountError(f"{field_name} must be finite, got {amount}")
    if amount < 0:
        raise InvalidAmountError(f"{field_name} must be non-negative, got {amount}")
    return amount


def format_percent(rate: Decimal) -> str:
    """Render a rate as a percentage: 0.10 → "10%", 0.025 → "2.5%"."""
    pct = _EXACT.multiply(rate, Decimal(100))
    whole = pct.to_integral_value(context=_EXACT)
    if pct == whole:
        return f"{whole}%"
    return f"{pct.normalize(context=_EXACT):f}%"


class SettlementEngine:
    """Computes settlement breakdowns and ledger entries.

    Usage:
        engine = SettlementEngine(resolver.settlement_policy())
        calc = engine.calculate_payment(Decimal("1000.00"))
        payment = Payment.from_calculation("pay_1", "bk_1", calc, PaymentMethod.CREDIT_CARD)
        capture = engine.create_payment_transactions(payment)
        release = engine.create_release_transaction(payment)
    """

    def __init__(self, policy: Optional[SettlementPolicy] = None) -> None:
        self._policy = policy if policy is not None else SettlementPolicy.default()
        self._context = Context(
            prec=_PRECISION,
            rounding=self._policy.rounding,
            traps=[InvalidOperation, Overflow],
        )

    @property
    def policy(self) -> SettlementPolicy:
        return self._policy

    def calculate_payment(self, gross_amount: Decimal) -> PaymentCalculation:
        """Split a gross amount into commission, withholding tax and net.

        Args:
            gross_amount: Full booking price. Must be a finite,
                non-negative Decimal (or int).

        Returns:
            A frozen PaymentCalculation whose parts sum to gross_amount.

        Raises:
            InvalidAmountError: gross_amount is negative, NaN, infinite,
                not a decimal, or too large to split at the policy quantum.
        """
        gross = validate_amount(gross_amount, "gross_amount")

        try:
            commission = self._round(_EXACT.multiply(gross, self._policy.commission_rate))
            withholding_tax = self._round(
                _EXACT.multiply(gross, self._policy.withholding_tax_rate),
            )
            net = _EXACT.subtract(_EXACT.subtract(gross, commission), withholding_tax)
        except DecimalException:
            raise InvalidAmountError(
                f"gross_amount {gross} exceeds supported precision "
                f"({_PRECISION} digits at quantum {self._policy.quantum})"
            ) from None

        return PaymentCalculation(
            gross_amount=gross,
            commission_amount=commission,
            withholding_tax_amount=withholding_tax,
            net_amount=net,
        )

    def create_payment_transactions(
        self,
        payment: Payment,
        now: Optional[datetime] = None,
    ) -> list[Transaction]:
        """Build the capture entries for a paid booking.

        Returns exactly three transactions in fixed order: PAYMENT,
        COMMISSION, WITHHOLDING_TAX. Amounts are copied from the
        payment's stored breakdown, not recomputed. All three share
        one timestamp.
        """
        amount = validate_amount(payment.amount, "payment.amount")
        commission = validate_amount(payment.commission_amount, "payment.commission_amount")
        withholding_tax = validate_amount(
            payment.withholding_tax_amount, "payment.withholding_tax_amount",
        )
        if now is None:
            now = datetime.now(timezone.utc)

        return [
            Transaction(
                payment_id=payment.payment_id,
                transaction_type=TransactionType.PAYMENT,
                amount=amount,
                description="Payment received from client",
                created_utc=now,
                reference=payment.gateway_transaction_id,
            ),
            Transaction(
                payment_id=payment.payment_id,
                transaction_type=TransactionType.COMMISSION,
                amount=commission,
                description=(
                    f"Platform commission ({format_percent(self._policy.commission_rate)})"
                ),
                created_utc=now,
            ),
            Transaction(
                payment_id=payment.payment_id,
                transaction_type=TransactionType.WITHHOLDING_TAX,
                amount=withholding_tax,
                description=(
                    f"Withholding tax {format_percent(self._policy.withholding_tax_rate)} "
                    f"({self._policy.withholding_tax_document})"
                ),
                created_utc=now,
            ),
        ]

    def create_release_transaction(
        self,
        payment: Payment,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """Build the RELEASE entry paying the net amount to the provider.

        Calling this twice yields two RELEASE entries; duplicate
        prevention belongs to the caller.
        """
        net = validate_amount(payment.net_amount, "payment.net_amount")
        if now is None:
            now = datetime.now(timezone.utc)

        return Transaction(
            payment_id=payment.payment_id,
            transaction_type=TransactionType.RELEASE,
            amount=net,
            description=f"Payment released to provider (Net: {net:,.2f})",
            created_utc=now,
        )

    def _round(self, value: Decimal) -> Decimal:
        return value.quantize(
            self._policy.quantum,
            rounding=self._policy.rounding,
            context=self._context,
        )
