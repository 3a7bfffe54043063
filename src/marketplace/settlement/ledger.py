"""Transaction ledger — append-only record of every monetary movement.

Entries are never modified or removed. The ledger assigns each entry an
ID on append and checks it against the payment it belongs to:
- the entry's payment_id must match the payment
- a RELEASE entry must carry exactly the payment's stored net amount
- a payment can be released at most once

Storage is in-memory. The service layer writes every appended entry to
the audit event log before it reaches the ledger.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Iterable, List, Optional
from uuid import uuid4

from marketplace.models.payment import Payment, Transaction, TransactionType


class TransactionLedger:
    """In-memory append-only ledger of payment transactions.

    Usage:
        ledger = TransactionLedger()
        ledger.record_many(engine.create_payment_transactions(payment), payment)
        ledger.record(engine.create_release_transaction(payment), payment)

        ledger.net_position(payment.payment_id)  # == payment.net_amount
    """

    def __init__(self) -> None:
        self._entries: List[Transaction] = []
        self._released: set[str] = set()
        self._ids: set[str] = set()

    @staticmethod
    def new_transaction_id() -> str:
        return f"txn_{uuid4().hex[:12]}"

    def record(self, transaction: Transaction, payment: Payment) -> Transaction:
        """Validate and append a single entry. Returns the stored entry."""
        return self.record_many([transaction], payment)[0]

    def record_many(
        self,
        transactions: Iterable[Transaction],
        payment: Payment,
    ) -> list[Transaction]:
        """Validate all entries first, then append them all.

        Nothing is appended if any entry is rejected. Entries without a
        transaction_id get one assigned.
        """
        pending = list(transactions)
        errors = self.validate_entries(pending, payment)
        if errors:
            raise ValueError("; ".join(errors))
        return [self._append(txn) for txn in pending]

    def validate_entries(
        self,
        transactions: Iterable[Transaction],
        payment: Payment,
    ) -> list[str]:
        """Check entries as if appended in order. Returns errors (empty = OK)."""
        released = set(self._released)
        seen_ids = set(self._ids)
        errors: list[str] = []
        for txn in transactions:
            errors.extend(self._validate(txn, payment, released))
            if txn.transaction_id is not None:
                if txn.transaction_id in seen_ids:
                    errors.append(f"Duplicate transaction ID: {txn.transaction_id}")
                seen_ids.add(txn.transaction_id)
            if txn.transaction_type == TransactionType.RELEASE:
                released.add(txn.payment_id)
        return errors

    def transactions(
        self,
        payment_id: Optional[str] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> list[Transaction]:
        """Return entries in append order, optionally filtered."""
        result = list(self._entries)
        if payment_id is not None:
            result = [t for t in result if t.payment_id == payment_id]
        if transaction_type is not None:
            result = [t for t in result if t.transaction_type == transaction_type]
        return result

    def has_release(self, payment_id: str) -> bool:
        return payment_id in self._released

    def net_position(self, payment_id: str) -> Decimal:
        """PAYMENT − COMMISSION − WITHHOLDING_TAX for one payment."""
        total = Decimal("0")
        for txn in self.transactions(payment_id):
            if txn.transaction_type == TransactionType.PAYMENT:
                total += txn.amount
            elif txn.transaction_type in (
                TransactionType.COMMISSION,
                TransactionType.WITHHOLDING_TAX,
            ):
                total -= txn.amount
        return total

    def reconcile(self, payment: Payment) -> list[str]:
        """Check the ledger against a payment's stored breakdown.

        Returns errors (empty = ledger agrees with the payment).
        """
        errors: list[str] = []
        entries = self.transactions(payment.payment_id)
        if not entries:
            return errors

        expected = {
            TransactionType.PAYMENT: payment.amount,
            TransactionType.COMMISSION: payment.commission_amount,
            TransactionType.WITHHOLDING_TAX: payment.withholding_tax_amount,
        }
        for txn_type, amount in expected.items():
            recorded = sum(
                (t.amount for t in entries if t.transaction_type == txn_type),
                Decimal("0"),
            )
            if recorded != amount:
                errors.append(
                    f"{payment.payment_id}: {txn_type.value} ledger total "
                    f"{recorded} != payment {amount}"
                )

        position = self.net_position(payment.payment_id)
        if position != payment.net_amount:
            errors.append(
                f"{payment.payment_id}: net position {position} "
                f"!= payment net {payment.net_amount}"
            )
        return errors

    @property
    def count(self) -> int:
        return len(self._entries)

    def _append(self, transaction: Transaction) -> Transaction:
        stored = transaction
        if stored.transaction_id is None:
            stored = replace(stored, transaction_id=self.new_transaction_id())
        self._entries.append(stored)
        self._ids.add(stored.transaction_id)
        if stored.transaction_type == TransactionType.RELEASE:
            self._released.add(stored.payment_id)
        return stored

    @staticmethod
    def _validate(
        transaction: Transaction,
        payment: Payment,
        released: set[str],
    ) -> list[str]:
        errors: list[str] = []
        if transaction.payment_id != payment.payment_id:
            errors.append(
                f"Transaction payment_id {transaction.payment_id} "
                f"does not match payment {payment.payment_id}"
            )
        if transaction.amount < 0:
            errors.append(
                f"{payment.payment_id}: negative {transaction.transaction_type.value} "
                f"amount {transaction.amount}"
            )
        if transaction.transaction_type == TransactionType.RELEASE:
            if transaction.payment_id in released:
                errors.append(f"{payment.payment_id}: already released")
            if transaction.amount != payment.net_amount:
                errors.append(
                    f"{payment.payment_id}: release amount {transaction.amount} "
                    f"!= net amount {payment.net_amount}"
                )
        return errors
