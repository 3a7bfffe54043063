"""Marketplace service — settlement facade for the booking/payment workflow.

This is the primary interface for programmatic access to settlement.
It orchestrates:
- Payment creation for completed bookings (commission/tax split)
- Payment lifecycle (confirm, hold, release, refund, fail)
- Ledger recording of capture and release transactions
- Provider income summaries and withholding-tax certificates
- Audit trail (append-only event log)

All operations produce typed results. Every state change is written to
the event log before it is applied; if the audit write fails, the
operation fails and nothing changes.

Operations on one payment are serialized, so two concurrent
confirmations or releases of the same payment cannot both succeed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional
from uuid import uuid4

from marketplace.models.booking import Booking
from marketplace.models.payment import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    Transaction,
)
from marketplace.models.tax import ProviderIncomeSummary, TaxDocument
from marketplace.persistence.event_log import EventKind, EventLog, EventRecord
from marketplace.policy.resolver import PolicyResolver
from marketplace.settlement.engine import InvalidAmountError, SettlementEngine
from marketplace.settlement.income import IncomeReporter
from marketplace.settlement.ledger import TransactionLedger
from marketplace.settlement.state_machine import PaymentStateMachine

logger = logging.getLogger(__name__)

_STATUS_EVENTS: dict[PaymentStatus, EventKind] = {
    PaymentStatus.PAID: EventKind.PAYMENT_PAID,
    PaymentStatus.HELD: EventKind.PAYMENT_HELD,
    PaymentStatus.RELEASED: EventKind.PAYMENT_RELEASED,
    PaymentStatus.REFUNDED: EventKind.PAYMENT_REFUNDED,
    PaymentStatus.FAILED: EventKind.PAYMENT_FAILED,
}

_STATUS_TIMESTAMPS: dict[PaymentStatus, str] = {
    PaymentStatus.PAID: "paid_utc",
    PaymentStatus.RELEASED: "released_utc",
    PaymentStatus.REFUNDED: "refunded_utc",
    PaymentStatus.FAILED: "failed_utc",
}


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _money(value: Decimal) -> str:
    return str(value)


def _payment_data(payment: Payment) -> dict[str, Any]:
    return {
        "payment_id": payment.payment_id,
        "booking_id": payment.booking_id,
        "amount": _money(payment.amount),
        "commission_amount": _money(payment.commission_amount),
        "withholding_tax_amount": _money(payment.withholding_tax_amount),
        "net_amount": _money(payment.net_amount),
        "status": payment.status.value,
        "payment_method": payment.payment_method.value,
    }


def _transaction_data(txn: Transaction) -> dict[str, Any]:
    return {
        "transaction_id": txn.transaction_id,
        "payment_id": txn.payment_id,
        "transaction_type": txn.transaction_type.value,
        "amount": _money(txn.amount),
        "description": txn.description,
        "reference": txn.reference,
        "created_utc": txn.created_utc.isoformat(),
    }


class MarketplaceService:
    """Settlement facade used by the booking/payment workflow.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = MarketplaceService(resolver)

        service.register_booking(booking)           # booking.status == COMPLETED
        result = service.create_payment(booking.booking_id, PaymentMethod.CREDIT_CARD)
        payment_id = result.data["payment_id"]
        service.confirm_payment(payment_id, gateway_transaction_id="ch_123")
        service.hold_payment(payment_id)
        service.release_payment(payment_id)

        service.provider_income_summary("prov_1", 2026)
        service.issue_tax_documents("prov_1", 2026)

    Persistence (optional):
        service = MarketplaceService(resolver, event_log=EventLog(path))
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._resolver = resolver
        policy = resolver.settlement_policy()
        self._engine = SettlementEngine(policy)
        self._reporter = IncomeReporter(policy)
        self._ledger = TransactionLedger()
        self._event_log = event_log if event_log is not None else EventLog()

        self._bookings: dict[str, Booking] = {}
        self._payments: dict[str, Payment] = {}
        self._payment_by_booking: dict[str, str] = {}
        self._tax_documents: dict[str, TaxDocument] = {}  # booking_id -> document
        self._document_sequences: dict[int, int] = {}

        self._lock = threading.Lock()
        self._payment_locks: dict[str, threading.Lock] = {}
        self._event_lock = threading.Lock()

        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

    @property
    def engine(self) -> SettlementEngine:
        return self._engine

    @property
    def ledger(self) -> TransactionLedger:
        return self._ledger

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def register_booking(self, booking: Booking) -> ServiceResult:
        """Make a booking known to settlement."""
        if not booking.booking_id:
            return ServiceResult(success=False, errors=["booking_id must not be empty"])
        with self._lock:
            if booking.booking_id in self._bookings:
                return ServiceResult(
                    success=False,
                    errors=[f"Booking already registered: {booking.booking_id}"],
                )
            err = self._record_event(
                EventKind.BOOKING_REGISTERED,
                booking.client_id,
                {
                    "booking_id": booking.booking_id,
                    "provider_id": booking.provider_id,
                    "total_amount": _money(booking.total_amount),
                    "status": booking.status.value,
                },
            )
            if err:
                return ServiceResult(success=False, errors=[err])
            self._bookings[booking.booking_id] = booking
        return ServiceResult(success=True, data={"booking_id": booking.booking_id})

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        return self._bookings.get(booking_id)

    # ------------------------------------------------------------------
    # Payment lifecycle
    # ------------------------------------------------------------------

    def create_payment(
        self,
        booking_id: str,
        payment_method: PaymentMethod,
        gateway: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create a PENDING payment with the settlement breakdown.

        The booking must be COMPLETED and may have only one payment.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        with self._lock:
            booking = self._bookings.get(booking_id)
            if booking is None:
                return ServiceResult(
                    success=False, errors=[f"Booking not found: {booking_id}"],
                )
            if not booking.is_completed:
                return ServiceResult(
                    success=False,
                    errors=[
                        f"Booking {booking_id} is {booking.status.value}; "
                        f"payment requires a completed booking"
                    ],
                )
            if booking_id in self._payment_by_booking:
                return ServiceResult(
                    success=False,
                    errors=[
                        f"Booking {booking_id} already has payment "
                        f"{self._payment_by_booking[booking_id]}"
                    ],
                )

            try:
                calculation = self._engine.calculate_payment(booking.total_amount)
            except InvalidAmountError as e:
                logger.warning("Rejected booking %s amount: %s", booking_id, e)
                return ServiceResult(success=False, errors=[str(e)])

            payment = Payment.from_calculation(
                payment_id=f"pay_{uuid4().hex[:12]}",
                booking_id=booking_id,
                calculation=calculation,
                payment_method=payment_method,
                gateway=gateway,
                now=now,
            )
            err = self._record_event(
                EventKind.PAYMENT_CREATED, booking.client_id,
                _payment_data(payment), now,
            )
            if err:
                return ServiceResult(success=False, errors=[err])

            self._payments[payment.payment_id] = payment
            self._payment_by_booking[booking_id] = payment.payment_id
            self._payment_locks[payment.payment_id] = threading.Lock()

        logger.info(
            "Payment %s created for booking %s: gross=%s commission=%s tax=%s net=%s",
            payment.payment_id, booking_id, payment.amount,
            payment.commission_amount, payment.withholding_tax_amount,
            payment.net_amount,
        )
        return ServiceResult(success=True, data=_payment_data(payment))

    def confirm_payment(
        self,
        payment_id: str,
        gateway_transaction_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Gateway confirmed capture: PENDING → PAID, record capture entries."""
        if now is None:
            now = datetime.now(timezone.utc)
        payment = self._payments.get(payment_id)
        if payment is None:
            return ServiceResult(success=False, errors=[f"Payment not found: {payment_id}"])

        with self._payment_locks[payment_id]:
            errors = PaymentStateMachine.validate_transition(payment, PaymentStatus.PAID)
            if errors:
                return ServiceResult(success=False, errors=errors)

            prior_reference = payment.gateway_transaction_id
            if gateway_transaction_id is not None:
                payment.gateway_transaction_id = gateway_transaction_id
            try:
                entries = self._engine.create_payment_transactions(payment, now=now)
            except InvalidAmountError as e:
                payment.gateway_transaction_id = prior_reference
                return ServiceResult(success=False, errors=[str(e)])

            result = self._apply_steps(payment, [(PaymentStatus.PAID, entries)], now)
            if not result.success:
                payment.gateway_transaction_id = prior_reference
            return result

    def hold_payment(
        self,
        payment_id: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Move captured funds into escrow: PAID → HELD."""
        return self._transition(payment_id, PaymentStatus.HELD, now)

    def release_payment(
        self,
        payment_id: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Release escrowed funds to the provider and record the RELEASE entry.

        Transitions: HELD → RELEASED, or PAID → HELD → RELEASED. From PAID
        both steps are validated and audited together, so a failure leaves
        the payment PAID. A payment can be released only once.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        payment = self._payments.get(payment_id)
        if payment is None:
            return ServiceResult(success=False, errors=[f"Payment not found: {payment_id}"])

        with self._payment_locks[payment_id]:
            if not PaymentStateMachine.is_releasable(payment.status):
                return ServiceResult(
                    success=False,
                    errors=[
                        f"Payment {payment_id} is {payment.status.value}; "
                        f"release requires paid or held"
                    ],
                )
            if self._ledger.has_release(payment_id):
                return ServiceResult(
                    success=False, errors=[f"Payment {payment_id} already released"],
                )

            steps: list[tuple[PaymentStatus, list[Transaction]]] = []
            if payment.status == PaymentStatus.PAID:
                steps.append((PaymentStatus.HELD, []))
            try:
                release = self._engine.create_release_transaction(payment, now=now)
            except InvalidAmountError as e:
                return ServiceResult(success=False, errors=[str(e)])
            steps.append((PaymentStatus.RELEASED, [release]))
            return self._apply_steps(payment, steps, now)

    def refund_payment(
        self,
        payment_id: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Mark a payment refunded: PAID | HELD → REFUNDED.

        The refund amount is settled by an external process; no ledger
        entry is produced here.
        """
        return self._transition(payment_id, PaymentStatus.REFUNDED, now)

    def fail_payment(
        self,
        payment_id: str,
        reason: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Mark a payment failed: PENDING | PAID | HELD → FAILED."""
        return self._transition(payment_id, PaymentStatus.FAILED, now, reason=reason)

    def get_payment(self, payment_id: str) -> Optional[Payment]:
        return self._payments.get(payment_id)

    def get_payment_for_booking(self, booking_id: str) -> Optional[Payment]:
        payment_id = self._payment_by_booking.get(booking_id)
        return self._payments.get(payment_id) if payment_id else None

    def get_transactions(self, payment_id: str) -> list[Transaction]:
        return self._ledger.transactions(payment_id)

    # ------------------------------------------------------------------
    # Provider reporting
    # ------------------------------------------------------------------

    def provider_income_summary(self, provider_id: str, year: int) -> ServiceResult:
        """Annual income totals for a provider."""
        summary = self._reporter.summarize(
            provider_id, year, self._bookings, list(self._payments.values()),
        )
        data = self._summary_data(summary)
        err = self._record_event(EventKind.INCOME_SUMMARY_COMPUTED, provider_id, data)
        if err:
            return ServiceResult(success=False, errors=[err])
        return ServiceResult(success=True, data=data)

    def issue_tax_documents(
        self,
        provider_id: str,
        year: int,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Issue withholding-tax certificates not yet issued for provider/year."""
        with self._lock:
            pending = [
                p for p in self._payments.values()
                if p.booking_id not in self._tax_documents
            ]
            documents = self._reporter.withholding_certificates(
                provider_id, year, self._bookings, pending,
                start_sequence=self._document_sequences.get(year, 0) + 1,
                now=now,
            )
            issued: list[dict[str, Any]] = [
                {
                    "document_id": doc.document_id,
                    "document_number": doc.document_number,
                    "document_type": doc.document_type.value,
                    "provider_id": doc.provider_id,
                    "booking_id": doc.booking_id,
                    "year": doc.year,
                    "amount": _money(doc.amount),
                }
                for doc in documents
            ]
            if issued:
                err = self._record_events(
                    provider_id,
                    [(EventKind.TAX_DOCUMENT_ISSUED, d) for d in issued],
                    now,
                )
                if err:
                    return ServiceResult(success=False, errors=[err])
            for doc in documents:
                self._tax_documents[doc.booking_id] = doc
            self._document_sequences[year] = (
                self._document_sequences.get(year, 0) + len(documents)
            )

        if issued:
            logger.info(
                "Issued %d withholding certificates to %s for %d",
                len(issued), provider_id, year,
            )
        return ServiceResult(success=True, data={"issued": issued})

    def get_tax_documents(self, provider_id: str) -> list[TaxDocument]:
        return [d for d in self._tax_documents.values() if d.provider_id == provider_id]

    def status(self) -> dict[str, Any]:
        policy = self._resolver.settlement_policy()
        by_status: dict[str, int] = {}
        for p in self._payments.values():
            by_status[p.status.value] = by_status.get(p.status.value, 0) + 1
        return {
            "policy": {
                "commission_rate": str(policy.commission_rate),
                "withholding_tax_rate": str(policy.withholding_tax_rate),
                "currency": policy.currency,
                "rounding": policy.rounding,
            },
            "bookings": len(self._bookings),
            "payments": by_status,
            "transactions": self._ledger.count,
            "tax_documents": len(self._tax_documents),
            "events": self._event_log.count,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _transition(
        self,
        payment_id: str,
        target: PaymentStatus,
        now: Optional[datetime],
        reason: str = "",
    ) -> ServiceResult:
        if now is None:
            now = datetime.now(timezone.utc)
        payment = self._payments.get(payment_id)
        if payment is None:
            return ServiceResult(success=False, errors=[f"Payment not found: {payment_id}"])
        with self._payment_locks[payment_id]:
            return self._apply_steps(payment, [(target, [])], now, reason=reason)

    def _apply_steps(
        self,
        payment: Payment,
        steps: list[tuple[PaymentStatus, list[Transaction]]],
        now: datetime,
        reason: str = "",
    ) -> ServiceResult:
        """Validate, audit, then apply status changes plus their ledger entries.

        Fail-closed: every step is validated and the audit events for all
        steps are written as one batch before anything is mutated. A
        rejected step or an audit failure leaves payment and ledger
        untouched. Each step's status event precedes its
        TRANSACTION_RECORDED events.
        """
        steps = [
            (
                target,
                [
                    replace(t, transaction_id=TransactionLedger.new_transaction_id())
                    for t in entries
                ],
            )
            for target, entries in steps
        ]
        errors = PaymentStateMachine.validate_path(
            payment, [target for target, _ in steps],
        )
        if errors:
            return ServiceResult(success=False, errors=errors)

        all_entries = [t for _, entries in steps for t in entries]
        errors = self._ledger.validate_entries(all_entries, payment)
        if errors:
            logger.error("Ledger rejected entries for %s: %s", payment.payment_id, errors)
            return ServiceResult(success=False, errors=errors)

        events: list[tuple[EventKind, dict[str, Any]]] = []
        current = payment.status
        for target, entries in steps:
            payload: dict[str, Any] = {
                "payment_id": payment.payment_id,
                "from": current.value,
                "to": target.value,
            }
            if reason:
                payload["reason"] = reason
            events.append((_STATUS_EVENTS[target], payload))
            events.extend(
                (EventKind.TRANSACTION_RECORDED, _transaction_data(t)) for t in entries
            )
            current = target
        err = self._record_events(payment.booking_id, events, now)
        if err:
            return ServiceResult(success=False, errors=[err])

        stored: list[Transaction] = []
        for target, entries in steps:
            payment.transition_to(target)
            stamp = _STATUS_TIMESTAMPS.get(target)
            if stamp is not None:
                setattr(payment, stamp, now)
            payment.updated_utc = now
            if entries:
                stored.extend(self._ledger.record_many(entries, payment))
            logger.info(
                "Payment %s → %s (%d ledger entries)",
                payment.payment_id, target.value, len(entries),
            )

        data = _payment_data(payment)
        data["transactions"] = [_transaction_data(t) for t in stored]
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Append one audit event. Returns error string or None."""
        return self._record_events(actor_id, [(kind, payload)], now)

    def _record_events(
        self,
        actor_id: str,
        events: list[tuple[EventKind, dict[str, Any]]],
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Append audit events as one batch. Returns error string or None.

        Either every event is logged or none is.
        """
        try:
            with self._event_lock:
                records = [
                    EventRecord.create(
                        event_id=self._next_event_id(),
                        event_kind=kind,
                        actor_id=actor_id or "system",
                        payload=payload,
                        timestamp_utc=now,
                    )
                    for kind, payload in events
                ]
                self._event_log.append_many(records)
        except (ValueError, OSError) as e:
            kinds = ", ".join(kind.value for kind, _ in events)
            logger.error("Audit write failed for %s: %s", kinds, e)
            return f"Event log failure: {e}"
        return None

    @staticmethod
    def _summary_data(summary: ProviderIncomeSummary) -> dict[str, Any]:
        return {
            "provider_id": summary.provider_id,
            "year": summary.year,
            "total_gross_income": _money(summary.total_gross_income),
            "total_commission": _money(summary.total_commission),
            "total_withholding_tax": _money(summary.total_withholding_tax),
            "total_net_income": _money(summary.total_net_income),
            "total_completed_bookings": summary.total_completed_bookings,
        }
