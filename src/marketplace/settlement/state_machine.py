"""Payment state machine — enforces valid payment lifecycle transitions.

Payment lifecycle:
    PENDING → PAID → HELD → RELEASED
    PAID | HELD → REFUNDED
    PENDING | PAID | HELD → FAILED

State semantics:
- PENDING: payment created for a completed booking, not yet captured.
- PAID: gateway confirmed capture; capture transactions recorded.
- HELD: funds in escrow, awaiting release to the provider.
- RELEASED: terminal — net amount paid out to the provider.
- REFUNDED: terminal — client refunded by an external process.
- FAILED: terminal — gateway or workflow failure.

Settlement actions are attached to exactly two transitions: entering
PAID produces the capture entries, HELD → RELEASED produces the release
entry. Because RELEASED is terminal, the release action can fire at most
once per payment.

Fail-closed: invalid transitions return errors. There are no implicit
transitions.
"""

from __future__ import annotations

from marketplace.models.payment import (
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentStatus,
)


_TERMINAL: frozenset = frozenset({
    PaymentStatus.RELEASED,
    PaymentStatus.REFUNDED,
    PaymentStatus.FAILED,
})

# Statuses from which escrowed funds may be released (PAID passes through HELD)
_RELEASABLE: frozenset = frozenset({PaymentStatus.PAID, PaymentStatus.HELD})


class PaymentStateMachine:
    """Validates and applies payment status transitions.

    Pure computation: validates transitions only. Side effects (ledger
    writes, event logging) are handled by the service layer.
    """

    @staticmethod
    def validate_transition(
        payment: Payment,
        target: PaymentStatus,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK)."""
        return PaymentStateMachine._check(payment.payment_id, payment.status, target)

    @staticmethod
    def validate_path(
        payment: Payment,
        targets: list[PaymentStatus],
    ) -> list[str]:
        """Check a sequence of transitions from the payment's current status.

        Stops at the first invalid step. The payment is not mutated.
        """
        current = payment.status
        for target in targets:
            errors = PaymentStateMachine._check(payment.payment_id, current, target)
            if errors:
                return errors
            current = target
        return []

    @staticmethod
    def apply_transition(
        payment: Payment,
        target: PaymentStatus,
    ) -> list[str]:
        """Validate and apply a status transition.

        Returns errors if the transition is invalid. On success,
        mutates payment.status and returns an empty list.
        """
        errors = PaymentStateMachine.validate_transition(payment, target)
        if errors:
            return errors
        payment.transition_to(target)
        return []

    @staticmethod
    def is_terminal(status: PaymentStatus) -> bool:
        """Check if a status is terminal (no further transitions)."""
        return status in _TERMINAL

    @staticmethod
    def is_releasable(status: PaymentStatus) -> bool:
        return status in _RELEASABLE

    @staticmethod
    def valid_transitions(status: PaymentStatus) -> set[PaymentStatus]:
        """Return the set of valid target statuses from the given status."""
        return set(PAYMENT_TRANSITIONS.get(status, frozenset()))

    @staticmethod
    def _check(
        payment_id: str,
        current: PaymentStatus,
        target: PaymentStatus,
    ) -> list[str]:
        allowed = PAYMENT_TRANSITIONS.get(current, frozenset())
        if target not in allowed:
            allowed_str = ", ".join(sorted(s.value for s in allowed))
            return [
                f"Invalid payment transition for {payment_id}: "
                f"{current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        return []
