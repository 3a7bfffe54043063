"""Settlement subsystem — engine, payment state machine, ledger, income reporting."""

from marketplace.settlement.engine import InvalidAmountError, SettlementEngine
from marketplace.settlement.income import IncomeReporter
from marketplace.settlement.ledger import TransactionLedger
from marketplace.settlement.state_machine import PaymentStateMachine

__all__ = [
    "IncomeReporter",
    "InvalidAmountError",
    "PaymentStateMachine",
    "SettlementEngine",
    "TransactionLedger",
]
