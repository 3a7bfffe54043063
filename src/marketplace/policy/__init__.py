"""Settlement policy — rates, rounding, and their configuration sources."""

from marketplace.policy.resolver import PolicyResolver, SettlementPolicy

__all__ = ["PolicyResolver", "SettlementPolicy"]
