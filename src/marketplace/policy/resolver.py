"""Policy resolver — loads settlement policy from config.

Commission and withholding-tax rates are policy values, not code. They
live in config/settlement_policy.json and can be overridden per
deployment from the environment (or a .env file):

    MARKETPLACE_COMMISSION_RATE=0.12
    MARKETPLACE_WITHHOLDING_TAX_RATE=0.03

Invalid policy is rejected when a SettlementPolicy is constructed, so no
engine or reporter can hold a policy that would produce a negative net
amount.
"""

from __future__ import annotations

import decimal
import json
import os
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping, Optional

from dotenv import dotenv_values

POLICY_FILE = "settlement_policy.json"

ENV_COMMISSION_RATE = "MARKETPLACE_COMMISSION_RATE"
ENV_WITHHOLDING_TAX_RATE = "MARKETPLACE_WITHHOLDING_TAX_RATE"

_ROUNDING_MODES = frozenset({
    decimal.ROUND_CEILING,
    decimal.ROUND_DOWN,
    decimal.ROUND_FLOOR,
    decimal.ROUND_HALF_DOWN,
    decimal.ROUND_HALF_EVEN,
    decimal.ROUND_HALF_UP,
    decimal.ROUND_UP,
    decimal.ROUND_05UP,
})


@dataclass(frozen=True)
class SettlementPolicy:
    """Rates and rounding applied by the settlement engine."""
    commission_rate: Decimal
    withholding_tax_rate: Decimal
    quantum: Decimal = Decimal("0.01")
    rounding: str = decimal.ROUND_HALF_EVEN
    currency: str = "THB"
    withholding_tax_document: str = "PND3"

    def __post_init__(self) -> None:
        errors = self.validate()
        if errors:
            raise ValueError(f"Invalid settlement policy: {'; '.join(errors)}")

    @staticmethod
    def default() -> SettlementPolicy:
        """10% platform commission, 3% withholding tax."""
        return SettlementPolicy(
            commission_rate=Decimal("0.10"),
            withholding_tax_rate=Decimal("0.03"),
        )

    def validate(self) -> list[str]:
        """Return policy errors (empty = OK)."""
        errors: list[str] = []
        for name in ("commission_rate", "withholding_tax_rate"):
            rate = getattr(self, name)
            if not isinstance(rate, Decimal):
                errors.append(f"{name} must be a Decimal, got {type(rate).__name__}")
            elif not rate.is_finite() or rate < 0 or rate > 1:
                errors.append(f"{name} must be a decimal in [0, 1], got {rate}")
        if not errors and self.commission_rate + self.withholding_tax_rate > 1:
            errors.append(
                f"commission_rate + withholding_tax_rate exceeds 1 "
                f"({self.commission_rate} + {self.withholding_tax_rate})"
            )
        if not isinstance(self.quantum, Decimal):
            errors.append(f"quantum must be a Decimal, got {type(self.quantum).__name__}")
        elif not self.quantum.is_finite() or self.quantum <= 0:
            errors.append(f"quantum must be positive, got {self.quantum}")
        if self.rounding not in _ROUNDING_MODES:
            errors.append(f"Unknown rounding mode: {self.rounding}")
        if not self.currency:
            errors.append("currency must not be empty")
        return errors


def _to_decimal(value: Any, field_name: str) -> Decimal:
    if isinstance(value, bool) or isinstance(value, float):
        # Rates are strings in config.
        raise ValueError(f"{field_name} must be a string or integer, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field_name} is not a decimal: {value!r}") from None


class PolicyResolver:
    """Resolves settlement policy for the engine and service layers.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        policy = resolver.settlement_policy()
    """

    def __init__(self, policy: SettlementPolicy) -> None:
        self._policy = policy

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load policy from <config_dir>/settlement_policy.json."""
        path = Path(config_dir) / POLICY_FILE
        if not path.exists():
            raise ValueError(f"Settlement policy not found: {path}")
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return cls(cls._parse(data))

    @classmethod
    def from_env(
        cls,
        config_dir: Path,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> PolicyResolver:
        """Load policy from config, then apply environment overrides.

        Values from env_file are read first; real environment variables
        take precedence over them.
        """
        base = cls.from_config_dir(config_dir).settlement_policy()

        overrides: dict[str, Optional[str]] = {}
        if env_file is not None and Path(env_file).exists():
            overrides.update(dotenv_values(env_file))
        source = os.environ if environ is None else environ
        for key in (ENV_COMMISSION_RATE, ENV_WITHHOLDING_TAX_RATE):
            if key in source:
                overrides[key] = source[key]

        policy = base
        if overrides.get(ENV_COMMISSION_RATE):
            policy = replace(
                policy,
                commission_rate=_to_decimal(
                    overrides[ENV_COMMISSION_RATE], ENV_COMMISSION_RATE,
                ),
            )
        if overrides.get(ENV_WITHHOLDING_TAX_RATE):
            policy = replace(
                policy,
                withholding_tax_rate=_to_decimal(
                    overrides[ENV_WITHHOLDING_TAX_RATE], ENV_WITHHOLDING_TAX_RATE,
                ),
            )
        return cls(policy)

    @staticmethod
    def _parse(data: dict[str, Any]) -> SettlementPolicy:
        section = data.get("settlement")
        if not isinstance(section, dict):
            raise ValueError("Settlement policy missing 'settlement' section")
        for required in ("commission_rate", "withholding_tax_rate"):
            if required not in section:
                raise ValueError(f"Settlement policy missing '{required}'")

        defaults = SettlementPolicy.default()
        return SettlementPolicy(
            commission_rate=_to_decimal(section["commission_rate"], "commission_rate"),
            withholding_tax_rate=_to_decimal(
                section["withholding_tax_rate"], "withholding_tax_rate",
            ),
            quantum=_to_decimal(section.get("quantum", defaults.quantum), "quantum"),
            rounding=section.get("rounding", defaults.rounding),
            currency=section.get("currency", defaults.currency),
            withholding_tax_document=section.get(
                "withholding_tax_document", defaults.withholding_tax_document,
            ),
        )

    def settlement_policy(self) -> SettlementPolicy:
        return self._policy

    def commission_rate(self) -> Decimal:
        return self._policy.commission_rate

    def withholding_tax_rate(self) -> Decimal:
        return self._policy.withholding_tax_rate
