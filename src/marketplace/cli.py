"""Marketplace CLI — command-line interface for the settlement engine.

Usage:
    python -m marketplace.cli policy
    python -m marketplace.cli calculate --gross 1000.00
    python -m marketplace.cli settle --booking-id BK-001 --provider-id prov_1 --gross 1000.00
    python -m marketplace.cli settle --booking-id BK-001 --provider-id prov_1 --gross 1000.00 --release
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

from marketplace.models.booking import Booking, BookingStatus
from marketplace.models.payment import PaymentMethod
from marketplace.persistence.event_log import EventKind, EventLog
from marketplace.policy.resolver import PolicyResolver
from marketplace.service import MarketplaceService
from marketplace.settlement.engine import InvalidAmountError, SettlementEngine


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"


def _resolver(args: argparse.Namespace) -> PolicyResolver:
    return PolicyResolver.from_env(args.config, env_file=args.env_file)


def _parse_amount(raw: str) -> Decimal:
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise InvalidAmountError(f"Not a decimal amount: {raw!r}") from None


def cmd_policy(args: argparse.Namespace) -> int:
    policy = _resolver(args).settlement_policy()
    print(json.dumps({
        "commission_rate": str(policy.commission_rate),
        "withholding_tax_rate": str(policy.withholding_tax_rate),
        "quantum": str(policy.quantum),
        "rounding": policy.rounding,
        "currency": policy.currency,
        "withholding_tax_document": policy.withholding_tax_document,
    }, indent=2))
    return 0


def cmd_calculate(args: argparse.Namespace) -> int:
    engine = SettlementEngine(_resolver(args).settlement_policy())
    try:
        calc = engine.calculate_payment(_parse_amount(args.gross))
    except InvalidAmountError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({
        "gross_amount": str(calc.gross_amount),
        "commission_amount": str(calc.commission_amount),
        "withholding_tax_amount": str(calc.withholding_tax_amount),
        "net_amount": str(calc.net_amount),
    }, indent=2))
    return 0


def cmd_settle(args: argparse.Namespace) -> int:
    """Run a completed booking through capture (and optionally release)."""
    try:
        gross = _parse_amount(args.gross)
    except InvalidAmountError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1

    event_log: Optional[EventLog] = None
    if args.data is not None:
        args.data.mkdir(parents=True, exist_ok=True)
        event_log = EventLog(storage_path=args.data / "events.jsonl")
        # The log persists across runs; payments and ledger do not.
        if event_log.events_for(
            "booking_id", args.booking_id, EventKind.BOOKING_REGISTERED,
        ):
            print(
                f"Failed: booking {args.booking_id} already settled in {args.data}",
                file=sys.stderr,
            )
            return 1
    service = MarketplaceService(_resolver(args), event_log=event_log)

    booking = Booking(
        booking_id=args.booking_id,
        client_id=args.client_id,
        provider_id=args.provider_id,
        total_amount=gross,
        status=BookingStatus.COMPLETED,
        completed_utc=datetime.now(timezone.utc),
    )
    result = service.register_booking(booking)
    if result.success:
        result = service.create_payment(
            args.booking_id, PaymentMethod(args.method), gateway=args.gateway,
        )
    if result.success:
        payment_id = result.data["payment_id"]
        result = service.confirm_payment(payment_id, args.gateway_ref)
        if result.success and args.release:
            result = service.release_payment(payment_id)
        elif result.success:
            result = service.hold_payment(payment_id)

    if not result.success:
        print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
        return 1

    payment = service.get_payment_for_booking(args.booking_id)
    output = dict(result.data)
    output["transactions"] = [
        {
            "transaction_type": t.transaction_type.value,
            "amount": str(t.amount),
            "description": t.description,
        }
        for t in service.get_transactions(payment.payment_id)
    ]
    print(json.dumps(output, indent=2, ensure_ascii=False))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketplace",
        description="Job/service marketplace — settlement CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Optional .env file with rate overrides",
    )
    sub = parser.add_subparsers(dest="command")

    # policy
    sub.add_parser("policy", help="Show the active settlement policy")

    # calculate
    p_calc = sub.add_parser("calculate", help="Split a gross amount")
    p_calc.add_argument("--gross", required=True, help="Gross amount (Decimal)")

    # settle
    p_settle = sub.add_parser("settle", help="Settle a completed booking")
    p_settle.add_argument("--booking-id", required=True, help="Booking ID")
    p_settle.add_argument("--provider-id", required=True, help="Provider ID")
    p_settle.add_argument("--client-id", default="client", help="Client ID")
    p_settle.add_argument("--gross", required=True, help="Gross amount (Decimal)")
    p_settle.add_argument(
        "--method", default=PaymentMethod.CREDIT_CARD.value,
        choices=[m.value for m in PaymentMethod],
        help="Payment method (default: credit_card)",
    )
    p_settle.add_argument("--gateway", help="Payment gateway name")
    p_settle.add_argument("--gateway-ref", help="Gateway transaction ID")
    p_settle.add_argument(
        "--release", action="store_true",
        help="Release funds to the provider instead of holding them",
    )
    p_settle.add_argument(
        "--data", type=Path, default=None,
        help=(
            "Directory for the durable audit log (default: in-memory). "
            "Booking IDs already in the log are refused."
        ),
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "policy": cmd_policy,
        "calculate": cmd_calculate,
        "settle": cmd_settle,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
