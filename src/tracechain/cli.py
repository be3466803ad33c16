"""TraceChain CLI — command-line interface for the ledger-state engine.

Usage:
    python -m tracechain.cli status
    python -m tracechain.cli check-config
    python -m tracechain.cli verify-log --path data/events.jsonl
    python -m tracechain.cli demo
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from tracechain.config import DEFAULT_CONFIG_DIR, LedgerConfig, validate_config
from tracechain.errors import LedgerError
from tracechain.logging_setup import setup_logging
from tracechain.models.access import Role
from tracechain.models.certificate import CertificateType
from tracechain.persistence.event_log import EventLog
from tracechain.service import ServiceResult, TraceChainService


def _load_config(config_dir: Path) -> LedgerConfig:
    return LedgerConfig.from_config_dir(config_dir)


def _report(label: str, result: ServiceResult) -> bool:
    if result.success:
        print(f"{label}: ok {json.dumps(result.data, sort_keys=True)}")
    else:
        print(f"{label}: rejected ({result.error_kind.value}) {'; '.join(result.errors)}")
    return result.success


def cmd_status(args: argparse.Namespace) -> int:
    config = _load_config(args.config)
    summary = {
        "token": {
            "symbol": config.token.symbol,
            "total_supply": str(config.token.total_supply),
            "min_stake": str(config.token.min_stake),
            "staking_apy": str(config.token.staking_apy),
        },
        "rewards": {
            "max_daily_actions": config.rewards.max_daily_actions,
            "max_daily_rewards": str(config.rewards.max_daily_rewards),
            "categories": sorted(config.rewards.base_rates),
        },
        "compliance_pass_threshold": config.compliance.pass_threshold,
        "platform_fee_bps": config.payments.platform_fee_bps,
        "deployment_fee": str(config.factories.deployment_fee),
    }
    print(json.dumps(summary, indent=2))
    return 0


def cmd_check_config(args: argparse.Namespace) -> int:
    """Load the parameter file and report every violated invariant."""
    try:
        config = _load_config(args.config)
    except LedgerError as e:
        print(f"Config check failed: {e.reason}", file=sys.stderr)
        return 1
    errors = validate_config(config)
    if errors:
        print("Config check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Config check passed.")
    return 0


def cmd_verify_log(args: argparse.Namespace) -> int:
    if not args.path.exists():
        print(f"No event log at {args.path}", file=sys.stderr)
        return 1
    try:
        log = EventLog(storage_path=args.path)
    except ValueError as e:
        print(f"Event log verification failed: {e}", file=sys.stderr)
        return 1
    print(json.dumps({"events": log.count, "by_kind": log.count_by_kind()}, indent=2))
    return 0


def cmd_demo(args: argparse.Namespace) -> int:
    """Run the product → certificate → escrow walkthrough on a fresh engine."""
    config = _load_config(args.config)
    service = TraceChainService(config, admin="admin")
    now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    _report("register B-1", service.register_product(
        "manufacturer", "Vaccine lot", "pharmaceutical", "B-1",
        now - timedelta(days=1), now + timedelta(days=365), ["antigen"], now=now,
    ))
    _report("register B-1 again", service.register_product(
        "manufacturer", "Vaccine lot", "pharmaceutical", "B-1",
        now - timedelta(days=1), now + timedelta(days=365), ["antigen"], now=now,
    ))
    _report("certificate V-1", service.mint_certificate(
        "admin", "manufacturer", 1, CertificateType.QUALITY,
        now + timedelta(days=180), "Lab", "V-1", now=now,
    ))
    _report("certificate V-1 again", service.mint_certificate(
        "admin", "manufacturer", 1, CertificateType.AUTHENTICITY,
        now + timedelta(days=180), "Lab", "V-1", now=now,
    ))

    service.mint_settlement("admin", "buyer", Decimal("300"))
    service.grant_role("admin", Role.ARBITER, "arbiter")
    _report("escrow 300", service.create_escrow(
        "buyer", "manufacturer", Decimal("300"),
        [("lot 1", Decimal("100")), ("lot 2", Decimal("100")), ("lot 3", Decimal("100"))],
        now=now,
    ))
    _report("release milestone 0", service.release_milestone("buyer", 1, 0))
    _report("raise dispute", service.raise_dispute("buyer", 1, "late delivery"))
    _report("release milestone 1", service.release_milestone("buyer", 1, 1))
    _report("resolve dispute 50%", service.resolve_dispute("arbiter", 1, 50))

    print()
    for event in service.event_log.events():
        print(f"{event.event_id}  {event.event_kind.value:<28} {event.actor_id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tracechain",
        description="TraceChain — supply-chain ledger engine CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_DIR,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Log level for stderr output (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file, rotated at 500 MB",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show parameter summary")

    # check-config
    sub.add_parser("check-config", help="Validate ledger parameters")

    # verify-log
    p_log = sub.add_parser("verify-log", help="Verify a persisted event log")
    p_log.add_argument("--path", type=Path, required=True, help="JSONL event log path")

    # demo
    sub.add_parser("demo", help="Run the traceability walkthrough on a fresh engine")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(args.log_level.upper(), args.log_file)

    commands = {
        "status": cmd_status,
        "check-config": cmd_check_config,
        "verify-log": cmd_verify_log,
        "demo": cmd_demo,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
