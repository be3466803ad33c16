#!/usr/bin/env python3
"""TraceChain invariant checks against the shipped ledger parameters."""

import json
import os
import sys
from decimal import Decimal
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from tracechain.config import PARAMS_FILENAME, LedgerConfig, validate_config  # noqa: E402
from tracechain.errors import LedgerError  # noqa: E402

load_dotenv(ROOT / ".env")
CONFIG_DIR = Path(os.environ.get("TRACECHAIN_CONFIG_DIR", str(ROOT / "config")))
REQUIRED_SECTIONS = ("token", "rewards", "registry", "compliance", "payments", "factories")


def load_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def check_structure(raw: dict, errors: list[str]) -> None:
    """The shipped file must spell out every section, not lean on defaults."""
    for section in REQUIRED_SECTIONS:
        if section not in raw:
            errors.append(f"Missing parameter section: {section}")
    if not raw.get("rewards", {}).get("base_rates"):
        errors.append("rewards.base_rates must define at least one category")


def check() -> int:
    path = CONFIG_DIR / PARAMS_FILENAME
    errors: list[str] = []

    raw = load_json(path)
    check_structure(raw, errors)

    try:
        config = LedgerConfig.from_dict(raw)
    except LedgerError as e:
        errors.append(e.reason)
        config = None

    if config is not None:
        errors.extend(validate_config(config))

        # --- Defaults must match the shipped file ---
        if config != LedgerConfig.default():
            errors.append("ledger_params.json drifted from LedgerConfig.default()")

        # --- Reward caps must admit at least one action ---
        smallest_rate = min(config.rewards.base_rates.values(), default=Decimal("0"))
        if smallest_rate > config.rewards.max_daily_rewards:
            errors.append("max_daily_rewards is below every base rate")

        # --- Staking must be reachable from the treasury pool ---
        if config.token.min_stake > config.token.treasury_allocation:
            errors.append("min_stake exceeds the treasury allocation")

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
