"""Ledger parameters — loaded from config/ledger_params.json.

The parameter file is the single source for every limit, rate and fee the
components enforce. Components receive the relevant params block at
construction and never read the environment themselves.

Environment (read by LedgerConfig.from_env via python-dotenv):
    TRACECHAIN_CONFIG_DIR  directory holding ledger_params.json
    TRACECHAIN_LOG_LEVEL   loguru level for setup_logging (default INFO)
    TRACECHAIN_EVENT_LOG   JSONL path for durable event persistence
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

from tracechain.errors import ValidationError


PARAMS_FILENAME = "ledger_params.json"
DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@dataclass(frozen=True)
class TokenParams:
    name: str = "TraceChain Token"
    symbol: str = "TRACE"
    total_supply: Decimal = Decimal("1000000000")
    ecosystem_allocation: Decimal = Decimal("200000000")
    team_allocation: Decimal = Decimal("100000000")
    treasury_allocation: Decimal = Decimal("700000000")
    min_stake: Decimal = Decimal("1000")
    staking_lock_days: int = 7
    staking_apy: Decimal = Decimal("0.05")


@dataclass(frozen=True)
class RewardParams:
    min_action_interval_seconds: int = 60
    max_daily_actions: int = 100
    max_daily_rewards: Decimal = Decimal("1000")
    max_batch_size: int = 50
    max_multiplier: int = 500
    max_bonus: Decimal = Decimal("100")
    base_rates: dict[str, Decimal] = field(default_factory=lambda: {
        "product_registration": Decimal("10"),
        "checkpoint_added": Decimal("10"),
        "certificate_verified": Decimal("5"),
        "compliance_check": Decimal("15"),
        "onboarding": Decimal("50"),
        "referral": Decimal("25"),
    })


@dataclass(frozen=True)
class RegistryParams:
    max_batch_size: int = 50


@dataclass(frozen=True)
class ComplianceParams:
    pass_threshold: int = 70


@dataclass(frozen=True)
class PaymentParams:
    platform_fee_bps: int = 250
    max_milestones: int = 20
    treasury_account: str = "platform:treasury"


@dataclass(frozen=True)
class FactoryParams:
    deployment_fee: Decimal = Decimal("0.1")


@dataclass(frozen=True)
class LedgerConfig:
    """Complete, validated parameter set for one engine."""
    token: TokenParams = field(default_factory=TokenParams)
    rewards: RewardParams = field(default_factory=RewardParams)
    registry: RegistryParams = field(default_factory=RegistryParams)
    compliance: ComplianceParams = field(default_factory=ComplianceParams)
    payments: PaymentParams = field(default_factory=PaymentParams)
    factories: FactoryParams = field(default_factory=FactoryParams)
    log_level: str = "INFO"
    event_log_path: Optional[Path] = None

    @classmethod
    def default(cls) -> LedgerConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LedgerConfig:
        """Build a config from the parsed JSON structure.

        Missing sections and keys fall back to the built-in defaults.
        Raises ValidationError if the result violates a parameter invariant.
        """
        try:
            token = data.get("token", {})
            rewards = data.get("rewards", {})
            registry = data.get("registry", {})
            compliance = data.get("compliance", {})
            payments = data.get("payments", {})
            factories = data.get("factories", {})

            d_token = TokenParams()
            d_rewards = RewardParams()
            config = cls(
                token=TokenParams(
                    name=token.get("name", d_token.name),
                    symbol=token.get("symbol", d_token.symbol),
                    total_supply=_dec(token.get("total_supply", d_token.total_supply)),
                    ecosystem_allocation=_dec(
                        token.get("ecosystem_allocation", d_token.ecosystem_allocation)
                    ),
                    team_allocation=_dec(token.get("team_allocation", d_token.team_allocation)),
                    treasury_allocation=_dec(
                        token.get("treasury_allocation", d_token.treasury_allocation)
                    ),
                    min_stake=_dec(token.get("min_stake", d_token.min_stake)),
                    staking_lock_days=int(
                        token.get("staking_lock_days", d_token.staking_lock_days)
                    ),
                    staking_apy=_dec(token.get("staking_apy", d_token.staking_apy)),
                ),
                rewards=RewardParams(
                    min_action_interval_seconds=int(rewards.get(
                        "min_action_interval_seconds",
                        d_rewards.min_action_interval_seconds,
                    )),
                    max_daily_actions=int(
                        rewards.get("max_daily_actions", d_rewards.max_daily_actions)
                    ),
                    max_daily_rewards=_dec(
                        rewards.get("max_daily_rewards", d_rewards.max_daily_rewards)
                    ),
                    max_batch_size=int(
                        rewards.get("max_batch_size", d_rewards.max_batch_size)
                    ),
                    max_multiplier=int(
                        rewards.get("max_multiplier", d_rewards.max_multiplier)
                    ),
                    max_bonus=_dec(rewards.get("max_bonus", d_rewards.max_bonus)),
                    base_rates={
                        k: _dec(v)
                        for k, v in rewards.get("base_rates", d_rewards.base_rates).items()
                    },
                ),
                registry=RegistryParams(
                    max_batch_size=int(
                        registry.get("max_batch_size", RegistryParams.max_batch_size)
                    ),
                ),
                compliance=ComplianceParams(
                    pass_threshold=int(
                        compliance.get("pass_threshold", ComplianceParams.pass_threshold)
                    ),
                ),
                payments=PaymentParams(
                    platform_fee_bps=int(
                        payments.get("platform_fee_bps", PaymentParams.platform_fee_bps)
                    ),
                    max_milestones=int(
                        payments.get("max_milestones", PaymentParams.max_milestones)
                    ),
                    treasury_account=payments.get(
                        "treasury_account", PaymentParams.treasury_account
                    ),
                ),
                factories=FactoryParams(
                    deployment_fee=_dec(
                        factories.get("deployment_fee", FactoryParams.deployment_fee)
                    ),
                ),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Malformed ledger parameters: {e}") from e

        errors = validate_config(config)
        if errors:
            raise ValidationError("Invalid ledger parameters: " + "; ".join(errors))
        return config

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> LedgerConfig:
        """Load ledger_params.json from a config directory."""
        path = Path(config_dir) / PARAMS_FILENAME
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, dotenv_path: Optional[Path] = None) -> LedgerConfig:
        """Load from the environment, reading a .env file first if present."""
        load_dotenv(dotenv_path)
        config_dir = Path(os.environ.get("TRACECHAIN_CONFIG_DIR", str(DEFAULT_CONFIG_DIR)))
        if (config_dir / PARAMS_FILENAME).exists():
            config = cls.from_config_dir(config_dir)
        else:
            config = cls.default()

        event_log = os.environ.get("TRACECHAIN_EVENT_LOG")
        return LedgerConfig(
            token=config.token,
            rewards=config.rewards,
            registry=config.registry,
            compliance=config.compliance,
            payments=config.payments,
            factories=config.factories,
            log_level=os.environ.get("TRACECHAIN_LOG_LEVEL", config.log_level).upper(),
            event_log_path=Path(event_log) if event_log else None,
        )


def validate_config(config: LedgerConfig) -> list[str]:
    """Check parameter invariants. Returns errors (empty = valid)."""
    errors: list[str] = []
    token = config.token

    if token.total_supply <= 0:
        errors.append("token.total_supply must be positive")
    pools = token.ecosystem_allocation + token.team_allocation + token.treasury_allocation
    if pools != token.total_supply:
        errors.append(
            f"token pool allocations ({pools}) must equal total_supply ({token.total_supply})"
        )
    for label, value in (
        ("ecosystem_allocation", token.ecosystem_allocation),
        ("team_allocation", token.team_allocation),
        ("treasury_allocation", token.treasury_allocation),
    ):
        if value < 0:
            errors.append(f"token.{label} must be >= 0")
    if token.min_stake <= 0:
        errors.append("token.min_stake must be positive")
    if token.staking_lock_days < 0:
        errors.append("token.staking_lock_days must be >= 0")
    if not (Decimal("0") <= token.staking_apy <= Decimal("1")):
        errors.append("token.staking_apy must be in [0, 1]")

    rewards = config.rewards
    if rewards.min_action_interval_seconds < 0:
        errors.append("rewards.min_action_interval_seconds must be >= 0")
    if rewards.max_daily_actions <= 0:
        errors.append("rewards.max_daily_actions must be positive")
    if rewards.max_daily_rewards <= 0:
        errors.append("rewards.max_daily_rewards must be positive")
    if rewards.max_batch_size <= 0:
        errors.append("rewards.max_batch_size must be positive")
    if rewards.max_multiplier < 100:
        errors.append("rewards.max_multiplier must be >= 100")
    if rewards.max_bonus < 0:
        errors.append("rewards.max_bonus must be >= 0")
    for action, rate in rewards.base_rates.items():
        if rate <= 0:
            errors.append(f"rewards.base_rates[{action}] must be positive")

    if config.registry.max_batch_size <= 0:
        errors.append("registry.max_batch_size must be positive")
    if not (0 <= config.compliance.pass_threshold <= 100):
        errors.append("compliance.pass_threshold must be in [0, 100]")

    payments = config.payments
    if not (0 <= payments.platform_fee_bps <= 10_000):
        errors.append("payments.platform_fee_bps must be in [0, 10000]")
    if payments.max_milestones <= 0:
        errors.append("payments.max_milestones must be positive")
    if not payments.treasury_account.strip():
        errors.append("payments.treasury_account must not be empty")

    if config.factories.deployment_fee < 0:
        errors.append("factories.deployment_fee must be >= 0")
    return errors


def _dec(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"not a decimal: {value!r}") from e
