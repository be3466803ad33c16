"""Tests for ledger parameter loading and validation."""

import json
from decimal import Decimal
from pathlib import Path

import pytest

from tracechain.config import (
    DEFAULT_CONFIG_DIR,
    LedgerConfig,
    PaymentParams,
    TokenParams,
    validate_config,
)
from tracechain.errors import ValidationError

_ENV_KEYS = ("TRACECHAIN_CONFIG_DIR", "TRACECHAIN_LOG_LEVEL", "TRACECHAIN_EVENT_LOG")


@pytest.fixture
def clean_env(monkeypatch):
    """Clear the TraceChain variables and restore them after the test."""
    for key in _ENV_KEYS:
        monkeypatch.setenv(key, "")
        monkeypatch.delenv(key)
    return monkeypatch


class TestLoading:
    def test_shipped_file_matches_defaults(self) -> None:
        assert LedgerConfig.from_config_dir(DEFAULT_CONFIG_DIR) == LedgerConfig.default()

    def test_missing_keys_fall_back(self) -> None:
        config = LedgerConfig.from_dict({"payments": {"platform_fee_bps": 100}})
        assert config.payments.platform_fee_bps == 100
        assert config.payments.max_milestones == PaymentParams().max_milestones
        assert config.token == TokenParams()

    def test_decimals_parsed_from_strings(self) -> None:
        config = LedgerConfig.from_dict({"factories": {"deployment_fee": "2.5"}})
        assert config.factories.deployment_fee == Decimal("2.5")

    def test_malformed_value(self) -> None:
        with pytest.raises(ValidationError, match="Malformed"):
            LedgerConfig.from_dict({"token": {"min_stake": "lots"}})

    def test_invariant_violation(self) -> None:
        with pytest.raises(ValidationError, match="total_supply"):
            LedgerConfig.from_dict({"token": {"team_allocation": "5"}})


class TestValidation:
    def test_defaults_valid(self) -> None:
        assert validate_config(LedgerConfig.default()) == []

    def test_each_section_checked(self) -> None:
        config = LedgerConfig(
            payments=PaymentParams(platform_fee_bps=20_000, treasury_account=" "),
        )
        errors = validate_config(config)
        assert any("platform_fee_bps" in e for e in errors)
        assert any("treasury_account" in e for e in errors)


class TestEnvironment:
    def test_env_overrides(self, clean_env, tmp_path: Path) -> None:
        clean_env.setenv("TRACECHAIN_LOG_LEVEL", "debug")
        clean_env.setenv("TRACECHAIN_EVENT_LOG", str(tmp_path / "events.jsonl"))
        config = LedgerConfig.from_env(tmp_path / "absent.env")
        assert config.log_level == "DEBUG"
        assert config.event_log_path == tmp_path / "events.jsonl"
        assert config.token == TokenParams()

    def test_dotenv_file_read(self, clean_env, tmp_path: Path) -> None:
        params = tmp_path / "cfg"
        params.mkdir()
        (params / "ledger_params.json").write_text(
            json.dumps({"compliance": {"pass_threshold": 55}}), encoding="utf-8",
        )
        dotenv = tmp_path / ".env"
        dotenv.write_text(f"TRACECHAIN_CONFIG_DIR={params}\n", encoding="utf-8")
        config = LedgerConfig.from_env(dotenv)
        assert config.compliance.pass_threshold == 55
        assert config.event_log_path is None
