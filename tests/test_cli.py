"""Tests for TraceChain CLI — proves CLI dispatches correctly."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

from loguru import logger

from tracechain.cli import build_parser, main
from tracechain.persistence.event_log import EventLog
from tracechain.service import TraceChainService


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _write_log(path: Path) -> None:
    service = TraceChainService(event_log=EventLog(path), now=_now())
    service.register_product(
        "acme", "Vaccine lot", "pharmaceutical", "B-1",
        _now() - timedelta(days=1), _now() + timedelta(days=365), ["antigen"], now=_now(),
    )


class TestCLIParsing:
    def test_status_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["status"])
        assert args.command == "status"

    def test_verify_log_command(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["verify-log", "--path", "data/events.jsonl"])
        assert args.command == "verify-log"
        assert args.path == Path("data/events.jsonl")

    def test_global_options(self) -> None:
        parser = build_parser()
        args = parser.parse_args(["--config", "/tmp/cfg", "--log-level", "debug", "demo"])
        assert args.config == Path("/tmp/cfg")
        assert args.log_level == "debug"
        assert args.log_file is None


class TestCLIExecution:
    def test_status_runs(self, capsys) -> None:
        assert main(["status"]) == 0
        summary = json.loads(capsys.readouterr().out)
        assert summary["token"]["symbol"] == "TRACE"
        assert summary["platform_fee_bps"] == 250

    def test_check_config_passes(self, capsys) -> None:
        assert main(["check-config"]) == 0
        assert "Config check passed." in capsys.readouterr().out

    def test_check_config_reports_invariants(self, tmp_path: Path, capsys) -> None:
        (tmp_path / "ledger_params.json").write_text(
            json.dumps({"token": {"treasury_allocation": "1"}}), encoding="utf-8",
        )
        assert main(["--config", str(tmp_path), "check-config"]) == 1
        assert "total_supply" in capsys.readouterr().err

    def test_no_command_shows_help(self, capsys) -> None:
        assert main([]) == 0

    def test_demo_runs(self, capsys) -> None:
        assert main(["demo"]) == 0
        out = capsys.readouterr().out
        assert "register B-1: ok" in out
        assert "register B-1 again: rejected (state_conflict)" in out
        assert "certificate V-1 again: rejected (state_conflict)" in out
        assert "release milestone 1: rejected (state_conflict)" in out
        assert "resolve dispute 50%: ok" in out

    def test_verify_log_accepts_intact_log(self, tmp_path: Path, capsys) -> None:
        path = tmp_path / "events.jsonl"
        _write_log(path)
        assert main(["verify-log", "--path", str(path)]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["by_kind"]["product_registered"] == 1

    def test_verify_log_rejects_tampering(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        _write_log(path)
        lines = path.read_text(encoding="utf-8").splitlines()
        lines[-1] = lines[-1].replace("B-1", "B-2")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        assert main(["verify-log", "--path", str(path)]) == 1

    def test_verify_log_missing_file(self, tmp_path: Path) -> None:
        assert main(["verify-log", "--path", str(tmp_path / "none.jsonl")]) == 1

    def test_log_file_receives_rejections(self, tmp_path: Path) -> None:
        log_file = tmp_path / "tracechain.log"
        assert main(["--log-file", str(log_file), "demo"]) == 0
        logger.remove()
        assert "register_product rejected (state_conflict)" in log_file.read_text(encoding="utf-8")
