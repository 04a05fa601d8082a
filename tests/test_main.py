"""Tests for the command line entry point."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from token_sniper.__main__ import build_parser, main
from token_sniper.config import clear_settings_cache


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Run every test away from any local .env file."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "PUMPPORTAL_ENABLED",
        "PUMPPORTAL_API_KEY",
        "HELIUS_API_KEY",
        "DEXSCREENER_ENABLED",
        "EXECUTION_PROVIDER",
        "EXECUTION_SIGNING_SERVICE_URL",
        "INGEST_DEDUP_MAX_ENTRIES",
        "INGEST_DEDUP_TRIM_TO",
        "DRY_RUN",
    ):
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


class TestParser:
    def test_run_dry_run(self) -> None:
        args = build_parser().parse_args(["run", "--dry-run"])
        assert args.command == "run"
        assert args.dry_run is True

    def test_run_defaults_to_settings(self) -> None:
        assert build_parser().parse_args(["run"]).dry_run is None

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestMain:
    def test_check_config(self, capsys) -> None:
        assert main(["check-config"]) == 0

        out = capsys.readouterr().out
        assert '"sources"' in out
        assert "Selected provider: direct" in out
        assert "Disabled provider direct" in out
        assert "Disabled provider routed" in out

    def test_run_without_sources(self, monkeypatch, capsys) -> None:
        monkeypatch.setenv("PUMPPORTAL_ENABLED", "false")
        monkeypatch.setenv("DEXSCREENER_ENABLED", "false")

        assert main(["run"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_setting(self, monkeypatch, capsys) -> None:
        monkeypatch.setenv("EXECUTION_PROVIDER", "bogus")

        assert main(["check-config"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_run_passes_dry_run(self) -> None:
        pipeline = MagicMock()
        pipeline.run = AsyncMock()

        with patch("token_sniper.__main__.Pipeline", return_value=pipeline) as pipeline_cls:
            assert main(["run", "--dry-run"]) == 0

        assert pipeline_cls.call_args.kwargs["dry_run"] is True
        pipeline.run.assert_awaited_once()
        assert pipeline.add_match_sink.call_count == 1
        assert pipeline.add_result_sink.call_count == 1
