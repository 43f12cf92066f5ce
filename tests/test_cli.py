"""
tests/test_cli.py — ``python -m pulse`` Entry Point Tests
===========================================================
"""

from __future__ import annotations

from unittest.mock import patch

import pytest

from pulse.__main__ import main


@pytest.fixture
def no_env(tmp_path, monkeypatch):
    """Run from an empty directory with no .env, config, or database URL."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("PULSE_CONFIG", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr("pulse.__main__.load_dotenv", lambda: None)
    return tmp_path


class TestServe:
    def test_uses_configured_port(self, no_env):
        (no_env / "config.yaml").write_text("service_name: Pulse\napi_port: 8123\n", encoding="utf-8")
        with patch("pulse.__main__.uvicorn.run") as run:
            assert main(["serve", "--host", "0.0.0.0"]) == 0
        run.assert_called_once_with("pulse.api.main:app", host="0.0.0.0", port=8123)

    def test_missing_config_fails(self, no_env):
        with patch("pulse.__main__.uvicorn.run") as run:
            assert main(["serve"]) == 1
        run.assert_not_called()

    def test_config_without_port_fails(self, no_env):
        (no_env / "config.yaml").write_text("service_name: Pulse\n", encoding="utf-8")
        with patch("pulse.__main__.uvicorn.run") as run:
            assert main(["serve"]) == 1
        run.assert_not_called()


class TestSweepCommand:
    def test_missing_database_url_fails(self, no_env):
        assert main(["sweep", "all"]) == 1

    def test_runs_all_sweeps_without_config(self, no_env, db_engine):
        with patch("pulse.__main__.create_db_engine", return_value=db_engine), \
                patch("pulse.__main__.sweep_service.run_all_sweeps", return_value={}) as run_all:
            assert main(["sweep", "all"]) == 0
        assert run_all.call_args.kwargs["config"] is None

    def test_explicit_missing_config_is_fatal(self, no_env, db_engine):
        with patch("pulse.__main__.create_db_engine", return_value=db_engine):
            assert main(["--config", "nope.yaml", "sweep", "all"]) == 1

    def test_unknown_sweep_rejected_by_parser(self, no_env):
        with pytest.raises(SystemExit):
            main(["sweep", "cleanup_everything"])
