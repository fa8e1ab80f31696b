"""Smoke tests for the Tether CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner

from tether import __version__
from tether.cli import cli
from tether.runner.models import RunResult


def test_help() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "Tether" in result.output
    for command in ("init", "check", "run", "serve"):
        assert command in result.output


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert f"tether, version {__version__}" in result.output


def test_run_flags() -> None:
    result = CliRunner().invoke(cli, ["run", "--help"])
    assert result.exit_code == 0
    assert "--directory" in result.output
    assert "--timeout" in result.output
    assert "--verbose" in result.output


# ------------------------------------------------------------------ #
# tether check
# ------------------------------------------------------------------ #


@pytest.fixture()
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("TETHER_TIMEOUT", raising=False)
    monkeypatch.delenv("TETHER_DEFAULT_DIRECTORY", raising=False)
    monkeypatch.delenv("SLACK_BOT_TOKEN", raising=False)
    monkeypatch.delenv("SLACK_APP_TOKEN", raising=False)
    monkeypatch.delenv("TETHER_CONFIG", raising=False)
    return tmp_path


def test_check_no_config_errors(home: Path) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=home):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 1
        assert "Error:" in result.output
        assert "tether.yaml" in result.output


def test_check_summary(home: Path) -> None:
    (home / "api").mkdir()
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=home):
        Path("tether.yaml").write_text(
            "default_directory: \"~\"\n"
            "channel_directories: {C0123: ~/api}\n"
            "allowed_user_ids: [U1, U2]\n"
            "timeout: 120\n"
            "executable: /opt/bin/claude\n"
        )
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 0, result.output
        assert f"C0123 → {(home / 'api').resolve()}" in result.output
        assert "Allowed users:     2" in result.output
        assert "120s (+5s grace)" in result.output
        assert "/opt/bin/claude" in result.output
        assert "Slack bot token:   missing (set SLACK_BOT_TOKEN in .env)" in result.output
        assert "Slack app token:   missing (set SLACK_APP_TOKEN in .env)" in result.output


def test_check_invalid_config(home: Path) -> None:
    runner = CliRunner()
    with runner.isolated_filesystem(temp_dir=home):
        Path("custom.yaml").write_text("default_directory: /etc\nallowed_user_ids: []\n")
        result = runner.invoke(cli, ["check", "-f", "custom.yaml"])
        assert result.exit_code == 1
        assert "outside the home directory" in result.output


# ------------------------------------------------------------------ #
# tether run
# ------------------------------------------------------------------ #


def _mock_supervisor(result: RunResult) -> MagicMock:
    supervisor = MagicMock()
    supervisor.run = AsyncMock(return_value=result)
    return supervisor


def test_run_prints_result(home: Path) -> None:
    supervisor = _mock_supervisor(
        RunResult(success=True, output="All **good**", exit_code=0, duration_ms=2000)
    )
    runner = CliRunner()
    with (
        runner.isolated_filesystem(temp_dir=home) as cwd,
        patch("tether.commands.run.ProcessSupervisor", return_value=supervisor),
    ):
        result = runner.invoke(cli, ["run", "summarize", "--timeout", "30"])

        assert result.exit_code == 0, result.output
        assert "All good" in result.output
        request = supervisor.run.await_args.args[0]
        assert request.prompt == "summarize"
        assert request.timeout == 30
        assert request.cwd == Path(cwd).resolve()


def test_run_failure_exit_code(home: Path) -> None:
    supervisor = _mock_supervisor(RunResult(success=False, output="crashed", exit_code=1))
    runner = CliRunner()
    with (
        runner.isolated_filesystem(temp_dir=home),
        patch("tether.commands.run.ProcessSupervisor", return_value=supervisor),
    ):
        result = runner.invoke(cli, ["run", "do it"])
        assert result.exit_code == 1
        assert "crashed" in result.output


def test_run_rejects_forbidden_prompt(home: Path) -> None:
    with patch("tether.commands.run.ProcessSupervisor") as mock_cls:
        result = CliRunner().invoke(cli, ["run", "go --dangerously"])
    assert result.exit_code == 1
    assert "forbidden pattern" in result.output
    mock_cls.assert_not_called()


def test_run_uses_config_when_present(home: Path) -> None:
    (home / "proj").mkdir()
    supervisor = _mock_supervisor(RunResult(success=True, output="ok"))
    runner = CliRunner()
    with (
        runner.isolated_filesystem(temp_dir=home),
        patch("tether.commands.run.ProcessSupervisor", return_value=supervisor) as mock_cls,
    ):
        Path("tether.yaml").write_text(
            "default_directory: ~/proj\nallowed_user_ids: []\ntimeout: 45\ngrace_period: 3\n"
        )
        result = runner.invoke(cli, ["run", "hello"])

        assert result.exit_code == 0, result.output
        request = supervisor.run.await_args.args[0]
        assert request.cwd == (home / "proj").resolve()
        assert request.timeout == 45
        assert mock_cls.call_args.kwargs["grace_period"] == 3
