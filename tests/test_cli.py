import os
from typing import List

import pytest
from click.testing import CliRunner

from infra_kit import cli, dispatcher, stack
from infra_kit.subprocess_utils import RunResult


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def engine_calls(monkeypatch: pytest.MonkeyPatch) -> List[list[str]]:
    calls: List[list[str]] = []

    def fake_run(cfg, cmd, *, extra_env=None, stream_output=True) -> RunResult:  # noqa: ANN001
        calls.append(cmd)
        return RunResult(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(dispatcher.preconditions, "check_engine", lambda cfg: None)
    monkeypatch.setattr(stack, "_run", fake_run)
    return calls


@pytest.mark.parametrize("args", [[], ["help"], ["-h"], ["--help"]])
def test_usage_exits_zero(runner: CliRunner, args: List[str]) -> None:
    result = runner.invoke(cli.main, args)

    assert result.exit_code == 0
    assert "up:proxy" in result.output
    assert "bootstrap-admin" in result.output


def test_unknown_command_prints_error_and_usage(runner: CliRunner, engine_calls) -> None:
    result = runner.invoke(cli.main, ["deploy"])

    assert result.exit_code == 2
    assert "ERROR:" in result.output
    assert "deploy" in result.output
    assert "up:staging" in result.output
    assert engine_calls == []


def test_command_names_are_case_sensitive(runner: CliRunner) -> None:
    result = runner.invoke(cli.main, ["UP:PROXY"])

    assert result.exit_code == 2


def test_restart_unknown_environment(runner: CliRunner, workdir, monkeypatch: pytest.MonkeyPatch) -> None:
    engine_checked: List[bool] = []
    monkeypatch.setattr(dispatcher.preconditions, "check_engine", lambda cfg: engine_checked.append(True))

    result = runner.invoke(cli.main, ["-C", str(workdir), "restart", "bogus-env", "api"])

    assert result.exit_code == 1
    assert "bogus-env" in result.output
    assert engine_checked == []


def test_up_staging_missing_files(runner: CliRunner, workdir, engine_calls) -> None:
    result = runner.invoke(cli.main, ["-C", str(workdir), "up:staging"])

    assert result.exit_code == 1
    assert "staging/api.env" in result.output
    assert engine_calls == []


def test_up_proxy_reads_contact_address_from_settings_file(runner: CliRunner, workdir, engine_calls) -> None:
    (workdir / ".env").write_text("ACME_EMAIL=ops@example.com\n")

    result = runner.invoke(cli.main, ["-C", str(workdir), "up:proxy"])

    assert result.exit_code == 0, result.output
    assert engine_calls[0][-4:] == ["up", "-d", "--pull", "always"]


def test_relative_chdir_resolves_stack_file_from_subprocess_cwd(
    runner: CliRunner, tmp_path, monkeypatch: pytest.MonkeyPatch
) -> None:
    deploy = tmp_path / "deploy"
    (deploy / "traefik").mkdir(parents=True)
    (deploy / "traefik" / "docker-compose.yml").write_text("services: {}\n")
    (deploy / ".env").write_text("ACME_EMAIL=ops@example.com\n")
    monkeypatch.chdir(tmp_path)

    calls: List[tuple] = []

    def fake_run_command(cmd, *, cwd=None, env=None, timeout=None, stream_output=False) -> RunResult:  # noqa: ANN001
        calls.append((cmd, cwd))
        return RunResult(returncode=0, stdout="", stderr="")

    monkeypatch.setattr(dispatcher.preconditions, "check_engine", lambda cfg: None)
    monkeypatch.setattr(stack, "run_command", fake_run_command)

    result = runner.invoke(cli.main, ["-C", "deploy", "up:proxy"])

    assert result.exit_code == 0, result.output
    cmd, cwd = calls[0]
    stack_file = cmd[cmd.index("-f") + 1]
    assert os.path.isabs(cwd)
    assert os.path.exists(os.path.join(cwd, stack_file))


def test_pull_with_empty_workdir(runner: CliRunner, workdir, engine_calls) -> None:
    result = runner.invoke(cli.main, ["-C", str(workdir), "pull"])

    assert result.exit_code == 0, result.output
    assert len(engine_calls) == 3


def test_check_single_environment(runner: CliRunner, workdir, env_files, engine_calls) -> None:
    env_files(workdir, "production")

    result = runner.invoke(cli.main, ["-C", str(workdir), "check", "production"])

    assert result.exit_code == 1
    assert "ACME_EMAIL" in result.output
    assert "production env files: OK" in result.output


def test_check_all_ok(runner: CliRunner, workdir, env_files, engine_calls) -> None:
    env_files(workdir, "staging")
    env_files(workdir, "production")
    (workdir / ".env").write_text("ACME_EMAIL=ops@example.com\n")

    result = runner.invoke(cli.main, ["-C", str(workdir), "check"])

    assert result.exit_code == 0, result.output
    assert "Checks OK" in result.output


def test_logs_default_container(runner: CliRunner, workdir, engine_calls) -> None:
    result = runner.invoke(cli.main, ["-C", str(workdir), "logs"])

    assert result.exit_code == 0, result.output
    assert engine_calls[-1] == ["docker", "logs", "-f", "traefik"]


def test_bootstrap_admin_rejects_invalid_email(runner: CliRunner, workdir, engine_calls) -> None:
    result = runner.invoke(cli.main, ["-C", str(workdir), "bootstrap-admin", "staging", "not-an-email"])

    assert result.exit_code == 2
    assert engine_calls == []


def test_bootstrap_admin_rejects_proxy(runner: CliRunner, workdir, engine_calls) -> None:
    result = runner.invoke(cli.main, ["-C", str(workdir), "bootstrap-admin", "proxy", "a@example.com"])

    assert result.exit_code == 1
    assert "staging, production" in result.output


def test_bootstrap_admin_without_terminal(runner: CliRunner, workdir, env_files, engine_calls) -> None:
    env_files(workdir, "staging")

    result = runner.invoke(cli.main, ["-C", str(workdir), "bootstrap-admin", "staging", "a@example.com"])

    assert result.exit_code == 1
    assert "터미널" in result.output
    assert engine_calls == []
