from typing import Any, List, Tuple

import pytest

from infra_kit import dispatcher
from infra_kit.config import InfraConfig
from infra_kit.dispatcher import (
    BootstrapAdmin,
    CheckEnvironments,
    Failure,
    FollowLogs,
    PullAll,
    RestartService,
    StartStack,
    Success,
)
from infra_kit.environments import Environment
from infra_kit.errors import (
    EngineUnavailableError,
    MissingCredentialError,
    MissingFilesError,
    PreconditionsFailedError,
    SecretMismatchError,
)


@pytest.fixture
def stack_calls(monkeypatch: pytest.MonkeyPatch) -> List[Tuple[str, Any]]:
    calls: List[Tuple[str, Any]] = []

    monkeypatch.setattr(dispatcher.preconditions, "check_engine", lambda cfg: None)
    monkeypatch.setattr(dispatcher.stack, "bring_up", lambda cfg, env: calls.append(("bring_up", env)))
    monkeypatch.setattr(
        dispatcher.stack,
        "pull_all",
        lambda cfg: calls.append(("pull_all", None)) or ["proxy", "staging", "production"],
    )
    monkeypatch.setattr(
        dispatcher.stack,
        "restart_service",
        lambda cfg, env, service: calls.append(("restart_service", (env, service))),
    )
    monkeypatch.setattr(
        dispatcher.stack,
        "follow_logs",
        lambda cfg, container: calls.append(("follow_logs", container)) or (container or "traefik"),
    )
    monkeypatch.setattr(
        dispatcher.stack,
        "run_one_off",
        lambda cfg, env, service, command, extra_env: calls.append(
            ("run_one_off", (env, service, tuple(command), dict(extra_env)))
        ),
    )
    return calls


def _cfg(base, **environ: str) -> InfraConfig:
    return InfraConfig.load(str(base), environ=environ)


def test_precondition_attribute_per_request() -> None:
    assert StartStack.requires_preconditions
    assert RestartService.requires_preconditions
    assert BootstrapAdmin.requires_preconditions
    assert not PullAll.requires_preconditions
    assert not FollowLogs.requires_preconditions
    assert not CheckEnvironments.requires_preconditions


def test_engine_unavailable_blocks_every_request(workdir, monkeypatch: pytest.MonkeyPatch) -> None:
    def unavailable(cfg: InfraConfig) -> None:
        raise EngineUnavailableError("docker 명령을 찾을 수 없습니다")

    called: List[str] = []
    monkeypatch.setattr(dispatcher.preconditions, "check_engine", unavailable)
    monkeypatch.setattr(dispatcher.stack, "pull_all", lambda cfg: called.append("pull"))

    outcome = dispatcher.run(_cfg(workdir), PullAll())

    assert isinstance(outcome, Failure)
    assert outcome.kind == "EngineUnavailableError"
    assert called == []


def test_start_staging_missing_files_fails_closed(workdir, stack_calls) -> None:
    outcome = dispatcher.run(_cfg(workdir), StartStack(Environment.STAGING))

    assert isinstance(outcome, Failure)
    assert isinstance(outcome.error, MissingFilesError)
    assert len(outcome.error.paths) == 3
    assert stack_calls == []


def test_start_proxy_requires_contact_address(workdir, stack_calls) -> None:
    outcome = dispatcher.run(_cfg(workdir), StartStack(Environment.PROXY))
    assert isinstance(outcome, Failure)
    assert isinstance(outcome.error, MissingCredentialError)

    outcome = dispatcher.run(_cfg(workdir, ACME_EMAIL="ops@example.com"), StartStack(Environment.PROXY))
    assert isinstance(outcome, Success)
    assert stack_calls == [("bring_up", Environment.PROXY)]


def test_start_production_with_files(workdir, env_files, stack_calls) -> None:
    env_files(workdir, "production")

    outcome = dispatcher.run(_cfg(workdir), StartStack(Environment.PRODUCTION))

    assert isinstance(outcome, Success)
    assert stack_calls == [("bring_up", Environment.PRODUCTION)]


def test_pull_all_without_any_config(workdir, stack_calls) -> None:
    outcome = dispatcher.run(_cfg(workdir), PullAll())

    assert isinstance(outcome, Success)
    assert stack_calls == [("pull_all", None)]


def test_restart_is_gated_on_environment_files(workdir, env_files, stack_calls) -> None:
    outcome = dispatcher.run(_cfg(workdir), RestartService(Environment.STAGING, "api"))
    assert isinstance(outcome, Failure)
    assert stack_calls == []

    env_files(workdir, "staging")
    outcome = dispatcher.run(_cfg(workdir), RestartService(Environment.STAGING, "api"))
    assert isinstance(outcome, Success)
    assert stack_calls == [("restart_service", (Environment.STAGING, "api"))]


def test_logs_skip_credential_checks(workdir, stack_calls) -> None:
    outcome = dispatcher.run(_cfg(workdir), FollowLogs())

    assert isinstance(outcome, Success)
    assert stack_calls == [("follow_logs", None)]


def test_check_reports_credential_when_files_present(workdir, env_files, stack_calls) -> None:
    env_files(workdir, "staging")

    outcome = dispatcher.run(_cfg(workdir), CheckEnvironments((Environment.STAGING,)))

    assert isinstance(outcome, Failure)
    assert isinstance(outcome.error, MissingCredentialError)
    assert "staging env files: OK" in outcome.detail
    assert stack_calls == []


def test_check_aggregates_credential_and_file_failures(workdir, stack_calls) -> None:
    outcome = dispatcher.run(_cfg(workdir), CheckEnvironments((Environment.STAGING,)))

    assert isinstance(outcome, Failure)
    assert isinstance(outcome.error, PreconditionsFailedError)
    assert "ACME_EMAIL" in str(outcome.error)
    assert "staging/api.env" in str(outcome.error)


def test_check_all_ok(workdir, env_files, stack_calls) -> None:
    env_files(workdir, "staging")
    env_files(workdir, "production")

    outcome = dispatcher.run(_cfg(workdir, ACME_EMAIL="ops@example.com"), CheckEnvironments())

    assert isinstance(outcome, Success)
    assert outcome.message == "Checks OK"
    assert "FAILED" not in outcome.detail


def test_bootstrap_admin_mismatch_stops_before_task(workdir, env_files, stack_calls) -> None:
    env_files(workdir, "staging")

    def mismatched(label: str) -> str:
        raise SecretMismatchError()

    outcome = dispatcher.run(
        _cfg(workdir),
        BootstrapAdmin(Environment.STAGING, "admin@example.com"),
        prompt=mismatched,
    )

    assert isinstance(outcome, Failure)
    assert outcome.kind == "SecretMismatchError"
    assert stack_calls == []


def test_bootstrap_admin_missing_files_does_not_prompt(workdir, stack_calls) -> None:
    prompted: List[str] = []

    outcome = dispatcher.run(
        _cfg(workdir),
        BootstrapAdmin(Environment.PRODUCTION, "admin@example.com"),
        prompt=lambda label: prompted.append(label) or "pw",
    )

    assert isinstance(outcome, Failure)
    assert prompted == []


def test_bootstrap_admin_runs_one_off_with_secret(workdir, env_files, stack_calls) -> None:
    env_files(workdir, "production")
    cfg = _cfg(workdir, ADMIN_BOOTSTRAP_CMD="python -m app.cli create-admin")

    outcome = dispatcher.run(
        cfg,
        BootstrapAdmin(Environment.PRODUCTION, "admin@example.com"),
        prompt=lambda label: "s3cret",
    )

    assert isinstance(outcome, Success)
    assert stack_calls == [
        (
            "run_one_off",
            (
                Environment.PRODUCTION,
                "api",
                ("python", "-m", "app.cli", "create-admin"),
                {"ADMIN_EMAIL": "admin@example.com", "ADMIN_PASSWORD": "s3cret"},
            ),
        )
    ]
    assert "s3cret" not in outcome.message
