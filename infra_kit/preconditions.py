"""
preconditions
-------------

변경 작업 전에 실행하는 사전 조건 체크.
모든 체크는 파일시스템/설정만 읽는 순수 판정이며, 몇 번을 다시 돌려도 안전하다.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple

from .config import ACME_EMAIL, InfraConfig
from .environments import EnvironmentBundle
from .errors import (
    CommandError,
    EngineUnavailableError,
    InfraError,
    MissingCredentialError,
    MissingFilesError,
    PreconditionsFailedError,
)
from .logging_utils import get_logger
from .subprocess_utils import run_command


logger = get_logger(__name__)


def _run(cfg: InfraConfig, cmd: list[str]) -> None:
    run_command(cmd, cwd=cfg.base_dir, env=cfg.process_env(), timeout=30)


def check_engine(cfg: InfraConfig) -> None:
    """docker 바이너리 존재 + 데몬 응답 여부를 확인한다."""
    if shutil.which(cfg.docker_bin, path=cfg.environ.get("PATH")) is None:
        raise EngineUnavailableError(f"{cfg.docker_bin} 명령을 찾을 수 없습니다")
    try:
        _run(cfg, [cfg.docker_bin, "version"])
    except CommandError as e:
        logger.debug("docker version 실패: %s", e.output)
        raise EngineUnavailableError(f"{cfg.docker_bin} 가 응답하지 않습니다 (exit={e.returncode})") from e


def check_credential(cfg: InfraConfig, name: str) -> None:
    if not cfg.get(name):
        raise MissingCredentialError(name)


def missing_files(cfg: InfraConfig, bundle: EnvironmentBundle) -> List[str]:
    return [f for f in bundle.credential_files if not os.path.isfile(cfg.path(f))]


def check_required_files(cfg: InfraConfig, bundle: EnvironmentBundle) -> None:
    # 첫 번째 누락에서 멈추지 않고 전체 목록을 한 번에 보고한다.
    missing = missing_files(cfg, bundle)
    if missing:
        raise MissingFilesError(missing)


Check = Tuple[str, Callable[[], None]]


def bundle_checks(cfg: InfraConfig, bundle: EnvironmentBundle) -> List[Check]:
    checks: List[Check] = []
    for name in bundle.required_credentials:
        checks.append((f"credential {name}", lambda name=name: check_credential(cfg, name)))
    if bundle.credential_files:
        checks.append((f"{bundle.name} env files", lambda: check_required_files(cfg, bundle)))
    return checks


def _collect(checks: Iterable[Check]) -> List[Tuple[str, Optional[InfraError]]]:
    results: List[Tuple[str, Optional[InfraError]]] = []
    for label, check in checks:
        try:
            check()
        except InfraError as e:
            results.append((label, e))
        else:
            results.append((label, None))
    return results


def ensure_ready(cfg: InfraConfig, bundle: EnvironmentBundle) -> None:
    """
    환경의 모든 사전 조건을 실행하고 실패를 모아서 올린다.
    실패가 하나면 그 오류를 그대로, 여러 개면 PreconditionsFailedError 로 묶는다.
    """
    errors = [e for _, e in _collect(bundle_checks(cfg, bundle)) if e is not None]
    if len(errors) == 1:
        raise errors[0]
    if errors:
        raise PreconditionsFailedError(errors)


@dataclass
class CheckReport:
    results: List[Tuple[str, Optional[InfraError]]] = field(default_factory=list)

    @property
    def failures(self) -> List[InfraError]:
        return [e for _, e in self.results if e is not None]

    @property
    def ok(self) -> bool:
        return not self.failures

    def render(self) -> str:
        lines = ["# Pre-check"]
        for label, error in self.results:
            if error is None:
                lines.append(f"- {label}: OK")
            else:
                lines.append(f"- {label}: FAILED ({error})")
        return "\n".join(lines)


def run_checks(cfg: InfraConfig, bundles: Iterable[EnvironmentBundle]) -> CheckReport:
    """
    check 명령용. 인증서 연락처(ACME_EMAIL)는 proxy 가 모든 환경의 앞단이므로 항상 확인하고,
    선택된 환경들의 체크를 모두 실행한다. 중간에 멈추지 않는다.
    """
    checks: List[Check] = [(f"credential {ACME_EMAIL}", lambda: check_credential(cfg, ACME_EMAIL))]
    seen = {checks[0][0]}
    for bundle in bundles:
        for label, check in bundle_checks(cfg, bundle):
            if label in seen:
                continue
            seen.add(label)
            checks.append((label, check))
    return CheckReport(results=_collect(checks))
