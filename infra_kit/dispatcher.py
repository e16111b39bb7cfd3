from __future__ import annotations

import shlex
from dataclasses import dataclass
from typing import Callable, ClassVar, Optional, Tuple, Union

from .config import InfraConfig
from .environments import ALL_ENVIRONMENTS, Environment, resolve
from .errors import InfraError, PreconditionsFailedError
from .logging_utils import get_logger
from . import preconditions, stack
from .secret_prompt import prompt_secret


logger = get_logger(__name__)

ADMIN_SERVICE = "api"


# ---------------------------------------------------------------
# 요청 타입. requires_preconditions 로 환경별 사전 체크 여부를 명시한다.
# ---------------------------------------------------------------
@dataclass(frozen=True)
class StartStack:
    environment: Environment
    requires_preconditions: ClassVar[bool] = True


@dataclass(frozen=True)
class PullAll:
    requires_preconditions: ClassVar[bool] = False


@dataclass(frozen=True)
class RestartService:
    environment: Environment
    service: str
    requires_preconditions: ClassVar[bool] = True


@dataclass(frozen=True)
class FollowLogs:
    container: Optional[str] = None
    requires_preconditions: ClassVar[bool] = False


@dataclass(frozen=True)
class CheckEnvironments:
    # check 는 체크 자체가 목적이므로 게이트 대신 execute 에서 모두 실행한다.
    environments: Tuple[Environment, ...] = ALL_ENVIRONMENTS
    requires_preconditions: ClassVar[bool] = False


@dataclass(frozen=True)
class BootstrapAdmin:
    environment: Environment
    email: str
    requires_preconditions: ClassVar[bool] = True


Request = Union[StartStack, PullAll, RestartService, FollowLogs, CheckEnvironments, BootstrapAdmin]


@dataclass(frozen=True)
class Success:
    message: str
    detail: str = ""


@dataclass(frozen=True)
class Failure:
    error: InfraError
    detail: str = ""

    @property
    def kind(self) -> str:
        return self.error.kind


Outcome = Union[Success, Failure]
Prompt = Callable[[str], str]


def _gate(cfg: InfraConfig, request: Request) -> None:
    if not request.requires_preconditions:
        return
    environment = getattr(request, "environment")
    preconditions.ensure_ready(cfg, resolve(environment))


def _execute(cfg: InfraConfig, request: Request, prompt: Prompt) -> Outcome:
    if isinstance(request, StartStack):
        stack.bring_up(cfg, request.environment)
        return Success(f"{request.environment.value} 스택이 기동되었습니다")

    if isinstance(request, PullAll):
        pulled = stack.pull_all(cfg)
        return Success("이미지 갱신 완료: " + ", ".join(pulled))

    if isinstance(request, RestartService):
        stack.restart_service(cfg, request.environment, request.service)
        return Success(f"{request.service} 서비스가 재배포되었습니다 ({request.environment.value})")

    if isinstance(request, FollowLogs):
        target = stack.follow_logs(cfg, request.container)
        return Success(f"{target} 로그 스트리밍 종료")

    if isinstance(request, CheckEnvironments):
        report = preconditions.run_checks(cfg, [resolve(e) for e in request.environments])
        if not report.ok:
            failures = report.failures
            error = failures[0] if len(failures) == 1 else PreconditionsFailedError(failures)
            return Failure(error, detail=report.render())
        return Success("Checks OK", detail=report.render())

    if isinstance(request, BootstrapAdmin):
        # 비밀 값은 이 호출에만 값으로 전달하고 어디에도 저장/로깅하지 않는다.
        password = prompt(f"{request.email} 관리자 비밀번호")
        stack.run_one_off(
            cfg,
            request.environment,
            ADMIN_SERVICE,
            shlex.split(cfg.admin_bootstrap_cmd),
            {"ADMIN_EMAIL": request.email, "ADMIN_PASSWORD": password},
        )
        return Success(f"{request.environment.value} 관리자 계정 생성 완료: {request.email}")

    raise TypeError(f"지원하지 않는 요청입니다: {request!r}")


def run(cfg: InfraConfig, request: Request, *, prompt: Prompt = prompt_secret) -> Outcome:
    """
    요청 하나를 실행한다.

    순서: 엔진 확인(모든 요청) -> 환경별 사전 조건(requires_preconditions 인 요청만) -> 실행.
    사전 조건이 실패하면 외부 변경 없이 바로 Failure 를 돌려준다.
    """
    logger.debug("요청: %s", request)
    try:
        preconditions.check_engine(cfg)
        _gate(cfg, request)
        return _execute(cfg, request, prompt)
    except InfraError as e:
        logger.debug("요청 실패: %s", e, exc_info=True)
        return Failure(e)
