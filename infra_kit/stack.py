"""
stack
-----

환경별 docker compose 스택의 수명주기(기동/갱신, 이미지 pull, 단일 서비스 재배포,
로그 스트리밍, 일회성 작업 실행)를 담당하는 모듈.

모든 compose 호출은 환경의 프로젝트 이름(-p)과 스택 정의 파일(-f)로 범위가 제한된다.
"""

from __future__ import annotations

import os
from typing import Mapping, Optional, Sequence, Union

from .config import InfraConfig
from .environments import ALL_ENVIRONMENTS, Environment, EnvironmentBundle, resolve
from .errors import CommandError, ContainerNotFoundError, InfraError, TaskFailedError
from .logging_utils import get_logger
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)

EnvRef = Union[str, Environment, EnvironmentBundle]


def _bundle(env: EnvRef) -> EnvironmentBundle:
    if isinstance(env, EnvironmentBundle):
        return env
    return resolve(env)


def _run(
    cfg: InfraConfig,
    cmd: list[str],
    *,
    extra_env: Optional[Mapping[str, str]] = None,
    stream_output: bool = True,
) -> RunResult:
    return run_command(
        cmd,
        cwd=cfg.base_dir,
        env=cfg.process_env(extra_env),
        stream_output=stream_output,
    )


def compose_cmd(cfg: InfraConfig, bundle: EnvironmentBundle, *args: str) -> list[str]:
    cmd = [cfg.docker_bin, "compose"]
    if bundle.uses_env_file and os.path.exists(cfg.env_file_path):
        cmd += ["--env-file", cfg.env_file_path]
    cmd += ["-p", bundle.project_name, "-f", cfg.path(bundle.compose_file)]
    cmd += list(args)
    return cmd


def bring_up(cfg: InfraConfig, env: EnvRef) -> None:
    """
    최신 이미지를 받아 스택을 정의 파일 상태로 맞춘다.
    이미 떠 있으면 변경분만 반영되고, 처음이면 전부 생성된다.
    사전 조건 체크는 호출자(dispatcher)가 먼저 통과시켜야 한다.
    """
    bundle = _bundle(env)
    logger.info("스택 기동/갱신: %s", bundle.name)
    _run(cfg, compose_cmd(cfg, bundle, "up", "-d", "--pull", "always"))


def pull_all(cfg: InfraConfig) -> list[str]:
    """세 환경 모두의 이미지를 받는다. 비밀 값/설정 파일은 필요 없다."""
    pulled: list[str] = []
    for env in ALL_ENVIRONMENTS:
        bundle = resolve(env)
        logger.info("이미지 pull: %s", bundle.name)
        _run(cfg, compose_cmd(cfg, bundle, "pull"))
        pulled.append(bundle.name)
    return pulled


def restart_service(cfg: InfraConfig, env: EnvRef, service: str) -> None:
    # 환경 식별자를 먼저 검증하므로 잘못된 환경이면 docker 는 호출되지 않는다.
    bundle = _bundle(env)
    if not service:
        raise InfraError("재배포할 서비스 이름이 필요합니다.")
    logger.info("서비스 재배포: %s (%s)", service, bundle.name)
    _run(cfg, compose_cmd(cfg, bundle, "up", "-d", "--pull", "always", service))


def follow_logs(cfg: InfraConfig, container: Optional[str] = None) -> str:
    """
    컨테이너 로그를 인터럽트(Ctrl-C)까지 계속 따라간다.
    컨테이너를 지정하지 않으면 proxy 컨테이너를 사용한다.
    """
    target = container or cfg.proxy_container
    try:
        _run(cfg, [cfg.docker_bin, "container", "inspect", target], stream_output=False)
    except CommandError as e:
        raise ContainerNotFoundError(target) from e

    try:
        _run(cfg, [cfg.docker_bin, "logs", "-f", target])
    except KeyboardInterrupt:
        logger.info("로그 스트리밍을 종료합니다: %s", target)
    return target


def run_one_off(
    cfg: InfraConfig,
    env: EnvRef,
    service: str,
    command: Sequence[str],
    extra_env: Optional[Mapping[str, str]] = None,
) -> RunResult:
    """
    서비스의 새 인스턴스에서 일회성 작업을 실행한다. (docker compose run --rm)

    extra_env 는 값 없이 `-e KEY` 로만 전달하고 실제 값은 이 호출의 프로세스 환경으로만 넘긴다.
    그래서 argv, 로그, 스택 정의 어디에도 값이 남지 않는다.
    """
    bundle = _bundle(env)
    extra_env = dict(extra_env or {})

    args: list[str] = ["run", "--rm", "-T"]
    for key in sorted(extra_env):
        args += ["-e", key]
    args.append(service)
    args += list(command)

    logger.info("일회성 작업 실행: %s/%s", bundle.name, service)
    try:
        return _run(cfg, compose_cmd(cfg, bundle, *args), extra_env=extra_env)
    except CommandError as e:
        lines = [line for line in e.output.splitlines() if line.strip()]
        raise TaskFailedError(e.returncode, lines[-1].strip() if lines else "") from e
