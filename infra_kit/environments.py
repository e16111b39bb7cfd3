"""
environments
------------

배포 대상 환경(proxy / staging / production)과 각 환경의 리소스 묶음을 정의하는 고정 레지스트리.
동적 등록은 지원하지 않는다.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple, Union

from .config import ACME_EMAIL
from .errors import UnknownEnvironmentError


class Environment(str, enum.Enum):
    PROXY = "proxy"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass(frozen=True)
class EnvironmentBundle:
    environment: Environment
    compose_file: str
    project_name: str
    credential_files: Tuple[str, ...] = ()
    required_credentials: Tuple[str, ...] = ()
    uses_env_file: bool = False
    default_container: Optional[str] = None

    @property
    def name(self) -> str:
        return self.environment.value


def _app_credential_files(env_dir: str) -> Tuple[str, ...]:
    return tuple(f"{env_dir}/{name}.env" for name in ("api", "db", "admin"))


REGISTRY: Dict[Environment, EnvironmentBundle] = {
    Environment.PROXY: EnvironmentBundle(
        environment=Environment.PROXY,
        compose_file="traefik/docker-compose.yml",
        project_name="proxy",
        required_credentials=(ACME_EMAIL,),
        default_container="traefik",
    ),
    Environment.STAGING: EnvironmentBundle(
        environment=Environment.STAGING,
        compose_file="docker-compose.staging.yml",
        project_name="staging",
        credential_files=_app_credential_files("staging"),
        uses_env_file=True,
    ),
    Environment.PRODUCTION: EnvironmentBundle(
        environment=Environment.PRODUCTION,
        compose_file="docker-compose.prod.yml",
        project_name="production",
        credential_files=_app_credential_files("production"),
        uses_env_file=True,
    ),
}

# 기존 infra.sh 에서 쓰던 이름
ALIASES: Dict[str, Environment] = {
    "traefik": Environment.PROXY,
    "prod": Environment.PRODUCTION,
}

ALL_ENVIRONMENTS: Tuple[Environment, ...] = tuple(Environment)
APP_ENVIRONMENTS: Tuple[Environment, ...] = (Environment.STAGING, Environment.PRODUCTION)


def resolve(
    env_id: Union[str, Environment],
    allowed: Optional[Iterable[Environment]] = None,
) -> EnvironmentBundle:
    """
    환경 식별자를 리소스 묶음으로 변환한다.
    모르는 식별자는 허용 목록을 포함한 UnknownEnvironmentError 로 즉시 실패한다.
    """
    valid = tuple(allowed) if allowed is not None else ALL_ENVIRONMENTS

    env: Optional[Environment] = None
    if isinstance(env_id, Environment):
        env = env_id
    else:
        try:
            env = Environment(env_id)
        except ValueError:
            env = ALIASES.get(env_id)

    if env is None or env not in valid:
        raise UnknownEnvironmentError(getattr(env_id, "value", str(env_id)), [e.value for e in valid])
    return REGISTRY[env]
