from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from dotenv import dotenv_values


DEFAULT_ENV_FILE = ".env"
DEFAULT_ADMIN_BOOTSTRAP_CMD = "python scripts/bootstrap_admin.py"
DEFAULT_PROXY_CONTAINER = "traefik"

ACME_EMAIL = "ACME_EMAIL"

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}


def read_env_file(path: str) -> dict[str, str]:
    """
    .env 형식 파일을 읽어 dict 로 반환한다. 파일이 없으면 빈 dict.
    값이 없는 키(None)는 제외한다.
    """
    if not os.path.exists(path):
        return {}
    return {k: v for k, v in dotenv_values(dotenv_path=path).items() if v is not None}


def parse_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class InfraConfig:
    """
    한 번의 실행 동안 사용하는 불변 설정.

    settings 파일(.env)은 os.environ 에 export 하지 않고,
    프로세스 환경변수 위에 덮어쓴 읽기 전용 mapping(environ)으로만 보관한다.
    하위 프로세스(docker compose 등)에는 이 mapping 을 그대로 넘긴다.
    """

    base_dir: str = "."
    env_file: str = DEFAULT_ENV_FILE
    environ: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    docker_bin: str = "docker"
    admin_bootstrap_cmd: str = DEFAULT_ADMIN_BOOTSTRAP_CMD
    proxy_container: str = DEFAULT_PROXY_CONTAINER

    @classmethod
    def load(
        cls,
        base_dir: str = ".",
        env_file: str = DEFAULT_ENV_FILE,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "InfraConfig":
        base = dict(os.environ if environ is None else environ)
        # 파일 값이 프로세스 환경변수보다 우선한다. (set -a; source .env 와 동일)
        base.update(read_env_file(os.path.join(base_dir, env_file)))
        return cls.from_mapping(base, base_dir=base_dir, env_file=env_file)

    @classmethod
    def from_mapping(
        cls,
        values: Mapping[str, str],
        *,
        base_dir: str = ".",
        env_file: str = DEFAULT_ENV_FILE,
    ) -> "InfraConfig":
        # base_dir 는 항상 절대 경로 (하위 프로세스 cwd 와 -f 경로가 같은 기준)
        return cls(
            base_dir=os.path.abspath(base_dir),
            env_file=env_file,
            environ=MappingProxyType(dict(values)),
            docker_bin=values.get("DOCKER_BIN") or "docker",
            admin_bootstrap_cmd=values.get("ADMIN_BOOTSTRAP_CMD") or DEFAULT_ADMIN_BOOTSTRAP_CMD,
            proxy_container=values.get("PROXY_CONTAINER") or DEFAULT_PROXY_CONTAINER,
        )

    @property
    def env_file_path(self) -> str:
        return self.path(self.env_file)

    @property
    def acme_email(self) -> Optional[str]:
        return self.get(ACME_EMAIL)

    def path(self, relative: str) -> str:
        return os.path.join(self.base_dir, relative)

    def get(self, name: str) -> Optional[str]:
        value = self.environ.get(name)
        return value if value else None

    def process_env(self, extra: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """하위 프로세스에 넘길 환경변수. extra 는 이 호출에만 적용된다."""
        env = dict(self.environ)
        if extra:
            env.update(extra)
        return env
