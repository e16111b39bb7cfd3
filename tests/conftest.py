"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 infra_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.
"""

from __future__ import annotations

import os
import sys

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


APP_FILES = {
    "staging": ["staging/api.env", "staging/db.env", "staging/admin.env"],
    "production": ["production/api.env", "production/db.env", "production/admin.env"],
}


@pytest.fixture
def workdir(tmp_path):
    """스택 정의 파일만 있고 env 파일은 없는 작업 디렉토리."""
    (tmp_path / "traefik").mkdir()
    (tmp_path / "traefik" / "docker-compose.yml").write_text("services: {}\n")
    (tmp_path / "docker-compose.staging.yml").write_text("services: {}\n")
    (tmp_path / "docker-compose.prod.yml").write_text("services: {}\n")
    return tmp_path


@pytest.fixture
def env_files():
    """env_files(base, "staging") 또는 env_files(base, names=[...]) 로 credential 파일 생성."""

    def _write(base, env: str = "", names=None) -> None:
        for rel in names if names is not None else APP_FILES[env]:
            path = base / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("KEY=value\n")

    return _write
