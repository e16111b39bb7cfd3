"""
infra_kit
---------

단일 호스트용 docker compose 배포 CLI 패키지.
reverse proxy / staging / production 세 환경의 스택 기동·갱신·재배포를 사전 조건 체크와 함께 수행하고,
배포 전용 제한 사용자를 호스트에 준비하는 도구(infra-deploy-user)를 함께 제공한다.
"""

__all__ = [
    "config",
    "dispatcher",
    "environments",
    "host_user",
    "stack",
]
