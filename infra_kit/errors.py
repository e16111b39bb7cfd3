"""
errors
------

infra CLI 가 운영자에게 보고하는 오류 분류.
모든 오류는 InfraError 를 상속하며, 프로세스 종료 코드(exit_code)를 함께 가진다.
"""

from __future__ import annotations

from typing import Iterable, Sequence


EXIT_FAILURE = 1
EXIT_USAGE = 2


class InfraError(Exception):
    exit_code: int = EXIT_FAILURE

    @property
    def kind(self) -> str:
        return type(self).__name__


class EngineUnavailableError(InfraError):
    """docker 바이너리가 없거나 응답하지 않는 경우."""


class NotFoundError(InfraError):
    pass


class UnknownEnvironmentError(NotFoundError, ValueError):
    def __init__(self, env_id: str, valid: Iterable[str]) -> None:
        self.env_id = env_id
        self.valid = tuple(valid)
        super().__init__(
            f"알 수 없는 환경입니다: {env_id!r} (허용: {', '.join(self.valid)})"
        )


class ContainerNotFoundError(NotFoundError):
    def __init__(self, container: str) -> None:
        self.container = container
        super().__init__(f"컨테이너를 찾을 수 없습니다: {container}")


class MissingCredentialError(InfraError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"{name} 이(가) 설정되지 않았습니다 (.env 에 정의하세요)")


class MissingFilesError(InfraError):
    def __init__(self, paths: Sequence[str]) -> None:
        self.paths = tuple(paths)
        super().__init__("필수 env 파일이 없습니다: " + ", ".join(self.paths))


class PreconditionsFailedError(InfraError):
    """여러 사전 조건이 동시에 실패한 경우, 하나도 숨기지 않고 묶어서 보고한다."""

    def __init__(self, errors: Sequence[InfraError]) -> None:
        self.errors = tuple(errors)
        super().__init__("; ".join(str(e) for e in self.errors))


class SecretMismatchError(InfraError):
    def __init__(self) -> None:
        super().__init__("두 번 입력한 값이 일치하지 않습니다. 명령을 다시 실행하세요.")


class EmptySecretError(InfraError):
    def __init__(self) -> None:
        super().__init__("빈 값은 사용할 수 없습니다.")


class NoTerminalError(InfraError):
    def __init__(self) -> None:
        super().__init__("대화형 터미널이 없어 비밀 값을 입력받을 수 없습니다.")


class CommandError(InfraError, RuntimeError):
    """외부 명령이 0 이 아닌 코드로 끝났을 때."""

    def __init__(self, cmd: Sequence[str], returncode: int, output: str = "") -> None:
        self.cmd = tuple(cmd)
        self.returncode = returncode
        self.output = output
        super().__init__(f"명령 실행 실패: {' '.join(self.cmd)} (exit={returncode})")


class TaskFailedError(InfraError):
    def __init__(self, exit_code: int, detail: str = "") -> None:
        self.task_exit_code = exit_code
        self.detail = detail
        msg = f"일회성 작업이 실패했습니다 (exit={exit_code})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ProvisionError(InfraError):
    pass
