from __future__ import annotations

import subprocess
import sys
from collections import deque
from dataclasses import dataclass
from textwrap import shorten
from typing import Mapping, Sequence

from .errors import CommandError
from .logging_utils import get_logger


logger = get_logger(__name__)

# 스트리밍 모드에서 실패 메시지에 포함할 마지막 출력 줄 수
_TAIL_LINES = 50


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str


def _not_found(cmd: Sequence[str]) -> CommandError:
    return CommandError(cmd, 127, f"필요한 명령을 찾을 수 없습니다: {cmd[0]}")


def run_command(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    stream_output: bool = False,
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    - stream_output=False: stdout/stderr 캡처, 실패 시 CommandError 에 출력 포함
    - stream_output=True : stdout/stderr 를 합쳐 실시간으로 터미널에 흘린다
      (docker compose pull/up, docker logs -f 처럼 오래 걸리는 명령용)

    env 의 값은 로그에 남기지 않는다. 비밀 값은 argv 가 아니라 env 로만 넘길 것.
    KeyboardInterrupt 가 들어오면 자식 프로세스를 정리한 뒤 그대로 다시 올린다.
    """
    logger.info("명령 실행: %s", " ".join(cmd))

    if stream_output:
        try:
            proc = subprocess.Popen(  # noqa: S603
                list(cmd),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as e:
            raise _not_found(cmd) from e

        tail: deque[str] = deque(maxlen=_TAIL_LINES)
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                tail.append(line)
                sys.stdout.write(line)
                sys.stdout.flush()
            returncode = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            proc.kill()
            raise CommandError(cmd, -1, f"{timeout}초 안에 끝나지 않았습니다") from e
        except KeyboardInterrupt:
            proc.terminate()
            try:
                proc.wait(timeout=10)
            except subprocess.TimeoutExpired:
                proc.kill()
            raise
        finally:
            if proc.stdout is not None:
                proc.stdout.close()

        output = "".join(tail)
        if returncode != 0:
            raise CommandError(cmd, returncode, output.strip())
        return RunResult(returncode=returncode, stdout=output, stderr="")

    # capture 모드 (조용히 돌리고 실패 시 요약)
    try:
        result = subprocess.run(  # noqa: S603
            list(cmd),
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as e:
        raise _not_found(cmd) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(cmd, -1, f"{timeout}초 안에 끝나지 않았습니다") from e
    except subprocess.CalledProcessError as e:
        stdout = (e.stdout or "").strip()
        stderr = (e.stderr or "").strip()
        detail = stderr or stdout
        if detail:
            logger.debug("명령 출력: %s", shorten(detail, width=2000))
        raise CommandError(cmd, e.returncode, detail) from e

    if result.stdout:
        logger.debug("명령 stdout: %s", shorten(result.stdout.strip(), width=2000))
    if result.stderr:
        logger.debug("명령 stderr: %s", shorten(result.stderr.strip(), width=2000))
    return RunResult(returncode=result.returncode, stdout=result.stdout or "", stderr=result.stderr or "")
