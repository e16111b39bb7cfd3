from __future__ import annotations

import sys

import click

from .errors import EmptySecretError, NoTerminalError, SecretMismatchError


def _has_terminal() -> bool:
    try:
        return bool(sys.stdin.isatty())
    except (AttributeError, ValueError):
        return False


def prompt_secret(label: str) -> str:
    """
    터미널에서 비밀 값을 에코 없이 두 번 입력받는다.
    두 값이 다르면 재시도 없이 SecretMismatchError. (호출자가 명령을 다시 실행해야 한다)
    제어 터미널이 없으면 멈춰 기다리지 않고 NoTerminalError 로 실패한다.
    """
    if not _has_terminal():
        raise NoTerminalError()

    first = click.prompt(label, hide_input=True, default="", show_default=False)
    second = click.prompt(f"{label} (확인)", hide_input=True, default="", show_default=False)
    if first != second:
        raise SecretMismatchError()
    if not first:
        raise EmptySecretError()
    return first
