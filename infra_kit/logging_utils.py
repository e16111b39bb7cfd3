import logging
import sys

import click


def setup_logging(verbosity: int = 0) -> None:
    level = logging.INFO
    if verbosity >= 1:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def echo_title(message: str) -> None:
    click.secho(f"==> {message}", fg="yellow", bold=True)


def echo_ok(message: str) -> None:
    click.secho(message, fg="green")


def echo_error(message: str) -> None:
    # 운영자 화면에는 항상 한 줄로만 출력한다. 상세 내용은 로그로 남긴다.
    first, *_ = str(message).strip().splitlines() or [""]
    click.echo(click.style("ERROR:", fg="red", bold=True) + f" {first}", err=True)
