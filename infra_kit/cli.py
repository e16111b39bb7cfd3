import os
import re
import sys
from dataclasses import replace
from typing import Optional

import click

from .config import InfraConfig, read_env_file
from .dispatcher import (
    BootstrapAdmin,
    CheckEnvironments,
    Failure,
    FollowLogs,
    PullAll,
    Request,
    RestartService,
    StartStack,
    run,
)
from .environments import ALL_ENVIRONMENTS, APP_ENVIRONMENTS, Environment, resolve
from .errors import EXIT_FAILURE, EXIT_USAGE, InfraError, UnknownEnvironmentError
from .host_user import ProvisionConfig, parse_sudo_commands, provision
from .logging_utils import echo_error, echo_ok, echo_title, get_logger, setup_logging


logger = get_logger(__name__)

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class InfraGroup(click.Group):
    """
    알 수 없는 명령이면 빨간 한 줄 오류 + 전체 사용법을 stderr 로 출력하고 EXIT_USAGE 로 끝낸다.
    명령 목록은 등록 순서대로 보여준다.
    """

    def list_commands(self, ctx: click.Context) -> list[str]:
        return list(self.commands)

    def resolve_command(self, ctx: click.Context, args: list[str]):  # noqa: ANN201
        name = args[0] if args else None
        if name is not None and self.get_command(ctx, name) is None:
            echo_error(f"알 수 없는 명령입니다: {name}")
            click.echo(ctx.get_help(), err=True)
            ctx.exit(EXIT_USAGE)
        return super().resolve_command(ctx, args)


@click.group(cls=InfraGroup, context_settings=CONTEXT_SETTINGS, invoke_without_command=True)
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리)",
)
@click.option(
    "--env-file",
    "env_file",
    default=".env",
    show_default=True,
    help="작업 디렉토리 기준 settings 파일 이름",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다.",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, env_file: str, verbose: int) -> None:
    """proxy / staging / production docker compose 스택 운영 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["env_file"] = env_file

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


def _load_config_from_ctx(ctx: click.Context) -> InfraConfig:
    cfg = InfraConfig.load(ctx.obj["chdir"], env_file=ctx.obj["env_file"])
    logger.debug("Config loaded: base_dir=%s env_file=%s", cfg.base_dir, cfg.env_file)
    return cfg


def _dispatch(ctx: click.Context, request: Request, title: Optional[str] = None) -> None:
    cfg = _load_config_from_ctx(ctx)
    if title:
        echo_title(title)

    outcome = run(cfg, request)

    if outcome.detail:
        click.echo(outcome.detail)
    if isinstance(outcome, Failure):
        echo_error(str(outcome.error))
        sys.exit(outcome.error.exit_code)
    echo_ok(outcome.message)


def _environment_arg(allowed=ALL_ENVIRONMENTS):  # noqa: ANN001, ANN202
    def _convert(ctx: click.Context, param: click.Parameter, value: Optional[str]) -> Optional[Environment]:
        if value is None:
            return None
        try:
            return resolve(value, allowed).environment
        except UnknownEnvironmentError as e:
            echo_error(str(e))
            ctx.exit(EXIT_FAILURE)

    return _convert


@main.command(name="up:proxy")
@click.pass_context
def up_proxy(ctx: click.Context) -> None:
    """reverse proxy(Traefik) 스택 기동/갱신"""
    _dispatch(ctx, StartStack(Environment.PROXY), title="Proxy")


@main.command(name="up:staging")
@click.pass_context
def up_staging(ctx: click.Context) -> None:
    """staging 스택 기동/갱신"""
    _dispatch(ctx, StartStack(Environment.STAGING), title="Staging")


@main.command(name="up:production")
@click.pass_context
def up_production(ctx: click.Context) -> None:
    """production 스택 기동/갱신"""
    _dispatch(ctx, StartStack(Environment.PRODUCTION), title="Production")


@main.command()
@click.pass_context
def pull(ctx: click.Context) -> None:
    """세 환경의 이미지를 모두 pull"""
    _dispatch(ctx, PullAll(), title="Pull images")


@main.command()
@click.argument("env", callback=_environment_arg())
@click.argument("service")
@click.pass_context
def restart(ctx: click.Context, env: Environment, service: str) -> None:
    """한 환경의 서비스 하나를 재배포 (ENV=proxy|staging|production)"""
    _dispatch(ctx, RestartService(env, service), title=f"Restart {service} ({env.value})")


@main.command()
@click.argument("container", required=False)
@click.pass_context
def logs(ctx: click.Context, container: Optional[str]) -> None:
    """컨테이너 로그를 따라간다 (기본: proxy 컨테이너, Ctrl-C 로 종료)"""
    _dispatch(ctx, FollowLogs(container))


@main.command()
@click.argument("env", required=False, callback=_environment_arg())
@click.pass_context
def check(ctx: click.Context, env: Optional[Environment]) -> None:
    """
    사전 조건(ACME_EMAIL, 환경별 env 파일)을 점검만 한다. (기본: 전체 환경)
    """
    environments = (env,) if env is not None else ALL_ENVIRONMENTS
    _dispatch(ctx, CheckEnvironments(environments))


def _validate_email(ctx: click.Context, param: click.Parameter, value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise click.BadParameter(f"이메일 형식이 아닙니다: {value!r}")
    return value


@main.command(name="bootstrap-admin")
@click.argument("env", callback=_environment_arg(APP_ENVIRONMENTS))
@click.argument("email", callback=_validate_email)
@click.pass_context
def bootstrap_admin(ctx: click.Context, env: Environment, email: str) -> None:
    """
    비밀번호를 입력받아 ENV 의 api 서비스에서 관리자 생성 일회성 작업을 실행한다.
    (ENV=staging|production, ADMIN_BOOTSTRAP_CMD 로 명령 변경 가능)
    """
    _dispatch(ctx, BootstrapAdmin(env, email), title=f"Bootstrap admin ({env.value})")


@main.command(name="help")
@click.pass_context
def help_(ctx: click.Context) -> None:
    """사용법 출력"""
    click.echo(ctx.parent.get_help() if ctx.parent else ctx.get_help())


# ---------------------------------------------------------------
# 호스트 배포 사용자 준비 (infra-deploy-user)
# ---------------------------------------------------------------
@click.command(context_settings=CONTEXT_SETTINGS)
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help=".deploy-user.env 를 찾을 디렉토리",
)
@click.option("--user", "user", default=None, help="사용자 이름 (DEPLOY_USER, 기본 deploy)")
@click.option("--group", "group", default=None, help="기본 그룹 (DEPLOY_GROUP, 기본 사용자 이름)")
@click.option("--pubkey", "pubkey", default=None, help="공개 키 내용 (DEPLOY_PUBKEY)")
@click.option(
    "--pubkey-file",
    "pubkey_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="공개 키 파일 (PUBKEY_FILE)",
)
@click.option(
    "--docker-group/--no-docker-group",
    "docker_group",
    default=None,
    help="docker 그룹에 추가 (ADD_DOCKER_GROUP, 기본: 그룹이 있으면 추가)",
)
@click.option(
    "--sudo-commands",
    "sudo_commands",
    default=None,
    help="쉼표로 구분한 NOPASSWD sudo 명령 (SUDO_COMMANDS, 명령 안의 쉼표는 \\, 백슬래시는 \\\\)",
)
@click.option("--force-command", "force_command", default=None, help="이 키로 강제 실행할 명령 (FORCE_COMMAND)")
@click.option("--sshd-config", "sshd_config", default=None, help="sshd_config 경로 (SSHD_CONFIG)")
@click.option("--dry-run", "dry_run", is_flag=True, default=False, help="변경 없이 실행할 작업만 출력 (DRY_RUN)")
@click.option("-v", "--verbose", count=True, help="로그 레벨을 DEBUG로 올립니다.")
def provision_user(
    chdir: str,
    user: Optional[str],
    group: Optional[str],
    pubkey: Optional[str],
    pubkey_file: Optional[str],
    docker_group: Optional[bool],
    sudo_commands: Optional[str],
    force_command: Optional[str],
    sshd_config: Optional[str],
    dry_run: bool,
    verbose: int,
) -> None:
    """
    SSH 키만으로 접속하는 제한된 배포 사용자를 준비한다. 다시 실행해도 안전하다.

    우선순위: 옵션 > .deploy-user.env > 환경변수 > 기본값
    """
    setup_logging(verbose)

    values = dict(os.environ)
    values.update(read_env_file(os.path.join(chdir, ".deploy-user.env")))
    cfg = ProvisionConfig.from_mapping(values)

    overrides = {
        "user": user,
        "group": group,
        "pubkey": pubkey.strip() if pubkey else None,
        "pubkey_file": pubkey_file,
        "add_docker_group": docker_group,
        "sudo_commands": parse_sudo_commands(sudo_commands) if sudo_commands is not None else None,
        "force_command": force_command,
        "sshd_config": sshd_config,
        "dry_run": True if dry_run else None,
    }
    cfg = replace(cfg, **{k: v for k, v in overrides.items() if v is not None})

    if not cfg.dry_run and os.geteuid() != 0:
        echo_error("root 권한으로 실행하세요 (sudo).")
        sys.exit(EXIT_FAILURE)

    try:
        result = provision(cfg)
    except InfraError as e:
        logger.debug("프로비저닝 실패", exc_info=True)
        echo_error(str(e))
        sys.exit(e.exit_code)

    click.echo(result.summary())
    echo_ok(f"완료. 접속 테스트: ssh {cfg.user}@<host>")
