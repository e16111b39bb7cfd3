"""
host_user
---------

배포 전용(제한된) 사용자를 호스트에 준비하는 모듈.

그룹/사용자 생성, docker 그룹 추가, SSH 키 등록, sudoers drop-in, sshd 설정 강화를 수행한다.
각 단계는 수렴형(idempotent)이라 같은 설정으로 다시 실행해도 중복 줄이나 오류 없이
같은 최종 상태가 된다.
"""

from __future__ import annotations

import grp
import os
import pwd
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Tuple

from .config import parse_bool
from .errors import CommandError, ProvisionError
from .logging_utils import get_logger
from .subprocess_utils import run_command


logger = get_logger(__name__)

KEY_OPTIONS = "no-agent-forwarding,no-port-forwarding,no-pty,no-user-rc,no-X11-forwarding"

_USER_RE = re.compile(r"^[a-z_][a-z0-9_-]{0,31}$")
_KEY_RE = re.compile(r"^(ssh-(ed25519|rsa)|ecdsa-sha2-nistp(256|384|521)|sk-)")
# sudoers Cmnd 안에서 백슬래시로 이스케이프해야 하는 문자
_SUDOERS_SPECIAL = ("\\", ",", ":", "=")
# SUDO_COMMANDS 목록 토큰: 이스케이프(\, 와 \\), 구분자, 일반 문자열, 남은 백슬래시
_SUDO_LIST_TOKEN = re.compile(r"\\[\\,]|,|[^\\,]+|\\")


@dataclass(frozen=True)
class ProvisionConfig:
    user: str = "deploy"
    group: Optional[str] = None
    pubkey: str = ""
    pubkey_file: Optional[str] = None
    add_docker_group: Optional[bool] = None  # None: docker 그룹이 있으면 추가
    sudo_commands: Tuple[str, ...] = ()
    create_sudo_file: bool = True
    disable_root_login: bool = False
    disable_password_auth: bool = True
    sshd_config: str = "/etc/ssh/sshd_config"
    force_command: Optional[str] = None
    home_mode: str = "0750"
    dry_run: bool = False

    home_root: str = "/home"
    sudoers_dir: str = "/etc/sudoers.d"

    @property
    def effective_group(self) -> str:
        return self.group or self.user

    @property
    def home_dir(self) -> str:
        return os.path.join(self.home_root, self.user)

    @property
    def ssh_dir(self) -> str:
        return os.path.join(self.home_dir, ".ssh")

    @property
    def authorized_keys(self) -> str:
        return os.path.join(self.ssh_dir, "authorized_keys")

    @property
    def sudoers_file(self) -> str:
        return os.path.join(self.sudoers_dir, f"{self.user}-restricted")

    @classmethod
    def from_mapping(cls, values: Mapping[str, str]) -> "ProvisionConfig":
        docker_raw = values.get("ADD_DOCKER_GROUP")
        return cls(
            user=values.get("DEPLOY_USER") or "deploy",
            group=values.get("DEPLOY_GROUP") or None,
            pubkey=(values.get("DEPLOY_PUBKEY") or "").strip(),
            pubkey_file=values.get("PUBKEY_FILE") or None,
            add_docker_group=None if not docker_raw else parse_bool(docker_raw),
            sudo_commands=parse_sudo_commands(values.get("SUDO_COMMANDS") or ""),
            create_sudo_file=parse_bool(values.get("CREATE_SUDO_FILE"), True),
            disable_root_login=parse_bool(values.get("DISABLE_ROOT_LOGIN"), False),
            disable_password_auth=parse_bool(values.get("DISABLE_PASSWORD_AUTH"), True),
            sshd_config=values.get("SSHD_CONFIG") or "/etc/ssh/sshd_config",
            force_command=values.get("FORCE_COMMAND") or None,
            home_mode=values.get("UMASK_HOME") or "0750",
            dry_run=parse_bool(values.get("DRY_RUN"), False),
        )

    def validate(self) -> None:
        for name in (self.user, self.effective_group):
            if not _USER_RE.match(name):
                raise ProvisionError(f"사용할 수 없는 사용자/그룹 이름입니다: {name!r}")
        if not re.fullmatch(r"0?[0-7]{3}", self.home_mode):
            raise ProvisionError(f"UMASK_HOME 값이 올바르지 않습니다: {self.home_mode!r}")


@dataclass
class ProvisionResult:
    changed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record(self, step: str, changed: bool) -> None:
        (self.changed if changed else self.unchanged).append(step)

    def summary(self) -> str:
        lines = ["# Provision summary"]
        for title, items in (
            ("Changed", self.changed),
            ("Unchanged", self.unchanged),
            ("Warnings", self.warnings),
        ):
            lines.append("")
            lines.append(f"## {title}")
            if items:
                lines.extend(f"- {i}" for i in items)
            else:
                lines.append("- (none)")
        return "\n".join(lines)


# -----------------------------
# OS 조회/변경 헬퍼 (테스트에서 monkeypatch)
# -----------------------------
def _run(cfg: ProvisionConfig, cmd: list[str]) -> None:
    if cfg.dry_run:
        logger.info("DRY_RUN: %s", " ".join(cmd))
        return
    run_command(cmd)


def _group_exists(name: str) -> bool:
    try:
        grp.getgrnam(name)
        return True
    except KeyError:
        return False


def _user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
        return True
    except KeyError:
        return False


def _user_in_group(user: str, group: str) -> bool:
    try:
        entry = grp.getgrnam(group)
    except KeyError:
        return False
    if user in entry.gr_mem:
        return True
    try:
        return pwd.getpwnam(user).pw_gid == entry.gr_gid
    except KeyError:
        return False


def _write_file(
    cfg: ProvisionConfig,
    path: str,
    content: str,
    mode: int,
    *,
    validate: Optional[List[str]] = None,
) -> None:
    """
    같은 디렉토리의 임시 파일에 쓴 뒤 교체한다.
    validate 가 주어지면 임시 파일 경로를 붙여 실행하고 실패 시 원본을 건드리지 않는다.
    """
    if cfg.dry_run:
        logger.info("DRY_RUN: write %s (%d bytes)", path, len(content))
        return
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp, mode)
        if validate:
            _run(cfg, validate + [tmp])
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def _read(path: str) -> Optional[str]:
    if not os.path.exists(path):
        return None
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


# -----------------------------
# 공개 키
# -----------------------------
def resolve_pubkey(cfg: ProvisionConfig, result: Optional[ProvisionResult] = None) -> str:
    key = cfg.pubkey
    if not key:
        if not cfg.pubkey_file:
            raise ProvisionError("DEPLOY_PUBKEY 또는 PUBKEY_FILE 중 하나가 필요합니다.")
        if not os.path.isfile(cfg.pubkey_file):
            raise ProvisionError(f"PUBKEY_FILE 을 찾을 수 없습니다: {cfg.pubkey_file}")
        key = (_read(cfg.pubkey_file) or "").strip()
    key = key.splitlines()[0].strip() if key else ""
    if not key:
        raise ProvisionError("공개 키가 비어 있습니다.")
    if not _KEY_RE.match(key):
        msg = "표준 SSH 공개 키 형식이 아닌 것 같습니다. 그대로 진행합니다."
        logger.warning(msg)
        if result is not None:
            result.warnings.append(msg)
    return key


def key_identity(key_line: str) -> Optional[Tuple[str, str]]:
    """
    authorized_keys 한 줄에서 (키 타입, base64 본문)을 뽑는다.
    옵션 접두어(command=... 등)는 건너뛴다.
    """
    tokens = key_line.strip().split()
    for i, token in enumerate(tokens[:-1]):
        if _KEY_RE.match(token):
            return token, tokens[i + 1]
    if len(tokens) >= 2:
        return tokens[0], tokens[1]
    return None


def line_has_key(line: str, identity: Tuple[str, str]) -> bool:
    """
    authorized_keys 한 줄에 (키 타입, 본문)이 연속된 두 토큰으로 들어 있는지 본다.
    옵션 필드 안의 공백이나 비표준 키 타입이어도 같은 키를 찾는다.
    """
    tokens = line.strip().split()
    return any((tokens[i], tokens[i + 1]) == identity for i in range(len(tokens) - 1))


def quote_force_command(command: str) -> str:
    if "\n" in command:
        raise ProvisionError("FORCE_COMMAND 에 줄바꿈을 넣을 수 없습니다.")
    escaped = command.replace("\\", "\\\\").replace('"', '\\"')
    return f'command="{escaped}"'


def authorized_key_line(key: str, force_command: Optional[str] = None) -> str:
    if not force_command:
        return key
    return f"{quote_force_command(force_command)},{KEY_OPTIONS} {key}"


# -----------------------------
# sudoers
# -----------------------------
def parse_sudo_commands(raw: str) -> Tuple[str, ...]:
    """
    쉼표로 구분된 명령 목록을 나눈다.
    명령 안의 쉼표는 `\\,`, 백슬래시 자체는 `\\\\` 로 적는다. 그 밖의 백슬래시는 그대로 둔다.
    """
    parts: List[str] = []
    current = ""
    for token in _SUDO_LIST_TOKEN.findall(raw):
        if token == ",":
            parts.append(current)
            current = ""
        elif token in ("\\,", "\\\\"):
            current += token[1]
        else:
            current += token
    parts.append(current)
    return tuple(p.strip() for p in parts if p.strip())


def quote_sudo_command(command: str) -> str:
    """
    sudoers Cmnd_Spec 규칙에 맞게 한 명령을 이스케이프한다.
    - 명령은 절대 경로로 시작해야 한다
    - 인자 안의 \\ , : = 는 백슬래시로 이스케이프한다
    - 줄바꿈은 허용하지 않는다
    """
    if "\n" in command or "\r" in command:
        raise ProvisionError(f"sudo 명령에 줄바꿈을 넣을 수 없습니다: {command!r}")
    if not command.startswith("/"):
        raise ProvisionError(f"sudo 명령은 절대 경로여야 합니다: {command!r}")
    out = command
    for ch in _SUDOERS_SPECIAL:
        out = out.replace(ch, "\\" + ch)
    return out


def render_sudoers(user: str, commands: Tuple[str, ...]) -> str:
    cmds = ", ".join(quote_sudo_command(c) for c in commands)
    return f"{user} ALL=(root) NOPASSWD: {cmds}\n"


# -----------------------------
# sshd_config
# -----------------------------
def set_sshd_directive(text: str, key: str, value: str) -> str:
    """
    sshd_config 에서 key 지시어를 `key value` 로 맞춘다.

    첫 번째 `key`/`#key` 줄을 바꾸고, 뒤에 나오는 같은 key 줄은 지운다.
    없으면 추가하되, Match 블록 안으로 들어가지 않도록 첫 Match 앞에 넣는다.
    """
    pattern = re.compile(rf"^\s*#?\s*{re.escape(key)}\b", re.IGNORECASE)
    match_block = re.compile(r"^\s*Match\b", re.IGNORECASE)
    directive = f"{key} {value}"

    lines = text.splitlines()
    out: List[str] = []
    placed = False
    first_match_idx: Optional[int] = None
    for line in lines:
        if first_match_idx is None and match_block.match(line):
            first_match_idx = len(out)
        if first_match_idx is None and pattern.match(line):
            if not placed:
                out.append(directive)
                placed = True
            continue
        out.append(line)

    if not placed:
        if first_match_idx is None:
            out.append(directive)
        else:
            out.insert(first_match_idx, directive)

    return "\n".join(out) + "\n"


# -----------------------------
# 단계별 수렴 함수
# -----------------------------
def ensure_group(cfg: ProvisionConfig) -> bool:
    group = cfg.effective_group
    if _group_exists(group):
        logger.info("그룹이 이미 존재합니다: %s", group)
        return False
    logger.info("그룹 생성: %s", group)
    _run(cfg, ["groupadd", group])
    return True


def ensure_user(cfg: ProvisionConfig) -> bool:
    if _user_exists(cfg.user):
        logger.info("사용자가 이미 존재합니다: %s", cfg.user)
        return False
    logger.info("사용자 생성: %s", cfg.user)
    _run(cfg, ["useradd", "-m", "-s", "/bin/bash", "-g", cfg.effective_group, cfg.user])
    _run(cfg, ["chmod", cfg.home_mode, cfg.home_dir])
    return True


def ensure_docker_group(cfg: ProvisionConfig, result: Optional[ProvisionResult] = None) -> bool:
    docker_exists = _group_exists("docker")
    wanted = cfg.add_docker_group if cfg.add_docker_group is not None else docker_exists
    if not wanted:
        return False
    if not docker_exists:
        msg = "docker 그룹이 없습니다 (rootless Docker?). 건너뜁니다."
        logger.warning(msg)
        if result is not None:
            result.warnings.append(msg)
        return False
    if _user_in_group(cfg.user, "docker"):
        logger.info("이미 docker 그룹에 속해 있습니다: %s", cfg.user)
        return False
    logger.info("docker 그룹에 추가: %s", cfg.user)
    _run(cfg, ["usermod", "-aG", "docker", cfg.user])
    return True


def ensure_authorized_key(cfg: ProvisionConfig, key: str) -> bool:
    identity = key_identity(key)
    if identity is None:
        raise ProvisionError("공개 키는 `타입 본문` 형식이어야 합니다.")
    owner = f"{cfg.user}:{cfg.effective_group}"
    if not os.path.isdir(cfg.ssh_dir):
        logger.info(".ssh 디렉토리 생성: %s", cfg.ssh_dir)
        if not cfg.dry_run:
            os.makedirs(cfg.ssh_dir, mode=0o700, exist_ok=True)
            os.chmod(cfg.ssh_dir, 0o700)
        _run(cfg, ["chown", owner, cfg.ssh_dir])

    existing = _read(cfg.authorized_keys) or ""
    for line in existing.splitlines():
        if not line.lstrip().startswith("#") and line_has_key(line, identity):
            logger.info("authorized_keys 에 이미 키가 있습니다")
            return False

    logger.info("SSH 키 추가: %s", cfg.authorized_keys)
    content = existing
    if content and not content.endswith("\n"):
        content += "\n"
    content += authorized_key_line(key, cfg.force_command) + "\n"
    _write_file(cfg, cfg.authorized_keys, content, 0o600)
    _run(cfg, ["chown", owner, cfg.authorized_keys])
    return True


def ensure_sudoers(cfg: ProvisionConfig) -> bool:
    if not cfg.sudo_commands or not cfg.create_sudo_file:
        return False
    desired = render_sudoers(cfg.user, cfg.sudo_commands)
    if _read(cfg.sudoers_file) == desired:
        logger.info("sudoers 항목이 이미 있습니다: %s", cfg.sudoers_file)
        return False
    logger.info("제한된 sudo 설정: %s", cfg.sudoers_file)
    validate = ["visudo", "-cf"] if shutil.which("visudo") else None
    _write_file(cfg, cfg.sudoers_file, desired, 0o440, validate=validate)
    return True


def sshd_directives(cfg: ProvisionConfig) -> List[Tuple[str, str]]:
    directives: List[Tuple[str, str]] = []
    if cfg.disable_root_login:
        directives.append(("PermitRootLogin", "no"))
    if cfg.disable_password_auth:
        directives.append(("PasswordAuthentication", "no"))
    return directives


def ensure_sshd_config(cfg: ProvisionConfig) -> bool:
    directives = sshd_directives(cfg)
    if not directives:
        return False
    current = _read(cfg.sshd_config)
    if current is None:
        raise ProvisionError(f"sshd 설정 파일을 찾을 수 없습니다: {cfg.sshd_config}")

    updated = current
    for key, value in directives:
        updated = set_sshd_directive(updated, key, value)
    if updated == current:
        logger.info("sshd 설정이 이미 반영되어 있습니다")
        return False

    logger.info("sshd 설정 변경: %s", ", ".join(f"{k} {v}" for k, v in directives))
    mode = os.stat(cfg.sshd_config).st_mode & 0o777
    _write_file(cfg, cfg.sshd_config, updated, mode)
    return True


def reload_sshd(cfg: ProvisionConfig, result: Optional[ProvisionResult] = None) -> None:
    if shutil.which("systemctl") is None:
        msg = "systemctl 이 없어 sshd 를 수동으로 재시작해야 합니다."
        logger.warning(msg)
        if result is not None:
            result.warnings.append(msg)
        return
    logger.info("sshd reload")
    try:
        _run(cfg, ["systemctl", "reload", "sshd"])
    except CommandError:
        logger.warning("sshd reload 실패, restart 시도")
        _run(cfg, ["systemctl", "restart", "sshd"])


def provision(cfg: ProvisionConfig) -> ProvisionResult:
    """
    모든 단계를 순서대로 적용하고 단계별 변경 여부를 돌려준다.
    """
    cfg.validate()
    result = ProvisionResult()
    key = resolve_pubkey(cfg, result)

    result.record(f"group {cfg.effective_group}", ensure_group(cfg))
    result.record(f"user {cfg.user}", ensure_user(cfg))
    result.record("docker group membership", ensure_docker_group(cfg, result))
    result.record(f"authorized key ({cfg.authorized_keys})", ensure_authorized_key(cfg, key))
    if cfg.sudo_commands and cfg.create_sudo_file:
        result.record(f"sudoers ({cfg.sudoers_file})", ensure_sudoers(cfg))

    if sshd_directives(cfg):
        sshd_changed = ensure_sshd_config(cfg)
        result.record(f"sshd config ({cfg.sshd_config})", sshd_changed)
        if sshd_changed:
            reload_sshd(cfg, result)

    if cfg.force_command:
        result.warnings.append(
            f"키가 '{cfg.force_command}' 명령으로 고정되어 대화형 셸을 쓸 수 없습니다."
        )
    return result
