"""Configuration: the settings file written at bootstrap and the per-run SyncConfig.

The bootstrap scripts drop a shell-style ``KEY=VALUE`` file (for example
``/etc/pine-ridge-waf.conf``) that systemd also reads as an
``EnvironmentFile``. The sync agent reads the same file, lets the process
environment override it, and derives every path it needs once, up front.
"""

from __future__ import annotations

import os
import re
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ridgesync.errors import ConfigError

if TYPE_CHECKING:
    from ridgesync.profiles.models import ProjectProfile


DEFAULT_CONFIG_PATH = Path("/etc/ridgesync.conf")
CONFIG_ENV_VAR = "RIDGESYNC_CONFIG"

DEFAULT_SSH_DIR = "/root/.ssh"
DEFAULT_LOCK_DIR = "/var/run"
DEFAULT_EMERGENCY_MARKER = "NO_DEPLOY"

# Keys the agent understands. Anything else in the file (QUADLET_DIR, ...) is
# meant for other consumers and is ignored.
KNOWN_KEYS = (
    "REPO_URL",
    "GIT_BRANCH",
    "INSTALL_DIR",
    "MANAGEMENT_USER",
    "PROFILE",
    "PROFILES_FILE",
    "SSH_DIR",
    "LOCK_DIR",
    "EMERGENCY_MARKER",
    "GIT_TIMEOUT",
    "TRIGGER_TIMEOUT",
    "UPDATE_STRATEGY",
)

UPDATE_STRATEGIES = {"pull", "reset"}

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SyncConfig(BaseModel):
    """Immutable configuration for a single sync run."""

    model_config = ConfigDict(frozen=True)

    repository_url: str
    target_branch: str = "main"
    install_dir: Path
    management_user: Optional[str] = None
    profile: str
    ssh_identity_path: Path
    lock_path: Path
    emergency_marker_path: Path
    git_timeout: int = 120
    trigger_timeout: int = 30
    update_strategy: str = "pull"

    @field_validator("repository_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("repository URL must not be empty")
        return value

    @field_validator("target_branch")
    @classmethod
    def _check_branch(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("branch name must not be empty")
        if any(ch.isspace() for ch in value):
            raise ValueError(f"branch name contains whitespace: {value!r}")
        if ".." in value or value.startswith(("-", "/")) or value.endswith(("/", ".lock")):
            raise ValueError(f"invalid branch name: {value!r}")
        return value

    @field_validator("update_strategy")
    @classmethod
    def _check_strategy(cls, value: str) -> str:
        if value not in UPDATE_STRATEGIES:
            raise ValueError(
                f"update strategy must be one of {sorted(UPDATE_STRATEGIES)}, got {value!r}"
            )
        return value

    @field_validator("git_timeout", "trigger_timeout")
    @classmethod
    def _check_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("timeouts must be positive")
        return value

    @property
    def working_copy_path(self) -> Path:
        return self.install_dir / "repo"

    @property
    def log_path(self) -> Path:
        return self.install_dir / "logs" / "sync.log"


def parse_settings(text: str) -> dict[str, str]:
    """Parse shell-style ``KEY=VALUE`` lines.

    Blank lines and ``#`` comments are skipped, an ``export`` prefix is
    tolerated and values may be quoted the way a shell would quote them.
    """
    settings: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not _KEY_RE.match(key):
            raise ConfigError(f"line {lineno}: expected KEY=VALUE, got {raw.strip()!r}")

        try:
            parts = shlex.split(value, comments=True)
        except ValueError as e:
            raise ConfigError(f"line {lineno}: {e}") from e
        settings[key] = " ".join(parts)
    return settings


def load_settings(
    path: str | Path, environ: Mapping[str, str] | None = None
) -> dict[str, str]:
    """Read the settings file and overlay known keys from the environment."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}")
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {path}: {e}") from e

    settings = parse_settings(text)

    env = os.environ if environ is None else environ
    for key in KNOWN_KEYS:
        if env.get(key):
            settings[key] = env[key]
    return settings


def resolve_config_path(explicit: str | None = None) -> Path:
    """Pick the settings file: explicit argument, then $RIDGESYNC_CONFIG, then the default."""
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    return DEFAULT_CONFIG_PATH


def build_config(settings: Mapping[str, str], profile: ProjectProfile) -> SyncConfig:
    """Derive the per-run SyncConfig from raw settings and the selected profile."""
    for key in ("REPO_URL", "INSTALL_DIR"):
        if not settings.get(key):
            raise ConfigError(f"Missing required setting: {key}")

    install_dir = Path(settings["INSTALL_DIR"])
    ssh_dir = Path(settings.get("SSH_DIR") or DEFAULT_SSH_DIR)
    lock_dir = Path(settings.get("LOCK_DIR") or DEFAULT_LOCK_DIR)
    marker = settings.get("EMERGENCY_MARKER") or str(install_dir / DEFAULT_EMERGENCY_MARKER)

    values: dict[str, object] = {
        "repository_url": settings["REPO_URL"],
        "target_branch": settings.get("GIT_BRANCH") or "main",
        "install_dir": install_dir,
        "management_user": settings.get("MANAGEMENT_USER") or None,
        "profile": profile.name,
        "ssh_identity_path": ssh_dir / profile.ssh_identity_name,
        "lock_path": lock_dir / profile.lock_file_name,
        "emergency_marker_path": Path(marker),
    }
    for key, field_name in (
        ("GIT_TIMEOUT", "git_timeout"),
        ("TRIGGER_TIMEOUT", "trigger_timeout"),
        ("UPDATE_STRATEGY", "update_strategy"),
    ):
        if settings.get(key):
            values[field_name] = settings[key]

    try:
        return SyncConfig(**values)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e
