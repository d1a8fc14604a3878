"""Git operations: open, inspect and update the tracked working copy."""

from __future__ import annotations

import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from git import Git, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import CommandError

from ridgesync.errors import GitOperationError

logger = logging.getLogger(__name__)

_GITHUB_HTTPS_RE = re.compile(r"^https://github\.com/(?P<path>.+?)(?:\.git)?/?$")


@dataclass(frozen=True)
class RepositoryState:
    """Snapshot of the working copy taken at the start of a run."""

    current_branch: str
    """Checked-out branch, empty when HEAD is detached."""

    local_commit: str = ""
    """``HEAD`` of the working copy."""

    remote_commit: str = ""
    """Tip of ``origin/<target branch>`` after the latest fetch."""

    def on_branch(self, branch: str) -> bool:
        return self.current_branch == branch

    @property
    def up_to_date(self) -> bool:
        return bool(self.local_commit) and self.local_commit == self.remote_commit


def _error_detail(error: CommandError) -> str:
    return (error.stderr or error.stdout or "").strip() or str(error)


def ssh_command(identity_path: Path) -> str:
    """Build a ``GIT_SSH_COMMAND`` that never stops to ask the operator anything."""
    return (
        f"ssh -i {identity_path} -o StrictHostKeyChecking=no "
        "-o UserKnownHostsFile=/dev/null -o LogLevel=ERROR -o BatchMode=yes"
    )


def to_ssh_url(url: str) -> str:
    """Convert a GitHub HTTPS URL to its SSH form so deploy keys can be used.

    Any other URL is returned unchanged.
    """
    match = _GITHUB_HTTPS_RE.match(url.strip())
    if not match:
        return url
    return f"git@github.com:{match.group('path')}.git"


def mark_safe_directory(path: Path) -> None:
    """Add ``path`` to the global ``safe.directory`` list if it is not there yet.

    Needed when the agent runs as a different user than the one owning the
    working copy; git otherwise refuses with a "dubious ownership" error.
    """
    git = Git()
    try:
        existing = git.config("--global", "--get-all", "safe.directory").splitlines()
    except CommandError as e:
        if e.status != 1:
            raise GitOperationError(f"Cannot read safe.directory entries: {_error_detail(e)}") from e
        # exit status 1: no entries yet
        existing = []
    if str(path) in existing or "*" in existing:
        return
    try:
        git.config("--global", "--add", "safe.directory", str(path))
    except CommandError as e:
        raise GitOperationError(f"Cannot mark {path} as a safe directory: {_error_detail(e)}") from e


class WorkingCopy:
    """The on-disk checkout the agent keeps in step with ``origin``.

    Every method wraps GitPython errors into :class:`GitOperationError` and
    network operations are bounded by ``timeout`` seconds.
    """

    def __init__(self, path: str | Path, identity_path: Path | None = None, timeout: int = 120):
        self.path = Path(path)
        self.timeout = timeout
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitOperationError(f"Not a git working copy: {self.path}")

        env = {"GIT_TERMINAL_PROMPT": "0"}
        if identity_path is not None:
            if not identity_path.exists():
                logger.warning("SSH identity %s does not exist", identity_path)
            env["GIT_SSH_COMMAND"] = ssh_command(identity_path)
        self.repo.git.update_environment(**env)

    def _git(self, command: str, *args: str, network: bool = False) -> str:
        method = getattr(self.repo.git, command)
        kwargs = {"kill_after_timeout": self.timeout} if network else {}
        try:
            return method(*args, **kwargs).strip()
        except CommandError as e:
            detail = _error_detail(e)
            raise GitOperationError(
                f"git {command.replace('_', '-')} {' '.join(args)} failed in {self.path}: {detail}"
            ) from e

    # -- inspection -------------------------------------------------------

    def current_branch(self) -> str:
        return self._git("branch", "--show-current")

    def rev_parse(self, ref: str) -> str:
        return self._git("rev_parse", "--verify", f"{ref}^{{commit}}")

    def remote_url(self) -> str:
        try:
            return self.repo.remotes.origin.url
        except (AttributeError, IndexError, ValueError):
            return ""

    def read_state(self, branch: str) -> RepositoryState:
        """Current branch plus local and cached remote commits (no network)."""
        current = self.current_branch()
        try:
            local = self.rev_parse("HEAD")
        except GitOperationError:
            local = ""
        try:
            remote = self.rev_parse(f"origin/{branch}")
        except GitOperationError:
            remote = ""
        return RepositoryState(current_branch=current, local_commit=local, remote_commit=remote)

    # -- updates ----------------------------------------------------------

    def fetch(self, branch: str) -> None:
        # Explicit refspec keeps origin/<branch> current in single-branch clones too.
        self._git(
            "fetch",
            "origin",
            f"+refs/heads/{branch}:refs/remotes/origin/{branch}",
            network=True,
        )

    def switch_branch(self, branch: str) -> None:
        """Force the working copy onto ``branch`` at the fetched remote tip."""
        self._git("checkout", "-f", "-B", branch, f"origin/{branch}")
        self.reset_hard(f"origin/{branch}")

    def reset_hard(self, ref: str) -> None:
        self._git("reset", "--hard", ref)

    def pull(self, branch: str) -> None:
        self._git("pull", "--ff-only", "origin", branch, network=True)

    def configure_for_automation(self) -> None:
        """Settings the bootstrap applies so unattended syncs do not trip over local state."""
        with self.repo.config_writer() as cw:
            cw.set_value("core", "filemode", "false")
            cw.set_value("core", "hooksPath", "/dev/null")


def make_executable(root: Path, patterns: tuple[str, ...] | list[str]) -> list[Path]:
    """Add execute bits to files under ``root`` matching any of ``patterns``.

    File modes are not guaranteed to survive transport, so this runs after
    every update. Symlinks are never followed: only regular files inside
    ``root`` are touched. Returns the files whose mode changed.
    """
    changed = []
    for pattern in patterns:
        for item in root.rglob(pattern):
            if ".git" in item.relative_to(root).parts:
                continue
            if item.is_symlink() or not item.is_file():
                continue
            mode = item.stat().st_mode
            if mode & 0o111 != 0o111:
                item.chmod(mode | 0o111)
                changed.append(item)
    return changed


def ensure_working_copy(
    url: str,
    branch: str,
    path: Path,
    identity_path: Path | None = None,
    timeout: int = 600,
) -> WorkingCopy:
    """Make sure ``path`` holds a clone of ``url``, cloning or re-cloning as needed.

    An existing clone is reused when its ``origin`` matches ``url``; a
    directory that is not a git repo, or points elsewhere, is replaced.
    """
    path = Path(path)
    if path.exists():
        try:
            existing = WorkingCopy(path, identity_path=identity_path, timeout=timeout)
        except GitOperationError:
            logger.info("%s exists but is not a git repository, removing and cloning", path)
            shutil.rmtree(path)
        else:
            current = existing.remote_url()
            if current == url:
                logger.info("Repository directory exists, reusing %s", path)
                existing.configure_for_automation()
                return existing
            logger.info("Repository URL mismatch (current: %s, expected: %s), re-cloning", current, url)
            shutil.rmtree(path)

    logger.info("Cloning repository %s (branch %s) into %s", url, branch, path)
    path.parent.mkdir(parents=True, exist_ok=True)
    env = {"GIT_TERMINAL_PROMPT": "0"}
    if identity_path is not None:
        env["GIT_SSH_COMMAND"] = ssh_command(identity_path)
    try:
        Repo.clone_from(url, path, branch=branch, env=env)
    except CommandError as e:
        raise GitOperationError(f"Failed to clone {url}: {_error_detail(e)}") from e

    working_copy = WorkingCopy(path, identity_path=identity_path, timeout=timeout)
    working_copy.configure_for_automation()
    return working_copy
