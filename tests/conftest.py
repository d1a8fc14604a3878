"""Shared fixtures: isolated git configuration and a throwaway remote to sync from."""

import logging
from pathlib import Path

import pytest
from git import Repo

from ridgesync.config import CONFIG_ENV_VAR, KNOWN_KEYS, SyncConfig
from ridgesync.profiles.models import ProjectProfile
from ridgesync.profiles.triggers import TriggerResult
from ridgesync.utils.git_ops import ensure_working_copy


@pytest.fixture(autouse=True)
def isolated_git_config(tmp_path_factory, monkeypatch):
    """Point git's global config at a temp file so tests never touch ~/.gitconfig."""
    home = tmp_path_factory.mktemp("home")
    gitconfig = home / ".gitconfig"
    gitconfig.write_text(
        "[user]\n"
        "\tname = Sync Test\n"
        "\temail = sync-test@example.com\n"
        "[init]\n"
        "\tdefaultBranch = main\n"
    )
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for key in KNOWN_KEYS + (CONFIG_ENV_VAR,):
        monkeypatch.delenv(key, raising=False)
    return gitconfig


@pytest.fixture(autouse=True)
def reset_ridgesync_logger():
    yield
    logger = logging.getLogger("ridgesync")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


class GitRemote:
    """A bare remote plus a seed clone used to push commits into it."""

    def __init__(self, root: Path):
        self.path = root / "remote.git"
        Repo.init(self.path, bare=True)
        self.seed_path = root / "seed"
        self.seed = Repo.init(self.seed_path)
        self.seed.create_remote("origin", str(self.path))

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(
        self,
        files: dict[str, str] | None = None,
        remove: tuple[str, ...] = (),
        branch: str = "main",
        message: str = "update",
    ) -> str:
        """Commit changes on ``branch`` in the seed and push them. Returns the new sha."""
        repo = self.seed
        if repo.head.is_valid() and repo.active_branch.name != branch:
            if branch in [h.name for h in repo.heads]:
                repo.git.checkout(branch)
            else:
                repo.git.checkout("-b", branch)

        for rel, content in (files or {}).items():
            target = self.seed_path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
        for rel in remove:
            (self.seed_path / rel).unlink()

        repo.git.add("-A")
        repo.git.commit("-m", message, "--allow-empty")
        repo.git.push("origin", f"HEAD:refs/heads/{branch}")
        return repo.head.commit.hexsha

    def push_branch(self, branch: str) -> str:
        """Publish the seed's current HEAD as ``branch`` without a new commit."""
        self.seed.git.push("origin", f"HEAD:refs/heads/{branch}")
        return self.seed.head.commit.hexsha


class FakeTrigger:
    """Stands in for the downstream applier and records how often it was fired."""

    def __init__(self, result: TriggerResult | None = None, on_fire=None):
        self.result = result or TriggerResult(started=True, detail="fake applier started")
        self.on_fire = on_fire
        self.calls = 0

    def describe(self) -> str:
        return "fake applier"

    def fire(self, timeout: int = 30) -> TriggerResult:
        self.calls += 1
        if self.on_fire:
            self.on_fire()
        return self.result


@pytest.fixture
def remote(tmp_path):
    remote = GitRemote(tmp_path / "git")
    remote.commit(
        {
            "site.yml": "- hosts: all\n",
            "system-maintenance.yml": "- hosts: all\n",
            "scripts/deploy.sh": "#!/bin/sh\necho deploy\n",
        },
        message="initial",
    )
    return remote


@pytest.fixture
def install_dir(tmp_path, remote):
    install = tmp_path / "opt" / "pine-ridge-test"
    ensure_working_copy(remote.url, "main", install / "repo")
    return install


@pytest.fixture
def trigger():
    return FakeTrigger()


@pytest.fixture
def profile(trigger):
    return ProjectProfile(
        name="test",
        description="test deployment",
        ssh_identity_name="test_gitops_ed25519",
        lock_file_name="test-sync.lock",
        required_paths=["site.yml"],
        optional_paths=["system-maintenance.yml"],
        trigger=trigger,
    )


@pytest.fixture
def make_config(tmp_path, remote, install_dir):
    def _make(**overrides) -> SyncConfig:
        values = {
            "repository_url": remote.url,
            "target_branch": "main",
            "install_dir": install_dir,
            "profile": "test",
            "ssh_identity_path": tmp_path / "ssh" / "test_gitops_ed25519",
            "lock_path": tmp_path / "run" / "test-sync.lock",
            "emergency_marker_path": install_dir / "NO_DEPLOY",
        }
        values.update(overrides)
        return SyncConfig(**values)

    return _make
