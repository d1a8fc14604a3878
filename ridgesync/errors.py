"""Exception hierarchy shared by the sync agent and the CLI."""

from __future__ import annotations


class RidgeSyncError(Exception):
    """Base class for errors the sync agent knows how to report."""


class ConfigError(RidgeSyncError):
    """Raised when the settings file or a profile definition is invalid."""


class LockHeldError(RidgeSyncError):
    """Raised when another live process owns the sync lock."""

    def __init__(self, lock_path: str, pid: int):
        super().__init__(f"Lock {lock_path} is held by running process {pid}")
        self.lock_path = lock_path
        self.pid = pid


class GitOperationError(RidgeSyncError):
    """Raised when a git command against the working copy fails."""


class LayoutError(RidgeSyncError):
    """Raised when the working copy is missing paths the applier requires."""

    def __init__(self, missing: list[str]):
        super().__init__(
            "Invalid repository structure: " + ", ".join(missing) + " not found"
        )
        self.missing = missing


class VerificationError(RidgeSyncError):
    """Raised when a profile's post-sync check finds the applier cannot run."""
