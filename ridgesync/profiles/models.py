"""Project profile models: what differs between one GitOps deployment and the next."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ridgesync.profiles.checks import PostSyncCheck
from ridgesync.profiles.triggers import TriggerResult


class ApplyTrigger(Protocol):
    """Anything that can start the downstream applier."""

    def describe(self) -> str: ...

    def fire(self, timeout: int = 30) -> TriggerResult: ...


@dataclass
class LayoutReport:
    """Paths the applier expects that are absent from the working copy."""

    required_missing: list[str] = field(default_factory=list)
    optional_missing: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.required_missing


@dataclass
class ProjectProfile:
    """Per-deployment settings and capabilities the sync agent plugs in.

    Paths in ``required_paths``/``optional_paths`` are relative to the working
    copy; a trailing ``/`` means the entry must be a directory, otherwise it
    must be a regular file.
    """

    name: str
    ssh_identity_name: str
    lock_file_name: str
    trigger: ApplyTrigger
    description: str = ""
    required_paths: list[str] = field(default_factory=list)
    optional_paths: list[str] = field(default_factory=list)
    executable_patterns: list[str] = field(default_factory=lambda: ["*.sh"])
    post_sync_checks: list[PostSyncCheck] = field(default_factory=list)

    def validate_layout(self, working_copy: Path) -> LayoutReport:
        return LayoutReport(
            required_missing=[p for p in self.required_paths if not _present(working_copy, p)],
            optional_missing=[p for p in self.optional_paths if not _present(working_copy, p)],
        )

    def verify(self, working_copy: Path) -> None:
        """Run the post-sync checks in order; the first failure raises VerificationError."""
        for check in self.post_sync_checks:
            check.run(working_copy)

    def trigger_apply(self, timeout: int = 30) -> TriggerResult:
        return self.trigger.fire(timeout=timeout)


def _present(root: Path, relative: str) -> bool:
    target = root / relative.rstrip("/")
    if relative.endswith("/"):
        return target.is_dir()
    return target.is_file()
