"""Outcome of one sync run."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OutcomeKind(Enum):
    """What a sync run ended up doing."""

    NO_CHANGES = "no_changes_detected"
    SYNCED_AND_TRIGGERED = "synced_and_triggered"
    SYNCED_TRIGGER_FAILED = "synced_trigger_failed"
    SYNC_FAILED = "sync_failed"


@dataclass(frozen=True)
class SyncOutcome:
    """Result handed back to the CLI; only ``SYNC_FAILED`` maps to a failing exit code."""

    kind: OutcomeKind
    reason: str = ""
    previous_commit: str = ""
    current_commit: str = ""

    @classmethod
    def no_changes(cls, reason: str = "", commit: str = "") -> "SyncOutcome":
        return cls(OutcomeKind.NO_CHANGES, reason, commit, commit)

    @classmethod
    def synced(cls, previous: str, current: str, reason: str = "") -> "SyncOutcome":
        return cls(OutcomeKind.SYNCED_AND_TRIGGERED, reason, previous, current)

    @classmethod
    def trigger_failed(cls, previous: str, current: str, reason: str) -> "SyncOutcome":
        return cls(OutcomeKind.SYNCED_TRIGGER_FAILED, reason, previous, current)

    @classmethod
    def failed(cls, reason: str, previous: str = "", current: str = "") -> "SyncOutcome":
        return cls(OutcomeKind.SYNC_FAILED, reason, previous, current)

    @property
    def failed_run(self) -> bool:
        return self.kind is OutcomeKind.SYNC_FAILED

    @property
    def exit_code(self) -> int:
        return 1 if self.failed_run else 0

    def summary(self) -> str:
        text = self.kind.value
        if self.previous_commit and self.current_commit and self.previous_commit != self.current_commit:
            text += f" ({self.previous_commit[:12]} -> {self.current_commit[:12]})"
        if self.reason:
            text += f": {self.reason}"
        return text
