"""Repo sync agent: one lock, detect, update, validate, trigger cycle.

Invoked by a timer every few minutes. A run either:
1. Finds another run in flight and leaves immediately
2. Finds the working copy already at the remote tip and does nothing
3. Brings the working copy up to date, checks it and starts the applier

Nothing is retried inside a run; the next timer tick is the retry.
"""

from __future__ import annotations

import logging

from ridgesync.config import SyncConfig
from ridgesync.errors import (
    GitOperationError,
    LayoutError,
    LockHeldError,
    RidgeSyncError,
    VerificationError,
)
from ridgesync.profiles.models import ProjectProfile
from ridgesync.sync.lock import PidLock
from ridgesync.sync.outcome import SyncOutcome
from ridgesync.utils.git_ops import (
    RepositoryState,
    WorkingCopy,
    make_executable,
    mark_safe_directory,
)

logger = logging.getLogger(__name__)


class RepoSyncAgent:
    """Keeps one working copy in step with its remote branch and triggers the applier."""

    def __init__(self, config: SyncConfig, profile: ProjectProfile):
        self.config = config
        self.profile = profile

    @property
    def branch(self) -> str:
        return self.config.target_branch

    def run(self) -> SyncOutcome:
        """Perform one sync cycle. Never raises for expected failures; see the outcome."""
        logger.info(
            "Starting %s GitOps sync process for branch %s...", self.profile.name, self.branch
        )
        try:
            with PidLock(self.config.lock_path):
                outcome = self._run_locked()
        except LockHeldError as e:
            logger.info("Another sync process is running (PID: %s). Exiting.", e.pid)
            return SyncOutcome.no_changes(reason=f"sync already running as PID {e.pid}")
        except OSError as e:
            logger.error("Sync aborted: %s", e)
            return SyncOutcome.failed(str(e))

        if not outcome.failed_run:
            logger.info("Sync finished: %s", outcome.summary())
        return outcome

    def _run_locked(self) -> SyncOutcome:
        state = RepositoryState(current_branch="")
        try:
            working_copy = self._open_working_copy()
            state, switched = self._detect_changes(working_copy)
            if not switched and state.up_to_date:
                self._verify_idle()
                self.profile.verify(self.config.working_copy_path)
                return SyncOutcome.no_changes(
                    reason=f"up to date on branch {self.branch}", commit=state.local_commit
                )
            current = self._synchronize(working_copy, switched)
        except (LayoutError, VerificationError) as e:
            logger.error("%s", e)
            return SyncOutcome.failed(str(e), previous=state.local_commit, current=state.remote_commit)
        except RidgeSyncError as e:
            logger.error("%s", e)
            return SyncOutcome.failed(str(e), previous=state.local_commit)

        return self._trigger(state.local_commit, current)

    # -- steps --------------------------------------------------------------

    def _open_working_copy(self) -> WorkingCopy:
        path = self.config.working_copy_path
        mark_safe_directory(path)
        try:
            return WorkingCopy(
                path,
                identity_path=self.config.ssh_identity_path,
                timeout=self.config.git_timeout,
            )
        except GitOperationError as e:
            raise GitOperationError(f"{e}. Run 'ridgesync clone' to provision it.") from e

    def _detect_changes(self, working_copy: WorkingCopy) -> tuple[RepositoryState, bool]:
        """Return the repository state and whether a branch switch was performed."""
        current_branch = working_copy.current_branch()

        if current_branch != self.branch:
            logger.info("Branch change detected: %s -> %s", current_branch or "(detached)", self.branch)
            try:
                previous = working_copy.rev_parse("HEAD")
            except GitOperationError:
                previous = ""
            working_copy.fetch(self.branch)
            working_copy.switch_branch(self.branch)
            state = RepositoryState(
                current_branch=current_branch,
                local_commit=previous,
                remote_commit=working_copy.rev_parse("HEAD"),
            )
            return state, True

        try:
            working_copy.fetch(self.branch)
        except GitOperationError as e:
            raise GitOperationError(
                f"Failed to fetch repository changes. Check SSH key and repository access. ({e})"
            ) from e

        state = RepositoryState(
            current_branch=current_branch,
            local_commit=working_copy.rev_parse("HEAD"),
            remote_commit=working_copy.rev_parse(f"origin/{self.branch}"),
        )
        if state.up_to_date:
            logger.info("Repository is up to date on branch %s", self.branch)
        else:
            logger.info(
                "New changes detected on %s: %s -> %s",
                self.branch,
                state.local_commit,
                state.remote_commit,
            )
        return state, False

    def _synchronize(self, working_copy: WorkingCopy, switched: bool) -> str:
        """Update the working copy, normalise modes and check the layout. Returns the new HEAD."""
        if not switched:
            logger.info("Pulling latest changes from branch %s...", self.branch)
            try:
                if self.config.update_strategy == "reset":
                    working_copy.reset_hard(f"origin/{self.branch}")
                else:
                    working_copy.pull(self.branch)
            except GitOperationError as e:
                raise GitOperationError(
                    f"Failed to pull repository changes. Check SSH key and repository access. ({e})"
                ) from e

        fixed = make_executable(self.config.working_copy_path, self.profile.executable_patterns)
        if fixed:
            logger.info("Restored execute permission on %d file(s)", len(fixed))

        report = self.profile.validate_layout(self.config.working_copy_path)
        for path in report.optional_missing:
            logger.warning("%s not found, tasks depending on it will be skipped", path)
        if not report.valid:
            raise LayoutError(report.required_missing)

        self.profile.verify(self.config.working_copy_path)

        head = working_copy.rev_parse("HEAD")
        logger.info("Repository synchronized successfully on branch %s at %s", self.branch, head)
        return head

    def _verify_idle(self) -> None:
        """Health check for runs with nothing to pull: report layout problems without failing."""
        report = self.profile.validate_layout(self.config.working_copy_path)
        if report.required_missing:
            logger.warning(
                "Working copy is missing required path(s): %s", ", ".join(report.required_missing)
            )

    def _trigger(self, previous: str, current: str) -> SyncOutcome:
        marker = self.config.emergency_marker_path
        if marker.exists():
            logger.warning("Emergency mode: %s present, skipping deployment trigger", marker)
            return SyncOutcome.synced(previous, current, reason="trigger suppressed by emergency marker")

        logger.info("Triggering %s...", self.profile.trigger.describe())
        try:
            result = self.profile.trigger_apply(timeout=self.config.trigger_timeout)
        except (RidgeSyncError, OSError) as e:
            logger.warning("Deployment trigger failed (%s) - this will be retried on next sync", e)
            return SyncOutcome.trigger_failed(previous, current, str(e))

        if result.already_running:
            logger.info("%s, skipping trigger", result.detail)
        elif result.skipped:
            logger.info("%s, skipping deployment trigger", result.detail)
        elif result.started:
            logger.info("Deployment triggered successfully")
        else:
            logger.warning(
                "Failed to trigger deployment (%s) - this will be retried on next sync", result.detail
            )
            return SyncOutcome.trigger_failed(previous, current, result.detail)

        return SyncOutcome.synced(previous, current, reason=result.detail)
