"""Downstream apply triggers: how a profile kicks off its applier after a sync."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ``systemctl is-active`` states that mean a run is already in flight.
ACTIVE_STATES = {"active", "activating", "reloading"}


@dataclass
class TriggerResult:
    """What happened when the applier was asked to start."""

    started: bool = False
    already_running: bool = False
    skipped: bool = False
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.started or self.already_running or self.skipped


class SystemdUnitTrigger:
    """Start a systemd unit (an Ansible run, a quadlet deployment, ...) once per sync."""

    def __init__(
        self,
        unit: str,
        settle_seconds: float = 2.0,
        query_timeout: int = 10,
        systemctl: str = "systemctl",
    ):
        self.unit = unit
        self.settle_seconds = settle_seconds
        self.query_timeout = query_timeout
        self.systemctl = systemctl

    def describe(self) -> str:
        return f"systemd unit {self.unit}"

    def _run(self, *args: str, timeout: float) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.systemctl, *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    def is_running(self) -> bool:
        """Whether the unit is active or starting.

        A failing query counts as "not running" so the trigger still goes ahead.
        """
        try:
            proc = self._run("is-active", self.unit, timeout=self.query_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Could not query state of %s (%s), assuming it is not running", self.unit, e)
            return False
        return proc.stdout.strip() in ACTIVE_STATES

    def is_installed(self) -> bool:
        try:
            proc = self._run("list-unit-files", "--no-legend", self.unit, timeout=self.query_timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            # Let the start attempt surface the real problem.
            logger.warning("Could not list unit files for %s (%s)", self.unit, e)
            return True
        return self.unit in proc.stdout

    def fire(self, timeout: int = 30) -> TriggerResult:
        if self.is_running():
            return TriggerResult(already_running=True, detail=f"{self.unit} is already running")

        if not self.is_installed():
            return TriggerResult(skipped=True, detail=f"{self.unit} is not installed")

        try:
            proc = self._run("start", self.unit, timeout=timeout)
        except subprocess.TimeoutExpired:
            return TriggerResult(detail=f"timeout after {timeout}s starting {self.unit}")
        except OSError as e:
            return TriggerResult(detail=f"cannot run {self.systemctl}: {e}")

        if proc.returncode != 0:
            stderr = proc.stderr.strip()
            detail = f"starting {self.unit} exited with code {proc.returncode}"
            return TriggerResult(detail=f"{detail}: {stderr}" if stderr else detail)

        if self.settle_seconds:
            time.sleep(self.settle_seconds)
            if not self.is_running():
                logger.warning("%s started but is no longer active", self.unit)

        return TriggerResult(started=True, detail=f"{self.unit} started")
