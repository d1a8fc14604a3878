"""Post-sync checks: prerequisites the applier needs beyond the repository layout."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Protocol

from ridgesync.errors import VerificationError

logger = logging.getLogger(__name__)

DEFAULT_VAULT_FILE = "inventory/group_vars/vault.yml"
DEFAULT_PASSWORD_SCRIPT = "/usr/local/bin/get-waf-vault-pass.sh"


class PostSyncCheck(Protocol):
    """Anything that can veto a sync after the working copy has been updated."""

    def describe(self) -> str: ...

    def run(self, working_copy: Path) -> None: ...


class VaultAccessCheck:
    """Make sure the applier will be able to decrypt the Ansible vault in the working copy.

    Skipped when the working copy has no vault file. Otherwise the password
    script must be executable, must succeed on its own, and ``ansible-vault``
    must be able to view the vault with it.
    """

    def __init__(
        self,
        vault_file: str = DEFAULT_VAULT_FILE,
        password_script: str | Path = DEFAULT_PASSWORD_SCRIPT,
        timeout: float = 10,
        ansible_vault: str = "ansible-vault",
    ):
        self.vault_file = vault_file
        self.password_script = Path(password_script)
        self.timeout = timeout
        self.ansible_vault = ansible_vault

    def describe(self) -> str:
        return f"vault access ({self.vault_file})"

    def _succeeds(self, args: list[str], cwd: Path) -> bool:
        try:
            proc = subprocess.run(
                args,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning("%s timed out after %ss", args[0], self.timeout)
            return False
        except OSError as e:
            logger.warning("Cannot run %s: %s", args[0], e)
            return False
        if proc.returncode != 0:
            logger.debug("%s exited with code %d: %s", args[0], proc.returncode, proc.stderr.strip())
        return proc.returncode == 0

    def run(self, working_copy: Path) -> None:
        logger.info("Verifying vault password access...")
        if not (working_copy / self.vault_file).is_file():
            logger.info("No vault file found, skipping vault verification")
            return

        script = self.password_script
        if not script.is_file() or not os.access(script, os.X_OK):
            raise VerificationError(f"Vault password script not found or not executable: {script}")

        if not self._succeeds([str(script)], working_copy):
            raise VerificationError(f"Cannot read vault password: {script} failed")

        view = [self.ansible_vault, "view", "--vault-password-file", str(script), self.vault_file]
        if not self._succeeds(view, working_copy):
            raise VerificationError("Cannot decrypt vault file. Check vault password is correct")

        logger.info("Vault access verified successfully")
