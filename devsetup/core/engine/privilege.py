"""
Privilege lease — sudo credentials for the duration of one run.

Acquired once when the driver starts, refreshed by the executor before
any step that needs privilege or may run long enough for the sudo
timestamp to expire, released implicitly when the process exits.

Only the executor holds a lease; nothing else consults or refreshes it.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from devsetup.adapters.base import CommandRunner
from devsetup.core.errors import PrivilegeAcquisitionError

logger = logging.getLogger(__name__)

# sudo's default timestamp_timeout is 15 minutes; re-check well before.
REFRESH_AFTER_SECONDS = 240.0

REMEDIATION_HINT = "Make sure your user is in the sudo group: sudo usermod -aG sudo $USER"


class PrivilegeLease:
    """Tracks whether elevated privilege is held and how fresh it is.

    Args:
        runner: Command runner (``sudo -n true`` / ``sudo -v`` go through it).
        refresh_after: Seconds after which a privileged step re-checks.
        clock: Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        runner: CommandRunner,
        refresh_after: float = REFRESH_AFTER_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sudo: str = "sudo",
    ):
        self._runner = runner
        self._refresh_after = refresh_after
        self._clock = clock
        self._sudo = sudo
        self.acquired = False
        self.confirmed_at: float | None = None

    @property
    def age(self) -> float | None:
        """Seconds since privilege was last confirmed."""
        if self.confirmed_at is None:
            return None
        return self._clock() - self.confirmed_at

    def _cached(self) -> bool:
        """Non-interactive check: are sudo credentials still cached?"""
        return self._runner.run(self._sudo, ["-n", "true"]).ok

    def _prompt(self) -> bool:
        """Interactive ``sudo -v``: sudo asks for the password itself."""
        return self._runner.run(self._sudo, ["-v"], interactive=True).ok

    def _confirm(self, action: str) -> None:
        if not self._cached():
            logger.warning("Sudo access required, you may be prompted for your password")
            if not self._prompt():
                self.acquired = False
                raise PrivilegeAcquisitionError(
                    f"Unable to {action} sudo access", hint=REMEDIATION_HINT,
                )
        self.acquired = True
        self.confirmed_at = self._clock()

    def acquire(self) -> None:
        """Obtain privilege at the start of a run.

        Raises:
            PrivilegeAcquisitionError: sudo refused.
        """
        logger.info("Checking sudo access...")
        self._confirm("obtain")
        logger.info("Sudo access confirmed")

    def refresh(self, force: bool = False) -> None:
        """Re-validate before a privileged or long-running step.

        Skipped while the last confirmation is recent, unless ``force``.

        Raises:
            PrivilegeAcquisitionError: sudo refused.
        """
        if not force and self.acquired:
            age = self.age
            if age is not None and age < self._refresh_after:
                return
        logger.debug("Refreshing sudo access")
        self._confirm("refresh")
