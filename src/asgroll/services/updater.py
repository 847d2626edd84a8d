"""Instance updater implementations.

An updater receives the network address of the detached instance and applies
the pending software update, blocking until it is done. Any failure is raised
as ``UpdateFailed``.
"""

import shlex
import time
from typing import Optional

from asgroll.errors import DeployerError, UpdateFailed


class DelayUpdater:
    """Placeholder updater that waits a fixed delay and reports success."""

    def __init__(self, logger, delay_seconds: float, sleep=time.sleep):
        self.logger = logger
        self.delay_seconds = delay_seconds
        self.sleep = sleep

    def apply_update(self, address: str):
        self.logger.info(
            "No update command configured; waiting %.1fs for %s", self.delay_seconds, address
        )
        self.sleep(self.delay_seconds)


class CommandUpdater:
    """Runs an operator supplied command against the instance address.

    The template is rendered once against a placeholder address on
    construction, so stray braces or unbalanced quotes are rejected before
    any instance is detached.
    """

    def __init__(self, logger, command_runner, command_template: str, timeout: Optional[float] = None):
        if "{address}" not in command_template:
            raise DeployerError("Update command must contain the `{address}` placeholder.")
        self.logger = logger
        self.command_runner = command_runner
        self.command_template = command_template
        self.timeout = timeout
        try:
            self.build_command("0.0.0.0")
        except (KeyError, IndexError, ValueError) as exc:
            raise DeployerError(
                f"Update command template is invalid ({exc.__class__.__name__}: {exc}). "
                "Escape literal braces as `{{` and `}}` and balance quotes."
            ) from exc

    def build_command(self, address: str):
        return shlex.split(self.command_template.format(address=address))

    def apply_update(self, address: str):
        try:
            cmd = self.build_command(address)
        except (KeyError, IndexError, ValueError) as exc:
            raise UpdateFailed(f"Could not render update command for {address}: {exc}") from exc
        self.logger.info("Applying update on %s", address)
        try:
            self.command_runner.run(cmd, check=True, capture_output=True, timeout=self.timeout)
        except DeployerError as exc:
            raise UpdateFailed(str(exc)) from exc
