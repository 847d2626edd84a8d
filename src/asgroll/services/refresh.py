"""Instance refresh trigger with a single cancel-and-retry edge."""

import enum
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from asgroll.constants import (
    DEFAULT_CANCEL_POLL_SECONDS,
    DEFAULT_CANCEL_TIMEOUT_SECONDS,
    LATEST_VERSION,
    TERMINAL_REFRESH_STATES,
)
from asgroll.errors import DeployerError, RefreshRejected, RefreshStartFailed

class RefreshState(enum.Enum):
    IDLE = "idle"
    STARTING = "starting"
    CONFLICT_DETECTED = "conflict_detected"
    CANCELLING = "cancelling"
    STARTED = "started"
    FAILED = "failed"


@dataclass(frozen=True)
class RefreshRequest:
    group_name: str
    launch_template_id: str
    instance_warmup: int
    healthy_percentage: int
    version: str = LATEST_VERSION


class RefreshTrigger:
    """Starts an instance refresh, cancelling and retrying exactly once on rejection.

    Transitions::

        IDLE -> STARTING -> STARTED
        STARTING -> CONFLICT_DETECTED -> CANCELLING -> STARTING -> STARTED
        STARTING (retry) -> FAILED

    The provider cancels asynchronously, so CANCELLING polls the cancelled
    refresh until it reaches a terminal status (or the settle timeout runs
    out) before the retry is sent.
    """

    MAX_RETRIES = 1

    def __init__(
        self,
        infrastructure,
        logger,
        settle_timeout_seconds: float = DEFAULT_CANCEL_TIMEOUT_SECONDS,
        poll_seconds: float = DEFAULT_CANCEL_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.infrastructure = infrastructure
        self.logger = logger
        self.settle_timeout_seconds = settle_timeout_seconds
        self.poll_seconds = poll_seconds
        self.sleep = sleep
        self.state = RefreshState.IDLE
        self.history: List[RefreshState] = [self.state]
        self.refresh_id: Optional[str] = None

    def _move(self, state: RefreshState):
        self.logger.debug("Instance refresh: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state)

    def _await_settled(self, group_name: str, refresh_id: str):
        elapsed = 0.0
        while True:
            try:
                status = self.infrastructure.describe_instance_refresh(group_name, refresh_id)
            except DeployerError as exc:
                self.logger.warning("Could not poll cancelled instance refresh %s: %s", refresh_id, exc)
                return
            if status is None or status in TERMINAL_REFRESH_STATES:
                self.logger.info("Instance refresh %s settled as %s", refresh_id, status or "gone")
                return
            if elapsed >= self.settle_timeout_seconds:
                self.logger.warning(
                    "Instance refresh %s still %s after %.0fs; retrying anyway",
                    refresh_id,
                    status,
                    elapsed,
                )
                return
            self.logger.debug("Instance refresh %s is %s; waiting %ss", refresh_id, status, self.poll_seconds)
            self.sleep(self.poll_seconds)
            elapsed += self.poll_seconds

    def start(self, request: RefreshRequest) -> Optional[str]:
        if self.state is not RefreshState.IDLE:
            raise DeployerError("Instance refresh trigger can only be used once.")

        retries = 0
        last_error: Optional[RefreshRejected] = None
        self._move(RefreshState.STARTING)

        while self.state is not RefreshState.STARTED:
            if self.state is RefreshState.STARTING:
                try:
                    self.refresh_id = self.infrastructure.start_instance_refresh(
                        request.group_name,
                        request.launch_template_id,
                        request.version,
                        request.instance_warmup,
                        request.healthy_percentage,
                    )
                except RefreshRejected as exc:
                    last_error = exc
                    if retries >= self.MAX_RETRIES:
                        self._move(RefreshState.FAILED)
                        raise RefreshStartFailed(
                            f"Instance refresh on '{request.group_name}' failed after retry: {exc}"
                        ) from exc
                    self._move(RefreshState.CONFLICT_DETECTED)
                    continue
                self._move(RefreshState.STARTED)

            elif self.state is RefreshState.CONFLICT_DETECTED:
                if last_error is not None and last_error.is_conflict:
                    reason = "another refresh is in progress"
                else:
                    reason = getattr(last_error, "error_code", None) or "unknown"
                self.logger.warning(
                    "Instance refresh start rejected (%s); cancelling any refresh in progress on %s",
                    reason,
                    request.group_name,
                )
                self._move(RefreshState.CANCELLING)

            elif self.state is RefreshState.CANCELLING:
                try:
                    cancelled = self.infrastructure.cancel_instance_refresh(request.group_name)
                except DeployerError as exc:
                    self.logger.warning("Cancelling instance refresh failed: %s", exc)
                else:
                    if cancelled:
                        self.logger.info("Cancelled instance refresh %s", cancelled)
                        self._await_settled(request.group_name, cancelled)
                    else:
                        self.logger.info("No instance refresh was in progress on %s", request.group_name)
                retries += 1
                self._move(RefreshState.STARTING)

        self.logger.info("Instance refresh %s started on %s", self.refresh_id, request.group_name)
        return self.refresh_id
