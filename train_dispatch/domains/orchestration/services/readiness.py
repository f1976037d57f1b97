"""
Node readiness driver.

Polls a compute node's lifecycle state and drives it to running before any
command is dispatched to it. The loop is a small state machine:

    stopped  -> START  (issue the one start request, continue as pending)
    pending  -> WAIT   (sleep a fixed interval, poll again)
    stopping -> WAIT
    running  -> READY  (return immediately)

Any other observed state fails at once, as does a node missing from the
platform inventory. Polling is bounded by a fixed number of attempts and,
optionally, a wall-clock ceiling.
"""
from datetime import datetime, timezone
import enum
import logging
import time
from typing import Callable, Optional, Protocol

from train_dispatch.domains.orchestration.schemas.constants import NodeState
from train_dispatch.domains.orchestration.schemas.dispatch import PollAttempt
from train_dispatch.errors import NodeReadyTimeout, NodeStateError

logger = logging.getLogger(__name__)


class ComputePlatform(Protocol):
    def describe(self, node_id: str) -> NodeState: ...

    def start(self, node_id: str) -> None: ...


class ReadinessAction(str, enum.Enum):
    START = "start"
    WAIT = "wait"
    READY = "ready"


TRANSITIONS = {
    NodeState.STOPPED: ReadinessAction.START,
    NodeState.PENDING: ReadinessAction.WAIT,
    NodeState.STOPPING: ReadinessAction.WAIT,
    NodeState.RUNNING: ReadinessAction.READY,
}


class NodeReadinessDriver():
    def __init__(
            self,
            platform: ComputePlatform,
            max_attempts: int = 15,
            poll_interval_seconds: float = 10.0,
            timeout_seconds: Optional[float] = None,
            sleep: Callable[[float], None] = time.sleep,
            clock: Callable[[], float] = time.monotonic
    ):
        self.platform = platform
        self.max_attempts = max_attempts
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds or None
        self.sleep = sleep
        self.clock = clock

    def ensure_ready(self, node_id: str) -> None:
        logger.info(f"[EC2] Checking state of instance {node_id}...")

        started_at = self.clock()
        start_requested = False

        for attempt_number in range(1, self.max_attempts + 1):
            state = self.platform.describe(node_id)
            attempt = PollAttempt(
                attempt_number=attempt_number,
                observed_state=state,
                timestamp=datetime.now(timezone.utc)
            )
            logger.info(f"[EC2] Attempt {attempt.attempt_number}: current state {attempt.observed_state.value}")

            action = TRANSITIONS.get(state)
            if action is None:
                logger.error(f"[EC2] Unexpected state {state.value} for {node_id}. Cannot proceed.")
                raise NodeStateError(f"EC2 instance {node_id} is in state {state.value} and cannot be used.")

            if action == ReadinessAction.READY:
                logger.info(f"[EC2] Instance {node_id} is running.")
                return

            if action == ReadinessAction.START:
                if start_requested:
                    logger.info(f"[EC2] Instance {node_id} still reports stopped after the start request.")
                else:
                    logger.info(f"[EC2] Instance stopped. Starting instance {node_id}...")
                    self.platform.start(node_id)
                    start_requested = True
                    state = NodeState.PENDING

            if attempt_number == self.max_attempts:
                break

            if self.timeout_seconds is not None and self.clock() - started_at >= self.timeout_seconds:
                logger.error(f"[EC2] Instance {node_id} not running after {self.timeout_seconds}s.")
                raise NodeReadyTimeout(
                    f"EC2 instance {node_id} did not reach running within {self.timeout_seconds} seconds."
                )

            logger.info(f"[EC2] Instance in transition ({state.value}). Waiting {self.poll_interval_seconds} seconds...")
            self.sleep(self.poll_interval_seconds)

        logger.error(f"[EC2] Failed to start instance {node_id} after {self.max_attempts} attempts.")
        raise NodeReadyTimeout(f"EC2 instance {node_id} did not reach running after {self.max_attempts} attempts.")
