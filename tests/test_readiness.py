import pytest

from train_dispatch.domains.orchestration.schemas.constants import NodeState
from train_dispatch.domains.orchestration.services.readiness import NodeReadinessDriver
from train_dispatch.errors import NodeNotFound, NodeReadyTimeout, NodeStateError

from tests.fakes import FakePlatform


def _driver(platform, clock, **kwargs) -> NodeReadinessDriver:
    return NodeReadinessDriver(
        platform,
        max_attempts=kwargs.pop("max_attempts", 15),
        poll_interval_seconds=kwargs.pop("poll_interval_seconds", 10),
        sleep=clock.sleep,
        clock=clock,
        **kwargs
    )


def test_running_on_first_poll_returns_without_waiting(clock):
    platform = FakePlatform([NodeState.RUNNING])

    _driver(platform, clock).ensure_ready("i-node")

    assert platform.calls == [("describe", "i-node")]
    assert clock.sleeps == []


def test_stopped_node_is_started_once_then_waits_until_running(clock):
    platform = FakePlatform([
        NodeState.STOPPED,
        NodeState.PENDING,
        NodeState.PENDING,
        NodeState.PENDING,
        NodeState.RUNNING,
    ])

    _driver(platform, clock).ensure_ready("i-node")

    assert platform.describe_count == 5
    assert platform.start_count == 1
    assert platform.calls[:2] == [("describe", "i-node"), ("start", "i-node")]
    assert clock.sleeps == [10, 10, 10, 10]


def test_node_stuck_stopped_starts_once_and_times_out(clock):
    platform = FakePlatform([NodeState.STOPPED] * 15)

    with pytest.raises(NodeReadyTimeout):
        _driver(platform, clock).ensure_ready("i-node")

    assert platform.describe_count == 15
    assert platform.start_count == 1
    assert platform.calls[1] == ("start", "i-node")
    assert len(clock.sleeps) == 14


def test_pending_forever_times_out_without_start(clock):
    platform = FakePlatform([NodeState.PENDING] * 15)

    with pytest.raises(NodeReadyTimeout):
        _driver(platform, clock).ensure_ready("i-node")

    assert platform.describe_count == 15
    assert platform.start_count == 0


def test_stopping_is_transitional(clock):
    platform = FakePlatform([NodeState.STOPPING, NodeState.STOPPING, NodeState.RUNNING])

    _driver(platform, clock).ensure_ready("i-node")

    assert platform.describe_count == 3
    assert platform.start_count == 0


def test_stopping_then_stopped_issues_start(clock):
    platform = FakePlatform([NodeState.STOPPING, NodeState.STOPPED, NodeState.PENDING, NodeState.RUNNING])

    _driver(platform, clock).ensure_ready("i-node")

    assert platform.calls == [
        ("describe", "i-node"),
        ("describe", "i-node"),
        ("start", "i-node"),
        ("describe", "i-node"),
        ("describe", "i-node"),
    ]


def test_node_reverting_to_stopped_is_not_started_again(clock):
    platform = FakePlatform([
        NodeState.STOPPED,
        NodeState.PENDING,
        NodeState.STOPPED,
        NodeState.PENDING,
        NodeState.RUNNING,
    ])

    _driver(platform, clock).ensure_ready("i-node")

    assert platform.start_count == 1


def test_missing_node_fails_without_further_polling(clock):
    platform = FakePlatform([NodeNotFound("gone"), NodeState.RUNNING])

    with pytest.raises(NodeNotFound):
        _driver(platform, clock).ensure_ready("i-node")

    assert platform.calls == [("describe", "i-node")]
    assert clock.sleeps == []


def test_unknown_state_fails_immediately(clock):
    platform = FakePlatform([NodeState.PENDING, NodeState.UNKNOWN, NodeState.RUNNING])

    with pytest.raises(NodeStateError):
        _driver(platform, clock).ensure_ready("i-node")

    assert platform.describe_count == 2
    assert platform.start_count == 0


def test_wall_clock_ceiling_stops_polling_early(clock):
    platform = FakePlatform([NodeState.PENDING] * 15)

    with pytest.raises(NodeReadyTimeout):
        _driver(platform, clock, timeout_seconds=25).ensure_ready("i-node")

    # polls at t=0, 10, 20, 30 -> ceiling hit after the fourth observation
    assert platform.describe_count == 4


@pytest.mark.parametrize("ready_at", [2, 5, 15])
def test_running_within_attempt_budget_succeeds(clock, ready_at):
    states = [NodeState.STOPPED] + [NodeState.PENDING] * (ready_at - 2) + [NodeState.RUNNING]
    platform = FakePlatform(states)

    _driver(platform, clock).ensure_ready("i-node")

    assert platform.describe_count == ready_at
    assert platform.calls[1] == ("start", "i-node")
    assert platform.start_count == 1
