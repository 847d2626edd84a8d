import pytest

from asgroll.errors import DeployerError, RefreshRejected, RefreshStartFailed
from asgroll.services.refresh import RefreshRequest, RefreshState, RefreshTrigger


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class ScriptedInfrastructure:
    def __init__(self, start_results, cancel_error=None, refresh_statuses=None):
        self.start_results = list(start_results)
        self.cancel_error = cancel_error
        self.refresh_statuses = list(refresh_statuses or ["Cancelled"])
        self.calls = []

    def start_instance_refresh(self, *args):
        self.calls.append(("start", args))
        result = self.start_results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def cancel_instance_refresh(self, group_name):
        self.calls.append(("cancel", group_name))
        if self.cancel_error:
            raise self.cancel_error
        return "refresh-old"

    def describe_instance_refresh(self, group_name, refresh_id):
        self.calls.append(("describe", refresh_id))
        status = self.refresh_statuses.pop(0) if len(self.refresh_statuses) > 1 else self.refresh_statuses[0]
        if isinstance(status, Exception):
            raise status
        return status


def _request():
    return RefreshRequest(group_name="web-asg", launch_template_id="lt-1", instance_warmup=60, healthy_percentage=90)


def _never_sleep(_seconds):
    raise AssertionError("unexpected wait")


def _conflict():
    return RefreshRejected("refresh in progress", error_code="InstanceRefreshInProgress")


def test_first_start_succeeds_without_cancel():
    infrastructure = ScriptedInfrastructure(["refresh-1"])
    trigger = RefreshTrigger(infrastructure, DummyLogger())

    assert trigger.start(_request()) == "refresh-1"
    assert [call[0] for call in infrastructure.calls] == ["start"]
    assert trigger.history == [RefreshState.IDLE, RefreshState.STARTING, RefreshState.STARTED]


def test_conflict_cancels_and_retries_with_identical_parameters():
    infrastructure = ScriptedInfrastructure([_conflict(), "refresh-2"])
    trigger = RefreshTrigger(infrastructure, DummyLogger())

    assert trigger.start(_request()) == "refresh-2"
    assert [call[0] for call in infrastructure.calls] == ["start", "cancel", "describe", "start"]
    assert infrastructure.calls[0][1] == infrastructure.calls[3][1] == ("web-asg", "lt-1", "$Latest", 60, 90)
    assert trigger.history == [
        RefreshState.IDLE,
        RefreshState.STARTING,
        RefreshState.CONFLICT_DETECTED,
        RefreshState.CANCELLING,
        RefreshState.STARTING,
        RefreshState.STARTED,
    ]


def test_second_rejection_fails_without_third_attempt():
    infrastructure = ScriptedInfrastructure([_conflict(), _conflict(), "never"])
    trigger = RefreshTrigger(infrastructure, DummyLogger())

    with pytest.raises(RefreshStartFailed):
        trigger.start(_request())

    assert [call[0] for call in infrastructure.calls] == ["start", "cancel", "describe", "start"]
    assert trigger.state is RefreshState.FAILED


def test_cancel_failure_still_allows_the_single_retry():
    infrastructure = ScriptedInfrastructure(
        [_conflict(), "refresh-3"],
        cancel_error=DeployerError("access denied"),
    )
    trigger = RefreshTrigger(infrastructure, DummyLogger(), sleep=_never_sleep)

    assert trigger.start(_request()) == "refresh-3"
    assert [call[0] for call in infrastructure.calls] == ["start", "cancel", "start"]


def test_trigger_cannot_be_reused():
    trigger = RefreshTrigger(ScriptedInfrastructure(["refresh-1"]), DummyLogger())
    trigger.start(_request())

    with pytest.raises(DeployerError, match="only be used once"):
        trigger.start(_request())


def test_retry_waits_until_cancelled_refresh_settles():
    waited = []
    infrastructure = ScriptedInfrastructure(
        [_conflict(), "refresh-2"],
        refresh_statuses=["Cancelling", "Cancelling", "Cancelled"],
    )
    trigger = RefreshTrigger(infrastructure, DummyLogger(), poll_seconds=5, sleep=waited.append)

    assert trigger.start(_request()) == "refresh-2"
    assert [call[0] for call in infrastructure.calls] == [
        "start",
        "cancel",
        "describe",
        "describe",
        "describe",
        "start",
    ]
    assert infrastructure.calls[2][1] == "refresh-old"
    assert waited == [5, 5]


def test_retry_proceeds_once_settle_timeout_runs_out():
    waited = []
    infrastructure = ScriptedInfrastructure([_conflict(), _conflict()], refresh_statuses=["Cancelling"])
    trigger = RefreshTrigger(
        infrastructure,
        DummyLogger(),
        settle_timeout_seconds=20,
        poll_seconds=10,
        sleep=waited.append,
    )

    with pytest.raises(RefreshStartFailed):
        trigger.start(_request())

    assert waited == [10, 10]
    assert [call[0] for call in infrastructure.calls].count("start") == 2


def test_unreadable_refresh_status_does_not_block_the_retry():
    infrastructure = ScriptedInfrastructure(
        [_conflict(), "refresh-2"],
        refresh_statuses=[DeployerError("throttled")],
    )
    trigger = RefreshTrigger(infrastructure, DummyLogger(), sleep=_never_sleep)

    assert trigger.start(_request()) == "refresh-2"
    assert [call[0] for call in infrastructure.calls] == ["start", "cancel", "describe", "start"]


def test_in_progress_rejection_is_recognised_as_conflict():
    assert _conflict().is_conflict
    assert not RefreshRejected("denied", error_code="AccessDenied").is_conflict
