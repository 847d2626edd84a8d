import pytest

from asgroll.errors import ContextError, InstanceLookupFailed, LaunchTemplateNotFound, UpdateFailed
from asgroll.models import DeploymentArguments, DeploymentContext, InstanceSelection
from asgroll.services.infrastructure import GroupDescription, GroupMember, InstanceAddresses
from asgroll.steps import (
    StepServices,
    build_image_name,
    create_image,
    default_steps,
    find_eligible_member,
    select_instance,
    terminate_instance,
    update_instance,
)


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None

    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class StaticInfrastructure:
    def __init__(self, group, addresses=None):
        self.group = group
        self.addresses = addresses

    def describe_group(self, group_name):
        return self.group

    def describe_instance(self, instance_id):
        return self.addresses


def _context():
    return DeploymentContext(
        arguments=DeploymentArguments(
            group_name="web-asg",
            account="prod",
            instance_warmup=300,
            healthy_percentage=90,
        )
    )


def _services(infrastructure=None, updater=None, **kwargs):
    return StepServices(
        infrastructure=infrastructure,
        updater=updater,
        logger=DummyLogger(),
        image_timeout_seconds=60,
        image_poll_seconds=5,
        **kwargs,
    )


def test_find_eligible_member_is_find_first():
    members = [
        GroupMember("i-0", "Unhealthy", "InService"),
        GroupMember("i-1", "Healthy", "InService"),
        GroupMember("i-2", "Healthy", "InService"),
    ]

    assert find_eligible_member(members).instance_id == "i-1"
    assert find_eligible_member([]) is None


def test_select_instance_records_selection_and_template():
    group = GroupDescription("web-asg", "lt-1", [GroupMember("i-1", "Healthy", "InService")])
    infrastructure = StaticInfrastructure(group, InstanceAddresses("54.0.0.1", "10.0.0.1"))

    ctx, detail = select_instance(_context(), _services(infrastructure))

    assert ctx.selection == InstanceSelection("i-1", "54.0.0.1", "10.0.0.1", "lt-1")
    assert detail == "selected instance [i-1]"


def test_select_instance_is_idempotent_for_unchanged_group():
    group = GroupDescription(
        "web-asg",
        "lt-1",
        [GroupMember("i-3", "Healthy", "Pending"), GroupMember("i-4", "Healthy", "InService")],
    )
    infrastructure = StaticInfrastructure(group, InstanceAddresses(None, "10.0.0.4"))

    first, _ = select_instance(_context(), _services(infrastructure))
    second, _ = select_instance(_context(), _services(infrastructure))

    assert first.selection.instance_id == second.selection.instance_id == "i-4"


def test_select_instance_requires_launch_template():
    group = GroupDescription("web-asg", None, [GroupMember("i-1", "Healthy", "InService")])

    with pytest.raises(LaunchTemplateNotFound):
        select_instance(_context(), _services(StaticInfrastructure(group)))


def test_select_instance_fails_when_instance_cannot_be_described():
    group = GroupDescription("web-asg", "lt-1", [GroupMember("i-1", "Healthy", "InService")])

    with pytest.raises(InstanceLookupFailed):
        select_instance(_context(), _services(StaticInfrastructure(group, addresses=None)))


def test_steps_refuse_unpopulated_context():
    with pytest.raises(ContextError):
        create_image(_context(), _services())

    selected = _context().with_selection(InstanceSelection("i-1", "54.0.0.1", None, "lt-1"))
    with pytest.raises(ContextError):
        terminate_instance(selected, _services())


def test_update_instance_requires_an_address():
    ctx = _context().with_selection(InstanceSelection("i-1", None, "10.0.0.1", "lt-1"))

    with pytest.raises(UpdateFailed, match="no public address"):
        update_instance(ctx, _services(updater=object()))


def test_build_image_name_embeds_group_and_timestamp():
    assert build_image_name("web-asg", lambda: 1700000000.123) == "web-asg v.1700000000123"


def test_default_steps_order():
    assert [step.name for step in default_steps()] == [
        "select_instance",
        "detach_instance",
        "update_instance",
        "create_image",
        "update_launch_template",
        "terminate_instance",
        "start_instance_refresh",
    ]
