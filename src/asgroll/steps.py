"""Deployment pipeline steps.

Each step takes the current ``DeploymentContext`` and the shared
``StepServices`` and returns ``(updated_context, detail)``. A step signals
failure by raising a ``DeployerError`` subclass.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .constants import (
    DEFAULT_CANCEL_POLL_SECONDS,
    DEFAULT_CANCEL_TIMEOUT_SECONDS,
    HEALTHY_STATUS,
    IN_SERVICE_STATE,
)
from .errors import (
    GroupNotFound,
    InstanceLookupFailed,
    LaunchTemplateNotFound,
    NoEligibleInstance,
    UpdateFailed,
)
from .models import DeploymentContext, InstanceSelection
from .services.refresh import RefreshRequest, RefreshTrigger

PREPARE_PHASE = "Preparing instance for project update"
UPDATE_PHASE = "Updating detached instance"
ROLL_PHASE = "Creating image and beginning instance refresh"

StepOutcome = Tuple[DeploymentContext, Optional[str]]


@dataclass
class StepServices:
    infrastructure: object
    updater: object
    logger: object
    image_timeout_seconds: float
    image_poll_seconds: float
    use_private_address: bool = False
    clock: Callable[[], float] = time.time
    refresh_settle_seconds: float = DEFAULT_CANCEL_TIMEOUT_SECONDS
    refresh_poll_seconds: float = DEFAULT_CANCEL_POLL_SECONDS
    sleep: Callable[[float], None] = time.sleep


@dataclass(frozen=True)
class Step:
    name: str
    phase: str
    title: str
    run: Callable[[DeploymentContext, StepServices], StepOutcome] = field(compare=False)


def find_eligible_member(members):
    """Return the first healthy, in-service member or ``None``."""
    for member in members:
        if member.health_status == HEALTHY_STATUS and member.lifecycle_state == IN_SERVICE_STATE:
            return member
    return None


def select_instance(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    group_name = ctx.arguments.group_name
    group = services.infrastructure.describe_group(group_name)
    if group is None:
        raise GroupNotFound(f"Auto scaling group '{group_name}' doesn't exist.")

    member = find_eligible_member(group.members)
    if member is None:
        raise NoEligibleInstance(
            f"Auto scaling group '{group_name}' has no {HEALTHY_STATUS}/{IN_SERVICE_STATE} instance "
            f"({len(group.members)} member(s) inspected)."
        )

    if not group.launch_template_id:
        raise LaunchTemplateNotFound(f"Auto scaling group '{group_name}' has no launch template.")

    addresses = services.infrastructure.describe_instance(member.instance_id)
    if addresses is None:
        raise InstanceLookupFailed(f"Instance '{member.instance_id}' could not be found.")

    selection = InstanceSelection(
        instance_id=member.instance_id,
        public_address=addresses.public_address,
        private_address=addresses.private_address,
        launch_template_id=group.launch_template_id,
    )
    services.logger.info(
        "Selected instance %s (public=%s, private=%s) from %s",
        selection.instance_id,
        selection.public_address,
        selection.private_address,
        group_name,
    )
    return ctx.with_selection(selection), f"selected instance [{selection.instance_id}]"


def detach_instance(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    selection = ctx.require_selection()
    services.infrastructure.detach_instance(
        ctx.arguments.group_name,
        selection.instance_id,
        decrement_capacity=False,
    )
    return ctx, f"detached instance [{selection.instance_id}]"


def update_instance(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    selection = ctx.require_selection()
    if services.use_private_address:
        address = selection.private_address
    else:
        address = selection.public_address
    if not address:
        kind = "private" if services.use_private_address else "public"
        raise UpdateFailed(f"Instance '{selection.instance_id}' has no {kind} address to update.")

    services.updater.apply_update(address)
    return ctx, f"updated instance [{selection.instance_id}]"


def build_image_name(group_name: str, clock: Callable[[], float]) -> str:
    return f"{group_name} v.{int(clock() * 1000)}"


def create_image(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    selection = ctx.require_selection()
    name = build_image_name(ctx.arguments.group_name, services.clock)
    image_id = services.infrastructure.create_image(selection.instance_id, name)
    services.logger.info("Requested image %s (%s) from %s", image_id, name, selection.instance_id)

    services.infrastructure.await_image_available(
        image_id,
        services.image_timeout_seconds,
        services.image_poll_seconds,
    )
    return ctx.with_image(image_id), f"created image [{image_id}]"


def update_launch_template(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    selection = ctx.require_selection()
    image_id = ctx.require_image()
    version = services.infrastructure.create_launch_template_version(
        selection.launch_template_id,
        image_id,
    )
    label = f" v{version}" if version is not None else ""
    return ctx, f"published launch template [{selection.launch_template_id}{label}]"


def terminate_instance(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    selection = ctx.require_selection()
    ctx.require_image()
    services.infrastructure.terminate_instance(selection.instance_id)
    return ctx, f"terminated instance [{selection.instance_id}]"


def start_instance_refresh(ctx: DeploymentContext, services: StepServices) -> StepOutcome:
    selection = ctx.require_selection()
    ctx.require_image()
    trigger = RefreshTrigger(
        services.infrastructure,
        services.logger,
        settle_timeout_seconds=services.refresh_settle_seconds,
        poll_seconds=services.refresh_poll_seconds,
        sleep=services.sleep,
    )
    refresh_id = trigger.start(
        RefreshRequest(
            group_name=ctx.arguments.group_name,
            launch_template_id=selection.launch_template_id,
            instance_warmup=ctx.arguments.instance_warmup,
            healthy_percentage=ctx.arguments.healthy_percentage,
        )
    )
    return ctx, f"started instance refresh [{refresh_id or 'unknown'}]"


def default_steps() -> List[Step]:
    return [
        Step("select_instance", PREPARE_PHASE, "selecting instance for update", select_instance),
        Step("detach_instance", PREPARE_PHASE, "detaching selected instance", detach_instance),
        Step("update_instance", UPDATE_PHASE, "updating detached instance", update_instance),
        Step("create_image", ROLL_PHASE, "creating image based on modified instance", create_image),
        Step(
            "update_launch_template",
            ROLL_PHASE,
            "creating new launch template version",
            update_launch_template,
        ),
        Step("terminate_instance", ROLL_PHASE, "killing detached instance", terminate_instance),
        Step(
            "start_instance_refresh",
            ROLL_PHASE,
            "starting auto scaling instance refresh",
            start_instance_refresh,
        ),
    ]
