"""Shared domain models for asgroll."""

from dataclasses import dataclass, replace
from typing import Optional

from .errors import ContextError, InvalidArguments


@dataclass(frozen=True)
class Credential:
    """Access key pair and region for one AWS account."""

    access_key: str
    secret_key: str
    region: str


@dataclass(frozen=True)
class DeploymentArguments:
    """Immutable inputs supplied when a deployment starts."""

    group_name: str
    account: str
    instance_warmup: int
    healthy_percentage: int

    def __post_init__(self):
        if not self.group_name or not self.group_name.strip():
            raise InvalidArguments("Auto scaling group name must not be empty.")
        if not self.account:
            raise InvalidArguments("An account identifier is required.")
        if self.instance_warmup is None or self.instance_warmup < 0:
            raise InvalidArguments("Instance warm-up must be zero or more seconds.")
        if self.healthy_percentage is None or not 0 <= self.healthy_percentage <= 100:
            raise InvalidArguments("Minimum healthy percentage must be between 0 and 100.")


@dataclass(frozen=True)
class InstanceSelection:
    instance_id: str
    public_address: Optional[str]
    private_address: Optional[str]
    launch_template_id: str


@dataclass(frozen=True)
class DeploymentContext:
    """State threaded through the pipeline, one per run.

    Steps never mutate a context; they return an updated copy. Fields beyond
    ``arguments`` stay ``None`` until the step that produces them succeeds.
    """

    arguments: DeploymentArguments
    selection: Optional[InstanceSelection] = None
    image_id: Optional[str] = None

    def require_selection(self) -> InstanceSelection:
        if self.selection is None:
            raise ContextError("No instance has been selected yet.")
        return self.selection

    def require_image(self) -> str:
        if self.image_id is None:
            raise ContextError("No image has been created yet.")
        return self.image_id

    def with_selection(self, selection: InstanceSelection) -> "DeploymentContext":
        if self.selection is not None:
            raise ContextError("Instance selection is already recorded for this run.")
        return replace(self, selection=selection)

    def with_image(self, image_id: str) -> "DeploymentContext":
        self.require_selection()
        if self.image_id is not None:
            raise ContextError("An image is already recorded for this run.")
        return replace(self, image_id=image_id)

    def facts(self):
        """Return what the run has discovered so far, for reports."""
        items = [("group", self.arguments.group_name), ("account", self.arguments.account)]
        if self.selection:
            items.append(("instance", self.selection.instance_id))
            items.append(("launch template", self.selection.launch_template_id))
        if self.image_id:
            items.append(("image", self.image_id))
        return items
