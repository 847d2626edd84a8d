"""AWS Auto Scaling and EC2 adapter for asgroll."""

import math
from dataclasses import dataclass, field
from typing import List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from asgroll.constants import LATEST_VERSION, NO_ACTIVE_REFRESH_CODE
from asgroll.errors import (
    DeployerError,
    DetachFailed,
    ImageCreationFailed,
    ImageTimeout,
    InstanceLookupFailed,
    RefreshRejected,
    TemplateVersionFailed,
    TerminationFailed,
)

MISSING_INSTANCE_CODES = {"InvalidInstanceID.NotFound", "InvalidInstanceID.Malformed"}


@dataclass(frozen=True)
class GroupMember:
    instance_id: str
    health_status: str
    lifecycle_state: str


@dataclass(frozen=True)
class GroupDescription:
    name: str
    launch_template_id: Optional[str]
    members: List[GroupMember] = field(default_factory=list)


@dataclass(frozen=True)
class InstanceAddresses:
    public_address: Optional[str]
    private_address: Optional[str]


def error_code(exc: Exception) -> Optional[str]:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code")
    return None


class InfrastructureClient:
    """Thin request/response wrapper over the Auto Scaling and EC2 APIs.

    Provider errors are translated to domain errors here so the pipeline never
    sees botocore types.
    """

    def __init__(self, autoscaling, ec2, logger):
        self.autoscaling = autoscaling
        self.ec2 = ec2
        self.logger = logger

    @classmethod
    def from_credential(cls, credential, logger, session_factory=boto3.session.Session):
        session = session_factory(
            aws_access_key_id=credential.access_key,
            aws_secret_access_key=credential.secret_key,
            region_name=credential.region,
        )
        return cls(
            autoscaling=session.client("autoscaling"),
            ec2=session.client("ec2"),
            logger=logger,
        )

    def describe_group(self, group_name: str) -> Optional[GroupDescription]:
        try:
            response = self.autoscaling.describe_auto_scaling_groups(
                AutoScalingGroupNames=[group_name]
            )
        except (ClientError, BotoCoreError) as exc:
            raise DeployerError(f"Could not describe auto scaling group '{group_name}': {exc}") from exc

        groups = response.get("AutoScalingGroups", [])
        if not groups:
            return None

        group = groups[0]
        members = [
            GroupMember(
                instance_id=instance["InstanceId"],
                health_status=instance.get("HealthStatus", ""),
                lifecycle_state=instance.get("LifecycleState", ""),
            )
            for instance in group.get("Instances", [])
        ]
        return GroupDescription(
            name=group.get("AutoScalingGroupName", group_name),
            launch_template_id=self._launch_template_id(group),
            members=members,
        )

    @staticmethod
    def _launch_template_id(group) -> Optional[str]:
        template = group.get("LaunchTemplate")
        if template and template.get("LaunchTemplateId"):
            return template["LaunchTemplateId"]

        mixed = group.get("MixedInstancesPolicy", {}).get("LaunchTemplate", {})
        specification = mixed.get("LaunchTemplateSpecification", {})
        return specification.get("LaunchTemplateId")

    def describe_instance(self, instance_id: str) -> Optional[InstanceAddresses]:
        try:
            response = self.ec2.describe_instances(InstanceIds=[instance_id])
        except ClientError as exc:
            if error_code(exc) in MISSING_INSTANCE_CODES:
                return None
            raise InstanceLookupFailed(f"Could not describe instance '{instance_id}': {exc}") from exc
        except BotoCoreError as exc:
            raise InstanceLookupFailed(f"Could not describe instance '{instance_id}': {exc}") from exc

        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                if instance.get("InstanceId", instance_id) == instance_id:
                    return InstanceAddresses(
                        public_address=instance.get("PublicIpAddress"),
                        private_address=instance.get("PrivateIpAddress"),
                    )
        return None

    def detach_instance(self, group_name: str, instance_id: str, decrement_capacity: bool = False):
        try:
            response = self.autoscaling.detach_instances(
                AutoScalingGroupName=group_name,
                InstanceIds=[instance_id],
                ShouldDecrementDesiredCapacity=decrement_capacity,
            )
        except (ClientError, BotoCoreError) as exc:
            raise DetachFailed(f"Detach of '{instance_id}' from '{group_name}' was rejected: {exc}") from exc

        for activity in response.get("Activities", []):
            if activity.get("StatusCode") in {"Failed", "Cancelled"}:
                raise DetachFailed(
                    f"Detach activity for '{instance_id}' ended as {activity['StatusCode']}: "
                    f"{activity.get('StatusMessage', 'no details')}"
                )

    def create_image(self, instance_id: str, name: str) -> str:
        try:
            response = self.ec2.create_image(InstanceId=instance_id, Name=name)
        except (ClientError, BotoCoreError) as exc:
            raise ImageCreationFailed(f"Image creation from '{instance_id}' was rejected: {exc}") from exc

        image_id = response.get("ImageId")
        if not image_id:
            raise ImageCreationFailed(f"Image creation from '{instance_id}' returned no image id.")
        return image_id

    def await_image_available(self, image_id: str, timeout_seconds: float, poll_seconds: float):
        delay = max(1, int(poll_seconds))
        max_attempts = max(1, math.ceil(timeout_seconds / delay))
        self.logger.debug(
            "Waiting for image %s (delay=%ss, max_attempts=%s)", image_id, delay, max_attempts
        )
        waiter = self.ec2.get_waiter("image_available")
        try:
            waiter.wait(
                ImageIds=[image_id],
                WaiterConfig={"Delay": delay, "MaxAttempts": max_attempts},
            )
        except WaiterError as exc:
            reason = str(getattr(exc, "kwargs", {}).get("reason", exc))
            if "Max attempts exceeded" in reason:
                raise ImageTimeout(
                    f"Image '{image_id}' was not available after {timeout_seconds:.0f}s."
                ) from exc
            raise ImageCreationFailed(f"Image '{image_id}' failed to become available: {reason}") from exc
        except (ClientError, BotoCoreError) as exc:
            raise ImageCreationFailed(f"Could not poll image '{image_id}': {exc}") from exc

    def create_launch_template_version(self, launch_template_id: str, image_id: str) -> Optional[int]:
        try:
            response = self.ec2.create_launch_template_version(
                LaunchTemplateId=launch_template_id,
                SourceVersion=LATEST_VERSION,
                VersionDescription=f"image {image_id}",
                LaunchTemplateData={"ImageId": image_id},
            )
        except (ClientError, BotoCoreError) as exc:
            raise TemplateVersionFailed(
                f"Launch template '{launch_template_id}' version with '{image_id}' was rejected: {exc}"
            ) from exc

        version = response.get("LaunchTemplateVersion", {}).get("VersionNumber")
        warning = response.get("Warning")
        if warning:
            self.logger.warning("Launch template version created with warnings: %s", warning)
        return version

    def terminate_instance(self, instance_id: str):
        try:
            response = self.ec2.terminate_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as exc:
            raise TerminationFailed(f"Termination of '{instance_id}' was rejected: {exc}") from exc

        terminating = [item.get("InstanceId") for item in response.get("TerminatingInstances", [])]
        if instance_id not in terminating:
            raise TerminationFailed(f"Termination of '{instance_id}' was not acknowledged.")

    def start_instance_refresh(
        self,
        group_name: str,
        launch_template_id: str,
        version: str,
        instance_warmup: int,
        healthy_percentage: int,
    ) -> Optional[str]:
        try:
            response = self.autoscaling.start_instance_refresh(
                AutoScalingGroupName=group_name,
                Strategy="Rolling",
                DesiredConfiguration={
                    "LaunchTemplate": {
                        "LaunchTemplateId": launch_template_id,
                        "Version": version,
                    }
                },
                Preferences={
                    "InstanceWarmup": instance_warmup,
                    "MinHealthyPercentage": healthy_percentage,
                    "SkipMatching": False,
                },
            )
        except ClientError as exc:
            raise RefreshRejected(
                f"Instance refresh on '{group_name}' was rejected: {exc}",
                error_code=error_code(exc),
            ) from exc
        except BotoCoreError as exc:
            raise RefreshRejected(f"Instance refresh on '{group_name}' was rejected: {exc}") from exc

        return response.get("InstanceRefreshId")

    def cancel_instance_refresh(self, group_name: str) -> Optional[str]:
        """Cancel the in-flight refresh, returning its id or ``None`` when none was active."""
        try:
            response = self.autoscaling.cancel_instance_refresh(AutoScalingGroupName=group_name)
        except ClientError as exc:
            if error_code(exc) == NO_ACTIVE_REFRESH_CODE:
                return None
            raise DeployerError(f"Could not cancel instance refresh on '{group_name}': {exc}") from exc
        except BotoCoreError as exc:
            raise DeployerError(f"Could not cancel instance refresh on '{group_name}': {exc}") from exc

        return response.get("InstanceRefreshId")

    def describe_instance_refresh(self, group_name: str, refresh_id: str) -> Optional[str]:
        """Return the refresh status, or ``None`` when the provider no longer lists it."""
        try:
            response = self.autoscaling.describe_instance_refreshes(
                AutoScalingGroupName=group_name,
                InstanceRefreshIds=[refresh_id],
            )
        except (ClientError, BotoCoreError) as exc:
            raise DeployerError(
                f"Could not describe instance refresh '{refresh_id}' on '{group_name}': {exc}"
            ) from exc

        refreshes = response.get("InstanceRefreshes", [])
        if not refreshes:
            return None
        return refreshes[0].get("Status")
