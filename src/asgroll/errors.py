"""Domain errors for asgroll."""

from typing import Optional

from .constants import REFRESH_IN_PROGRESS_CODE


class DeployerError(RuntimeError):
    """Raised when the deployment cannot continue safely."""

    code = "deployment_failed"

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class InvalidArguments(DeployerError):
    code = "invalid_arguments"


class ContextError(DeployerError):
    """A step read a context field that no earlier step has populated."""

    code = "context_error"


class DeploymentCancelled(DeployerError):
    code = "deployment_cancelled"


class DeploymentInterrupted(DeploymentCancelled):
    """A step was interrupted while its remote call was in flight."""

    code = "deployment_interrupted"


class CredentialNotFound(DeployerError):
    code = "credential_not_found"


class GroupNotFound(DeployerError):
    code = "group_not_found"


class LaunchTemplateNotFound(DeployerError):
    code = "launch_template_not_found"


class NoEligibleInstance(DeployerError):
    code = "no_eligible_instance"


class InstanceLookupFailed(DeployerError):
    code = "instance_lookup_failed"


class DetachFailed(DeployerError):
    code = "detach_failed"


class UpdateFailed(DeployerError):
    code = "update_failed"


class ImageCreationFailed(DeployerError):
    code = "image_creation_failed"


class ImageTimeout(DeployerError):
    code = "image_timeout"


class TemplateVersionFailed(DeployerError):
    code = "template_version_failed"


class TerminationFailed(DeployerError):
    code = "termination_failed"


class RefreshRejected(DeployerError):
    """The provider refused to start an instance refresh."""

    code = "refresh_rejected"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code

    @property
    def is_conflict(self) -> bool:
        return self.error_code == REFRESH_IN_PROGRESS_CODE


class RefreshStartFailed(DeployerError):
    code = "refresh_start_failed"
