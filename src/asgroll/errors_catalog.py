"""Actionable error catalog for asgroll."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "credential_not_found": {
        "what": "Credential not found for account `{account}`.",
        "next": "Register it with `asgroll accounts add {account}` or pass another `--account`.",
    },
    "group_not_found": {
        "what": "Auto scaling group `{group}` doesn't exist.",
        "next": "Check the group name and the region configured for the account.",
    },
    "launch_template_not_found": {
        "what": "Auto scaling group `{group}` is not backed by a launch template.",
        "next": "Migrate the group from a launch configuration to a launch template first.",
    },
    "no_eligible_instance": {
        "what": "No healthy in-service instance found in `{group}`.",
        "next": "Wait for the group to stabilise and run the deployment again.",
    },
    "instance_lookup_failed": {
        "what": "Could not describe instance `{instance_id}`.",
        "next": "Confirm the instance still exists and run the deployment again.",
    },
    "detach_failed": {
        "what": "Could not detach `{instance_id}` from `{group}`.",
        "next": "Inspect the group's scaling activities before retrying.",
    },
    "update_failed": {
        "what": "Updating detached instance `{instance_id}` failed.",
        "next": "The instance is detached and still running. Terminate it by hand once investigated.",
    },
    "image_creation_failed": {
        "what": "Image creation from `{instance_id}` failed.",
        "next": "Terminate detached instance `{instance_id}` and deregister any failed image.",
    },
    "image_timeout": {
        "what": "The new image did not become available in time.",
        "next": "Raise `--image-timeout-minutes`, then deregister the pending image and terminate `{instance_id}`.",
    },
    "template_version_failed": {
        "what": "Could not publish a launch template version with image `{image_id}`.",
        "next": "Terminate detached instance `{instance_id}`; image `{image_id}` can be reused manually.",
    },
    "termination_failed": {
        "what": "Could not terminate detached instance `{instance_id}`.",
        "next": "Terminate it by hand; the launch template already references `{image_id}`.",
    },
    "refresh_start_failed": {
        "what": "Instance refresh on `{group}` could not be started.",
        "next": "Start the refresh manually; the launch template `$Latest` already points to `{image_id}`.",
    },
    "deployment_cancelled": {
        "what": "Deployment cancelled before step `{step}`.",
        "next": "Review the infrastructure state listed above before running again.",
    },
    "deployment_interrupted": {
        "what": "Deployment interrupted during step `{step}`.",
        "next": "The remote call of `{step}` may or may not have completed. Check `{group}` and instance `{instance_id}` before running again.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"


def has_entry(code: str) -> bool:
    return code in _ERROR_MESSAGES
