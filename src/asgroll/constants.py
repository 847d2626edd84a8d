"""Shared constants for asgroll."""

import os

HEALTHY_STATUS = "Healthy"
IN_SERVICE_STATE = "InService"
LATEST_VERSION = "$Latest"
REFRESH_IN_PROGRESS_CODE = "InstanceRefreshInProgress"
NO_ACTIVE_REFRESH_CODE = "ActiveInstanceRefreshNotFound"
TERMINAL_REFRESH_STATES = {
    "Successful",
    "Failed",
    "Cancelled",
    "RollbackSuccessful",
    "RollbackFailed",
}

DEFAULT_CONFIG_FILE = ".asgroll.yml"
DEFAULT_ACCOUNTS_FILE = os.path.join("~", ".asgroll", "accounts.yml")
ACCOUNTS_FILE_MODE = 0o600
ACCOUNTS_DIR_MODE = 0o700

DEFAULT_INSTANCE_WARMUP = 300
DEFAULT_HEALTHY_PERCENTAGE = 90
DEFAULT_IMAGE_TIMEOUT_MINUTES = 40
DEFAULT_IMAGE_POLL_SECONDS = 15
DEFAULT_UPDATE_TIMEOUT_MINUTES = 30
DEFAULT_UPDATE_DELAY_SECONDS = 3.0
DEFAULT_CANCEL_TIMEOUT_SECONDS = 300
DEFAULT_CANCEL_POLL_SECONDS = 10
