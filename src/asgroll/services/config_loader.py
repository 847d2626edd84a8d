"""Configuration loader for asgroll."""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from asgroll.errors import DeployerError


class ConfigLoader:
    """Loads YAML configuration files for CLI defaults."""

    SUPPORTED_KEYS = {
        "account",
        "instance_warmup",
        "healthy_percentage",
        "verbose",
        "log_file",
        "accounts_file",
        "report_file",
        "image_timeout_minutes",
        "image_poll_seconds",
        "update_command",
        "update_timeout_minutes",
        "update_delay_seconds",
        "use_private_address",
    }

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.exists():
            raise DeployerError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise DeployerError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise DeployerError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(set(parsed.keys()) - self.SUPPORTED_KEYS)
        if unknown:
            unknown_list = ", ".join(unknown)
            raise DeployerError(f"Unknown configuration keys: {unknown_list}")

        return parsed
