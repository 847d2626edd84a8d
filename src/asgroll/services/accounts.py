"""Named AWS credential storage for asgroll."""

import os
import tempfile
from typing import Any, Dict, List, Optional

import yaml

from asgroll.constants import ACCOUNTS_DIR_MODE, ACCOUNTS_FILE_MODE
from asgroll.errors import DeployerError
from asgroll.models import Credential


class AccountStore:
    """Persists account credentials in a YAML mapping keyed by account id."""

    REQUIRED_FIELDS = ("access_key", "secret_key", "region")

    def __init__(self, accounts_file: str, logger):
        self.accounts_file = os.path.expanduser(accounts_file)
        self.logger = logger

    def load(self) -> Dict[str, Dict[str, Any]]:
        if not os.path.exists(self.accounts_file):
            return {}

        try:
            with open(self.accounts_file, "r", encoding="utf-8") as file_obj:
                data = yaml.safe_load(file_obj)
        except (OSError, yaml.YAMLError) as exc:
            raise DeployerError(f"Could not read accounts file '{self.accounts_file}': {exc}") from exc

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise DeployerError(f"Accounts file '{self.accounts_file}' has invalid format.")
        return data

    def save(self, accounts: Dict[str, Dict[str, Any]]):
        directory = os.path.dirname(self.accounts_file) or "."
        os.makedirs(directory, mode=ACCOUNTS_DIR_MODE, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix="accounts-", suffix=".yml", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                yaml.safe_dump(accounts, file_obj, default_flow_style=False, sort_keys=True)
            os.chmod(temp_path, ACCOUNTS_FILE_MODE)
            os.replace(temp_path, self.accounts_file)
        except OSError as exc:
            raise DeployerError(f"Could not write accounts file '{self.accounts_file}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def resolve(self, account: str) -> Optional[Credential]:
        entry = self.load().get(account)
        if not isinstance(entry, dict):
            self.logger.debug("No credential stored for account '%s'", account)
            return None

        missing = [field for field in self.REQUIRED_FIELDS if not entry.get(field)]
        if missing:
            self.logger.warning(
                "Credential for account '%s' is incomplete (missing %s)",
                account,
                ", ".join(missing),
            )
            return None

        return Credential(
            access_key=str(entry["access_key"]),
            secret_key=str(entry["secret_key"]),
            region=str(entry["region"]),
        )

    def add(self, account: str, credential: Credential):
        if not account:
            raise DeployerError("Account name must not be empty.")
        accounts = self.load()
        accounts[account] = {
            "access_key": credential.access_key,
            "secret_key": credential.secret_key,
            "region": credential.region,
        }
        self.save(accounts)
        self.logger.info("Stored credential for account '%s'", account)

    def remove(self, account: str) -> bool:
        accounts = self.load()
        if account not in accounts:
            return False
        del accounts[account]
        self.save(accounts)
        self.logger.info("Removed credential for account '%s'", account)
        return True

    def list_accounts(self) -> List[str]:
        return sorted(self.load().keys())
