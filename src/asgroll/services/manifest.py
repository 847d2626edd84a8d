"""Run report generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from asgroll.services.events import FAILED, STARTED, SUCCEEDED, StepEvent


class ManifestService:
    """Collects step events and writes the deployment run report as JSON.

    With no ``manifest_file`` the report is kept in memory only.
    """

    def __init__(self, manifest_file: Optional[str], logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "arguments": {},
            "facts": {},
            "steps": [],
            "failed_step": None,
            "error": None,
        }

    def start_run(self, run_id: str, arguments: Dict[str, Any]):
        self.manifest["run_id"] = run_id
        self.manifest["status"] = "running"
        self.manifest["started_at"] = self._now()
        self.manifest["arguments"] = arguments
        self.write()

    def handle(self, event: StepEvent):
        if event.status == STARTED:
            self.step_started(event.step, event.phase)
        elif event.status == SUCCEEDED:
            self.step_finished(event.step, "success", detail=event.detail)
        elif event.status == FAILED:
            self.step_finished(event.step, "failed", error=event.detail)

    def step_started(self, step_name: str, phase: str):
        self.manifest["steps"].append(
            {
                "name": step_name,
                "phase": phase,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "detail": None,
                "error": None,
            }
        )
        self.write()

    def step_finished(
        self,
        step_name: str,
        status: str,
        detail: Optional[str] = None,
        error: Optional[str] = None,
    ):
        for step in reversed(self.manifest["steps"]):
            if step["name"] == step_name and step["status"] == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["detail"] = detail
                step["error"] = error
                started_at = datetime.fromisoformat(step["started_at"])
                finished_at = datetime.fromisoformat(step["finished_at"])
                step["duration_seconds"] = (finished_at - started_at).total_seconds()
                break
        if status == "failed":
            self.manifest["failed_step"] = step_name
        self.write()

    def set_fact(self, key: str, value: Optional[str]):
        self.manifest["facts"][key] = value
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            started_at = datetime.fromisoformat(self.manifest["started_at"])
            finished_at = datetime.fromisoformat(self.manifest["finished_at"])
            self.manifest["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.manifest["error"] = error
        self.write()

    def write(self):
        if not self.manifest_file:
            return

        os.makedirs(os.path.dirname(self.manifest_file) or ".", exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            prefix="run-report-",
            suffix=".json",
            dir=os.path.dirname(self.manifest_file) or ".",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write run report '%s': %s", self.manifest_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
