"""Run report generation service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class RunReport:
    """Collects per-step outcomes of a run and writes them as JSON.

    Without a report file the data is only kept in memory.
    """

    def __init__(self, report_file: Optional[str], logger):
        self.report_file = report_file
        self.logger = logger
        self.report: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "metadata": {},
            "steps": [],
            "warnings": [],
            "errors": [],
        }

    def start_run(self, run_id: str, metadata: Dict[str, Any]):
        self.report["run_id"] = run_id
        self.report["status"] = "running"
        self.report["started_at"] = self._now()
        self.report["metadata"] = metadata
        self.write()

    def step_started(self, step_name: str):
        self.report["steps"].append(
            {
                "name": step_name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "error": None,
            }
        )

    def step_finished(self, step_name: str, status: str, error: Optional[str] = None):
        for step in reversed(self.report["steps"]):
            if step["name"] == step_name and step["status"] == "running":
                step["status"] = status
                step["finished_at"] = self._now()
                step["error"] = error
                started_at = datetime.fromisoformat(step["started_at"])
                finished_at = datetime.fromisoformat(step["finished_at"])
                step["duration_seconds"] = (finished_at - started_at).total_seconds()
                break
        self.write()

    def step_skipped(self, step_name: str, reason: str):
        now = self._now()
        self.report["steps"].append(
            {
                "name": step_name,
                "status": "skipped",
                "started_at": now,
                "finished_at": now,
                "duration_seconds": 0.0,
                "error": None,
                "reason": reason,
            }
        )
        self.write()

    def add_warning(self, step_name: str, message: str):
        self.report["warnings"].append({"step": step_name, "message": message})

    def finalize(self, status: str, errors=None):
        self.report["status"] = status
        self.report["finished_at"] = self._now()
        if self.report.get("started_at"):
            started_at = datetime.fromisoformat(self.report["started_at"])
            finished_at = datetime.fromisoformat(self.report["finished_at"])
            self.report["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.report["errors"] = [str(error) for error in errors or []]
        self.write()

    def write(self):
        if not self.report_file:
            return

        os.makedirs(os.path.dirname(self.report_file) or ".", exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            prefix="run-report-",
            suffix=".json",
            dir=os.path.dirname(os.path.abspath(self.report_file)),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.report, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.report_file)
        except OSError as exc:
            self.logger.warning("Could not write report file '%s': %s", self.report_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
