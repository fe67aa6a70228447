"""
Run logging for recomputation jobs.

Writes one JSON log per run (completed or errored).
"""

import json
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

import pandas as pd

if TYPE_CHECKING:
    from retention.recompute import RecomputeResult
    from .config import JobConfig


class RunLogger:
    """Structured JSON logging for job runs."""

    def __init__(self, logs_dir: Path):
        """
        Initialize logger.

        Args:
            logs_dir: Directory to write log files
        """
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def log_run(self, run_id: str, config: "JobConfig", result: "RecomputeResult") -> Path:
        """
        Log a finished run to JSON file.

        Returns:
            Path to log file
        """
        log_entry = {
            "run_id": run_id,
            "timestamp": result.started_at.isoformat(),
            "config": {
                "name": config.name,
                "description": config.description,
                "attributes_path": config.attributes_path,
                "batch_size": config.batch_size,
                "max_workers": config.max_workers,
            },
            "results": result.to_dict(),
            "status": self._status(result),
        }

        log_path = self.logs_dir / f"{run_id}.json"
        with open(log_path, "w") as f:
            json.dump(log_entry, f, indent=2, default=str)

        return log_path

    def log_failure(self, run_id: str, config: "JobConfig", error: str) -> Path:
        """
        Log a run that could not complete.

        Returns:
            Path to log file
        """
        log_entry = {
            "run_id": run_id,
            "timestamp": datetime.now().isoformat(),
            "config": {
                "name": config.name,
                "description": config.description,
            },
            "status": "ERROR",
            "error": error,
        }

        log_path = self.logs_dir / f"{run_id}.json"
        with open(log_path, "w") as f:
            json.dump(log_entry, f, indent=2)

        return log_path

    def get_all_logs(self) -> list[dict]:
        """All run logs, oldest first."""
        logs = []
        for log_file in sorted(self.logs_dir.glob("run_*.json")):
            with open(log_file) as f:
                logs.append(json.load(f))
        return logs

    def get_summary_dataframe(self) -> pd.DataFrame:
        """
        Get summary of all runs as DataFrame.

        Returns:
            DataFrame with one row per run, newest first
        """
        logs = self.get_all_logs()
        if not logs:
            return pd.DataFrame()

        summary = []
        for log in logs:
            entry = {
                "run_id": log["run_id"],
                "name": log["config"]["name"],
                "timestamp": log["timestamp"],
                "status": log["status"],
            }

            if "results" in log:
                results = log["results"]
                for key in ["processed", "changed", "alerts_opened", "failed", "duration_seconds"]:
                    entry[key] = results.get(key)

            summary.append(entry)

        df = pd.DataFrame(summary)
        return df.sort_values("timestamp", ascending=False)

    @staticmethod
    def _status(result: "RecomputeResult") -> str:
        if result.interrupted:
            return "INTERRUPTED"
        if result.failures:
            return "PARTIAL"
        return "OK"
