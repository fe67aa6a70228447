"""
Scheduled recomputation for the retention engine.

Usage:
    from batch import JobRunner, JobConfig

    # Run from YAML
    runner = JobRunner()
    job = runner.run_from_yaml("configs/nightly.yaml")
    print(job.summary())

CLI:
    python -m batch.run configs/nightly.yaml
    python -m batch.run --list
"""

from .config import JobConfig
from .runner import JobRunner, JobResult
from .logger import RunLogger

__all__ = [
    "JobConfig",
    "JobRunner",
    "JobResult",
    "RunLogger",
]
