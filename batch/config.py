"""
Job configuration for scheduled recomputation runs.

Defines the JobConfig dataclass for YAML-driven runs.
"""

from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class JobConfig:
    """
    Configuration for one recomputation job.

    Load from YAML:
        config = JobConfig.from_yaml("configs/nightly.yaml")

    Create programmatically:
        config = JobConfig(
            name="backfill",
            attributes_path="data/attributes.csv",
            max_workers=4,
        )
    """

    # Metadata
    name: str
    description: str = ""

    # Storage (SQLAlchemy URL)
    database_url: str = "sqlite:///retention.db"

    # Attribute snapshots, one row per client (relative to batch/)
    attributes_path: str = "data/attributes.csv"
    id_column: str = "CLIENT_ID"

    # Execution
    batch_size: int = 500
    max_workers: int = 1

    # Run logs (relative to batch/)
    logs_dir: str = "logs"

    # Optional overrides (relative to batch/)
    engine_config_path: Optional[str] = None
    outcomes_path: Optional[str] = None
    scoring_config_path: Optional[str] = None

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")

    @classmethod
    def from_yaml(cls, path: Path | str) -> "JobConfig":
        """Load configuration from YAML file."""
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls(**data)

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(asdict(self), f, default_flow_style=False, sort_keys=False)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return asdict(self)
