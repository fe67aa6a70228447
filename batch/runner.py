"""
Job runner for scheduled recomputation.

Single entry point for running the recomputation job from a JobConfig.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import pandas as pd
from sqlalchemy.engine import make_url

from retention.collaborators import DataFrameAttributeSource, LoggingEventSink
from retention.config import EngineConfig, ScoringConfig
from retention.db import init_db, make_engine, make_session_factory
from retention.engine import RetentionEngine
from retention.outcomes import OutcomeCatalog
from retention.recompute import RecomputeResult
from retention.scoring import RuleWeightedScoreFunction, ScoringResult, generate_sample_attributes

from .config import JobConfig
from .logger import RunLogger

logger = logging.getLogger(__name__)


@dataclass
class JobResult:
    """Container for one job run."""

    run_id: str
    config: JobConfig
    result: RecomputeResult
    log_path: Path

    @property
    def ok(self) -> bool:
        return not self.result.failures and not self.result.interrupted

    def summary(self) -> str:
        """Human-readable summary."""
        return f"[{self.run_id}] {self.config.name}\n{self.result.summary()}"


class JobRunner:
    """
    Single entry point for running recomputation jobs.

    Usage:
        runner = JobRunner()

        # From YAML config
        job = runner.run_from_yaml("configs/nightly.yaml")
        print(job.summary())

        # Past runs
        print(runner.list_runs())
    """

    def __init__(
        self,
        base_path: Optional[Path] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize runner.

        Args:
            base_path: Base path for relative config paths (default: this file's parent)
            clock: Callable returning the current naive datetime
        """
        self.base_path = Path(base_path) if base_path else Path(__file__).parent
        self.clock = clock

    def generate_run_id(self) -> str:
        """Generate unique run ID: run_YYYYMMDD_XXXX"""
        date_str = self.clock().strftime("%Y%m%d")
        short_uuid = uuid.uuid4().hex[:4]
        return f"run_{date_str}_{short_uuid}"

    def resolve(self, path: str | Path) -> Path:
        path = Path(path)
        return path if path.is_absolute() else self.base_path / path

    def database_url(self, config: JobConfig) -> str:
        """The config's database URL with a relative SQLite file resolved against base_path."""
        url = make_url(config.database_url)
        if (
            url.get_backend_name() == "sqlite"
            and url.database
            and url.database != ":memory:"
            and "uri" not in url.query
            and not Path(url.database).is_absolute()
        ):
            url = url.set(database=str(self.resolve(url.database)))
        return url.render_as_string(hide_password=False)

    def score_function(self, config: JobConfig) -> RuleWeightedScoreFunction:
        scoring_config = (
            ScoringConfig.from_yaml(self.resolve(config.scoring_config_path))
            if config.scoring_config_path else None
        )
        return RuleWeightedScoreFunction(scoring_config)

    def build_engine(self, config: JobConfig) -> RetentionEngine:
        """Open the database named by the config and wire an engine to it."""
        db_engine = make_engine(self.database_url(config))
        init_db(db_engine)
        engine_config = (
            EngineConfig.from_yaml(self.resolve(config.engine_config_path))
            if config.engine_config_path else None
        )
        catalog = (
            OutcomeCatalog.from_yaml(self.resolve(config.outcomes_path))
            if config.outcomes_path else None
        )
        return RetentionEngine(
            make_session_factory(db_engine),
            score_function=self.score_function(config),
            catalog=catalog,
            config=engine_config,
            event_sink=LoggingEventSink(),
            clock=self.clock,
        )

    def run(
        self,
        config: JobConfig,
        max_workers: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> JobResult:
        """
        Run the recomputation job once.

        Args:
            config: JobConfig to run
            max_workers: Override config.max_workers
            stop_event: Set to end the run between clients

        Returns:
            JobResult with the run's counts and log path
        """
        run_id = self.generate_run_id()
        run_logger = RunLogger(self.resolve(config.logs_dir))
        logger.info("Starting %s (%s)", run_id, config.name)

        try:
            engine = self.build_engine(config)
            source = DataFrameAttributeSource.from_csv(
                self.resolve(config.attributes_path), id_column=config.id_column
            )
            result = engine.recompute(
                source,
                stop_event=stop_event,
                max_workers=max_workers or config.max_workers,
                batch_size=config.batch_size,
            )
        except Exception as e:
            run_logger.log_failure(run_id, config, str(e))
            raise

        log_path = run_logger.log_run(run_id, config, result)
        return JobResult(run_id=run_id, config=config, result=result, log_path=log_path)

    def run_from_yaml(self, config_path: str | Path, **kwargs) -> JobResult:
        """
        Load config from YAML and run.

        Args:
            config_path: Path to YAML config (relative to base_path or absolute)
        """
        return self.run(JobConfig.from_yaml(self.resolve(config_path)), **kwargs)

    def list_runs(self, config: Optional[JobConfig] = None) -> pd.DataFrame:
        """
        Get summary of all past runs.

        Returns:
            DataFrame with run history
        """
        logs_dir = config.logs_dir if config else "logs"
        return RunLogger(self.resolve(logs_dir)).get_summary_dataframe()

    def preview(self, config: JobConfig) -> ScoringResult:
        """Score the attribute file without writing anything."""
        df = pd.read_csv(self.resolve(config.attributes_path), dtype={config.id_column: str})
        return self.score_function(config).compute_frame(df)

    def write_sample(self, n_clients: int, path: str | Path, seed: int = 42) -> Path:
        """Write a synthetic attribute file for trying the job out."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        generate_sample_attributes(n_clients, seed=seed).to_csv(path, index=False)
        logger.info("Wrote %d sample clients to %s", n_clients, path)
        return path
