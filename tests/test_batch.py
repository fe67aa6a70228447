"""
Tests for the scheduled job wrapper: config, runner, run logs and CLI.
"""

import json
from pathlib import Path

import pytest

from batch.config import JobConfig
from batch.logger import RunLogger
from batch.run import main
from batch.runner import JobRunner
from retention.config import EngineConfig, ScoringConfig
from retention.errors import AttributeSourceError
from retention.recompute import RecomputeResult

from conftest import FIXED_NOW

BATCH_DIR = Path(__file__).parent.parent / "batch"


@pytest.fixture
def runner(tmp_path, clock):
    return JobRunner(base_path=tmp_path, clock=clock)


@pytest.fixture
def job_config(tmp_path, runner):
    runner.write_sample(40, tmp_path / "data" / "attributes.csv", seed=11)
    return JobConfig(
        name="test_job",
        description="Nightly rescore under test",
        database_url=f"sqlite:///{tmp_path / 'jobs.db'}",
        attributes_path="data/attributes.csv",
        batch_size=15,
        logs_dir="logs",
    )


class TestJobConfig:
    def test_yaml_roundtrip(self, tmp_path, job_config):
        path = tmp_path / "configs" / "job.yaml"
        job_config.to_yaml(path)

        assert JobConfig.from_yaml(path) == job_config

    @pytest.mark.parametrize("field", ["batch_size", "max_workers"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(ValueError):
            JobConfig(name="bad", **{field: 0})

    def test_shipped_configs_load(self):
        job = JobConfig.from_yaml(BATCH_DIR / "configs" / "nightly.yaml")
        engine_config = EngineConfig.from_yaml(BATCH_DIR / "configs" / "engine.yaml")

        assert job.name == "nightly"
        assert engine_config == EngineConfig()


class TestJobRunner:
    def test_run(self, runner, job_config, tmp_path):
        job = runner.run(job_config)

        assert job.ok
        assert job.run_id.startswith("run_20260310_")
        assert job.result.processed == 40
        assert job.result.created == 40
        assert job.log_path.parent == tmp_path / "logs"
        log = json.loads(job.log_path.read_text())
        assert log["status"] == "OK"
        assert log["results"]["processed"] == 40

    def test_rerun_is_idempotent(self, runner, job_config):
        runner.run(job_config)
        second = runner.run(job_config, max_workers=3)

        assert second.result.unchanged == 40
        assert second.result.alerts_opened == 0

    def test_queue_after_run(self, runner, job_config):
        runner.run(job_config)

        entries = runner.build_engine(job_config).priority_queue(limit=5)

        assert len(entries) == 5
        scores = [e.score for e in entries]
        assert scores == sorted(scores, reverse=True)

    def test_missing_attributes_logged_and_raised(self, runner, job_config, tmp_path):
        job_config.attributes_path = "data/missing.csv"

        with pytest.raises(AttributeSourceError):
            runner.run(job_config)

        (log_file,) = (tmp_path / "logs").glob("run_*.json")
        log = json.loads(log_file.read_text())
        assert log["status"] == "ERROR"
        assert "missing.csv" in log["error"]

    def test_list_runs(self, runner, job_config):
        runner.run(job_config)
        runner.run(job_config)

        df = runner.list_runs(job_config)

        assert len(df) == 2
        assert set(df["status"]) == {"OK"}
        assert {"processed", "alerts_opened", "failed"} <= set(df.columns)

    def test_preview(self, runner, job_config):
        result = runner.preview(job_config)

        assert len(result.df) == 40
        assert result.df["RISK_SCORE"].between(0, 100).all()

    def test_build_engine_with_overrides(self, runner, job_config):
        job_config.engine_config_path = str(BATCH_DIR / "configs" / "engine.yaml")
        job_config.outcomes_path = str(BATCH_DIR / "configs" / "outcomes.yaml")

        engine = runner.build_engine(job_config)

        assert engine.config.neutral_score == 50
        assert "cost_complaint" in engine.catalog

    def test_scoring_config_override(self, runner, job_config, tmp_path):
        path = tmp_path / "scoring.yaml"
        ScoringConfig(neutral_score=35).to_yaml(path)
        job_config.scoring_config_path = "scoring.yaml"

        engine = runner.build_engine(job_config)

        assert engine.score_function.compute({}) == 35

    def test_relative_sqlite_path_resolved_against_base(self, runner, job_config, tmp_path):
        job_config.database_url = "sqlite:///relative.db"

        runner.run(job_config)

        assert runner.database_url(job_config) == f"sqlite:///{tmp_path / 'relative.db'}"
        assert (tmp_path / "relative.db").exists()

    @pytest.mark.parametrize("url", ["sqlite://", "sqlite:///:memory:"])
    def test_memory_url_untouched(self, runner, url):
        assert runner.database_url(JobConfig(name="mem", database_url=url)) == url

    def test_absolute_sqlite_path_untouched(self, runner, job_config, tmp_path):
        assert runner.database_url(job_config) == f"sqlite:///{tmp_path / 'jobs.db'}"


class TestRunLogger:
    def _result(self, **kwargs):
        return RecomputeResult(run_id="abc", started_at=FIXED_NOW, finished_at=FIXED_NOW, **kwargs)

    @pytest.mark.parametrize("kwargs,status", [
        ({}, "OK"),
        ({"failures": {"C1": "ValidationError: bad"}}, "PARTIAL"),
        ({"interrupted": True}, "INTERRUPTED"),
    ])
    def test_status(self, tmp_path, kwargs, status):
        run_logger = RunLogger(tmp_path / "logs")

        path = run_logger.log_run("run_20260310_aaaa", JobConfig(name="t"), self._result(**kwargs))

        assert json.loads(path.read_text())["status"] == status

    def test_empty_summary(self, tmp_path):
        assert RunLogger(tmp_path / "logs").get_summary_dataframe().empty


class TestCli:
    @pytest.fixture
    def config_path(self, tmp_path):
        attributes = tmp_path / "attributes.csv"
        JobRunner().write_sample(25, attributes, seed=5)
        path = tmp_path / "job.yaml"
        JobConfig(
            name="cli_job",
            database_url=f"sqlite:///{tmp_path / 'cli.db'}",
            attributes_path=str(attributes),
            logs_dir=str(tmp_path / "logs"),
        ).to_yaml(path)
        return path

    def test_run(self, config_path, capsys):
        assert main([str(config_path)]) == 0

        out = capsys.readouterr().out
        assert "Running: cli_job" in out
        assert "Clients: 25/25 processed" in out

    def test_queue(self, config_path, capsys):
        main([str(config_path)])
        capsys.readouterr()

        assert main([str(config_path), "--queue", "3"]) == 0

        lines = [line for line in capsys.readouterr().out.splitlines() if line.strip()]
        assert len(lines) == 3
        assert lines[0].strip().startswith("1.")

    def test_briefing(self, config_path, capsys):
        assert main([str(config_path), "--briefing"]) == 0

        assert "Good" in capsys.readouterr().out

    def test_preview(self, config_path, capsys):
        assert main([str(config_path), "--preview"]) == 0

        assert "Component breakdown" in capsys.readouterr().out

    def test_sample(self, tmp_path, capsys):
        path = tmp_path / "sample.csv"

        assert main(["--sample", "10", str(path)]) == 0

        assert path.exists()
        assert len(path.read_text().strip().splitlines()) == 11

    def test_missing_config(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.yaml")]) == 1

        assert "Config not found" in capsys.readouterr().out

    def test_no_arguments(self, capsys):
        assert main([]) == 1
