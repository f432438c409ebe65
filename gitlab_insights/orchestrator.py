"""
Orchestrator - Main analysis workflow controller.

Runs the pipeline stages in their declared order. Each stage is restored
from a checkpoint when a matching one exists, skipped when its feature
flag is off, and computed otherwise. After the last stage the results are
exported and a run summary is written next to them.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Sequence

from .checkpoint import CheckpointContext, CheckpointStore
from .config import InsightsConfig, ensure_output_dir
from .exporter import export_all
from .gitlab_client import GitLabClient
from .metrics import ApiMetrics
from .rate_limiting import RateLimiter
from .reports import ReportRecord
from .scoring import ScoringPolicy, load_policy
from .stages import PROJECTS_STAGE, STAGES, Stage, StageContext
from .types import StageStatus
from .utils import ProgressTracker, ProgressUpdate, now_iso, write_json

logger = logging.getLogger(__name__)


class FatalStartupError(Exception):
    """The run cannot continue: the API is unreachable or there are no projects."""


class InsightsOrchestrator:
    """
    Orchestrates an analysis run.

    Owns the API client, the checkpoint context and the stage context, and
    drives every stage exactly once.
    """

    def __init__(
        self,
        config: InsightsConfig,
        client: GitLabClient | None = None,
        policy: ScoringPolicy | None = None,
        stages: Sequence[Stage] | None = None,
        progress_callback: Callable[[ProgressUpdate], None] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration
            client: API client to use; one is built from ``config`` if omitted
            policy: Scoring policy; loaded from ``config.scoring_policy`` if omitted
            stages: Stage list to run, defaults to the full pipeline
            progress_callback: Called with a ProgressUpdate after every stage
        """
        self.config = config
        self.stages = list(stages) if stages is not None else list(STAGES)
        self.policy = policy
        self.progress_callback = progress_callback

        self._owns_client = client is None
        self.client = client
        self.metrics: ApiMetrics | None = None

        self.store = CheckpointStore(Path(config.output_dir))
        self.checkpoint: CheckpointContext | None = None
        self.context: StageContext | None = None
        self.statuses: dict[str, StageStatus] = {}

        self.started_at: str = ""
        self.finished_at: str = ""

    def run(self) -> dict[str, Any]:
        """
        Run the pipeline.

        Returns:
            Run summary dictionary (also written to ``run_summary.json``)

        Raises:
            FatalStartupError: The API is unreachable or no projects were found
        """
        self.started_at = now_iso()
        scope = f"group {self.config.group}" if self.config.group else "all accessible projects"
        logger.info(f"Starting analysis of {scope} at {self.config.gitlab_url}")
        logger.info(
            f"Lookback {self.config.lookback_days} days, "
            f"security data {'on' if self.config.include_security else 'off'}, "
            f"all reports {'on' if self.config.all_reports else 'off'}"
        )

        try:
            self._initialize()
            for stage in self.stages:
                self._run_stage(stage)
            self.finished_at = now_iso()
            return self._finish()
        finally:
            self._cleanup()

    def _initialize(self) -> None:
        """Create the client, check connectivity and open the checkpoint context."""
        output_dir = ensure_output_dir(self.config)

        if self.policy is None:
            self.policy = load_policy(self.config.scoring_policy)

        if self.client is None:
            self.metrics = ApiMetrics()
            self.client = GitLabClient(
                base_url=self.config.gitlab_url,
                token=self.config.gitlab_token,
                timeout=self.config.timeout,
                max_retries=self.config.max_retries,
                base_delay=self.config.base_delay,
                max_delay=self.config.max_delay,
                verify_ssl=self.config.verify_ssl,
                rate_limiter=RateLimiter(
                    min_interval=self.config.min_request_interval,
                    calls_per_minute=self.config.calls_per_minute,
                ),
                metrics=self.metrics,
            )

        if not self.client.test_connection():
            raise FatalStartupError(f"Cannot connect to the GitLab API at {self.config.gitlab_url}")

        self.checkpoint = self.store.initialize(self.config.signature, force_restart=self.config.force_restart)
        logger.info(f"Run key: {self.checkpoint.run_key} (checkpoints in {self.checkpoint.run_dir})")

        self.context = StageContext(
            client=self.client,
            config=self.config,
            policy=self.policy,
            progress=ProgressTracker(len(self.stages), self.progress_callback),
        )
        logger.debug(f"Output directory: {output_dir}")

    def _is_gated(self, stage: Stage) -> bool:
        if stage.requires_security and not self.config.include_security:
            return True
        if stage.extended and not self.config.all_reports:
            return True
        return False

    def _run_stage(self, stage: Stage) -> None:
        """Bring one stage to a terminal state: restored, skipped or completed."""
        payload = self.store.get(self.checkpoint, stage.name)

        if payload is not None:
            records = [stage.record_type.from_dict(item) for item in payload if isinstance(item, dict)]
            self._check_projects(stage, records)
            self.store.save(self.checkpoint, stage.name, restored=True)
            status = StageStatus.RESTORED
            logger.info(f"{stage.title}: restored {len(records)} records from checkpoint")
        elif self._is_gated(stage):
            records = []
            self.store.save(self.checkpoint, stage.name, skipped=True)
            status = StageStatus.SKIPPED
            logger.info(f"{stage.title}: skipped (disabled by configuration)")
        else:
            logger.info(f"{stage.title}: running")
            self.store.start(self.checkpoint, stage.name)
            records = stage.compute(self.context)
            self._check_projects(stage, records)
            self.store.save(self.checkpoint, stage.name, payload=[record.to_dict() for record in records])
            status = StageStatus.COMPLETED
            logger.info(f"{stage.title}: completed with {len(records)} records")

        self.context.results[stage.name] = records
        if stage.name == PROJECTS_STAGE:
            self.context.projects = list(records)
        self.statuses[stage.name] = status
        self.context.progress.stage_finished(stage.name, status.value)

    def _check_projects(self, stage: Stage, records: list[ReportRecord]) -> None:
        if stage.name == PROJECTS_STAGE and not records:
            raise FatalStartupError("No projects found; check the group path and token scopes")

    def _finish(self) -> dict[str, Any]:
        """Export results and write the run summary and metrics."""
        output_dir = Path(self.config.output_dir)
        outputs = export_all(
            output_dir,
            self.stages,
            self.context.results,
            self.statuses,
            generated_at=self.finished_at,
            instance_url=self.config.gitlab_url,
            lookback_days=self.config.lookback_days,
        )

        if self.metrics is not None:
            metrics_path = output_dir / "metrics.prom"
            self.metrics.write(metrics_path)
            outputs.append(metrics_path)

        summary = {
            "run_key": self.checkpoint.run_key,
            "instance_url": self.config.gitlab_url,
            "group": self.config.group,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "resumed": self.checkpoint.use_existing,
            "stages": {name: status.value for name, status in self.statuses.items()},
            "records": {name: len(records) for name, records in self.context.results.items()},
            "api": self.client.stats.to_dict(),
            "outputs": [str(path) for path in outputs],
        }
        summary_path = output_dir / "run_summary.json"
        write_json(summary_path, summary)
        logger.info(f"{self.context.progress.summary()}; summary saved to {summary_path}")
        return summary

    def _cleanup(self) -> None:
        """Cleanup resources."""
        if self.client is not None and self._owns_client:
            self.client.close()
            self.client = None


def run_insights(config: InsightsConfig, **kwargs: Any) -> dict[str, Any]:
    """
    Convenience function to run an analysis.

    Args:
        config: Run configuration
        **kwargs: Passed through to InsightsOrchestrator

    Returns:
        Run summary dictionary
    """
    orchestrator = InsightsOrchestrator(config, **kwargs)
    return orchestrator.run()
