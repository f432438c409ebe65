"""
Checkpoint store for resumable analysis runs.

Each stage's payload is written to ``checkpoints/<run_key>/<stage>.json``
and every status change rewrites ``metadata.json``. A later run with the
same signature picks up the completed stages instead of recomputing them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from .schema import validate_metadata
from .types import CheckpointRecord, RunMetadata, RunSignature, StageStatus
from .utils import now_utc, read_json, sanitize_host, write_json

logger = logging.getLogger(__name__)


def build_run_key(signature: RunSignature, report_date: Optional[date] = None) -> str:
    """
    Derive the deterministic directory name for a run.

    Example: ``2025-01-01-gitlab-example-com-d360-sec1-all1``.
    """
    flat = signature.to_dict()
    report_date = report_date or now_utc().date()
    return (
        f"{report_date.isoformat()}-{sanitize_host(flat['instance_url'])}"
        f"-d{flat['lookback_days']}-sec{flat['security_data']}-all{flat['all_reports']}"
    )


def signatures_match(current: Dict[str, Any], persisted: Dict[str, Any]) -> bool:
    """
    Compare two flattened signatures field by field.

    Any field missing on either side, or present with a different value,
    is a mismatch.
    """
    for key in set(current) | set(persisted):
        if key not in current or key not in persisted:
            return False
        if current[key] != persisted[key]:
            return False
    return True


@dataclass
class CheckpointContext:
    """Per-run checkpoint state."""
    run_key: str
    run_dir: Path
    signature: Dict[str, Any]
    use_existing: bool = False
    metadata: Optional[RunMetadata] = None
    started: Dict[str, float] = field(default_factory=dict)
    saved_stages: Set[str] = field(default_factory=set)

    @property
    def metadata_path(self) -> Path:
        return self.run_dir / CheckpointStore.METADATA_FILENAME

    def payload_path(self, stage: str) -> Path:
        return self.run_dir / f"{stage}.json"


class CheckpointStore:
    """
    Manages checkpoint state for resumable runs.

    Usage:
        store = CheckpointStore(output_dir)
        ctx = store.initialize(signature)
        payload = store.get(ctx, "projects")
        if payload is None:
            store.start(ctx, "projects")
            payload = compute()
            store.save(ctx, "projects", payload)
        else:
            store.save(ctx, "projects", restored=True)
    """

    CHECKPOINT_DIRNAME = "checkpoints"
    METADATA_FILENAME = "metadata.json"

    def __init__(self, output_dir: Path):
        """
        Initialize checkpoint store.

        Args:
            output_dir: Base output directory; checkpoints live under ``checkpoints/``
        """
        self.output_dir = Path(output_dir)
        self.logger = logging.getLogger(f"{__name__}.CheckpointStore")

    def initialize(
        self,
        signature: RunSignature,
        force_restart: bool = False,
        run_key: Optional[str] = None,
        report_date: Optional[date] = None,
    ) -> CheckpointContext:
        """
        Prepare the run directory and decide whether prior checkpoints apply.

        Args:
            signature: Inputs identifying this run
            force_restart: Ignore any existing checkpoints
            run_key: Explicit run key; derived from the signature when omitted
            report_date: Date used in the derived run key (defaults to today)

        Returns:
            CheckpointContext with ``use_existing`` set when a matching run was found
        """
        run_key = run_key or build_run_key(signature, report_date)
        run_dir = self.output_dir / self.CHECKPOINT_DIRNAME / run_key
        try:
            run_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self.logger.warning(f"Cannot create checkpoint directory {run_dir}: {e}")

        ctx = CheckpointContext(run_key=run_key, run_dir=run_dir, signature=signature.to_dict())

        if force_restart:
            self.logger.info(f"Force restart requested, ignoring checkpoints in {run_dir}")
            return ctx

        previous = self._load_metadata(ctx)
        if previous is None:
            return ctx

        if not signatures_match(ctx.signature, previous.signature):
            self.logger.info(
                f"Checkpoint signature differs from current run "
                f"(stored {previous.signature}, current {ctx.signature}); starting fresh"
            )
            return ctx

        ctx.use_existing = True
        ctx.metadata = previous
        done = [name for name, record in previous.stages.items() if record.status.is_done]
        self.logger.info(f"Resuming run {run_key}: {len(done)} stage(s) available from checkpoints")
        return ctx

    def _load_metadata(self, ctx: CheckpointContext) -> Optional[RunMetadata]:
        path = ctx.metadata_path
        if not path.exists():
            self.logger.info(f"No checkpoint metadata found for run {ctx.run_key}")
            return None

        try:
            data = read_json(path)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to read checkpoint metadata {path}: {e}; starting fresh")
            return None

        is_valid, errors = validate_metadata(data)
        if not is_valid:
            self.logger.warning(f"Invalid checkpoint metadata {path}: {'; '.join(errors[:3])}; starting fresh")
            return None

        try:
            return RunMetadata.from_dict(data)
        except (KeyError, ValueError) as e:
            self.logger.warning(f"Failed to parse checkpoint metadata {path}: {e}; starting fresh")
            return None

    def start(self, ctx: CheckpointContext, stage: str) -> None:
        """Record the start time of a stage (in memory only)."""
        ctx.started[stage] = time.monotonic()

    def get(self, ctx: CheckpointContext, stage: str) -> Optional[List[Any]]:
        """
        Return the persisted payload of a completed or restored stage.

        Payloads are visible when they were saved earlier in this run, or
        when the run resumes a prior run with the same signature. Returns
        None when the stage has no such record, the payload file is
        missing, or it cannot be read.
        """
        record = ctx.metadata.stages.get(stage) if ctx.metadata is not None else None
        if record is None or not record.status.is_done:
            return None
        if not ctx.use_existing and stage not in ctx.saved_stages:
            return None

        path = ctx.payload_path(stage)
        if not path.exists():
            return None

        try:
            payload = read_json(path)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Failed to load checkpoint for stage {stage}: {e}")
            return None

        if not isinstance(payload, list):
            self.logger.warning(f"Checkpoint for stage {stage} is not a list, ignoring it")
            return None

        return payload

    def status(self, ctx: CheckpointContext, stage: str) -> Optional[StageStatus]:
        """Current recorded status of a stage, if any."""
        if ctx.metadata is None:
            return None
        record = ctx.metadata.stages.get(stage)
        return record.status if record else None

    def save(
        self,
        ctx: CheckpointContext,
        stage: str,
        payload: Optional[List[Any]] = None,
        skipped: bool = False,
        restored: bool = False,
    ) -> None:
        """
        Record a stage transition and rewrite metadata.json.

        Modes:
        - default: stage completed; payload is written, duration measured from ``start``
        - ``skipped``: no payload is written, duration is zero
        - ``restored``: existing record is marked restored, its duration is kept

        Args:
            ctx: Checkpoint context
            stage: Stage name
            payload: JSON-serializable list of records (completed mode)
            skipped: Record the stage as skipped
            restored: Record the stage as restored from a checkpoint
        """
        if skipped and restored:
            raise ValueError("A stage cannot be both skipped and restored")

        now = now_utc()
        if ctx.metadata is None:
            ctx.metadata = RunMetadata(run_id=ctx.run_key, signature=dict(ctx.signature), generated_at=now)
        stages = ctx.metadata.stages

        if skipped:
            stages[stage] = CheckpointRecord(stage=stage, status=StageStatus.SKIPPED, saved_at=now)
        elif restored:
            previous = stages.get(stage)
            stages[stage] = CheckpointRecord(
                stage=stage,
                status=StageStatus.RESTORED,
                saved_at=previous.saved_at if previous else now,
                duration_seconds=previous.duration_seconds if previous else 0.0,
                restored_at=now,
            )
        else:
            started = ctx.started.pop(stage, None)
            duration = time.monotonic() - started if started is not None else 0.0
            if self._write_payload(ctx, stage, payload if payload is not None else []):
                ctx.saved_stages.add(stage)
            stages[stage] = CheckpointRecord(
                stage=stage,
                status=StageStatus.COMPLETED,
                saved_at=now,
                duration_seconds=duration,
            )

        ctx.metadata.signature = dict(ctx.signature)
        ctx.metadata.generated_at = now
        self._write_metadata(ctx)

    def _write_payload(self, ctx: CheckpointContext, stage: str, payload: List[Any]) -> bool:
        path = ctx.payload_path(stage)
        try:
            write_json(path, payload)
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning(f"Failed to save checkpoint payload for stage {stage}: {e}")
            return False
        self.logger.debug(f"Saved checkpoint for stage {stage}: {len(payload)} records")
        return True

    def _write_metadata(self, ctx: CheckpointContext) -> None:
        try:
            write_json(ctx.metadata_path, ctx.metadata.to_dict())
        except (OSError, TypeError, ValueError) as e:
            self.logger.warning(f"Failed to write checkpoint metadata: {e}")
