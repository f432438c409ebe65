"""
Type definitions shared by the checkpoint store, client and orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class StageStatus(str, Enum):
    """Terminal status of a pipeline stage within one run."""
    COMPLETED = "completed"
    RESTORED = "restored"
    SKIPPED = "skipped"

    @property
    def is_done(self) -> bool:
        """Whether a stage in this status can be reused on resume."""
        return self in (StageStatus.COMPLETED, StageStatus.RESTORED)


@dataclass(frozen=True)
class RunSignature:
    """Inputs that must match exactly for checkpoints to be reused."""
    instance_url: str
    lookback_days: int
    security_data: bool
    all_reports: bool

    def to_dict(self) -> Dict[str, Any]:
        """Flatten to the key/value map persisted in metadata.json."""
        return {
            "instance_url": self.instance_url.rstrip("/"),
            "lookback_days": int(self.lookback_days),
            "security_data": int(bool(self.security_data)),
            "all_reports": int(bool(self.all_reports)),
        }


@dataclass
class CheckpointRecord:
    """Status of one stage in one run."""
    stage: str
    status: StageStatus
    saved_at: datetime
    duration_seconds: float = 0.0
    restored_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stage": self.stage,
            "status": self.status.value,
            "saved_at": self.saved_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "restored_at": self.restored_at.isoformat() if self.restored_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CheckpointRecord:
        """Create from dictionary."""
        return cls(
            stage=data["stage"],
            status=StageStatus(data["status"]),
            saved_at=datetime.fromisoformat(data["saved_at"]),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
            restored_at=datetime.fromisoformat(data["restored_at"]) if data.get("restored_at") else None,
        )


@dataclass
class RunMetadata:
    """Durable run index; the source of truth for resumability."""
    run_id: str
    signature: Dict[str, Any]
    generated_at: datetime
    stages: Dict[str, CheckpointRecord] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "run_id": self.run_id,
            "signature": dict(self.signature),
            "generated_at": self.generated_at.isoformat(),
            "stages": {name: record.to_dict() for name, record in self.stages.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> RunMetadata:
        """Create from dictionary."""
        return cls(
            run_id=data["run_id"],
            signature=dict(data["signature"]),
            generated_at=datetime.fromisoformat(data["generated_at"]),
            stages={
                name: CheckpointRecord.from_dict(record)
                for name, record in data.get("stages", {}).items()
            },
        )


@dataclass
class RequestAttempt:
    """A single HTTP attempt; never persisted."""
    endpoint: str
    method: str
    attempt: int
    status_code: Optional[int]
    latency_seconds: float
