"""Data models for build worker jobs."""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field


class EventLevel(enum.StrEnum):
    """Levels carried by telemetry events."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"
    PROCESSING = "processing"


class JobState(enum.StrEnum):
    """Stages of a job, in the order they are entered."""

    STARTED = "started"
    BUILD_RUNNING = "build_running"
    BUILD_DONE = "build_done"
    LOCATING_ARTIFACTS = "locating_artifacts"
    UPLOADING_ARTIFACTS = "uploading_artifacts"
    UPLOADING_SOURCE = "uploading_source"
    FINISHED = "finished"


class JobOutcome(enum.StrEnum):
    """Terminal outcome of a job."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class JobIdentity(BaseModel):
    """Identity fields attached to every telemetry event."""

    model_config = ConfigDict(frozen=True)

    project_id: str = ""
    deployment_id: str = ""
    git_uri: str = ""


class FileRecord(BaseModel):
    """A regular file found by the scanner."""

    model_config = ConfigDict(frozen=True)

    absolute_path: Path
    relative_path: str  # always "/"-separated


class UploadOutcome(BaseModel):
    """Result of uploading one file, including retries."""

    model_config = ConfigDict(frozen=True)

    relative_path: str
    success: bool
    attempts: int
    bytes_uploaded: int = 0
    duration_seconds: float = 0.0
    error: str | None = None


class UploadBatchResult(BaseModel):
    """Aggregate result of one upload_directory call."""

    model_config = ConfigDict(frozen=True)

    key_prefix: str
    outcomes: list[UploadOutcome] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_files(self) -> int:
        return len(self.outcomes)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def complete(self) -> bool:
        """True when every file was uploaded (vacuously true for an empty tree)."""
        return self.succeeded == self.total_files

    @property
    def failed(self) -> list[UploadOutcome]:
        return [o for o in self.outcomes if not o.success]


class TelemetryEvent(BaseModel):
    """A job-scoped status record sent to the message bus."""

    model_config = ConfigDict(frozen=True)

    identity: JobIdentity
    message: str
    level: EventLevel
    timestamp: str
    extra: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        """Flatten into the JSON shape the dashboard consumes."""
        return {
            "PROJECT_ID": self.identity.project_id,
            "DEPLOYMENT_ID": self.identity.deployment_id,
            "GIT_URI": self.identity.git_uri,
            "log": self.message,
            "logLevel": self.level.value,
            "timestamp": self.timestamp,
            **self.extra,
        }


class BuildOutput(BaseModel):
    """One item of the build process stream."""

    kind: Literal["stdout", "stderr", "exit"]
    text: str = ""
    exit_code: int | None = None


class JobSummary(BaseModel):
    """Final state of a job run."""

    state: JobState = JobState.FINISHED
    outcome: JobOutcome
    failed_stage: JobState | None = None  # stage that aborted the job, if any
    build_exit_code: int | None = None
    artifact_dir: Path | None = None
    artifact_result: UploadBatchResult | None = None
    source_result: UploadBatchResult | None = None
    error: str = ""

    @property
    def exit_code(self) -> int:
        return 0 if self.outcome == JobOutcome.SUCCESS else 1
