"""Worker configuration loaded from environment variables."""

from __future__ import annotations

import enum
import os

from pydantic import BaseModel, ConfigDict, Field

from buildworker.errors import ConfigError
from buildworker.models import JobIdentity

DEFAULT_BUILD_COMMAND = "npm install && npm run build"
DEFAULT_BUCKET = "user-build-codes"
DEFAULT_PROJECT_DIR = "/home/app/output"
DEFAULT_EXCLUDED_NAMES = frozenset(
    {
        ".git",
        ".svn",
        ".hg",
        ".idea",
        ".vscode",
        "node_modules",
        ".cache",
        "coverage",
        ".nyc_output",
        "__pycache__",
    }
)


class UploadStrategy(enum.StrEnum):
    """How the upload runner bounds concurrent transfers."""

    POOL = "pool"
    BATCH = "batch"


class WorkerConfig(BaseModel):
    """All worker settings, collected once at process start."""

    model_config = ConfigDict(frozen=True)

    identity: JobIdentity = Field(default_factory=JobIdentity)
    project_dir: str = Field(default=DEFAULT_PROJECT_DIR)
    build_command: str = Field(default=DEFAULT_BUILD_COMMAND)
    bucket: str = Field(default=DEFAULT_BUCKET, description="S3 bucket for outputs")
    aws_region: str = Field(default="us-east-1")
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    max_concurrent_uploads: int = Field(default=5, ge=1)
    max_retries: int = Field(default=3, ge=0)
    upload_strategy: UploadStrategy = UploadStrategy.POOL
    excluded_names: frozenset[str] = DEFAULT_EXCLUDED_NAMES
    kafka_broker: str | None = Field(default=None, description="host:port of the broker")
    kafka_broker_param: str = Field(
        default="KAFKA_BROKER", description="SSM parameter holding the broker address"
    )
    kafka_topic: str = "builder-logs"
    kafka_username: str | None = None
    kafka_password: str | None = None
    telemetry_disabled: bool = False
    fail_on_build_error: bool = True

    @property
    def artifact_prefix(self) -> str:
        return f"__outputs/{self.identity.project_id}"

    @property
    def source_prefix(self) -> str:
        return f"{self.artifact_prefix}/source"

    @classmethod
    def from_env(cls) -> WorkerConfig:
        """Load configuration from environment variables."""
        env = os.environ
        excluded_raw = env.get("UPLOAD_EXCLUDE")
        excluded = (
            frozenset(s.strip() for s in excluded_raw.split(",") if s.strip())
            if excluded_raw is not None
            else DEFAULT_EXCLUDED_NAMES
        )

        try:
            return cls(
                identity=JobIdentity(
                    project_id=env.get("PROJECT_ID", ""),
                    deployment_id=env.get("DEPLOYMENT_ID", ""),
                    git_uri=env.get("GIT_URI", ""),
                ),
                project_dir=env.get("PROJECT_DIR", DEFAULT_PROJECT_DIR),
                build_command=env.get("BUILD_COMMAND") or DEFAULT_BUILD_COMMAND,
                bucket=env.get("S3_BUCKET_NAME") or DEFAULT_BUCKET,
                aws_region=env.get("AWS_REGION", "us-east-1"),
                aws_access_key_id=env.get("AWS_ACCESSKEY") or None,
                aws_secret_access_key=env.get("AWS_SECRETACCESSKEY") or None,
                max_concurrent_uploads=_int_env("MAX_CONCURRENT_UPLOADS", 5),
                max_retries=_int_env("MAX_UPLOAD_RETRIES", 3),
                upload_strategy=env.get("UPLOAD_STRATEGY", UploadStrategy.POOL).lower(),
                excluded_names=excluded,
                kafka_broker=env.get("KAFKA_BROKER") or None,
                kafka_broker_param=env.get("KAFKA_BROKER_PARAM", "KAFKA_BROKER"),
                kafka_topic=env.get("KAFKA_TOPIC", "builder-logs"),
                kafka_username=env.get("KAFKA_USERNAME") or None,
                kafka_password=env.get("KAFKA_PASSWORD") or None,
                telemetry_disabled=_bool_env("TELEMETRY_DISABLED", False),
                fail_on_build_error=_bool_env("FAIL_ON_BUILD_ERROR", True),
            )
        except ValueError as exc:
            # pydantic.ValidationError subclasses ValueError
            raise ConfigError(str(exc)) from exc


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")
