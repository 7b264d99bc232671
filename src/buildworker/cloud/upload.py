"""Upload a directory to S3 without running a build.

Called as: python -m buildworker.cloud.upload DIR [PREFIX]
Re-publishes an existing tree (for example after a partially failed job)
using the same worker configuration, retry policy and telemetry stream.
PREFIX defaults to the job's artifact prefix.
"""

# ruff: noqa: T201 — print is used for user-facing status output

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from buildworker.cloud.config import WorkerConfig
from buildworker.cloud.s3 import ArtifactStore, S3ArtifactStore
from buildworker.errors import ConfigError, ScanError
from buildworker.models import UploadBatchResult
from buildworker.telemetry import MemoryEventPublisher, TelemetryEmitter
from buildworker.uploader import UploadRunner


async def upload_tree(
    cfg: WorkerConfig,
    directory: Path,
    prefix: str,
    *,
    store: ArtifactStore,
    emitter: TelemetryEmitter,
) -> UploadBatchResult:
    """Upload `directory` under `prefix` with the configured runner settings."""
    runner = UploadRunner(
        store,
        emitter,
        concurrency=cfg.max_concurrent_uploads,
        max_retries=cfg.max_retries,
        excluded_names=cfg.excluded_names,
        strategy=cfg.upload_strategy,
    )
    return await runner.upload_directory(directory, prefix)


def main(argv: list[str] | None = None) -> None:
    from dotenv import load_dotenv

    load_dotenv()
    args = sys.argv[1:] if argv is None else argv
    if not args or len(args) > 2:
        print("usage: python -m buildworker.cloud.upload DIR [PREFIX]", file=sys.stderr)
        sys.exit(2)

    try:
        cfg = WorkerConfig.from_env()
    except ConfigError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    directory = Path(args[0])
    prefix = args[1] if len(args) == 2 else cfg.artifact_prefix
    store = S3ArtifactStore(
        cfg.bucket,
        cfg.aws_region,
        access_key_id=cfg.aws_access_key_id,
        secret_access_key=cfg.aws_secret_access_key,
    )
    # Events go to the local log only
    emitter = TelemetryEmitter(cfg.identity, MemoryEventPublisher(), cfg.kafka_topic)

    try:
        result = asyncio.run(upload_tree(cfg, directory, prefix, store=store, emitter=emitter))
    except ScanError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    for outcome in result.failed:
        print(f"  failed {outcome.relative_path}: {outcome.error}", file=sys.stderr)
    print(f"Uploaded {result.succeeded}/{result.total_files} files to s3://{cfg.bucket}/{prefix}/")
    sys.exit(0 if result.complete else 1)


if __name__ == "__main__":
    main()
