"""Container entrypoint for a single build-and-publish job.

Reads configuration from environment variables (and a .env file, if present)
and calls run_job(). Invoked as: python -m buildworker

Environment variables:
    PROJECT_ID, DEPLOYMENT_ID, GIT_URI - job identity attached to every event
    PROJECT_DIR            - checked-out project (default: /home/app/output)
    BUILD_COMMAND          - shell command (default: npm install && npm run build)
    S3_BUCKET_NAME         - destination bucket (default: user-build-codes)
    MAX_CONCURRENT_UPLOADS - uploads in flight (default: 5)
    MAX_UPLOAD_RETRIES     - retries per file (default: 3)
    KAFKA_BROKER           - broker address; read from SSM when unset
    BUILDWORKER_DEBUG      - enable debug logging
"""

# ruff: noqa: T201 — print is the correct output mechanism for a CLI entrypoint

from __future__ import annotations

import asyncio
import logging
import os
import sys

from buildworker.cloud.config import WorkerConfig
from buildworker.cloud.s3 import S3ArtifactStore
from buildworker.cloud.secrets import fetch_secret
from buildworker.errors import ConfigError, TelemetryPublishError
from buildworker.job import run_job
from buildworker.telemetry import (
    EventPublisher,
    KafkaEventPublisher,
    MemoryEventPublisher,
    TelemetryEmitter,
)
from buildworker.uploader import UploadRunner


def _make_publisher(cfg: WorkerConfig) -> EventPublisher:
    if cfg.telemetry_disabled:
        print("Telemetry disabled, events are only logged locally")
        return MemoryEventPublisher()

    broker = cfg.kafka_broker or fetch_secret(cfg.kafka_broker_param, cfg.aws_region)
    publisher = KafkaEventPublisher(
        broker,
        client_id=f"docker-build-server-{cfg.identity.deployment_id}",
        username=cfg.kafka_username,
        password=cfg.kafka_password,
    )
    print("Producer connection successful, will be able to publish logs.")
    return publisher


def main() -> None:
    from dotenv import load_dotenv

    load_dotenv()

    debug = bool(os.environ.get("BUILDWORKER_DEBUG"))
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    # Only show detailed logs for our own code
    logging.getLogger("buildworker").setLevel(logging.DEBUG if debug else logging.INFO)

    try:
        cfg = WorkerConfig.from_env()
        publisher = _make_publisher(cfg)
    except (ConfigError, TelemetryPublishError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    emitter = TelemetryEmitter(cfg.identity, publisher, cfg.kafka_topic)
    store = S3ArtifactStore(
        cfg.bucket,
        cfg.aws_region,
        access_key_id=cfg.aws_access_key_id,
        secret_access_key=cfg.aws_secret_access_key,
    )
    runner = UploadRunner(
        store,
        emitter,
        concurrency=cfg.max_concurrent_uploads,
        max_retries=cfg.max_retries,
        excluded_names=cfg.excluded_names,
        strategy=cfg.upload_strategy,
    )

    try:
        summary = asyncio.run(run_job(cfg, emitter=emitter, runner=runner))
    finally:
        emitter.close()

    print(f"Deployment {cfg.identity.deployment_id or '-'} finished: {summary.outcome.value}")
    for name, result in (("artifacts", summary.artifact_result), ("source", summary.source_result)):
        if result is not None:
            print(f"  {name}: {result.succeeded}/{result.total_files} files")
    if summary.error:
        print(f"  error: {summary.error}", file=sys.stderr)

    sys.exit(summary.exit_code)


if __name__ == "__main__":
    main()
