"""Concurrent directory upload with per-file retry.

A directory is scanned, then every file is uploaded under a key prefix with
at most `concurrency` transfers in flight. A file that keeps failing is
retried with exponential backoff and then reported on its own; it never
stops the other uploads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Collection, Sequence
from pathlib import Path

from buildworker.cloud.config import DEFAULT_EXCLUDED_NAMES, UploadStrategy
from buildworker.cloud.s3 import ArtifactStore, guess_content_type
from buildworker.models import EventLevel, FileRecord, UploadBatchResult, UploadOutcome
from buildworker.scanner import scan
from buildworker.telemetry import TelemetryEmitter

log = logging.getLogger("buildworker.uploader")

BACKOFF_BASE_S = 0.1


def format_file_size(size: int) -> str:
    """Render a byte count as B, KB or MB."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size / (1024 * 1024):.2f} MB"


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after failed attempt number `attempt` (1-based)."""
    return (2**attempt) * BACKOFF_BASE_S


class UploadRunner:
    """Uploads directory trees through an ArtifactStore."""

    def __init__(
        self,
        store: ArtifactStore,
        emitter: TelemetryEmitter,
        *,
        concurrency: int = 5,
        max_retries: int = 3,
        excluded_names: Collection[str] = DEFAULT_EXCLUDED_NAMES,
        strategy: UploadStrategy = UploadStrategy.POOL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")
        self.store = store
        self.emitter = emitter
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.excluded_names = frozenset(excluded_names)
        self.strategy = strategy
        self._sleep = sleep

    async def upload_directory(self, dir_path: Path | str, key_prefix: str) -> UploadBatchResult:
        """Upload every file under dir_path to `{key_prefix}/{relative path}`.

        Raises ScanError if the directory cannot be read. Individual file
        failures are reported in the result, not raised.
        """
        files = scan(dir_path, self.excluded_names)

        if not files:
            await self.emitter.emit(
                f"No files to upload in {dir_path}",
                EventLevel.WARNING,
                keyPrefix=key_prefix,
            )
            return UploadBatchResult(key_prefix=key_prefix)

        log.info(
            "uploading %d files from %s to %s (%s, concurrency=%d)",
            len(files),
            dir_path,
            key_prefix,
            self.strategy,
            self.concurrency,
        )
        await self.emitter.emit(
            f"Starting to upload {len(files)} files...",
            EventLevel.INFO,
            keyPrefix=key_prefix,
            totalFiles=len(files),
        )

        if self.strategy == UploadStrategy.BATCH:
            outcomes = await self._run_batches(files, key_prefix)
        else:
            outcomes = await self._run_pool(files, key_prefix)

        result = UploadBatchResult(key_prefix=key_prefix, outcomes=outcomes)
        await self.emitter.emit(
            f"Uploaded {result.succeeded}/{result.total_files} files to {key_prefix}",
            EventLevel.SUCCESS if result.complete else EventLevel.WARNING,
            keyPrefix=key_prefix,
            totalFiles=result.total_files,
            succeeded=result.succeeded,
            failedFiles=[o.relative_path for o in result.failed],
        )
        return result

    async def _run_batches(self, files: Sequence[FileRecord], key_prefix: str) -> list[UploadOutcome]:
        """Upload fixed-size slices one after another."""
        outcomes: list[UploadOutcome] = []
        for start in range(0, len(files), self.concurrency):
            batch = files[start : start + self.concurrency]
            log.debug("batch %d: %d files", start // self.concurrency + 1, len(batch))
            outcomes.extend(
                await asyncio.gather(*(self._upload_file(f, key_prefix) for f in batch))
            )
        return outcomes

    async def _run_pool(self, files: Sequence[FileRecord], key_prefix: str) -> list[UploadOutcome]:
        """Keep up to `concurrency` uploads running until the list is drained."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded_upload(record: FileRecord) -> UploadOutcome:
            async with semaphore:
                return await self._upload_file(record, key_prefix)

        return list(await asyncio.gather(*(bounded_upload(f) for f in files)))

    async def _upload_file(self, record: FileRecord, key_prefix: str) -> UploadOutcome:
        name = record.relative_path
        key = f"{key_prefix}/{name}"
        try:
            size = record.absolute_path.stat().st_size
        except OSError:
            size = 0
        readable = format_file_size(size)

        await self.emitter.emit(
            f"Uploading {name}",
            EventLevel.PROCESSING,
            eventType="upload_started",
            fileName=name,
            fileSize=readable,
            fileSizeInBytes=size,
        )

        content_type = guess_content_type(record.absolute_path)
        start = time.monotonic()
        attempt = 0
        error = ""
        while True:
            attempt += 1
            try:
                sent = await self.store.put(key, record.absolute_path, content_type)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                if attempt > self.max_retries:
                    break
                delay = backoff_delay(attempt)
                log.warning(
                    "upload %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    key,
                    attempt,
                    self.max_retries + 1,
                    delay,
                    error,
                )
                await self._sleep(delay)
                continue

            elapsed = time.monotonic() - start
            await self.emitter.emit(
                f"Uploaded {name}",
                EventLevel.SUCCESS,
                eventType="upload_completed",
                fileName=name,
                fileSize=readable,
                fileSizeInBytes=size,
                timeTakenSeconds=round(elapsed, 3),
                attempts=attempt,
            )
            return UploadOutcome(
                relative_path=name,
                success=True,
                attempts=attempt,
                bytes_uploaded=sent,
                duration_seconds=elapsed,
            )

        elapsed = time.monotonic() - start
        log.error("upload %s failed after %d attempts: %s", key, attempt, error)
        await self.emitter.emit(
            f"Error uploading {name}: {error}",
            EventLevel.ERROR,
            eventType="upload_failed",
            fileName=name,
            fileSize=readable,
            fileSizeInBytes=size,
            attempts=attempt,
            error=error,
        )
        return UploadOutcome(
            relative_path=name,
            success=False,
            attempts=attempt,
            duration_seconds=elapsed,
            error=error,
        )
