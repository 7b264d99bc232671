"""Job orchestrator: build, locate the output, upload it and the source.

Stages run strictly in order:

    STARTED -> BUILD_RUNNING -> BUILD_DONE -> LOCATING_ARTIFACTS
            -> UPLOADING_ARTIFACTS -> UPLOADING_SOURCE -> FINISHED

A missing build output directory, a failed build (when configured as fatal)
or an unreadable directory ends the job early. Failed file uploads only
degrade the outcome to "partial"; both upload phases still run.
"""

from __future__ import annotations

import logging
from pathlib import Path

from buildworker.build import BuildRunner, run_build
from buildworker.cloud.config import WorkerConfig
from buildworker.errors import ArtifactDirNotFound, BuildFailed, ScanError
from buildworker.locator import locate
from buildworker.models import (
    EventLevel,
    JobOutcome,
    JobState,
    JobSummary,
    UploadBatchResult,
)
from buildworker.telemetry import TelemetryEmitter
from buildworker.uploader import UploadRunner

log = logging.getLogger("buildworker.job")


async def _stream_build(cfg: WorkerConfig, emitter: TelemetryEmitter, build: BuildRunner) -> int:
    """Forward build output as events and return the exit code."""
    exit_code = 0
    async for chunk in build(cfg.build_command, Path(cfg.project_dir)):
        if chunk.kind == "stdout":
            await emitter.emit(chunk.text, EventLevel.INFO)
        elif chunk.kind == "stderr":
            await emitter.emit(chunk.text, EventLevel.ERROR)
        else:
            exit_code = chunk.exit_code if chunk.exit_code is not None else 0
    return exit_code


async def run_job(
    cfg: WorkerConfig,
    *,
    emitter: TelemetryEmitter,
    runner: UploadRunner,
    build: BuildRunner = run_build,
) -> JobSummary:
    """Run one deployment job end to end and return its summary."""
    project_dir = Path(cfg.project_dir)
    state = JobState.STARTED
    build_exit_code: int | None = None
    artifact_dir: Path | None = None
    artifact_result: UploadBatchResult | None = None
    source_result: UploadBatchResult | None = None

    await emitter.emit("Build Started...", EventLevel.INFO)

    try:
        # ── Build ─────────────────────────────────────────────────
        state = JobState.BUILD_RUNNING
        await emitter.emit(
            f"Executing build command: {cfg.build_command}",
            EventLevel.INFO,
            buildCommand=cfg.build_command,
        )
        build_exit_code = await _stream_build(cfg, emitter, build)

        state = JobState.BUILD_DONE
        if build_exit_code != 0:
            await emitter.emit(
                f"Build failed with exit code {build_exit_code}",
                EventLevel.ERROR,
                exitCode=build_exit_code,
            )
            if cfg.fail_on_build_error:
                raise BuildFailed(build_exit_code)
        else:
            await emitter.emit("Build Complete", EventLevel.SUCCESS, exitCode=0)

        # ── Locate build output ───────────────────────────────────
        state = JobState.LOCATING_ARTIFACTS
        artifact_dir = locate(project_dir)
        if artifact_dir is None:
            await emitter.emit("Error: No valid build folder detected.", EventLevel.ERROR)
            raise ArtifactDirNotFound(f"no build output directory in {project_dir}")
        await emitter.emit(
            f"Detected build folder: {artifact_dir}",
            EventLevel.INFO,
            buildFolder=artifact_dir.name,
        )

        # ── Uploads ───────────────────────────────────────────────
        state = JobState.UPLOADING_ARTIFACTS
        artifact_result = await runner.upload_directory(artifact_dir, cfg.artifact_prefix)

        state = JobState.UPLOADING_SOURCE
        source_result = await runner.upload_directory(project_dir, cfg.source_prefix)

    except (BuildFailed, ArtifactDirNotFound) as exc:
        return await _finish(
            emitter,
            JobSummary(
                outcome=JobOutcome.FAILED,
                failed_stage=state,
                build_exit_code=build_exit_code,
                artifact_dir=artifact_dir,
                error=str(exc),
            ),
        )
    except ScanError as exc:
        await emitter.emit(f"Upload aborted: {exc}", EventLevel.ERROR)
        return await _finish(
            emitter,
            JobSummary(
                outcome=JobOutcome.FAILED,
                failed_stage=state,
                build_exit_code=build_exit_code,
                artifact_dir=artifact_dir,
                artifact_result=artifact_result,
                error=str(exc),
            ),
        )
    except Exception as exc:
        log.exception("job failed during %s", state)
        await emitter.emit(f"Unexpected error during {state}: {exc}", EventLevel.ERROR)
        return await _finish(
            emitter,
            JobSummary(
                outcome=JobOutcome.FAILED,
                failed_stage=state,
                build_exit_code=build_exit_code,
                artifact_dir=artifact_dir,
                artifact_result=artifact_result,
                error=str(exc),
            ),
        )

    complete = artifact_result.complete and source_result.complete
    return await _finish(
        emitter,
        JobSummary(
            outcome=JobOutcome.SUCCESS if complete else JobOutcome.PARTIAL,
            build_exit_code=build_exit_code,
            artifact_dir=artifact_dir,
            artifact_result=artifact_result,
            source_result=source_result,
        ),
    )


async def _finish(emitter: TelemetryEmitter, summary: JobSummary) -> JobSummary:
    """Emit the terminal event for the job."""
    extra: dict = {"outcome": summary.outcome.value, "exitCode": summary.exit_code}
    for name, result in (("artifacts", summary.artifact_result), ("source", summary.source_result)):
        if result is not None:
            extra[name] = {"totalFiles": result.total_files, "succeeded": result.succeeded}

    if summary.outcome == JobOutcome.SUCCESS:
        await emitter.emit("All files uploaded!", EventLevel.SUCCESS, **extra)
    elif summary.outcome == JobOutcome.PARTIAL:
        await emitter.emit("Deployment finished with failed uploads", EventLevel.WARNING, **extra)
    else:
        await emitter.emit(
            f"Deployment failed: {summary.error}",
            EventLevel.ERROR,
            failedStage=str(summary.failed_stage),
            **extra,
        )
    log.info("job finished: %s", summary.outcome)
    return summary
