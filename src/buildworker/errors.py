"""Exception types raised by the build worker."""

from __future__ import annotations


class BuildWorkerError(Exception):
    """Base class for build worker failures."""


class ConfigError(BuildWorkerError):
    """Configuration could not be loaded or resolved."""


class ScanError(BuildWorkerError):
    """A directory to upload does not exist or cannot be read."""


class UploadError(BuildWorkerError):
    """A single file could not be written to object storage."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"{key}: {reason}")
        self.key = key
        self.reason = reason


class ArtifactDirNotFound(BuildWorkerError):
    """No candidate build output directory exists in the project."""


class BuildFailed(BuildWorkerError):
    """The build command exited with a non-zero status."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"Build failed with exit code {exit_code}")
        self.exit_code = exit_code


class TelemetryPublishError(BuildWorkerError):
    """An event could not be handed to the message bus."""
