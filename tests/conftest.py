"""Shared fixtures and fakes for build worker tests."""

from __future__ import annotations

import asyncio
import itertools
from pathlib import Path

import pytest

from buildworker.errors import UploadError
from buildworker.models import JobIdentity
from buildworker.telemetry import MemoryEventPublisher, TelemetryEmitter


class FakeStore:
    """In-memory ArtifactStore that records every attempt.

    `failures` maps a key to how many times its upload should fail before
    succeeding; -1 fails forever. `delays` maps a key to seconds to hold the
    upload open (default_delay for keys not listed).
    """

    def __init__(
        self,
        failures: dict[str, int] | None = None,
        delays: dict[str, float] | None = None,
        default_delay: float = 0.0,
    ) -> None:
        self.failures = dict(failures or {})
        self.delays = delays or {}
        self.default_delay = default_delay
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.attempts: list[str] = []
        self.started: dict[str, int] = {}
        self.finished: dict[str, int] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self._clock = itertools.count()

    async def put(self, key: str, path: Path, content_type: str) -> int:
        self.attempts.append(key)
        self.started.setdefault(key, next(self._clock))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(key, self.default_delay))
            remaining = self.failures.get(key, 0)
            if remaining:
                if remaining > 0:
                    self.failures[key] = remaining - 1
                raise UploadError(key, "simulated failure")
            data = path.read_bytes()
            self.objects[key] = data
            self.content_types[key] = content_type
            return len(data)
        finally:
            self.in_flight -= 1
            self.finished[key] = next(self._clock)


class RecordingSleep:
    """Replacement for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_tree(root: Path, files: dict[str, str]) -> Path:
    """Create files (relative "/" paths -> contents) under root."""
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def identity() -> JobIdentity:
    return JobIdentity(
        project_id="proj-1",
        deployment_id="dep-42",
        git_uri="https://github.com/example/site.git",
    )


@pytest.fixture
def publisher() -> MemoryEventPublisher:
    return MemoryEventPublisher()


@pytest.fixture
def emitter(identity: JobIdentity, publisher: MemoryEventPublisher) -> TelemetryEmitter:
    return TelemetryEmitter(identity, publisher, "builder-logs")


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()
