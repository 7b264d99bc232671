"""Build output directory detection."""

from __future__ import annotations

import logging
from pathlib import Path

log = logging.getLogger("buildworker.locator")

# Checked in this order; the first existing directory wins.
CANDIDATE_DIRS = ("build", "dist", ".next", "out", "public")


def locate(project_dir: Path | str, candidates: tuple[str, ...] = CANDIDATE_DIRS) -> Path | None:
    """Return the project's build output directory, or None if none exists."""
    project = Path(project_dir)
    for name in candidates:
        candidate = project / name
        log.debug("checking %s", candidate)
        if candidate.is_dir():
            return candidate
    return None
