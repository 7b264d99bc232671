"""Recursive directory listing for uploads."""

from __future__ import annotations

import os
from collections.abc import Collection
from pathlib import Path

from buildworker.errors import ScanError
from buildworker.models import FileRecord


def scan(root_dir: Path | str, excluded_names: Collection[str] = ()) -> list[FileRecord]:
    """List every regular file under root_dir, depth first.

    Directories whose name is in excluded_names are skipped along with
    everything beneath them. Order follows the filesystem's listing order.
    Raises ScanError if root_dir or any directory below it cannot be read.
    """
    root = Path(root_dir)
    if not root.is_dir():
        raise ScanError(f"{root} does not exist or is not a directory")

    records: list[FileRecord] = []
    _walk(root, root, frozenset(excluded_names), records)
    return records


def _walk(root: Path, current: Path, excluded: frozenset[str], out: list[FileRecord]) -> None:
    try:
        with os.scandir(current) as it:
            entries = list(it)
    except OSError as exc:
        raise ScanError(f"cannot read {current}: {exc.strerror or exc}") from exc

    for entry in entries:
        try:
            if entry.is_dir():
                if entry.name in excluded:
                    continue
                _walk(root, Path(entry.path), excluded, out)
            elif entry.is_file():
                path = Path(entry.path)
                out.append(
                    FileRecord(
                        absolute_path=path.absolute(),
                        relative_path=path.relative_to(root).as_posix(),
                    )
                )
        except OSError as exc:
            raise ScanError(f"cannot stat {entry.path}: {exc.strerror or exc}") from exc
