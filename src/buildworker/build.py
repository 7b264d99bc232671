"""Run the project's build command and stream its output."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path

from buildworker.models import BuildOutput

log = logging.getLogger("buildworker.build")

# Per-line read limit for build output
_LINE_LIMIT = 1024 * 1024

BuildRunner = Callable[[str, Path], AsyncIterator[BuildOutput]]


async def run_build(command: str, cwd: Path) -> AsyncIterator[BuildOutput]:
    """Run `command` through the shell in `cwd`.

    Yields stdout/stderr lines in the order they arrive, then one final
    item with kind "exit" carrying the exit code. A command that cannot be
    started ends with exit code 127.
    """
    log.info("running build: %s (cwd=%s)", command, cwd)
    try:
        proc = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_LINE_LIMIT,
        )
    except OSError as exc:
        yield BuildOutput(kind="stderr", text=f"Could not start build: {exc}")
        yield BuildOutput(kind="exit", exit_code=127)
        return

    queue: asyncio.Queue[BuildOutput | None] = asyncio.Queue()

    async def pump(stream: asyncio.StreamReader, kind: str) -> None:
        try:
            while True:
                line = await _read_chunk(stream)
                if not line:
                    break
                text = line.decode(errors="replace").rstrip("\r\n")
                await queue.put(BuildOutput(kind=kind, text=text))
        finally:
            await queue.put(None)

    pumps = [
        asyncio.create_task(pump(proc.stdout, "stdout")),
        asyncio.create_task(pump(proc.stderr, "stderr")),
    ]
    try:
        open_streams = len(pumps)
        while open_streams:
            item = await queue.get()
            if item is None:
                open_streams -= 1
                continue
            yield item
        await asyncio.gather(*pumps)
    finally:
        for task in pumps:
            task.cancel()
        if proc.returncode is None and open_streams:
            # consumer stopped early; don't leave the shell behind
            proc.kill()
            await proc.wait()

    exit_code = await proc.wait()
    log.info("build exited with code %d", exit_code)
    yield BuildOutput(kind="exit", exit_code=exit_code)


async def _read_chunk(stream: asyncio.StreamReader) -> bytes:
    """Read one line; lines longer than the read limit arrive in pieces."""
    try:
        return await stream.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        # last line without a trailing newline, or b"" at EOF
        return exc.partial
    except asyncio.LimitOverrunError as exc:
        return await stream.read(max(exc.consumed, 1))
