"""Tests for build command execution and output streaming."""

from __future__ import annotations

import asyncio
import os

import pytest

from buildworker.build import run_build


async def _collect(command, cwd):
    return [chunk async for chunk in run_build(command, cwd)]


@pytest.mark.asyncio
async def test_streams_stdout_and_stderr_then_exit_code(tmp_path):
    chunks = await _collect("echo one; echo two; echo oops 1>&2; exit 3", tmp_path)

    stdout = [c.text for c in chunks if c.kind == "stdout"]
    stderr = [c.text for c in chunks if c.kind == "stderr"]
    assert stdout == ["one", "two"]
    assert stderr == ["oops"]
    assert chunks[-1].kind == "exit"
    assert chunks[-1].exit_code == 3
    assert sum(1 for c in chunks if c.kind == "exit") == 1


@pytest.mark.asyncio
async def test_runs_in_project_directory(tmp_path):
    (tmp_path / "marker.txt").write_text("here")

    chunks = await _collect("cat marker.txt", tmp_path)

    assert [c.text for c in chunks if c.kind == "stdout"] == ["here"]
    assert chunks[-1].exit_code == 0


@pytest.mark.asyncio
async def test_missing_working_directory_ends_with_127(tmp_path):
    chunks = await _collect("echo never", tmp_path / "missing")

    assert chunks[0].kind == "stderr"
    assert "Could not start build" in chunks[0].text
    assert chunks[-1].kind == "exit"
    assert chunks[-1].exit_code == 127


@pytest.mark.asyncio
async def test_line_longer_than_read_limit_does_not_stall(tmp_path):
    command = "head -c 2000000 /dev/zero | tr '\\0' x; echo; echo after"

    chunks = await asyncio.wait_for(_collect(command, tmp_path), timeout=30)

    stdout = [c.text for c in chunks if c.kind == "stdout"]
    assert sum(len(t) for t in stdout if set(t) == {"x"}) == 2_000_000
    assert stdout[-1] == "after"
    assert chunks[-1].kind == "exit"
    assert chunks[-1].exit_code == 0


@pytest.mark.asyncio
async def test_last_line_without_newline_is_delivered(tmp_path):
    chunks = await _collect("printf 'no newline'", tmp_path)

    assert [c.text for c in chunks if c.kind == "stdout"] == ["no newline"]
    assert chunks[-1].exit_code == 0


@pytest.mark.asyncio
async def test_closing_stream_early_kills_the_build(tmp_path):
    pid_file = tmp_path / "pid"
    stream = run_build(f"echo $$ > {pid_file}; echo started; exec sleep 30", tmp_path)

    first = await anext(stream)
    await stream.aclose()

    assert first.text == "started"
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)
