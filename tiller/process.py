"""Subprocess supervision shared by shell tools, hooks and background tasks."""

from __future__ import annotations

import asyncio
import codecs
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger


OutputCallback = Callable[[str, str], Awaitable[None] | None]


@dataclass
class ProcessResult:
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False


async def spawn_shell(
    command: str,
    *,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    with_stdin: bool = False,
) -> asyncio.subprocess.Process:
    """Start `command` through the platform shell with piped output."""
    full_env = {**os.environ, **env} if env else None
    return await asyncio.create_subprocess_shell(
        command,
        stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=full_env,
    )


async def read_stream(
    pipe: asyncio.StreamReader | None,
    stream_name: str,
    sink: Callable[[str], None],
    on_output: OutputCallback | None = None,
) -> None:
    """Pump a pipe into `sink` chunk by chunk until EOF."""
    if pipe is None:
        return
    # Incremental so a UTF-8 sequence split across reads decodes intact.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await pipe.read(1024)
        text = decoder.decode(chunk, final=not chunk)
        if text:
            sink(text)
            await _notify(on_output, stream_name, text)
        if not chunk:
            break


async def _notify(on_output: OutputCallback | None, stream_name: str, text: str) -> None:
    if on_output is None:
        return
    try:
        res = on_output(stream_name, text)
        if asyncio.iscoroutine(res):
            await res
    except Exception as e:
        logger.warning(f"Output callback for {stream_name} failed: {e}")


async def _feed_stdin(stdin: asyncio.StreamWriter, data: bytes) -> None:
    try:
        stdin.write(data)
        await stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child may exit without reading its input.
        logger.debug("Child closed stdin before reading all input")
    finally:
        stdin.close()


async def terminate(process: asyncio.subprocess.Process, grace_s: float) -> None:
    """SIGTERM, then SIGKILL if the process outlives the grace window."""
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_s)
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


async def run_command(
    command: str,
    *,
    timeout_s: float,
    grace_s: float = 1.0,
    input_text: str | None = None,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    on_output: OutputCallback | None = None,
) -> ProcessResult:
    """Run a shell command to completion under a wall-clock timeout."""
    process = await spawn_shell(command, cwd=cwd, env=env, with_stdin=input_text is not None)

    out_parts: list[str] = []
    err_parts: list[str] = []
    t_out = asyncio.create_task(read_stream(process.stdout, "stdout", out_parts.append, on_output))
    t_err = asyncio.create_task(read_stream(process.stderr, "stderr", err_parts.append, on_output))

    # Fed from its own task so a child that never reads stdin cannot stall the deadline.
    writer: asyncio.Task[None] | None = None
    if input_text is not None and process.stdin is not None:
        writer = asyncio.create_task(_feed_stdin(process.stdin, input_text.encode("utf-8")))

    timed_out = False
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout_s)
    except asyncio.TimeoutError:
        timed_out = True
        await terminate(process, grace_s)
    finally:
        readers = [t_out, t_err] if writer is None else [writer, t_out, t_err]
        await drain_readers(readers, grace_s)

    return ProcessResult(
        exit_code=process.returncode,
        stdout="".join(out_parts),
        stderr="".join(err_parts),
        timed_out=timed_out,
    )


async def drain_readers(readers: list[asyncio.Task[Any]], grace_s: float) -> None:
    """Let pipe readers finish; grandchildren holding the pipes open are abandoned."""
    _, pending = await asyncio.wait(readers, timeout=max(grace_s, 0.1))
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
