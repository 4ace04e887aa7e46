"""Background task supervision: shell processes and delegated agent work."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from loguru import logger

from tiller.errors import TaskAdmissionError, TaskNotFoundError, TaskStateError
from tiller.events import EventHub
from tiller.process import drain_readers, read_stream, spawn_shell, terminate


TaskKind = Literal["shell", "agent"]
TaskStatus = Literal["running", "completed", "failed", "killed"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed", "killed"})


def _iso(ts: float | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


@dataclass
class BackgroundTask:
    id: str
    kind: TaskKind
    command: str | None = None
    agent_name: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = "running"
    output: str = ""
    error: str = ""
    result: Any = None
    exit_code: int | None = None
    pid: int | None = None
    timeout_s: float | None = None
    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None
    process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    supervisor: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def is_running(self) -> bool:
        return self.status == "running"

    def finish(self, status: TaskStatus, exit_code: int | None = None) -> bool:
        """Move to a terminal status. Returns False if the task already ended."""
        if self.status in TERMINAL_STATUSES:
            if exit_code is not None and self.exit_code is None:
                self.exit_code = exit_code
            return False
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Not a terminal status: {status}")
        self.status = status
        if exit_code is not None:
            self.exit_code = exit_code
        self.ended_at = time.time()
        return True

    def append_output(self, text: str) -> None:
        self.output += text

    def append_error(self, text: str) -> None:
        self.error += text


@dataclass(frozen=True)
class TaskSnapshot:
    task_id: str
    kind: TaskKind
    status: TaskStatus
    output: str
    error: str
    result: Any
    exit_code: int | None
    start_time: str | None
    end_time: str | None
    duration_s: float

    @classmethod
    def of(cls, task: BackgroundTask) -> TaskSnapshot:
        end = task.ended_at if task.ended_at is not None else time.time()
        return cls(
            task_id=task.id,
            kind=task.kind,
            status=task.status,
            output=task.output,
            error=task.error,
            result=task.result,
            exit_code=task.exit_code,
            start_time=_iso(task.started_at),
            end_time=_iso(task.ended_at),
            duration_s=max(0.0, end - task.started_at),
        )

    def format(self) -> str:
        parts = [f"Task {self.task_id} ({self.status}):"]
        if self.output:
            parts.append(f"\nOutput:\n{self.output}")
        if self.error:
            parts.append(f"\nErrors:\n{self.error}")
        if self.exit_code is not None:
            parts.append(f"\nExit code: {self.exit_code}")
        parts.append(f"\nDuration: {round(self.duration_s)}s")
        return "\n".join(parts)


class TaskManager:
    """Owns every background task; tasks only ever move running -> terminal."""

    POLL_INTERVAL_S = 0.1

    def __init__(
        self,
        *,
        events: EventHub | None = None,
        cwd: str | None = None,
        kill_grace_s: float = 5.0,
        output_timeout_s: float = 30.0,
        cleanup_max_age_s: float = 3600.0,
        max_running: int | None = None,
        default_timeout_s: float = 3600.0,
    ):
        self._events = events
        self._cwd = cwd
        self._kill_grace_s = kill_grace_s
        self._output_timeout_s = output_timeout_s
        self._cleanup_max_age_s = cleanup_max_age_s
        self._max_running = max_running
        self._default_timeout_s = default_timeout_s
        self._tasks: dict[str, BackgroundTask] = {}
        self._counter = 0

    # ── Creation ──────────────────────────────────────────────────

    def _admit(self) -> None:
        if self._max_running is None:
            return
        running = sum(1 for t in self._tasks.values() if t.is_running)
        if running >= self._max_running:
            raise TaskAdmissionError(self._max_running)

    def _next_id(self, kind: TaskKind) -> str:
        self._counter += 1
        return f"{kind}-{self._counter}"

    async def start_shell(
        self,
        command: str,
        *,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> str:
        self._admit()
        if timeout_s is None:
            timeout_s = self._default_timeout_s
        task = BackgroundTask(
            id=self._next_id("shell"), kind="shell", command=command, timeout_s=timeout_s
        )
        self._tasks[task.id] = task

        try:
            process = await spawn_shell(command, cwd=cwd or self._cwd, env=env)
        except OSError as e:
            task.append_error(str(e))
            task.finish("failed")
            logger.error(f"Background task {task.id} failed to start: {e}")
            return task.id

        task.process = process
        task.pid = process.pid
        task.supervisor = asyncio.create_task(self._supervise(task, process, timeout_s))
        logger.info(f"Started background shell {task.id} (pid {process.pid}): {command}")
        return task.id

    def start_agent(self, agent_name: str, options: dict[str, Any] | None = None) -> str:
        self._admit()
        task = BackgroundTask(
            id=self._next_id("agent"),
            kind="agent",
            agent_name=agent_name,
            options=dict(options or {}),
        )
        self._tasks[task.id] = task
        logger.info(f"Registered background agent {task.id}: {agent_name}")
        return task.id

    def update_agent(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        output: str | None = None,
        result: Any = None,
        error: str | None = None,
    ) -> bool:
        """Apply progress from delegated work. Returns False if the update was ignored."""
        task = self._get(task_id)
        if task.kind != "agent":
            return False
        if not task.is_running:
            logger.warning(f"Ignoring update for finished task {task_id} ({task.status})")
            return False

        if output is not None:
            task.output = output
        if result is not None:
            task.result = result
        if error is not None:
            task.error = error
        if status is not None and status in TERMINAL_STATUSES:
            task.finish(status)
        return True

    # ── Supervision ───────────────────────────────────────────────

    async def _supervise(
        self,
        task: BackgroundTask,
        process: asyncio.subprocess.Process,
        timeout_s: float | None,
    ) -> None:
        async def _on_output(stream: str, text: str) -> None:
            if self._events is not None:
                await self._events.publish(
                    "task:output", {"task_id": task.id, "stream": stream, "data": text}
                )

        readers = [
            asyncio.create_task(read_stream(process.stdout, "stdout", task.append_output, _on_output)),
            asyncio.create_task(read_stream(process.stderr, "stderr", task.append_error, _on_output)),
        ]
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout_s)
        except asyncio.TimeoutError:
            task.append_error(f"\n[timeout] killed after {timeout_s}s\n")
            task.finish("killed")
            await terminate(process, self._kill_grace_s)
        finally:
            await drain_readers(readers, self._kill_grace_s)

        code = process.returncode
        if task.finish("completed" if code == 0 else "failed", code):
            logger.debug(f"Background task {task.id} exited with {code}")
        if self._events is not None:
            await self._events.publish(
                "task:complete", {"task_id": task.id, "status": task.status, "exit_code": code}
            )

    # ── Introspection ─────────────────────────────────────────────

    def _get(self, task_id: str) -> BackgroundTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def get_task(self, task_id: str) -> BackgroundTask | None:
        return self._tasks.get(task_id)

    async def get_output(
        self,
        task_id: str,
        *,
        block: bool = True,
        timeout_s: float | None = None,
    ) -> TaskSnapshot:
        """Snapshot of a task, optionally waiting until it leaves `running`."""
        task = self._get(task_id)
        if not block or not task.is_running:
            return TaskSnapshot.of(task)

        deadline = time.monotonic() + (timeout_s if timeout_s is not None else self._output_timeout_s)
        while task.is_running and time.monotonic() < deadline:
            await asyncio.sleep(self.POLL_INTERVAL_S)
        if task.supervisor is not None and not task.is_running:
            # Let the supervisor stamp the exit code and drain remaining output.
            await asyncio.wait({task.supervisor}, timeout=self._kill_grace_s)
        return TaskSnapshot.of(task)

    def list(self, *, status: TaskStatus | None = None, kind: TaskKind | None = None) -> list[dict[str, Any]]:
        tasks = list(self._tasks.values())
        if status:
            tasks = [t for t in tasks if t.status == status]
        if kind:
            tasks = [t for t in tasks if t.kind == kind]
        return [
            {
                "id": t.id,
                "type": t.kind,
                "status": t.status,
                "start_time": _iso(t.started_at),
                "command": t.command,
                "agent_name": t.agent_name,
            }
            for t in tasks
        ]

    # ── Termination ───────────────────────────────────────────────

    async def kill(self, task_id: str) -> str:
        task = self._get(task_id)
        if not task.is_running:
            raise TaskStateError(task_id, task.status)

        task.finish("killed")
        if task.kind == "shell" and task.process is not None:
            await terminate(task.process, self._kill_grace_s)
            logger.info(f"Killed background shell {task_id}")
            return f"Task {task_id} killed"

        logger.info(f"Killed background agent {task_id}")
        return f"Agent {task_id} killed"

    def cleanup(self, max_age_s: float | None = None) -> int:
        """Forget terminal tasks that ended more than `max_age_s` ago."""
        max_age = self._cleanup_max_age_s if max_age_s is None else max_age_s
        now = time.time()
        stale = [
            tid
            for tid, t in self._tasks.items()
            if not t.is_running and t.ended_at is not None and now - t.ended_at > max_age
        ]
        for tid in stale:
            del self._tasks[tid]
        return len(stale)

    async def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            if task.is_running:
                await self.kill(task.id)
