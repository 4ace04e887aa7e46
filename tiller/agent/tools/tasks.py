"""Tools over the background task manager: TaskOutput and KillShell."""

from __future__ import annotations

from typing import Any

from tiller.agent.tools.base import Tool, ToolResult
from tiller.errors import TaskError
from tiller.tasks import TaskManager


class TaskOutputTool(Tool):
    requires_permission = False
    is_read_only = True

    def __init__(self, tasks: TaskManager):
        self.tasks = tasks

    @property
    def name(self) -> str:
        return "TaskOutput"

    @property
    def description(self) -> str:
        return (
            "Get the output of a background task. By default waits until the task "
            "finishes or the timeout elapses."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "task_id": {"type": "string", "description": "The task id (e.g. shell-1)"},
                "block": {"type": "boolean", "description": "Wait for completion (default true)"},
                "timeout": {"type": "number", "description": "Maximum seconds to wait"},
            },
            "required": ["task_id"],
        }

    def timeout_for(self, params: dict[str, Any]) -> float:
        requested = params.get("timeout")
        if isinstance(requested, (int, float)) and requested > 0:
            return max(self.timeout, float(requested) + 5.0)
        return self.timeout

    async def execute(
        self, task_id: str, block: bool = True, timeout: float | None = None, **kwargs: Any
    ) -> ToolResult:
        try:
            snapshot = await self.tasks.get_output(task_id, block=block, timeout_s=timeout)
        except TaskError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(
            snapshot.format(),
            task_id=snapshot.task_id,
            status=snapshot.status,
            exit_code=snapshot.exit_code,
        )


class KillShellTool(Tool):
    timeout = 30.0

    def __init__(self, tasks: TaskManager):
        self.tasks = tasks

    @property
    def name(self) -> str:
        return "KillShell"

    @property
    def description(self) -> str:
        return "Terminate a running background task."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "task_id": {"type": "string", "description": "The task id to kill"},
            },
            "required": ["task_id"],
        }

    async def execute(self, task_id: str, **kwargs: Any) -> ToolResult:
        try:
            message = await self.tasks.kill(task_id)
        except TaskError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(message, task_id=task_id)
