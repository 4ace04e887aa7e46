"""Exception hierarchy for the tiller runtime.

Most of these never escape the executor: they are mapped onto
`ToolResult.error_kind` so the model sees an ordinary tool result.
"""

from __future__ import annotations


class TillerError(Exception):
    """Base exception for all tiller errors."""

    kind = "error"


class ValidationError(TillerError):
    """A tool call is missing required arguments or has malformed ones."""

    kind = "validation"

    def __init__(self, tool_name: str, errors: list[str]):
        self.tool_name = tool_name
        self.errors = errors
        super().__init__(f"Invalid parameters: {', '.join(errors)}")


class RegistryDenied(TillerError):
    """The static registry gate refuses the tool."""

    kind = "registry_denied"

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Tool not allowed: {tool_name}")


class PermissionDenied(TillerError):
    kind = "permission_denied"

    def __init__(self, tool_name: str, reason: str = "User declined"):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(f"Permission denied: {reason}")


class HookBlocked(TillerError):
    """A lifecycle hook refused to let the action proceed."""

    kind = "hook_blocked"

    def __init__(self, event: str, reason: str):
        self.event = event
        self.reason = reason
        super().__init__(f"Blocked by hook: {reason}")


class ToolExecutionError(TillerError):
    """The capability raised or ran past its timeout."""

    kind = "execution"

    def __init__(self, tool_name: str, reason: str):
        self.tool_name = tool_name
        self.reason = reason
        super().__init__(reason)


class BackendError(TillerError):
    """The model backend failed to produce a turn."""

    kind = "backend"

    def __init__(self, message: str, *, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class UndoFailure(TillerError):
    kind = "undo"

    def __init__(self, action_id: str, reason: str):
        self.action_id = action_id
        self.reason = reason
        super().__init__(f"Failed to undo {action_id}: {reason}")


class HookConfigError(TillerError):
    """Hook registration or settings file is malformed."""

    kind = "hook_config"


class TaskError(TillerError):
    kind = "task"


class TaskNotFoundError(TaskError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class TaskStateError(TaskError):
    """Operation is invalid for the task's current status."""

    def __init__(self, task_id: str, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task {task_id} is not running (status: {status})")


class TaskAdmissionError(TaskError):
    """Too many background tasks are already running."""

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Too many running background tasks (limit {limit})")
