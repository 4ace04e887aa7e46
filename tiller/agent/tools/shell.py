"""Shell execution tool."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from tiller.agent.tools.base import Tool, ToolResult
from tiller.errors import TaskAdmissionError
from tiller.process import run_command
from tiller.tasks import TaskManager


DEFAULT_DENY_PATTERNS = [
    r"\brm\s+-[rf]{1,2}\s+/(\s|$)",  # rm -rf /
    r"\bdel\s+/[fq]\b",              # del /f, del /q
    r"\brmdir\s+/s\b",               # rmdir /s
    r"\b(format|mkfs|diskpart)\b",   # disk operations
    r"\bdd\s+if=",                   # dd
    r">\s*/dev/sd",                  # write to disk
    r"\b(shutdown|reboot|poweroff)\b",
    r":\(\)\s*\{.*\};\s*:",          # fork bomb
]

MAX_OUTPUT_CHARS = 30000


class BashTool(Tool):
    """Run a shell command, in the foreground or as a background task."""

    def __init__(
        self,
        *,
        tasks: TaskManager | None = None,
        timeout: float = 120.0,
        working_dir: str | None = None,
        deny_patterns: list[str] | None = None,
        allow_patterns: list[str] | None = None,
        restrict_to_workspace: bool = False,
        kill_grace_s: float = 1.0,
    ):
        self.tasks = tasks
        self.timeout = timeout
        self.working_dir = working_dir
        self.deny_patterns = DEFAULT_DENY_PATTERNS if deny_patterns is None else deny_patterns
        self.allow_patterns = allow_patterns or []
        self.restrict_to_workspace = restrict_to_workspace
        self.kill_grace_s = kill_grace_s

    @property
    def name(self) -> str:
        return "Bash"

    @property
    def description(self) -> str:
        return (
            "Execute a shell command and return its output. Set run_in_background to start "
            "a long-running command and get a task id for TaskOutput/KillShell."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": "The shell command to execute"},
                "working_dir": {"type": "string", "description": "Optional working directory"},
                "timeout": {"type": "number", "description": "Timeout in seconds"},
                "run_in_background": {
                    "type": "boolean",
                    "description": "Start the command as a background task",
                },
            },
            "required": ["command"],
        }

    async def execute(
        self,
        command: str,
        working_dir: str | None = None,
        timeout: float | None = None,
        run_in_background: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        cwd = working_dir or self.working_dir or os.getcwd()
        guard_error = self._guard_command(command, cwd)
        if guard_error:
            return ToolResult.fail(guard_error)

        if run_in_background:
            return await self._start_background(command, cwd, timeout)

        limit = float(timeout) if timeout else self.timeout
        try:
            result = await run_command(
                command,
                timeout_s=limit,
                grace_s=self.kill_grace_s,
                cwd=cwd,
                on_output=kwargs.get("_stream_cb"),
            )
        except OSError as e:
            return ToolResult.fail(f"Error executing command: {e}")

        if result.timed_out:
            return ToolResult.fail(
                f"Command timed out after {limit:g} seconds",
                stdout=result.stdout,
                stderr=result.stderr,
            )

        output_parts: list[str] = []
        if result.stdout:
            output_parts.append(result.stdout)
        if result.stderr.strip():
            output_parts.append("STDERR:\n" + result.stderr)
        if result.exit_code != 0:
            output_parts.append(f"\nExit code: {result.exit_code}")

        text = "\n".join(output_parts) if output_parts else "(no output)"
        if len(text) > MAX_OUTPUT_CHARS:
            text = text[:MAX_OUTPUT_CHARS] + f"\n... (truncated, {len(text) - MAX_OUTPUT_CHARS} more chars)"

        if result.exit_code != 0:
            return ToolResult(
                success=False,
                output=text,
                error=f"Command exited with code {result.exit_code}",
                error_kind="execution",
                data={"exit_code": result.exit_code},
            )
        return ToolResult.ok(text, exit_code=0)

    def timeout_for(self, params: dict[str, Any]) -> float:
        requested = params.get("timeout")
        if isinstance(requested, (int, float)) and requested > 0:
            return float(requested) + self.kill_grace_s + 1.0
        return self.timeout + self.kill_grace_s + 1.0

    async def _start_background(self, command: str, cwd: str, timeout: float | None) -> ToolResult:
        if self.tasks is None:
            return ToolResult.fail("Background execution is not available")
        try:
            task_id = await self.tasks.start_shell(command, cwd=cwd, timeout_s=timeout)
        except TaskAdmissionError as e:
            return ToolResult.fail(str(e))
        return ToolResult.ok(
            f"Started background task {task_id}. Use TaskOutput to read its output.",
            task_id=task_id,
        )

    def _guard_command(self, command: str, cwd: str) -> str | None:
        """Best-effort safety guard for potentially destructive commands."""
        cmd = command.strip()
        lower = cmd.lower()

        for pattern in self.deny_patterns:
            if re.search(pattern, lower):
                return "Command blocked by safety guard (dangerous pattern detected)"

        if self.allow_patterns:
            if not any(re.search(p, lower) for p in self.allow_patterns):
                return "Command blocked by safety guard (not in allowlist)"

        if self.restrict_to_workspace:
            if "..\\" in cmd or "../" in cmd:
                return "Command blocked by safety guard (path traversal detected)"

            cwd_path = Path(cwd).resolve()
            for raw in re.findall(r"/[^\s\"']+", cmd):
                p = Path(raw).resolve()
                if cwd_path not in p.parents and p != cwd_path:
                    return "Command blocked by safety guard (path outside working dir)"

        return None
