"""Tool executor: the gatekeeping pipeline every tool call passes through."""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable

from loguru import logger

from tiller.agent.tools.base import Tool, ToolResult
from tiller.agent.tools.registry import ToolRegistry
from tiller.errors import (
    HookBlocked,
    PermissionDenied,
    RegistryDenied,
    TillerError,
    ToolExecutionError,
    UndoFailure,
    ValidationError,
)
from tiller.events import EventHub
from tiller.history import ActionHistory, ActionRecord
from tiller.hooks.manager import HooksManager
from tiller.hooks.models import HookDecision, HookInput
from tiller.permissions import PermissionManager
from tiller.providers.base import ToolCallRequest


PermissionResponder = Callable[[str, dict[str, Any]], "Awaitable[bool] | bool"]


@dataclass
class ExecutionContext:
    session_id: str = ""
    cwd: str | None = None
    on_permission_request: PermissionResponder | None = None
    tool_use_id: str | None = None


@dataclass
class UndoResult:
    success: bool
    message: str
    action: ActionRecord | None = None


ToolCall = ToolCallRequest | dict[str, Any]


def _call_parts(call: ToolCall) -> tuple[str, dict[str, Any], str | None]:
    if isinstance(call, ToolCallRequest):
        return call.name, dict(call.arguments or {}), call.id
    return str(call.get("name") or ""), dict(call.get("arguments") or {}), call.get("id")


class ToolExecutor:
    """Runs tool calls through lookup, gating, hooks, permission and the undo log.

    Every failure comes back as a ToolResult with `error` and `error_kind`
    set; nothing raised by a tool or a hook escapes `execute`.
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        permissions: PermissionManager,
        hooks: HooksManager | None = None,
        history: ActionHistory | None = None,
        events: EventHub | None = None,
    ):
        self.registry = registry
        self.permissions = permissions
        self.hooks = hooks
        self.history = history or ActionHistory(None)
        self._events = events

    # ── Single call ───────────────────────────────────────────────

    async def execute(
        self,
        tool_name: str,
        args: dict[str, Any] | None = None,
        context: ExecutionContext | None = None,
    ) -> ToolResult:
        context = context or ExecutionContext()
        args = dict(args or {})
        execution_id = context.tool_use_id or f"exec_{uuid.uuid4().hex[:12]}"
        started = time.monotonic()

        tool = self.registry.get(tool_name)
        if tool is None:
            return self._finish(
                ToolResult.fail(f"Tool not found: {tool_name}", "not_found"), tool_name, execution_id, started
            )

        try:
            if not self.registry.is_allowed(tool_name):
                raise RegistryDenied(tool_name)

            errors = tool.validate(args)
            if errors:
                raise ValidationError(tool.name, errors)

            pre = await self._run_hooks(
                "PreToolUse",
                HookInput(
                    tool_name=tool.name,
                    tool_input=args,
                    tool_use_id=execution_id,
                    session_id=context.session_id or None,
                ),
            )
            if pre is not None and pre.blocked:
                raise HookBlocked("PreToolUse", pre.reason or "Hook blocked execution")
            if pre is not None and pre.updated_input:
                args = {**args, **pre.updated_input}

            if tool.requires_permission:
                await self._authorize(tool, args, context, execution_id)
        except TillerError as e:
            return self._finish(ToolResult.fail(str(e), e.kind), tool.name, execution_id, started)

        await self._emit("tool:executing", {"execution_id": execution_id, "tool_name": tool.name, "args": args})
        result = await self._invoke(tool, args)

        post = await self._run_hooks(
            "PostToolUse",
            HookInput(
                tool_name=tool.name,
                tool_input=args,
                tool_output=result.to_dict(),
                tool_use_id=execution_id,
                session_id=context.session_id or None,
            ),
        )
        if post is not None:
            if post.additional_context:
                result.additional_context = post.additional_context
            if post.blocked:
                result.warning = f"Post-hook warning: {post.reason or 'Hook blocked execution'}"

        if result.success and not tool.is_read_only:
            await self._record(tool, args, result, context)

        self._finish(result, tool.name, execution_id, started)
        await self._emit(
            "tool:executed",
            {
                "execution_id": execution_id,
                "tool_name": tool.name,
                "success": result.success,
                "error": result.error,
                "execution_time_ms": result.execution_time_ms,
            },
        )
        return result

    async def _authorize(
        self, tool: Tool, args: dict[str, Any], context: ExecutionContext, execution_id: str
    ) -> None:
        if self.permissions.check_permission(tool.name, args):
            return
        if self.permissions.is_denied(tool.name, args):
            raise PermissionDenied(tool.name, "Denied by permission settings")

        decision = await self._run_hooks(
            "PermissionRequest",
            HookInput(
                tool_name=tool.name,
                tool_input=args,
                tool_use_id=execution_id,
                permission_type="execute",
                session_id=context.session_id or None,
            ),
        )
        if decision is not None:
            if decision.blocked:
                raise PermissionDenied(tool.name, decision.reason or "Denied by hook")
            if decision.permission_decision == "allow":
                return
            if decision.permission_decision == "deny":
                raise PermissionDenied(tool.name, decision.reason or "Denied by hook")

        responder = context.on_permission_request
        if responder is None:
            raise PermissionDenied(tool.name, "No approval handler available")
        try:
            approved = responder(tool.name, args)
            if inspect.isawaitable(approved):
                approved = await approved
        except Exception as e:
            logger.exception(f"Approval handler failed for {tool.name}")
            raise PermissionDenied(tool.name, f"Approval handler failed: {e}") from e
        if not approved:
            raise PermissionDenied(tool.name)

    async def _invoke(self, tool: Tool, args: dict[str, Any]) -> ToolResult:
        limit = tool.timeout_for(args)
        logger.debug(f"Tool call: {tool.name}({args})")
        try:
            result = await asyncio.wait_for(tool.execute(**args), timeout=limit)
        except asyncio.TimeoutError:
            failure = ToolExecutionError(tool.name, f"Tool {tool.name} timed out after {limit:g}s")
            return ToolResult.fail(str(failure), failure.kind)
        except Exception as e:
            logger.exception(f"Tool {tool.name} raised")
            failure = ToolExecutionError(tool.name, f"Error executing {tool.name}: {e}")
            return ToolResult.fail(str(failure), failure.kind)

        if isinstance(result, ToolResult):
            if not result.success and not result.error:
                result.error = "Unknown error"
            if result.error and not result.error_kind:
                result.error_kind = "execution"
            return result
        return ToolResult.ok("" if result is None else str(result))

    async def _record(self, tool: Tool, args: dict[str, Any], result: ToolResult, context: ExecutionContext) -> None:
        try:
            record = tool.action_record(args, result)
        except Exception as e:
            logger.error(f"Could not build undo record for {tool.name}: {e}")
            return
        if record is None:
            return
        record.session_id = record.session_id or context.session_id
        self.history.append(record)
        await self._emit("action:recorded", record.to_dict())

    def _finish(self, result: ToolResult, tool_name: str, execution_id: str, started: float) -> ToolResult:
        result.tool_name = tool_name
        result.execution_id = execution_id
        result.execution_time_ms = int((time.monotonic() - started) * 1000)
        if result.error:
            logger.debug(f"Tool {tool_name} failed ({result.error_kind}): {result.error}")
        return result

    async def _run_hooks(self, event: str, hook_input: HookInput) -> HookDecision | None:
        if self.hooks is None or not self.hooks.has_hooks(event):
            return None
        return await self.hooks.run(event, hook_input)

    async def _emit(self, kind: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            await self._events.publish(kind, payload)

    # ── Batches ───────────────────────────────────────────────────

    async def execute_sequential(
        self,
        calls: Iterable[ToolCall],
        context: ExecutionContext | None = None,
        *,
        stop_on_error: bool = False,
    ) -> list[ToolResult]:
        results = []
        for call in calls:
            name, args, call_id = _call_parts(call)
            result = await self.execute(name, args, self._context_for(context, call_id))
            results.append(result)
            if stop_on_error and not result.success:
                break
        return results

    async def execute_parallel(
        self, calls: Iterable[ToolCall], context: ExecutionContext | None = None
    ) -> list[ToolResult]:
        """Run calls concurrently; results come back in request order."""
        coros = []
        for call in calls:
            name, args, call_id = _call_parts(call)
            coros.append(self.execute(name, args, self._context_for(context, call_id)))
        return list(await asyncio.gather(*coros))

    @staticmethod
    def _context_for(context: ExecutionContext | None, call_id: str | None) -> ExecutionContext:
        base = context or ExecutionContext()
        return ExecutionContext(
            session_id=base.session_id,
            cwd=base.cwd,
            on_permission_request=base.on_permission_request,
            tool_use_id=call_id or base.tool_use_id,
        )

    # ── Undo ──────────────────────────────────────────────────────

    async def undo_last_action(self) -> UndoResult:
        record = self.history.pop()
        if record is None:
            return UndoResult(False, "No actions to undo")

        try:
            message = self._revert(record)
        except (OSError, UndoFailure) as e:
            self.history.restore(record)
            logger.warning(f"Undo of {record.id} failed: {e}")
            return UndoResult(False, f"Undo failed: {e}", record)

        await self._emit("action:undone", record.to_dict())
        logger.info(message)
        return UndoResult(True, message, record)

    @staticmethod
    def _revert(record: ActionRecord) -> str:
        path = Path(record.path)
        if record.kind == "create":
            if path.exists():
                path.unlink()
                return f"Deleted {path}"
            return f"{path} already removed"

        original = record.original_bytes()
        if original is None:
            raise UndoFailure(record.id, "no original content recorded")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(original)
        return f"Restored {path}"

    def get_action_history(self) -> list[ActionRecord]:
        return self.history.records()

    def clear_action_history(self) -> None:
        self.history.clear()

    def load_action_history(self) -> list[ActionRecord]:
        return self.history.load()
