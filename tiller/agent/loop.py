"""Agent loop: drives a turn between the user, the model and the tools."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from tiller.agent.executor import ExecutionContext, PermissionResponder, ToolExecutor, UndoResult
from tiller.agent.tools.base import ToolResult
from tiller.agent.transcript import Transcript
from tiller.errors import BackendError
from tiller.events import EventHub
from tiller.hooks.manager import HooksManager
from tiller.hooks.models import HookDecision, HookInput
from tiller.providers.base import LLMProvider, LLMResponse


DEFAULT_SYSTEM_PROMPT = """You are a coding assistant working in the user's project directory.

Use the available tools to read, search and change files and to run commands.
Explain what you are about to change before changing it, keep edits minimal,
and verify results after running commands."""

BACKEND_APOLOGY = (
    "Sorry, I couldn't get a response from the model after retrying. "
    "Please try again or rephrase your request."
)


@dataclass
class TurnResult:
    response: str
    tool_results: list[ToolResult] = field(default_factory=list)
    iterations: int = 0
    blocked: bool = False


class AgentLoop:
    """
    The agent loop is the core processing engine.

    For each user message it:
    1. Runs UserPromptSubmit hooks (which may block or rewrite the prompt)
    2. Calls the model with the transcript and the allowed tool catalog
    3. Executes requested tools through the executor and feeds results back
    4. Stops on a plain answer or when the iteration budget runs out
    """

    def __init__(
        self,
        *,
        provider: LLMProvider,
        executor: ToolExecutor,
        hooks: HooksManager | None = None,
        events: EventHub | None = None,
        model: str | None = None,
        max_iterations: int = 10,
        parallel_tool_calls: bool = False,
        system_prompt: str | None = DEFAULT_SYSTEM_PROMPT,
        session_id: str | None = None,
        cwd: str | None = None,
        on_permission_request: PermissionResponder | None = None,
    ):
        self.provider = provider
        self.executor = executor
        self.hooks = hooks
        self.model = model or provider.get_default_model()
        self.max_iterations = max_iterations
        self.parallel_tool_calls = parallel_tool_calls
        self.session_id = session_id or (hooks.session_id if hooks else f"session-{uuid.uuid4().hex[:12]}")
        self.cwd = cwd
        self.on_permission_request = on_permission_request
        self.transcript = Transcript(system_prompt)
        self._events = events

    # ── Event emission ────────────────────────────────────────────

    async def _emit(self, kind: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            await self._events.publish(kind, {"session_id": self.session_id, **payload})

    async def _run_hooks(self, event: str, hook_input: HookInput) -> HookDecision:
        if self.hooks is None:
            return HookDecision()
        hook_input.session_id = hook_input.session_id or self.session_id
        return await self.hooks.run(event, hook_input)

    # ── Turn processing ───────────────────────────────────────────

    async def process_message(
        self,
        user_text: str,
        *,
        on_permission_request: PermissionResponder | None = None,
    ) -> TurnResult:
        logger.info(f"Processing message in {self.session_id} ({len(user_text)} chars)")

        submit = await self._run_hooks("UserPromptSubmit", HookInput(prompt=user_text))
        if submit.blocked:
            logger.info(f"Prompt blocked by hook: {submit.reason}")
            return TurnResult(response=submit.reason or "Request blocked by hook.", blocked=True)
        if submit.updated_input and submit.updated_input.get("prompt"):
            user_text = str(submit.updated_input["prompt"])

        self.transcript.add_user(user_text)
        if submit.additional_context:
            self.add_context(submit.additional_context, "hook")

        context = ExecutionContext(
            session_id=self.session_id,
            cwd=self.cwd,
            on_permission_request=on_permission_request or self.on_permission_request,
        )
        tool_results: list[ToolResult] = []
        failures = 0
        iteration = 0

        while iteration < self.max_iterations:
            iteration += 1
            await self._emit("iteration", {"iteration": iteration, "max_iterations": self.max_iterations})

            try:
                response = await self._call_model()
            except Exception as e:
                failures += 1
                logger.error(f"Model call failed (attempt {failures}): {e}")
                await self._emit("backend:error", {"error": str(e), "attempt": failures})
                if failures >= 2:
                    return TurnResult(response=BACKEND_APOLOGY, tool_results=tool_results, iterations=iteration)
                self.transcript.add_system(f"Error occurred: {e}. Please acknowledge and continue.")
                continue
            failures = 0

            self.transcript.add_assistant(response.content, response.tool_calls)
            if not response.has_tool_calls:
                return TurnResult(
                    response=response.content or "",
                    tool_results=tool_results,
                    iterations=iteration,
                )

            await self._emit(
                "tool_calls",
                {"calls": [{"id": tc.id, "name": tc.name, "arguments": tc.arguments} for tc in response.tool_calls]},
            )
            if self.parallel_tool_calls:
                results = await self.executor.execute_parallel(response.tool_calls, context)
            else:
                results = await self.executor.execute_sequential(response.tool_calls, context)

            for tc, result in zip(response.tool_calls, results):
                tool_results.append(result)
                self.transcript.add_tool_result(tc.id, tc.name, result.to_content())

        logger.warning(f"Iteration budget of {self.max_iterations} exhausted in {self.session_id}")
        await self._run_hooks("Stop", HookInput(stop_reason="max_iterations"))
        await self._emit("stop", {"reason": "max_iterations", "iterations": iteration})
        return TurnResult(
            response=self.transcript.last_assistant_text(),
            tool_results=tool_results,
            iterations=iteration,
        )

    async def _call_model(self) -> LLMResponse:
        response = await self.provider.chat(
            messages=self.transcript.messages,
            tools=self.executor.registry.get_definitions(),
            model=self.model,
        )
        if response.is_error:
            raise BackendError(response.content or "Model backend returned an error")
        return response

    # ── Session lifecycle ─────────────────────────────────────────

    async def start_session(self, source: str = "startup") -> HookDecision:
        logger.info(f"Session {self.session_id} started ({source})")
        decision = await self._run_hooks("SessionStart", HookInput(source=source, matcher=source))
        if decision.additional_context:
            self.add_context(decision.additional_context, "session")
        return decision

    async def end_session(self, reason: str = "other") -> HookDecision:
        logger.info(f"Session {self.session_id} ended ({reason})")
        return await self._run_hooks("SessionEnd", HookInput(stop_reason=reason, matcher=reason))

    # ── Transcript management ─────────────────────────────────────

    def add_context(self, content: str, kind: str = "system") -> None:
        self.transcript.add_system(f"[{kind}] {content}")

    def get_history(self) -> list[dict[str, Any]]:
        return self.transcript.history()

    def clear_history(self) -> None:
        self.transcript.reset()

    def export_state(self) -> dict[str, Any]:
        state = self.transcript.export()
        state["session_id"] = self.session_id
        return state

    def import_state(self, state: dict[str, Any]) -> None:
        self.transcript.load(state)
        if state.get("session_id"):
            self.session_id = str(state["session_id"])

    async def compact(self, keep_last: int = 20, trigger: str = "manual") -> int:
        """Trim old messages after PreCompact hooks agree. Returns messages removed."""
        decision = await self._run_hooks("PreCompact", HookInput(trigger=trigger, matcher=trigger))
        if decision.blocked:
            logger.info(f"Compaction blocked by hook: {decision.reason}")
            return 0
        removed = self.transcript.compact(keep_last)
        if removed:
            logger.info(f"Compacted transcript: removed {removed} messages")
        return removed

    async def undo_last_tool(self) -> UndoResult:
        return await self.executor.undo_last_action()
