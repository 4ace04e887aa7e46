"""Executes individual hook definitions."""

from __future__ import annotations

import asyncio
import json
import os
from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from tiller.hooks.models import CommandHook, HookOutput, HookRunResult, PromptHook
from tiller.process import run_command

if TYPE_CHECKING:
    from tiller.providers.base import LLMProvider


PROMPT_HOOK_SYSTEM = (
    "You are evaluating a lifecycle hook for a coding agent. "
    'Reply with JSON only: {"ok": true|false, "reason": "<short explanation>"}.'
)


def parse_hook_output(stdout: str) -> HookOutput | None:
    """Parse stdout as a structured decision; anything else is plain output."""
    text = stdout.strip()
    if not text.startswith("{"):
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return HookOutput.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Ignoring malformed hook output: {e}")
        return None


class HookRunner:
    def __init__(
        self,
        *,
        cwd: str | None = None,
        default_timeout_s: float = 60.0,
        prompt_timeout_s: float = 30.0,
        kill_grace_s: float = 1.0,
        env: dict[str, str] | None = None,
        provider: "LLMProvider | None" = None,
        model: str | None = None,
    ):
        self.cwd = cwd or os.getcwd()
        self.default_timeout_s = default_timeout_s
        self.prompt_timeout_s = prompt_timeout_s
        self.kill_grace_s = kill_grace_s
        self.env = env or {}
        self.provider = provider
        self.model = model

    async def run(self, hook: CommandHook | PromptHook, envelope: dict[str, Any]) -> HookRunResult:
        if isinstance(hook, CommandHook):
            return await self.run_command(hook, envelope)
        if isinstance(hook, PromptHook):
            return await self.run_prompt(hook, envelope)
        raise TypeError(f"Unknown hook type: {type(hook).__name__}")

    async def run_command(self, hook: CommandHook, envelope: dict[str, Any]) -> HookRunResult:
        timeout = hook.timeout or self.default_timeout_s
        project_dir = str(envelope.get("cwd") or self.cwd)
        env = {
            **self.env,
            "TILLER_PROJECT_DIR": project_dir,
            "TILLER_SESSION_ID": str(envelope.get("session_id") or ""),
            "TILLER_HOOK_EVENT": str(envelope.get("hook_event_name") or ""),
        }

        try:
            proc = await run_command(
                hook.command,
                timeout_s=timeout,
                grace_s=self.kill_grace_s,
                input_text=json.dumps(envelope, ensure_ascii=False, default=str),
                cwd=hook.cwd or project_dir,
                env=env,
            )
        except OSError as e:
            return HookRunResult(exit_code=-1, error=str(e), command=hook.command)

        if proc.timed_out:
            logger.warning(f"Hook timed out after {timeout}s: {hook.command}")

        return HookRunResult(
            exit_code=proc.exit_code,
            stdout=proc.stdout,
            stderr=proc.stderr,
            timed_out=proc.timed_out,
            output=parse_hook_output(proc.stdout) if not proc.timed_out else None,
            command=hook.command,
        )

    async def run_prompt(self, hook: PromptHook, envelope: dict[str, Any]) -> HookRunResult:
        expanded = hook.prompt.replace(
            "$ARGUMENTS", json.dumps(envelope, indent=2, ensure_ascii=False, default=str)
        )
        if self.provider is None:
            # No model wired: prompt hooks pass through.
            return HookRunResult(exit_code=0, prompt=expanded)

        try:
            response = await asyncio.wait_for(
                self.provider.chat(
                    messages=[
                        {"role": "system", "content": PROMPT_HOOK_SYSTEM},
                        {"role": "user", "content": expanded},
                    ],
                    model=self.model,
                    temperature=0.0,
                ),
                timeout=hook.timeout or self.prompt_timeout_s,
            )
        except asyncio.TimeoutError:
            return HookRunResult(exit_code=None, timed_out=True, prompt=expanded)

        verdict: dict[str, Any] = {}
        try:
            parsed = json.loads((response.content or "").strip())
            if isinstance(parsed, dict):
                verdict = parsed
        except json.JSONDecodeError:
            logger.warning("Prompt hook reply was not JSON; treating as allow")

        if verdict.get("ok") is False:
            output = HookOutput(decision="block", reason=str(verdict.get("reason") or "Rejected by prompt hook"))
        else:
            output = HookOutput(reason=str(verdict.get("reason") or "")) if verdict else None
        return HookRunResult(exit_code=0, stdout=response.content or "", output=output, prompt=expanded)

    def validate_hook(self, hook: dict[str, Any]) -> list[str]:
        """Config problems in a raw hook definition; empty list means valid."""
        errors: list[str] = []
        hook_type = hook.get("type")
        if not hook_type:
            errors.append("Hook must have a type (command or prompt)")
        elif hook_type not in ("command", "prompt"):
            errors.append(f"Unknown hook type: {hook_type}")
        if hook_type == "command" and not hook.get("command"):
            errors.append("Command hook must have a command property")
        if hook_type == "prompt" and not hook.get("prompt"):
            errors.append("Prompt hook must have a prompt property")
        timeout = hook.get("timeout")
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            errors.append("Timeout must be a positive number")
        return errors
