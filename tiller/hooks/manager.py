"""Hooks manager: registration, matcher selection, and dispatch."""

from __future__ import annotations

import os
import re
import uuid
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from tiller.errors import HookConfigError
from tiller.events import EventHub
from tiller.hooks.loader import HookLoader
from tiller.hooks.models import (
    HOOK_EVENTS,
    TOOL_EVENTS,
    HookDecision,
    HookInput,
    HookRegistration,
)
from tiller.hooks.runner import HookRunner


def matches_pattern(pattern: str, value: str) -> bool:
    """Matcher grammar: ``*``, exact names, ``A|B`` alternatives, ``Pre*`` wildcards."""
    if not pattern or pattern == "*":
        return True
    if pattern == value:
        return True
    if "|" in pattern:
        return any(matches_pattern(p.strip(), value) for p in pattern.split("|") if p.strip())
    if "*" in pattern:
        regex = ".*".join(re.escape(part) for part in pattern.split("*"))
        return re.fullmatch(regex, value) is not None
    return False


class HooksManager:
    """Central registry of lifecycle hooks.

    Entries for an event are kept sorted by descending priority; equal
    priorities keep registration order. Dispatch stops at the first block,
    and a failing hook never blocks.
    """

    def __init__(
        self,
        *,
        runner: HookRunner | None = None,
        loader: HookLoader | None = None,
        events: EventHub | None = None,
        enabled: bool = True,
        cwd: str | None = None,
        session_id: str | None = None,
        transcript_path: str = "",
        permission_mode: str = "default",
    ):
        self.cwd = cwd or os.getcwd()
        self.runner = runner or HookRunner(cwd=self.cwd)
        self.loader = loader or HookLoader()
        self.enabled = enabled
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:12]}"
        self.transcript_path = transcript_path
        self.permission_mode = permission_mode
        self._events = events
        self._hooks: dict[str, list[HookRegistration]] = {}

    # ── Registration ──────────────────────────────────────────────

    def load_hooks(self, cwd: str | Path | None = None) -> int:
        """Load settings-file and plugin hooks. Returns the number of registrations."""
        cwd = cwd or self.cwd
        settings = self.loader.load_settings(cwd)
        sources = [settings.get("hooks") or {}, self.loader.load_plugin_hooks(cwd)]

        count = 0
        for hooks in sources:
            for event, configs in hooks.items():
                if event not in HOOK_EVENTS:
                    logger.warning(f"Ignoring hooks for unsupported event '{event}'")
                    continue
                count += self.register_hooks(event, configs)

        total = sum(len(r.hooks) for regs in self._hooks.values() for r in regs)
        logger.info(f"Loaded {count} hook registrations ({total} hooks) across {len(self._hooks)} events")
        return count

    def register_hooks(self, event: str, configs: list[dict[str, Any] | HookRegistration]) -> int:
        if event not in HOOK_EVENTS:
            raise HookConfigError(f"Unsupported hook event: {event}")

        registered = 0
        entries = self._hooks.setdefault(event, [])
        for config in configs:
            try:
                entries.append(self._to_registration(config))
                registered += 1
            except (HookConfigError, PydanticValidationError) as e:
                logger.warning(f"Skipping invalid {event} hook registration: {e}")
        entries.sort(key=lambda r: -r.priority)
        return registered

    def add_hook(self, event: str, config: dict[str, Any] | HookRegistration) -> HookRegistration:
        """Register one hook at runtime. Raises HookConfigError when invalid."""
        if event not in HOOK_EVENTS:
            raise HookConfigError(f"Unsupported hook event: {event}")
        try:
            registration = self._to_registration(config)
        except PydanticValidationError as e:
            raise HookConfigError(f"Invalid hook configuration: {e}") from e

        entries = self._hooks.setdefault(event, [])
        entries.append(registration)
        entries.sort(key=lambda r: -r.priority)
        return registration

    @staticmethod
    def _to_registration(config: dict[str, Any] | HookRegistration) -> HookRegistration:
        if isinstance(config, HookRegistration):
            return config
        if not isinstance(config, dict):
            raise HookConfigError(f"Hook registration must be an object, got {type(config).__name__}")
        if "hooks" not in config and "type" in config:
            # A bare hook definition: wrap it in a match-all registration.
            config = {
                "matcher": config.get("matcher", "*"),
                "priority": config.get("priority", 0),
                "hooks": [config],
            }
        return HookRegistration.model_validate(config)

    def remove_hooks(self, event: str, matcher: str | None = None) -> None:
        if matcher is None:
            self._hooks.pop(event, None)
            return
        if event in self._hooks:
            self._hooks[event] = [r for r in self._hooks[event] if r.matcher != matcher]

    def get_hooks(self) -> dict[str, list[HookRegistration]]:
        return {event: list(regs) for event, regs in self._hooks.items()}

    def has_hooks(self, event: str) -> bool:
        return self.enabled and bool(self._hooks.get(event))

    def set_enabled(self, enabled: bool) -> None:
        self.enabled = enabled
        logger.info(f"Hooks {'enabled' if enabled else 'disabled'}")

    # ── Dispatch ──────────────────────────────────────────────────

    @staticmethod
    def subject_for(event: str, hook_input: HookInput) -> str:
        if event in TOOL_EVENTS:
            return hook_input.tool_name or ""
        return (
            hook_input.matcher
            or hook_input.agent_name
            or hook_input.notification_type
            or hook_input.source
            or hook_input.trigger
            or ""
        )

    def build_envelope(self, event: str, hook_input: HookInput) -> dict[str, Any]:
        envelope: dict[str, Any] = {
            "session_id": hook_input.session_id or self.session_id,
            "transcript_path": hook_input.transcript_path or self.transcript_path,
            "cwd": hook_input.cwd or self.cwd,
            "permission_mode": hook_input.permission_mode or self.permission_mode,
            "hook_event_name": event,
        }

        if event in ("PreToolUse", "PostToolUse"):
            envelope.update(
                tool_name=hook_input.tool_name,
                tool_input=hook_input.tool_input or {},
                tool_output=hook_input.tool_output,
                tool_use_id=hook_input.tool_use_id or f"tool-{uuid.uuid4().hex[:12]}",
            )
        elif event == "PermissionRequest":
            envelope.update(
                tool_name=hook_input.tool_name,
                tool_input=hook_input.tool_input or {},
                permission_type=hook_input.permission_type or "execute",
            )
        elif event == "UserPromptSubmit":
            envelope["prompt"] = hook_input.prompt
        elif event in ("Stop", "SubagentStop"):
            envelope.update(stop_reason=hook_input.stop_reason, agent_name=hook_input.agent_name)
        elif event == "Notification":
            envelope.update(notification_type=hook_input.notification_type, message=hook_input.message)
        elif event == "SessionStart":
            envelope["source"] = hook_input.source or "startup"
        elif event == "SessionEnd":
            envelope["reason"] = hook_input.stop_reason or "other"
        elif event == "PreCompact":
            envelope["trigger"] = hook_input.trigger or "manual"

        envelope.update(hook_input.extra)
        return envelope

    async def run(self, event: str, hook_input: HookInput | None = None) -> HookDecision:
        hook_input = hook_input or HookInput()
        if not self.enabled:
            return HookDecision()

        entries = self._hooks.get(event)
        if not entries:
            return HookDecision()

        subject = self.subject_for(event, hook_input)
        matching = [r for r in entries if matches_pattern(r.matcher, subject)]
        if not matching:
            return HookDecision()

        envelope = self.build_envelope(event, hook_input)
        decision = HookDecision()

        for registration in matching:
            for hook in registration.hooks:
                try:
                    result = await self.runner.run(hook, envelope)
                except Exception as e:
                    logger.error(f"Hook error in {event}: {e}")
                    await self._emit("hook:error", {"event": event, "hook": hook.model_dump(), "error": str(e)})
                    continue

                decision.results.append(result)
                if result.error:
                    logger.error(f"Hook error in {event}: {result.error}")
                    await self._emit("hook:error", {"event": event, "hook": hook.model_dump(), "error": result.error})
                    continue
                if result.timed_out:
                    await self._emit(
                        "hook:error", {"event": event, "hook": hook.model_dump(), "error": "timed out"}
                    )
                    continue

                specific = result.specific
                if specific is not None:
                    if specific.updatedInput:
                        decision.updated_input = {**(decision.updated_input or {}), **specific.updatedInput}
                    if specific.additionalContext:
                        decision.additional_context = specific.additionalContext
                    if specific.permissionDecision:
                        decision.permission_decision = specific.permissionDecision
                if result.output is not None and result.output.systemMessage:
                    decision.system_message = result.output.systemMessage

                blocked, reason = result.blocks()
                if blocked:
                    decision.blocked = True
                    decision.reason = reason
                    logger.info(f"{event} hook blocked {subject or 'event'}: {reason}")
                    return decision

        return decision

    async def _emit(self, kind: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            await self._events.publish(kind, payload)
