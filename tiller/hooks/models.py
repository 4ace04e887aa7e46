"""Hook registrations, the stdin envelope, and hook decisions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


HOOK_EVENTS: tuple[str, ...] = (
    "PreToolUse",
    "PostToolUse",
    "PermissionRequest",
    "UserPromptSubmit",
    "Stop",
    "SubagentStop",
    "Notification",
    "SessionStart",
    "SessionEnd",
    "PreCompact",
)

TOOL_EVENTS = frozenset({"PreToolUse", "PostToolUse", "PermissionRequest"})


class CommandHook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["command"] = "command"
    command: str = Field(min_length=1)
    timeout: float | None = Field(default=None, gt=0)
    cwd: str | None = None


class PromptHook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["prompt"]
    prompt: str = Field(min_length=1)
    timeout: float | None = Field(default=None, gt=0)


HookDefinition = Annotated[Union[CommandHook, PromptHook], Field(discriminator="type")]


class HookRegistration(BaseModel):
    """One matcher entry of an event: matching subjects run `hooks` in order."""

    model_config = ConfigDict(extra="ignore")

    matcher: str = "*"
    priority: int = 0
    hooks: list[HookDefinition] = Field(default_factory=list)


class HookSpecificOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    permissionDecision: Literal["allow", "deny", "ask"] | None = None
    permissionDecisionReason: str | None = None
    updatedInput: dict[str, Any] | None = None
    additionalContext: str | None = None

    @field_validator("permissionDecision", mode="before")
    @classmethod
    def _unknown_permission_decision(cls, v: Any) -> Any:
        return v if v in ("allow", "deny", "ask") else None


class HookOutput(BaseModel):
    """Structured JSON a command hook may print on stdout."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    continue_: bool | None = Field(default=None, alias="continue")
    stopReason: str | None = None
    suppressOutput: bool | None = None
    systemMessage: str | None = None
    decision: Literal["approve", "allow", "block", "deny"] | None = None
    reason: str | None = None
    hookSpecificOutput: HookSpecificOutput | None = None

    @field_validator("decision", mode="before")
    @classmethod
    def _unknown_decision(cls, v: Any) -> Any:
        # An unrecognised verdict is ignored; the rest of the output still applies.
        return v if v in ("approve", "allow", "block", "deny") else None


@dataclass
class HookInput:
    """What a caller knows about the event; the manager builds the envelope from it."""

    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None
    tool_output: Any = None
    tool_use_id: str | None = None
    prompt: str | None = None
    permission_type: str | None = None
    stop_reason: str | None = None
    agent_name: str | None = None
    notification_type: str | None = None
    message: str | None = None
    source: str | None = None
    trigger: str | None = None
    # Subject for matcher selection when the event has no tool name.
    matcher: str | None = None
    session_id: str | None = None
    transcript_path: str | None = None
    cwd: str | None = None
    permission_mode: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass
class HookRunResult:
    """Outcome of one hook definition."""

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    output: HookOutput | None = None
    error: str | None = None
    command: str | None = None
    prompt: str | None = None

    @property
    def decision(self) -> str | None:
        return self.output.decision if self.output else None

    @property
    def specific(self) -> HookSpecificOutput | None:
        return self.output.hookSpecificOutput if self.output else None

    @property
    def reason(self) -> str:
        if self.output and self.output.reason:
            return self.output.reason
        return self.stderr.strip()

    def blocks(self) -> tuple[bool, str]:
        """Whether this result blocks, and why.

        An explicit structured ``decision`` wins over exit code 2.
        """
        if self.timed_out or self.error:
            return False, ""

        if self.decision in ("block", "deny"):
            return True, self.reason or "Hook blocked execution"

        specific = self.specific
        if specific is not None and specific.permissionDecision == "deny":
            return True, specific.permissionDecisionReason or "Permission denied by hook"

        if self.output is not None and self.output.continue_ is False:
            return True, self.output.stopReason or self.reason or "Hook stopped execution"

        if self.decision is None and self.exit_code == 2:
            return True, self.reason or "Hook blocked execution"

        return False, ""


@dataclass
class HookDecision:
    blocked: bool = False
    reason: str | None = None
    updated_input: dict[str, Any] | None = None
    additional_context: str | None = None
    permission_decision: str | None = None
    system_message: str | None = None
    results: list[HookRunResult] = field(default_factory=list)
