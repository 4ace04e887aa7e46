"""Lifecycle hooks: user commands or model prompts run around agent events."""

from tiller.hooks.loader import HookLoader
from tiller.hooks.manager import HooksManager, matches_pattern
from tiller.hooks.models import (
    HOOK_EVENTS,
    CommandHook,
    HookDecision,
    HookInput,
    HookOutput,
    HookRegistration,
    HookRunResult,
    PromptHook,
)
from tiller.hooks.runner import HookRunner

__all__ = [
    "HOOK_EVENTS",
    "CommandHook",
    "HookDecision",
    "HookInput",
    "HookLoader",
    "HookOutput",
    "HookRegistration",
    "HookRunResult",
    "HookRunner",
    "HooksManager",
    "PromptHook",
    "matches_pattern",
]
