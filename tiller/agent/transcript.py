"""Conversation transcript: the ordered message list sent to the model."""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any

from tiller.providers.base import ToolCallRequest


class Transcript:
    """Ordered chat messages. The system prompt, if any, stays at index 0."""

    def __init__(self, system_prompt: str | None = None):
        self.system_prompt = system_prompt
        self.messages: list[dict[str, Any]] = []
        self.reset()

    def reset(self) -> None:
        self.messages = []
        if self.system_prompt:
            self.messages.append({"role": "system", "content": self.system_prompt})

    def add_system(self, content: str) -> None:
        self.messages.append({"role": "system", "content": content})

    def add_user(self, content: str) -> None:
        self.messages.append({"role": "user", "content": content})

    def add_assistant(self, content: str | None, tool_calls: list[ToolCallRequest] | None = None) -> None:
        msg: dict[str, Any] = {"role": "assistant", "content": content or ""}
        if tool_calls:
            msg["tool_calls"] = [tc.to_message() for tc in tool_calls]
        self.messages.append(msg)

    def add_tool_result(self, tool_call_id: str, name: str, content: str) -> None:
        self.messages.append(
            {"role": "tool", "tool_call_id": tool_call_id, "name": name, "content": content}
        )

    def history(self) -> list[dict[str, Any]]:
        """Messages without system entries."""
        return [m for m in self.messages if m.get("role") != "system"]

    def last_assistant_text(self) -> str:
        for msg in reversed(self.messages):
            if msg.get("role") == "assistant" and msg.get("content"):
                return str(msg["content"])
        return ""

    def compact(self, keep_last: int) -> int:
        """Drop old non-system messages, keeping the newest `keep_last`.

        The cut never starts on a tool message, so no tool result is left
        without the assistant call it answers. Returns the number removed.
        """
        non_system = [i for i, m in enumerate(self.messages) if m.get("role") != "system"]
        if len(non_system) <= keep_last:
            return 0

        cut = len(non_system) - keep_last
        while cut < len(non_system) and self.messages[non_system[cut]].get("role") == "tool":
            cut += 1
        drop = set(non_system[:cut])
        before = len(self.messages)
        self.messages = [m for i, m in enumerate(self.messages) if i not in drop]
        return before - len(self.messages)

    def export(self) -> dict[str, Any]:
        return {
            "messages": copy.deepcopy(self.messages),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def load(self, state: dict[str, Any]) -> None:
        messages = state.get("messages")
        if isinstance(messages, list):
            self.messages = copy.deepcopy(messages)

    def __len__(self) -> int:
        return len(self.messages)
