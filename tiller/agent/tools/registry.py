"""Tool registry: name/alias lookup plus the static allow/deny gate."""

from __future__ import annotations

from typing import Any, Iterable

from loguru import logger

from tiller.agent.tools.base import Tool


class ToolRegistry:
    """Catalog of callable tools.

    `is_allowed` is a static gate (deny list first, then an optional allow
    list) and is independent from per-call permission checks.
    """

    def __init__(
        self,
        *,
        allowed_tools: Iterable[str] | None = None,
        denied_tools: Iterable[str] = (),
    ):
        self._tools: dict[str, Tool] = {}
        self._aliases: dict[str, str] = {}
        self.allowed_tools: set[str] | None = set(allowed_tools) if allowed_tools is not None else None
        self.denied_tools: set[str] = set(denied_tools)

    def register(self, tool: Tool, aliases: Iterable[str] = ()) -> None:
        if tool.name in self._tools:
            logger.warning(f"Replacing registered tool '{tool.name}'")
        self._tools[tool.name] = tool
        for alias in aliases:
            self._aliases[alias] = tool.name
        logger.debug(f"Registered tool {tool.name}")

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)
        self._aliases = {a: n for a, n in self._aliases.items() if n != name}

    def resolve_name(self, name: str) -> str | None:
        if name in self._tools:
            return name
        real = self._aliases.get(name)
        return real if real in self._tools else None

    def get(self, name: str) -> Tool | None:
        real = self.resolve_name(name)
        return self._tools[real] if real else None

    def has(self, name: str) -> bool:
        return self.resolve_name(name) is not None

    def is_allowed(self, name: str) -> bool:
        real = self.resolve_name(name) or name
        if name in self.denied_tools or real in self.denied_tools:
            return False
        if self.allowed_tools is not None:
            return name in self.allowed_tools or real in self.allowed_tools
        return True

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Function-calling schemas for every allowed tool."""
        return [t.to_schema() for t in self._tools.values() if self.is_allowed(t.name)]

    def catalog(self) -> list[dict[str, Any]]:
        return [
            {"name": t.name, "description": t.description, "parameters": t.parameters}
            for t in self._tools.values()
            if self.is_allowed(t.name)
        ]

    def get_read_only_tools(self) -> list[Tool]:
        return [t for t in self._tools.values() if t.is_read_only]

    def get_permission_tools(self) -> list[Tool]:
        return [t for t in self._tools.values() if t.requires_permission]

    def format_for_model(self, *, read_only: bool = False) -> str:
        tools = self.get_read_only_tools() if read_only else [
            t for t in self._tools.values() if self.is_allowed(t.name)
        ]
        sections = []
        for tool in tools:
            desc = f"## {tool.name}\n{tool.description}\n"
            props = tool.parameters.get("properties") or {}
            if props:
                required = set(tool.parameters.get("required") or [])
                desc += "\nParameters:\n"
                for pname, spec in props.items():
                    flag = " (required)" if pname in required else ""
                    desc += f"- {pname}{flag}: {spec.get('description') or spec.get('type', '')}\n"
            sections.append(desc)
        return "\n---\n".join(sections)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return self.has(name)
