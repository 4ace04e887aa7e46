"""Base class for agent tools."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from tiller.history import ActionRecord


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: dict[str, Any]
    requires_permission: bool
    is_read_only: bool
    timeout: float

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required") or [])


@dataclass
class ToolResult:
    """Structured outcome of a tool call. Failures carry `error`, never raise."""

    success: bool = False
    output: str = ""
    error: str | None = None
    error_kind: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    warning: str | None = None
    additional_context: str | None = None
    blocked_by: str | None = None
    tool_name: str = ""
    execution_id: str = ""
    execution_time_ms: int = 0

    @classmethod
    def ok(cls, output: str, **data: Any) -> ToolResult:
        return cls(success=True, output=output, data=data)

    @classmethod
    def fail(cls, error: str, kind: str = "execution", **data: Any) -> ToolResult:
        return cls(success=False, error=error or "Unknown error", error_kind=kind, data=data)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success}
        if self.output:
            d["output"] = self.output
        if self.error is not None:
            d["error"] = self.error
            d["error_kind"] = self.error_kind
        for key in ("warning", "additional_context", "blocked_by"):
            value = getattr(self, key)
            if value:
                d[key] = value
        return d

    def to_content(self) -> str:
        """Serialized form appended to the transcript as a tool message."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)


class Tool(ABC):
    """A capability the model can call.

    Subclasses describe themselves (name, description, JSON-schema
    parameters) and implement `execute`. Tools that change the workspace
    return an ActionRecord from `action_record` so the call can be undone.
    """

    requires_permission: bool = True
    is_read_only: bool = False
    timeout: float = 120.0

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        ...

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        ...

    @property
    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
            requires_permission=self.requires_permission,
            is_read_only=self.is_read_only,
            timeout=self.timeout,
        )

    def validate(self, params: dict[str, Any]) -> list[str]:
        errors = []
        for param in self.parameters.get("required") or []:
            if params.get(param) is None:
                errors.append(f"Missing required parameter: {param}")
        return errors

    def timeout_for(self, params: dict[str, Any]) -> float:
        """Wall-clock budget the executor grants one call."""
        return self.timeout

    def action_record(self, params: dict[str, Any], result: ToolResult) -> ActionRecord | None:
        return None

    def to_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
