"""Tool permission gate.

Decision order for a call:
- deny rule matches: blocked
- allow rule matches: executes without prompt
- remembered session decision for the same tool + primary argument
- tools outside the confirm set run freely; the rest need confirmation

Rule syntax: ``Tool``, ``Tool(arg:value)``, ``Tool(arg:value*)``, ``Tool(arg:*)``.
"""

from __future__ import annotations

import asyncio
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Literal

from loguru import logger

from tiller.config import DEFAULT_CONFIRM_TOOLS


Decision = Literal["allow", "deny"]
ResolveScope = Literal["once", "session", "always"]

_RULE_RE = re.compile(r"^(\w+)\((.+)\)$")

# Argument names tried, in order, when keying the session memo.
PRIMARY_ARGUMENTS = ("file_path", "path", "command", "pattern")


@dataclass(frozen=True)
class PermissionRule:
    pattern: str
    decision: Decision

    def matches(self, tool_name: str, args: dict[str, Any]) -> bool:
        if self.pattern == tool_name:
            return True

        m = _RULE_RE.match(self.pattern)
        if not m or m.group(1) != tool_name:
            return False

        arg_name, sep, arg_pattern = m.group(2).partition(":")
        if not sep or ":" in arg_pattern:
            return False

        if arg_pattern == "*":
            return arg_name in args
        if arg_pattern.endswith("*"):
            value = args.get(arg_name)
            return str(value if value is not None else "").startswith(arg_pattern[:-1])
        return arg_name in args and str(args[arg_name]) == arg_pattern


def primary_argument(args: dict[str, Any]) -> str:
    for key in PRIMARY_ARGUMENTS:
        value = args.get(key)
        if value:
            return str(value)
    return ""


def approval_key(tool_name: str, args: dict[str, Any]) -> str:
    return f"{tool_name}:{primary_argument(args)}"


class PermissionManager:
    def __init__(
        self,
        *,
        allow_patterns: Iterable[str] = (),
        deny_patterns: Iterable[str] = (),
        confirm_tools: Iterable[str] | None = None,
    ):
        self._allow = [PermissionRule(p, "allow") for p in allow_patterns]
        self._deny = [PermissionRule(p, "deny") for p in deny_patterns]
        self._confirm_tools = frozenset(DEFAULT_CONFIRM_TOOLS if confirm_tools is None else confirm_tools)
        self._session: dict[str, bool] = {}

    def check_permission(self, tool_name: str, args: dict[str, Any]) -> bool:
        """True when the call may run without asking the operator."""
        if any(rule.matches(tool_name, args) for rule in self._deny):
            return False
        if any(rule.matches(tool_name, args) for rule in self._allow):
            return True

        key = approval_key(tool_name, args)
        if key in self._session:
            return self._session[key]

        return tool_name not in self._confirm_tools

    def is_denied(self, tool_name: str, args: dict[str, Any]) -> bool:
        """True when a deny rule or a session refusal settles the call without asking."""
        if any(rule.matches(tool_name, args) for rule in self._deny):
            return True
        return self._session.get(approval_key(tool_name, args)) is False

    def record_decision(self, tool_name: str, args: dict[str, Any], approved: bool) -> None:
        self._session[approval_key(tool_name, args)] = approved

    def clear_session(self) -> None:
        self._session.clear()

    def allow(self, pattern: str) -> None:
        self._allow.append(PermissionRule(pattern, "allow"))

    def deny(self, pattern: str) -> None:
        self._deny.append(PermissionRule(pattern, "deny"))

    def rules(self) -> list[PermissionRule]:
        return [*self._deny, *self._allow]

    def session_decisions(self) -> dict[str, bool]:
        return dict(self._session)


@dataclass(frozen=True)
class PermissionResult:
    approved: bool
    scope: ResolveScope
    reason: str = ""


@dataclass
class PendingApproval:
    request_id: str
    tool_name: str
    args: dict[str, Any]
    future: asyncio.Future[PermissionResult] = field(repr=False)


class ApprovalBroker:
    """Interactive confirmation: pending requests resolved by the embedding UI.

    Usable directly as the executor's ``on_permission_request`` responder.
    """

    def __init__(self, permissions: PermissionManager, *, timeout_s: float = 120.0):
        self._permissions = permissions
        self._timeout_s = timeout_s
        self._pending: dict[str, PendingApproval] = {}
        self._lock = asyncio.Lock()

    async def __call__(self, tool_name: str, args: dict[str, Any]) -> bool:
        request_id = await self.create_request(tool_name=tool_name, args=args)
        result = await self.wait(request_id=request_id)
        return result.approved

    async def create_request(self, *, tool_name: str, args: dict[str, Any]) -> str:
        request_id = f"perm_{uuid.uuid4().hex[:12]}"
        fut: asyncio.Future[PermissionResult] = asyncio.get_running_loop().create_future()
        async with self._lock:
            self._pending[request_id] = PendingApproval(request_id, tool_name, dict(args), fut)
        logger.info(f"Permission requested for {tool_name} ({request_id})")
        return request_id

    def pending(self) -> list[PendingApproval]:
        return list(self._pending.values())

    async def wait(self, *, request_id: str, timeout_s: float | None = None) -> PermissionResult:
        async with self._lock:
            pending = self._pending.get(request_id)
        if pending is None:
            return PermissionResult(approved=False, scope="once", reason="Unknown permission request")
        try:
            return await asyncio.wait_for(
                asyncio.shield(pending.future), timeout=timeout_s or self._timeout_s
            )
        except asyncio.TimeoutError:
            result = PermissionResult(approved=False, scope="once", reason="Permission request expired")
            await self._finalize(request_id, result)
            return result

    async def resolve(self, *, request_id: str, approved: bool, scope: ResolveScope = "once") -> None:
        pending = self._pending.get(request_id)
        if pending is None:
            return

        if scope == "session":
            self._permissions.record_decision(pending.tool_name, pending.args, approved)
        elif scope == "always":
            pattern = pending.tool_name
            words = str(pending.args.get("command") or "").split()
            if pending.tool_name == "Bash" and words:
                pattern = f"Bash(command:{words[0]}*)"
            if approved:
                self._permissions.allow(pattern)
            else:
                self._permissions.deny(pattern)

        await self._finalize(request_id, PermissionResult(approved=approved, scope=scope))

    async def _finalize(self, request_id: str, result: PermissionResult) -> None:
        async with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is not None and not pending.future.done():
            pending.future.set_result(result)
