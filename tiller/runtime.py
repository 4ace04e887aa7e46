"""Wires settings into a ready-to-use agent runtime."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from tiller.agent.executor import PermissionResponder, ToolExecutor
from tiller.agent.loop import AgentLoop
from tiller.agent.tools.filesystem import EditFileTool, ListDirTool, ReadFileTool, WriteFileTool
from tiller.agent.tools.registry import ToolRegistry
from tiller.agent.tools.shell import BashTool
from tiller.agent.tools.tasks import KillShellTool, TaskOutputTool
from tiller.config import TillerSettings
from tiller.events import EventHub
from tiller.history import ActionHistory
from tiller.hooks.loader import HookLoader
from tiller.hooks.manager import HooksManager
from tiller.hooks.runner import HookRunner
from tiller.permissions import ApprovalBroker, PermissionManager
from tiller.providers.base import LLMProvider
from tiller.providers.litellm_provider import LiteLLMProvider
from tiller.tasks import TaskManager


def build_registry(settings: TillerSettings, tasks: TaskManager) -> ToolRegistry:
    cwd = str(settings.resolved_cwd())
    registry = ToolRegistry(allowed_tools=settings.allowed_tools, denied_tools=settings.denied_tools)
    registry.register(ReadFileTool(root=cwd), aliases=["read_file"])
    registry.register(WriteFileTool(root=cwd), aliases=["write_file"])
    registry.register(EditFileTool(root=cwd), aliases=["edit_file"])
    registry.register(ListDirTool(root=cwd), aliases=["list_dir"])
    registry.register(BashTool(tasks=tasks, working_dir=cwd), aliases=["exec", "run_command"])
    registry.register(TaskOutputTool(tasks))
    registry.register(KillShellTool(tasks))
    return registry


@dataclass
class Runtime:
    settings: TillerSettings
    events: EventHub
    permissions: PermissionManager
    approvals: ApprovalBroker
    hooks: HooksManager
    tasks: TaskManager
    registry: ToolRegistry
    executor: ToolExecutor
    agent: AgentLoop

    @classmethod
    def create(
        cls,
        settings: TillerSettings | None = None,
        provider: LLMProvider | None = None,
        *,
        on_permission_request: PermissionResponder | None = None,
    ) -> Runtime:
        """Build every component from settings.

        Without `on_permission_request`, calls that need confirmation are
        denied; pass `runtime.approvals` (after creation) or a callback to
        confirm interactively.
        """
        settings = settings or TillerSettings()
        cwd = str(settings.resolved_cwd())

        events = EventHub()
        permissions = PermissionManager(
            allow_patterns=settings.allow_patterns,
            deny_patterns=settings.deny_patterns,
            confirm_tools=settings.default_confirm_tools,
        )
        approvals = ApprovalBroker(permissions, timeout_s=settings.approval_timeout_s)

        if provider is None:
            provider = LiteLLMProvider(
                api_key=settings.api_key,
                api_base=settings.api_base,
                default_model=settings.model,
            )

        hooks = HooksManager(
            runner=HookRunner(
                cwd=cwd,
                default_timeout_s=settings.hook_timeout_s,
                prompt_timeout_s=settings.prompt_hook_timeout_s,
                kill_grace_s=settings.hook_kill_grace_s,
                provider=provider,
                model=settings.model,
            ),
            loader=HookLoader(user_settings_path=settings.resolved_user_settings_path()),
            events=events,
            enabled=settings.hooks_enabled,
            cwd=cwd,
            session_id=settings.session_id,
            permission_mode=settings.permission_mode,
        )
        if settings.hooks_enabled:
            hooks.load_hooks(cwd)

        tasks = TaskManager(
            events=events,
            cwd=cwd,
            kill_grace_s=settings.task_kill_grace_s,
            output_timeout_s=settings.task_output_timeout_s,
            cleanup_max_age_s=settings.task_cleanup_max_age_s,
            max_running=settings.max_running_tasks,
            default_timeout_s=settings.task_timeout_s,
        )
        registry = build_registry(settings, tasks)

        executor = ToolExecutor(
            registry=registry,
            permissions=permissions,
            hooks=hooks,
            history=ActionHistory(settings.resolved_history_path(), max_size=settings.max_history_size),
            events=events,
        )
        executor.load_action_history()

        agent = AgentLoop(
            provider=provider,
            executor=executor,
            hooks=hooks,
            events=events,
            model=settings.model,
            max_iterations=settings.max_tool_iterations,
            parallel_tool_calls=settings.parallel_tool_calls,
            session_id=hooks.session_id,
            cwd=cwd,
            on_permission_request=on_permission_request,
        )
        logger.info(f"Runtime ready in {cwd} with {len(registry)} tools, model {agent.model}")
        return cls(
            settings=settings,
            events=events,
            permissions=permissions,
            approvals=approvals,
            hooks=hooks,
            tasks=tasks,
            registry=registry,
            executor=executor,
            agent=agent,
        )

    async def close(self) -> None:
        await self.tasks.shutdown()
