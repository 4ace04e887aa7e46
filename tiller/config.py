"""Runtime settings for tiller.

Values come from environment variables (TILLER_*) or a `.env` file.
Hook registrations live in separate JSON settings files, see
`tiller.hooks.loader`.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIRM_TOOLS = ["Bash", "Write", "Edit"]


class TillerSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TILLER_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Model backend
    model: str = "anthropic/claude-sonnet-4-5"
    api_key: str | None = None
    api_base: str | None = None

    # Conversation loop
    max_tool_iterations: int = Field(default=10, ge=1)
    parallel_tool_calls: bool = False

    # Working directory and state
    cwd: str | None = None
    data_dir: str = ".tiller"
    max_history_size: int = Field(default=50, ge=1)
    session_id: str | None = None
    permission_mode: str = "default"

    # Hooks
    hooks_enabled: bool = True
    hook_timeout_s: float = 60.0
    prompt_hook_timeout_s: float = 30.0
    hook_kill_grace_s: float = 1.0
    user_settings_path: str = "~/.tiller/settings.json"

    # Background tasks
    task_kill_grace_s: float = 5.0
    task_output_timeout_s: float = 30.0
    task_cleanup_max_age_s: float = 3600.0
    task_timeout_s: float = Field(default=3600.0, gt=0)
    max_running_tasks: int | None = None

    # Permissions (rule syntax: Tool, Tool(arg:value), Tool(arg:value*), Tool(arg:*))
    allow_patterns: list[str] = Field(default_factory=list)
    deny_patterns: list[str] = Field(default_factory=list)
    default_confirm_tools: list[str] = Field(default_factory=lambda: list(DEFAULT_CONFIRM_TOOLS))
    approval_timeout_s: float = 120.0

    # Static registry gate
    allowed_tools: list[str] | None = None
    denied_tools: list[str] = Field(default_factory=list)

    def resolved_cwd(self) -> Path:
        return Path(self.cwd).expanduser().resolve() if self.cwd else Path.cwd()

    def resolved_data_dir(self) -> Path:
        p = Path(self.data_dir).expanduser()
        return p if p.is_absolute() else self.resolved_cwd() / p

    def resolved_history_path(self) -> Path:
        return self.resolved_data_dir() / "action-history.json"

    def resolved_user_settings_path(self) -> Path:
        return Path(self.user_settings_path).expanduser()
