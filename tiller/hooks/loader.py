"""Loads hook registrations from settings files.

Files are merged in increasing priority: user (~/.tiller/settings.json),
project (.tiller/settings.json), local (.tiller/settings.local.json).
Hook lists are concatenated; other keys are overwritten by later files.
Plugins contribute `.tiller/plugins/<name>/hooks/hooks.json`.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

from loguru import logger


SettingsScope = Literal["user", "project", "local"]


class HookLoader:
    def __init__(
        self,
        *,
        user_settings_path: str | Path = "~/.tiller/settings.json",
        project_settings_path: str | Path = ".tiller/settings.json",
        local_settings_path: str | Path = ".tiller/settings.local.json",
        plugins_dir: str | Path = ".tiller/plugins",
    ):
        self.user_settings_path = Path(user_settings_path).expanduser()
        self.project_settings_path = Path(project_settings_path)
        self.local_settings_path = Path(local_settings_path)
        self.plugins_dir = Path(plugins_dir)

    def _resolve(self, p: Path, cwd: Path) -> Path:
        return p if p.is_absolute() else cwd / p

    def settings_path(self, scope: SettingsScope, cwd: str | Path) -> Path:
        cwd = Path(cwd)
        if scope == "user":
            return self.user_settings_path
        if scope == "local":
            return self._resolve(self.local_settings_path, cwd)
        return self._resolve(self.project_settings_path, cwd)

    def load_settings(self, cwd: str | Path) -> dict[str, Any]:
        settings: dict[str, Any] = {"hooks": {}}
        for scope in ("user", "project", "local"):
            self.merge_settings(settings, self.load_settings_file(self.settings_path(scope, cwd)))
        return settings

    def load_settings_file(self, path: str | Path) -> dict[str, Any]:
        p = Path(path)
        if not p.exists():
            return {}
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to load settings from {p}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring settings file {p}: top level is not an object")
            return {}
        return data

    @staticmethod
    def merge_settings(target: dict[str, Any], source: dict[str, Any]) -> None:
        if not source:
            return
        hooks = source.get("hooks")
        if isinstance(hooks, dict):
            for event, entries in hooks.items():
                if isinstance(entries, list):
                    target["hooks"].setdefault(event, []).extend(entries)
        for key, value in source.items():
            if key != "hooks":
                target[key] = value

    def load_plugin_hooks(self, cwd: str | Path) -> dict[str, list[dict[str, Any]]]:
        hooks: dict[str, list[dict[str, Any]]] = {}
        plugins_dir = self._resolve(self.plugins_dir, Path(cwd))
        if not plugins_dir.is_dir():
            return hooks

        for plugin in sorted(plugins_dir.iterdir()):
            if not plugin.is_dir():
                continue
            data = self.load_settings_file(plugin / "hooks" / "hooks.json")
            plugin_hooks = data.get("hooks")
            if not isinstance(plugin_hooks, dict):
                continue
            for event, entries in plugin_hooks.items():
                if isinstance(entries, list):
                    hooks.setdefault(event, []).extend(entries)
        return hooks

    def save_settings(self, settings: dict[str, Any], scope: SettingsScope, cwd: str | Path) -> Path:
        path = self.settings_path(scope, cwd)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(settings, indent=2, ensure_ascii=False), encoding="utf-8")
        return path

    def add_hook_to_settings(
        self,
        event: str,
        hook_config: dict[str, Any],
        scope: SettingsScope,
        cwd: str | Path,
    ) -> Path:
        """Append a registration to one settings file, leaving the others untouched."""
        path = self.settings_path(scope, cwd)
        settings = self.load_settings_file(path)
        hooks = settings.setdefault("hooks", {})
        hooks.setdefault(event, []).append(hook_config)
        return self.save_settings(settings, scope, cwd)
