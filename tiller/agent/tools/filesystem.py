"""File system tools: Read, Write, Edit, LS."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from tiller.agent.tools.base import Tool, ToolResult
from tiller.history import ActionRecord, snapshot_content


def _resolve_path(raw_path: str, *, root: Path | None) -> tuple[Path | None, str | None]:
    """Resolve a user-supplied path.

    Relative paths are interpreted against root; with a root set the
    resolved path must stay inside it.
    """
    if not raw_path:
        return None, "path is required"

    try:
        p = Path(raw_path).expanduser()
    except (TypeError, ValueError) as e:
        return None, f"invalid path: {e}"

    if root is None:
        return p.resolve(), None

    try:
        root_resolved = root.expanduser().resolve()
        if not p.is_absolute():
            p = root_resolved / p
        resolved = p.resolve()
    except (OSError, RuntimeError) as e:
        return None, f"invalid path: {e}"

    if resolved == root_resolved or resolved.is_relative_to(root_resolved):
        return resolved, None
    return None, "path is outside allowed root"


def _display_path(p: Path, *, root: Path | None) -> str:
    if root is None:
        return str(p)
    try:
        return p.relative_to(root.expanduser().resolve()).as_posix()
    except ValueError:
        return str(p)


class _FileTool(Tool):
    def __init__(self, *, root: str | Path | None = None):
        self._root = Path(root).expanduser() if root else None

    def _file_record(self, params: dict[str, Any], result: ToolResult, kind: str) -> ActionRecord | None:
        path = result.data.get("path")
        if not result.success or not path:
            return None
        return ActionRecord(
            tool_name=self.name,
            arguments=dict(params),
            kind=kind,  # type: ignore[arg-type]
            path=path,
            original_content=result.data.get("original_content"),
            content_encoding=result.data.get("content_encoding") or "utf-8",
        )


class ReadFileTool(_FileTool):
    """Read file contents, optionally a line window."""

    requires_permission = False
    is_read_only = True
    timeout = 30.0

    @property
    def name(self) -> str:
        return "Read"

    @property
    def description(self) -> str:
        return "Read the contents of a file. Use offset/limit to read a window of lines."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "The file path to read"},
                "offset": {"type": "integer", "description": "First line to read (1-based)"},
                "limit": {"type": "integer", "description": "Maximum number of lines"},
            },
            "required": ["file_path"],
        }

    async def execute(
        self, file_path: str, offset: int | None = None, limit: int | None = None, **kwargs: Any
    ) -> ToolResult:
        resolved, err = _resolve_path(file_path, root=self._root)
        if err:
            return ToolResult.fail(err)
        assert resolved is not None
        shown = _display_path(resolved, root=self._root)

        if not resolved.exists():
            return ToolResult.fail(f"File not found: {shown}")
        if not resolved.is_file():
            return ToolResult.fail(f"Not a file: {shown}")
        try:
            content = resolved.read_text(encoding="utf-8", errors="replace")
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {shown}")

        if offset or limit:
            lines = content.splitlines(keepends=True)
            start = max((offset or 1) - 1, 0)
            end = start + limit if limit else None
            content = "".join(lines[start:end])
        return ToolResult.ok(content, path=str(resolved))


class WriteFileTool(_FileTool):
    """Write content to a file, creating parent directories."""

    @property
    def name(self) -> str:
        return "Write"

    @property
    def description(self) -> str:
        return "Write content to a file at the given path. Creates parent directories if needed."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "The file path to write to"},
                "content": {"type": "string", "description": "The content to write"},
            },
            "required": ["file_path", "content"],
        }

    async def execute(self, file_path: str, content: str, **kwargs: Any) -> ToolResult:
        resolved, err = _resolve_path(file_path, root=self._root)
        if err:
            return ToolResult.fail(err)
        assert resolved is not None
        shown = _display_path(resolved, root=self._root)

        original: str | None = None
        encoding = "utf-8"
        try:
            if resolved.is_file():
                original, encoding = snapshot_content(resolved.read_bytes())
            resolved.parent.mkdir(parents=True, exist_ok=True)
            resolved.write_text(content, encoding="utf-8", newline="")
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {shown}")

        verb = "Overwrote" if original is not None else "Created"
        return ToolResult.ok(
            f"{verb} {shown} ({len(content)} bytes)",
            path=str(resolved),
            original_content=original,
            content_encoding=encoding,
        )

    def action_record(self, params: dict[str, Any], result: ToolResult) -> ActionRecord | None:
        kind = "write" if result.data.get("original_content") is not None else "create"
        return self._file_record(params, result, kind)


class EditFileTool(_FileTool):
    """Replace an exact string inside a file."""

    @property
    def name(self) -> str:
        return "Edit"

    @property
    def description(self) -> str:
        return (
            "Edit a file by replacing old_string with new_string. old_string must match exactly "
            "and be unique unless replace_all is set."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "The file path to edit"},
                "old_string": {"type": "string", "description": "The exact text to find"},
                "new_string": {"type": "string", "description": "The replacement text"},
                "replace_all": {"type": "boolean", "description": "Replace every occurrence"},
            },
            "required": ["file_path", "old_string", "new_string"],
        }

    async def execute(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
        **kwargs: Any,
    ) -> ToolResult:
        resolved, err = _resolve_path(file_path, root=self._root)
        if err:
            return ToolResult.fail(err)
        assert resolved is not None
        shown = _display_path(resolved, root=self._root)

        if not resolved.is_file():
            return ToolResult.fail(f"File not found: {shown}")
        try:
            raw = resolved.read_bytes()
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {shown}")
        # surrogateescape keeps undecodable bytes and line endings as they are.
        content = raw.decode("utf-8", errors="surrogateescape")

        count = content.count(old_string) if old_string else 0
        if count == 0:
            return ToolResult.fail("old_string not found in file. Make sure it matches exactly.")
        if count > 1 and not replace_all:
            return ToolResult.fail(
                f"old_string appears {count} times. Provide more context or set replace_all."
            )

        updated = content.replace(old_string, new_string, -1 if replace_all else 1)
        try:
            resolved.write_bytes(updated.encode("utf-8", errors="surrogateescape"))
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {shown}")

        original, encoding = snapshot_content(raw)
        replaced = count if replace_all else 1
        return ToolResult.ok(
            f"Edited {shown} ({replaced} replacement{'s' if replaced != 1 else ''})",
            path=str(resolved),
            original_content=original,
            content_encoding=encoding,
        )

    def action_record(self, params: dict[str, Any], result: ToolResult) -> ActionRecord | None:
        return self._file_record(params, result, "edit")


class ListDirTool(_FileTool):
    """List directory contents."""

    requires_permission = False
    is_read_only = True
    timeout = 30.0

    @property
    def name(self) -> str:
        return "LS"

    @property
    def description(self) -> str:
        return "List the contents of a directory."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "The directory path to list"},
            },
            "required": ["path"],
        }

    async def execute(self, path: str, **kwargs: Any) -> ToolResult:
        resolved, err = _resolve_path(path, root=self._root)
        if err:
            return ToolResult.fail(err)
        assert resolved is not None
        shown = _display_path(resolved, root=self._root)

        if not resolved.exists():
            return ToolResult.fail(f"Directory not found: {shown}")
        if not resolved.is_dir():
            return ToolResult.fail(f"Not a directory: {shown}")
        try:
            entries = sorted(resolved.iterdir())
        except PermissionError:
            return ToolResult.fail(f"Permission denied: {shown}")

        if not entries:
            return ToolResult.ok(f"Directory {shown} is empty", path=str(resolved))
        lines = [f"{item.name}/" if item.is_dir() else item.name for item in entries]
        return ToolResult.ok("\n".join(lines), path=str(resolved))
