"""Reversible log of side-effecting tool calls (the undo history)."""

from __future__ import annotations

import base64
import json
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

from loguru import logger


ActionKind = Literal["edit", "write", "create", "delete"]
ContentEncoding = Literal["utf-8", "base64"]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def snapshot_content(data: bytes) -> tuple[str, ContentEncoding]:
    """Exact text form of file bytes: UTF-8 when it decodes cleanly, else base64."""
    try:
        return data.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        return base64.b64encode(data).decode("ascii"), "base64"


@dataclass
class ActionRecord:
    tool_name: str
    arguments: dict[str, Any]
    kind: ActionKind
    path: str
    # None means the file did not exist before the call.
    original_content: str | None = None
    content_encoding: ContentEncoding = "utf-8"
    backup_path: str | None = None
    session_id: str = ""
    id: str = field(default_factory=lambda: f"action_{uuid.uuid4().hex[:12]}")
    timestamp: str = field(default_factory=_now_iso)

    def original_bytes(self) -> bytes | None:
        if self.original_content is None:
            return None
        if self.content_encoding == "base64":
            return base64.b64decode(self.original_content)
        return self.original_content.encode("utf-8")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActionRecord:
        return cls(
            tool_name=str(data["tool_name"]),
            arguments=dict(data.get("arguments") or {}),
            kind=data["kind"],
            path=str(data["path"]),
            original_content=data.get("original_content"),
            content_encoding=data.get("content_encoding") or "utf-8",
            backup_path=data.get("backup_path"),
            session_id=str(data.get("session_id") or ""),
            id=str(data.get("id") or f"action_{uuid.uuid4().hex[:12]}"),
            timestamp=str(data.get("timestamp") or _now_iso()),
        )


class ActionHistory:
    """Bounded, most-recent-last list of ActionRecords mirrored to a JSON file.

    The file is rewritten whole after every change (last writer wins).
    """

    def __init__(self, path: str | Path | None, *, max_size: int = 50):
        self._path = Path(path) if path else None
        self._max_size = max_size
        self._records: list[ActionRecord] = []

    @property
    def path(self) -> Path | None:
        return self._path

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> list[ActionRecord]:
        return list(self._records)

    def load(self) -> list[ActionRecord]:
        self._records = []
        if self._path is None or not self._path.exists():
            return []
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            self._records = [ActionRecord.from_dict(r) for r in data.get("actions", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable action history {self._path}: {e}")
            self._records = []
        self._trim()
        return self.records()

    def append(self, record: ActionRecord) -> None:
        self._records.append(record)
        self._trim()
        self.save()

    def pop(self) -> ActionRecord | None:
        if not self._records:
            return None
        record = self._records.pop()
        self.save()
        return record

    def restore(self, record: ActionRecord) -> None:
        """Put back a record whose undo failed, as the newest entry again."""
        self._records.append(record)
        self.save()

    def clear(self) -> None:
        self._records = []
        self.save()

    def save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                "actions": [r.to_dict() for r in self._records],
                "last_updated": _now_iso(),
            }
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            logger.error(f"Failed to persist action history to {self._path}: {e}")

    def _trim(self) -> None:
        if len(self._records) > self._max_size:
            del self._records[: len(self._records) - self._max_size]
