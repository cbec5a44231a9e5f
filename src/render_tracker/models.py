"""Task and shot records exchanged with the render engine.

Engine payloads arrive as plain dicts using either snake_case or the
engine's camelCase keys. ``normalize_fields`` maps both onto TaskRecord
field names and coerces values, so the merge logic only ever sees typed
fields.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Mapping


class TaskKind(str, Enum):
    """Kinds of tracked jobs."""

    IMAGE_RENDER = "image-render"
    VIDEO_RENDER = "video-render"
    GENERIC = "generic"

    @classmethod
    def parse(cls, raw: Any) -> "TaskKind | None":
        """Parse a kind, accepting the engine's short ``image``/``video`` names."""
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return None
        value = str(raw).strip().lower()
        value = _KIND_ALIASES.get(value, value)
        try:
            return cls(value)
        except ValueError:
            return None


_KIND_ALIASES = {
    "image": TaskKind.IMAGE_RENDER.value,
    "video": TaskKind.VIDEO_RENDER.value,
    "shot-image": TaskKind.IMAGE_RENDER.value,
    "shot-video": TaskKind.VIDEO_RENDER.value,
}


class TaskStatus(str, Enum):
    """Task lifecycle status."""

    QUEUED = "queued"
    RENDERING = "rendering"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.ERROR)

    @classmethod
    def parse(cls, raw: Any) -> "TaskStatus | None":
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return None
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string, epoch number or datetime into an aware datetime.

    Naive values are taken to be UTC. Epoch numbers above 1e11 are
    treated as milliseconds. Unparseable values yield None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def clamp_progress(value: Any) -> float | None:
    """Clamp a progress value into [0, 100]; non-numeric values yield None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return max(0.0, min(100.0, number))


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


# Engine key -> TaskRecord field
_FIELD_ALIASES: dict[str, str] = {
    "id": "id",
    "kind": "kind",
    "type": "kind",
    "status": "status",
    "progress": "progress",
    "completed_count": "completed_count",
    "completedCount": "completed_count",
    "completed": "completed_count",
    "total_count": "total_count",
    "totalCount": "total_count",
    "total": "total_count",
    "error_count": "error_count",
    "errorCount": "error_count",
    "errors": "error_count",
    "error_message": "error_message",
    "errorMessage": "error_message",
    "created_at": "created_at",
    "createdAt": "created_at",
    "started_at": "started_at",
    "startedAt": "started_at",
    "completed_at": "completed_at",
    "completedAt": "completed_at",
    "dismissed": "dismissed",
    "navigate_target": "navigate_target",
    "navigateTarget": "navigate_target",
    "navigateTo": "navigate_target",
    "shot_id": "shot_id",
    "shotId": "shot_id",
    "project_id": "project_id",
    "projectId": "project_id",
    "shot_index": "shot_index",
    "shotIndex": "shot_index",
    "shot_description": "shot_description",
    "shotDescription": "shot_description",
}

_CONVERTERS = {
    "id": _optional_str,
    "kind": TaskKind.parse,
    "status": TaskStatus.parse,
    "progress": clamp_progress,
    "completed_count": _optional_int,
    "total_count": _optional_int,
    "error_count": _optional_int,
    "error_message": _optional_str,
    "created_at": parse_timestamp,
    "started_at": parse_timestamp,
    "completed_at": parse_timestamp,
    "dismissed": bool,
    "navigate_target": _optional_str,
    "shot_id": _optional_str,
    "project_id": _optional_str,
    "shot_index": _optional_int,
    "shot_description": _optional_str,
}


def normalize_fields(data: Mapping[str, Any]) -> dict[str, Any]:
    """Map an engine payload onto TaskRecord field names.

    Unknown keys are dropped, and so is any value that is None or fails
    to convert, so a partial update can never blank out a field.
    """
    result: dict[str, Any] = {}
    for key, raw in data.items():
        name = _FIELD_ALIASES.get(key)
        if name is None or raw is None:
            continue
        value = _CONVERTERS[name](raw)
        if value is None:
            continue
        result[name] = value
    return result


@dataclass
class TaskRecord:
    """One tracked render job and its lifecycle state."""

    id: str
    kind: TaskKind = TaskKind.GENERIC
    status: TaskStatus = TaskStatus.QUEUED
    progress: float | None = None
    completed_count: int | None = None
    total_count: int | None = None
    error_count: int | None = None
    error_message: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    dismissed: bool = False
    navigate_target: str | None = None
    shot_id: str | None = None
    project_id: str | None = None
    shot_index: int | None = None
    shot_description: str | None = None
    placeholder: bool = False

    def __post_init__(self) -> None:
        if self.status is not TaskStatus.ERROR:
            self.error_message = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def recency(self) -> datetime:
        """Most recent lifecycle timestamp, used to order resolved tasks."""
        return self.completed_at or self.started_at or self.created_at

    def with_updates(self, **changes: Any) -> "TaskRecord":
        return replace(self, **changes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskRecord":
        """Build a record from an engine payload.

        Raises:
            ValueError: If the payload has no id.
        """
        values = normalize_fields(data)
        if not values.get("id"):
            raise ValueError(f"Task payload has no id: {dict(data)!r}")
        values.pop("dismissed", None)
        return cls(**values)

    @classmethod
    def placeholder_from(cls, values: Mapping[str, Any]) -> "TaskRecord":
        """Minimal record for a patch whose id is not known yet."""
        return cls(
            id=values["id"],
            status=values.get("status", TaskStatus.QUEUED),
            progress=values.get("progress"),
            placeholder=True,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            result[f.name] = value
        return result


@dataclass
class TaskStats:
    """Per-status task counts."""

    total: int = 0
    queued: int = 0
    rendering: int = 0
    paused: int = 0
    completed: int = 0
    error: int = 0

    @classmethod
    def from_records(cls, records: Iterable[TaskRecord]) -> "TaskStats":
        stats = cls()
        for record in records:
            stats.total += 1
            name = record.status.value
            setattr(stats, name, getattr(stats, name) + 1)
        return stats


@dataclass
class ShotRecord:
    """Externally owned storyboard shot; tasks refer to it by id only."""

    id: str
    index: int = 0
    description: str = ""
    image_path: str | None = None
    video_path: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ShotRecord":
        return cls(
            id=str(data["id"]),
            index=int(data.get("index") or 0),
            description=str(data.get("description") or ""),
            image_path=data.get("image_path", data.get("imagePath")) or None,
            video_path=data.get("video_path", data.get("videoPath")) or None,
        )


@dataclass
class QueueStatus:
    """Engine-side queue occupancy."""

    is_processing: bool = False
    active_task_count: int = 0
    active_task_ids: list[str] = field(default_factory=list)
    max_concurrent: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "QueueStatus":
        data = data or {}
        return cls(
            is_processing=bool(data.get("is_processing", data.get("isProcessing", False))),
            active_task_count=int(
                data.get("active_task_count", data.get("activeTaskCount", 0)) or 0
            ),
            active_task_ids=list(
                data.get("active_task_ids", data.get("activeTaskIds", [])) or []
            ),
            max_concurrent=int(data.get("max_concurrent", data.get("maxConcurrent", 0)) or 0),
        )


def shots_needing_render(shots: Iterable[ShotRecord], kind: TaskKind) -> list[ShotRecord]:
    """Select the shots a bulk render of ``kind`` should target.

    Image renders target shots without an image. Video renders need an
    existing image and target shots that have no video yet.
    """
    parsed = TaskKind.parse(kind)
    if parsed is None:
        raise ValueError(f"Unknown task kind: {kind!r}")
    kind = parsed
    if kind is TaskKind.IMAGE_RENDER:
        return [shot for shot in shots if not shot.image_path]
    if kind is TaskKind.VIDEO_RENDER:
        return [shot for shot in shots if shot.image_path and not shot.video_path]
    return list(shots)
