"""
Data models shared by the stages, the orchestrator and the sinks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

MEGABYTE = 1024 * 1024

SUCCESS_COLOR = 0x00FF00
WARNING_COLOR = 0xFFA500


@dataclass
class SummaryField:
    name: str
    value: str


@dataclass
class SummaryEmbed:
    """Structured summary attached to a log event."""
    title: str
    fields: list[SummaryField] = field(default_factory=list)
    timestamp: datetime | None = None
    color: int = SUCCESS_COLOR

    def to_dict(self) -> dict:
        data: dict = {
            "title": self.title,
            "color": self.color,
            "fields": [{"name": f.name, "value": f.value} for f in self.fields],
        }
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class ArtifactInfo:
    """A backup artifact on disk and its size at the time it was inspected."""
    path: Path
    size_bytes: int = 0

    @classmethod
    def inspect(cls, path: Path) -> "ArtifactInfo":
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            size = 0
        return cls(path=path, size_bytes=size)

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size_mb(self) -> float:
        return self.size_bytes / MEGABYTE

    def describe(self) -> str:
        return f"File: `{self.name}`\nSize: {self.size_mb:.2f} MB"


@dataclass
class RetentionSummary:
    """Outcome of one retention pass."""
    kept: dict[str, list[str]] = field(default_factory=dict)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"kept": self.kept, "removed": self.removed, "failed": self.failed}
