"""Managed object comparison models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class DiffStatus(enum.Enum):
    UNCHANGED = "unchanged"
    MODIFIED = "modified"
    MISSING_LIVE = "missing_live"


@dataclass
class ResourceDiff:
    kind: str
    name: str
    namespace: str
    status: DiffStatus
    details: list[str] = field(default_factory=list)

    @property
    def needs_write(self) -> bool:
        return self.status != DiffStatus.UNCHANGED


@dataclass
class ReconcileTarget:
    """A desired managed object paired with what the cluster currently holds."""

    kind: str
    name: str
    namespace: str
    desired: dict
    observed: dict | None = None
    diff: ResourceDiff | None = None
