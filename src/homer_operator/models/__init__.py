"""Data models for the Homer operator."""

from __future__ import annotations

import enum


class ResourceKind(enum.Enum):
    INGRESS = "Ingress"
    HTTPROUTE = "HTTPRoute"
    SERVICE = "Service"


class GroupingStrategy(enum.Enum):
    NAMESPACE = "namespace"
    LABEL = "label"
    CUSTOM = "custom"

    @classmethod
    def from_str(cls, s: str | None) -> GroupingStrategy:
        for member in cls:
            if member.value == (s or "").lower():
                return member
        return cls.NAMESPACE


class ValidationLevel(enum.Enum):
    STRICT = "strict"
    WARN = "warn"
    NONE = "none"

    @classmethod
    def from_str(cls, s: str | None) -> ValidationLevel:
        for member in cls:
            if member.value == (s or "").lower():
                return member
        return cls.WARN
