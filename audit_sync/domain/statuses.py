from __future__ import annotations

from enum import Enum


class SuggestionStatus(str, Enum):
    NEW = "NEW"
    APPROVED = "APPROVED"
    IN_PROGRESS = "IN_PROGRESS"
    FIXED = "FIXED"
    SKIPPED = "SKIPPED"
    OUTDATED = "OUTDATED"
    PENDING_VALIDATION = "PENDING_VALIDATION"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: str | SuggestionStatus | None) -> SuggestionStatus:
        if isinstance(value, SuggestionStatus):
            return value
        raw = str(value or "").strip().upper()
        try:
            return cls(raw)
        except ValueError:
            raise ValueError(f"unknown suggestion status: {value!r}") from None


class SuggestionType(str, Enum):
    CONTENT_UPDATE = "CONTENT_UPDATE"
    CONFIG_UPDATE = "CONFIG_UPDATE"
    METADATA_UPDATE = "METADATA_UPDATE"
    CODE_CHANGE = "CODE_CHANGE"
    REDIRECT_UPDATE = "REDIRECT_UPDATE"


class OpportunityStatus(str, Enum):
    NEW = "NEW"
    IN_PROGRESS = "IN_PROGRESS"
    IGNORED = "IGNORED"
    RESOLVED = "RESOLVED"

    @classmethod
    def parse(cls, value: str | OpportunityStatus | None) -> OpportunityStatus:
        if isinstance(value, OpportunityStatus):
            return value
        try:
            return cls(str(value or "NEW").strip().upper())
        except ValueError:
            raise ValueError(f"unknown opportunity status: {value!r}") from None


class FixEntityStatus(str, Enum):
    PENDING = "PENDING"
    DEPLOYED = "DEPLOYED"
    PUBLISHED = "PUBLISHED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"

    @classmethod
    def parse(cls, value: str | FixEntityStatus | None) -> FixEntityStatus:
        if isinstance(value, FixEntityStatus):
            return value
        try:
            return cls(str(value or "PENDING").strip().upper())
        except ValueError:
            raise ValueError(f"unknown fix entity status: {value!r}") from None
