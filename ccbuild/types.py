from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Build(BaseModel):
    """One build artifact as reported by the build API.

    Field names are snake_case in Python; JSON output uses the camelCase wire
    names (``createdAt``, ``deleteReason``, ``self`` ...).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    code: Optional[str] = None
    branch: Optional[str] = None
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    last_used_at: Optional[datetime] = Field(None, alias="lastUsedAt")
    status: Optional[str] = None
    deletable: bool = False
    delete_reason: Optional[str] = Field(None, alias="deleteReason")
    self_link: Optional[str] = Field(None, alias="self")
    raw: Any = None

    @property
    def display_name(self) -> str:
        if self.code and self.code.strip():
            return self.code
        return self.id if self.id is not None else "<unknown>"

    def is_older_than(self, cutoff: datetime) -> bool:
        return self.created_at is not None and self.created_at < cutoff

    def is_inactive_since(self, cutoff: datetime) -> bool:
        return self.last_used_at is not None and self.last_used_at < cutoff

    @property
    def effective_delete_reason(self) -> str:
        if self.delete_reason and self.delete_reason.strip():
            return self.delete_reason
        if not self.deletable:
            return "Build is not deletable"
        return ""


class PruneOutcome(BaseModel):
    """Result of a single delete attempt."""

    model_config = ConfigDict(frozen=True)

    build_id: str
    deleted: bool
    status_code: int = 0
    message: str
