"""Pydantic models for projects flowing from GitLab through the cache to the picker."""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

PickAction = Literal["open", "clone"]


class ProjectRecord(BaseModel):
    """One project as returned by a listing page."""

    id: int
    name: str
    path: str
    full_path: str
    web_url: str
    description: Optional[str] = None
    last_activity_at: Optional[str] = None
    namespace: Optional[str] = None

    @classmethod
    def from_api(cls, payload: dict[str, Any], namespace: Optional[str] = None) -> ProjectRecord:
        return cls(
            id=payload["id"],
            name=payload.get("name") or "",
            path=payload.get("path") or "",
            full_path=payload.get("path_with_namespace") or payload.get("full_path") or "",
            web_url=payload.get("web_url") or "",
            description=payload.get("description"),
            last_activity_at=payload.get("last_activity_at"),
            namespace=namespace,
        )

    def as_row(self) -> tuple:
        return (
            self.id,
            self.name,
            self.path,
            self.full_path,
            self.web_url,
            self.description,
            self.last_activity_at,
            self.namespace,
        )


class CachedProject(ProjectRecord):
    updated_at: str
    last_seen_at: str


# ── Picker hand-off ────────────────────────────────────────────────

class PickCandidate(BaseModel):
    id: int
    full_path: str
    name: str
    web_url: str

    def picker_line(self) -> str:
        return f"{self.full_path}\t{self.name}"


class PickResult(BaseModel):
    project: PickCandidate
    action: PickAction = "open"


# ── API payloads ───────────────────────────────────────────────────

class ContextUpdate(BaseModel):
    prefixes: list[str] = Field(default_factory=list)


class RefreshRequest(BaseModel):
    background: bool = True
    trigger: str = "api"
