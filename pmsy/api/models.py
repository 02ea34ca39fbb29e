"""API Request/Response Models.

Pydantic schemas for the fixed-shape endpoints. Generic table routes
accept and return free-form JSON objects.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


# ─── Common ──────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "1.0.0"
    database: str = "ok"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeleteResponse(BaseModel):
    """Number of deleted rows."""

    deleted: int


# ─── Task Dependencies ──────────────────────────────────────────────────


class DependencyCreate(BaseModel):
    """New dependency edge of a task."""

    depends_on_task_id: Optional[str] = None
    dependency_type: str = "FS"
