"""Pydantic v2 request/response schemas for project endpoints."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ProjectCreate(BaseModel):
    """Schema for saving a new project."""

    name: str = Field(..., min_length=1, max_length=255)
    app_name: str = Field(..., min_length=1, max_length=64)
    data: Any = Field(...)


class ProjectUpdate(BaseModel):
    """Schema for updating a project. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=255)
    data: Any = None
    thumbnail: str | None = None  # PNG, optionally as a data: URL


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class ProjectSummary(BaseModel):
    """Project as shown in listings."""

    id: uuid.UUID
    name: str
    app_name: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectResponse(ProjectSummary):
    """Full project metadata."""

    user_id: str
    storage_path: str
    thumbnail_path: str | None = None


class ProjectListResponse(BaseModel):
    projects: list[ProjectSummary]


class ProjectEnvelope(BaseModel):
    project: ProjectResponse


class SuccessResponse(BaseModel):
    success: bool = True
