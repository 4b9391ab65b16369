from typing import Any, Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel
from datetime import datetime

from aipm.core.enums import ProjectRole
from aipm.schemas.auth import UserRead


class ProjectCreate(BaseModel):
    name: str
    description: Optional[str] = None


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class ProjectRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    created_by: UUID
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ProjectListItem(ProjectRead):
    member_count: int = 0
    official_documents_count: int = 0
    my_role: Optional[ProjectRole] = None


class ProjectMemberCreate(BaseModel):
    user_id: UUID
    role: ProjectRole


class ProjectMemberUpdate(BaseModel):
    role: ProjectRole


class ProjectMemberRead(BaseModel):
    id: UUID
    project_id: UUID
    user_id: UUID
    role: ProjectRole
    added_by: Optional[UUID] = None
    added_at: datetime
    user: Optional[UserRead] = None  # Include user details

    class Config:
        from_attributes = True


class StepProgressRead(BaseModel):
    workflow_step: int
    step_name: str
    has_official_document: bool
    document_count: int
    last_updated: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectDetail(ProjectListItem):
    members: List[ProjectMemberRead] = []
    progress: List[StepProgressRead] = []


class ProjectActivityRead(BaseModel):
    id: UUID
    project_id: UUID
    user_id: Optional[UUID] = None
    activity_type: str
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: datetime
