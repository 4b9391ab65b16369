from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID
import logging

from aipm.db import get_db
from aipm.dependencies import get_conversation_manager, get_current_actor
from aipm.schemas import (
    ProjectActivityRead,
    ProjectCreate,
    ProjectDetail,
    ProjectListItem,
    ProjectMemberRead,
    ProjectRead,
    ProjectUpdate,
    StepProgressRead,
)
from aipm.services import lifecycle, projects as project_service
from aipm.services.access import Actor, authorize_project_access, get_project_or_404
from aipm.services.activity import list_activities
from aipm.services.conversations import ConversationManager

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return project_service.create_project(db, actor, payload.name, payload.description)


@router.get("", response_model=List[ProjectListItem])
def list_projects(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """Admins see every project; other users see the projects they belong to."""
    return [
        ProjectListItem(
            **ProjectRead.model_validate(summary.project).model_dump(),
            member_count=summary.member_count,
            official_documents_count=summary.official_documents_count,
            my_role=summary.my_role,
        )
        for summary in project_service.list_projects(db, actor)
    ]


@router.get("/{project_id}", response_model=ProjectDetail)
def get_project(project_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    my_role = authorize_project_access(db, actor, project_id)
    project = get_project_or_404(db, project_id)
    members = project_service.list_members(db, project_id)
    progress = lifecycle.project_progress(db, project_id)
    return ProjectDetail(
        **ProjectRead.model_validate(project).model_dump(),
        member_count=len(members),
        official_documents_count=sum(1 for step in progress if step.has_official_document),
        my_role=my_role,
        members=[ProjectMemberRead.model_validate(m) for m in members],
        progress=[StepProgressRead.model_validate(step) for step in progress],
    )


@router.put("/{project_id}", response_model=ProjectRead)
def update_project(
    project_id: UUID,
    payload: ProjectUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return project_service.update_project(
        db, actor, project_id, payload.name, payload.description, fields=payload.model_fields_set
    )


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
):
    project_service.delete_project(db, actor, project_id)
    conversations.discard_project(project_id)


@router.get("/{project_id}/activities", response_model=List[ProjectActivityRead])
def project_activities(
    project_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    authorize_project_access(db, actor, project_id)
    return [
        ProjectActivityRead(
            id=a.id,
            project_id=a.project_id,
            user_id=a.user_id,
            activity_type=a.activity_type,
            target_type=a.target_type,
            target_id=a.target_id,
            metadata=a.metadata_json,
            description=a.description,
            created_at=a.created_at,
        )
        for a in list_activities(db, project_id, limit)
    ]
