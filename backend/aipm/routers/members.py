from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from aipm.db import get_db
from aipm.dependencies import get_current_actor
from aipm.schemas import ProjectMemberCreate, ProjectMemberRead, ProjectMemberUpdate
from aipm.services import projects as project_service
from aipm.services.access import Actor, authorize_project_access

router = APIRouter(prefix="/projects/{project_id}/members", tags=["members"])


@router.get("", response_model=List[ProjectMemberRead])
def list_members(project_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    authorize_project_access(db, actor, project_id)
    return project_service.list_members(db, project_id)


@router.post("", response_model=ProjectMemberRead, status_code=status.HTTP_201_CREATED)
def add_member(
    project_id: UUID,
    payload: ProjectMemberCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return project_service.add_member(db, actor, project_id, payload.user_id, payload.role)


@router.put("/{member_id}", response_model=ProjectMemberRead)
def update_member(
    project_id: UUID,
    member_id: UUID,
    payload: ProjectMemberUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return project_service.update_member_role(db, actor, project_id, member_id, payload.role)


@router.delete("/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_member(
    project_id: UUID,
    member_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    project_service.remove_member(db, actor, project_id, member_id)
