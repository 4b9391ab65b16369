"""Projects and memberships."""
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from aipm.core.enums import ActivityTarget, ActivityType, DocumentStatus, ProjectRole
from aipm.errors import Conflict, DatabaseError, NotFound, ValidationError
from aipm.models import PlanningDocument, Project, ProjectMember, User, utcnow
from aipm.services.access import (
    Actor,
    authorize_project_management,
    get_membership,
    require_admin,
)
from aipm.services.activity import log_activity, model_to_dict

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255


@dataclass
class ProjectSummary:
    project: Project
    member_count: int
    official_documents_count: int
    my_role: Optional[ProjectRole]


def _validate_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise ValidationError("Project name is required")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Project name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _commit(db: Session, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error during {operation}: {e}")
        raise DatabaseError(f"Database error during {operation}") from e


def create_project(db: Session, actor: Actor, name: str, description: Optional[str] = None) -> Project:
    require_admin(actor)
    project = Project(name=_validate_name(name), description=description, created_by=actor.user_id)
    db.add(project)
    db.flush()
    log_activity(
        db,
        project_id=project.id,
        user_id=actor.user_id,
        activity_type=ActivityType.PROJECT_CREATED,
        target_type=ActivityTarget.PROJECT,
        target_id=project.id,
        description=f"Created project '{project.name}'",
    )
    _commit(db, "project creation")
    db.refresh(project)
    logger.info(f"Project {project.id} created by {actor.user_id}")
    return project


def list_projects(db: Session, actor: Actor) -> List[ProjectSummary]:
    memberships = {
        m.project_id: ProjectRole(m.role)
        for m in db.query(ProjectMember).filter(ProjectMember.user_id == actor.user_id).all()
    }
    query = db.query(Project)
    if not actor.is_admin:
        if not memberships:
            return []
        query = query.filter(Project.id.in_(list(memberships)))
    projects = query.order_by(Project.created_at.desc()).all()
    if not projects:
        return []

    project_ids = [p.id for p in projects]
    member_counts = dict(
        db.query(ProjectMember.project_id, func.count(ProjectMember.id))
        .filter(ProjectMember.project_id.in_(project_ids))
        .group_by(ProjectMember.project_id)
        .all()
    )
    official_counts = dict(
        db.query(PlanningDocument.project_id, func.count(PlanningDocument.id))
        .filter(
            PlanningDocument.project_id.in_(project_ids),
            PlanningDocument.status == DocumentStatus.OFFICIAL.value,
        )
        .group_by(PlanningDocument.project_id)
        .all()
    )
    return [
        ProjectSummary(
            project=p,
            member_count=member_counts.get(p.id, 0),
            official_documents_count=official_counts.get(p.id, 0),
            my_role=memberships.get(p.id),
        )
        for p in projects
    ]


def update_project(
    db: Session,
    actor: Actor,
    project_id: UUID,
    name: Optional[str] = None,
    description: Optional[str] = None,
    fields: Optional[set] = None,
) -> Project:
    """Apply the fields named in ``fields`` (all given arguments when None)."""
    project = authorize_project_management(db, actor, project_id)
    if fields is None:
        fields = {key for key, value in (("name", name), ("description", description)) if value is not None}
    before = model_to_dict(project, ["name", "description"])
    if "name" in fields:
        project.name = _validate_name(name)
    if "description" in fields:
        project.description = description
    project.updated_at = utcnow()
    log_activity(
        db,
        project_id=project.id,
        user_id=actor.user_id,
        activity_type=ActivityType.PROJECT_UPDATED,
        target_type=ActivityTarget.PROJECT,
        target_id=project.id,
        description=f"Updated project '{project.name}'",
        metadata={"before": before, "after": model_to_dict(project, ["name", "description"])},
    )
    _commit(db, "project update")
    db.refresh(project)
    return project


def delete_project(db: Session, actor: Actor, project_id: UUID) -> None:
    project = authorize_project_management(db, actor, project_id)
    db.delete(project)
    _commit(db, "project deletion")
    logger.info(f"Project {project_id} deleted by {actor.user_id}")


def list_members(db: Session, project_id: UUID) -> List[ProjectMember]:
    return (
        db.query(ProjectMember)
        .filter(ProjectMember.project_id == project_id)
        .order_by(ProjectMember.added_at.asc())
        .all()
    )


def add_member(db: Session, actor: Actor, project_id: UUID, user_id: UUID, role: ProjectRole) -> ProjectMember:
    authorize_project_management(db, actor, project_id)
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    if get_membership(db, project_id, user_id):
        raise Conflict("User is already a member of this project")

    member = ProjectMember(project_id=project_id, user_id=user_id, role=role.value, added_by=actor.user_id)
    db.add(member)
    try:
        db.flush()
    except IntegrityError as e:
        db.rollback()
        raise Conflict("User is already a member of this project") from e
    log_activity(
        db,
        project_id=project_id,
        user_id=actor.user_id,
        activity_type=ActivityType.MEMBER_ADDED,
        target_type=ActivityTarget.MEMBER,
        target_id=member.id,
        description=f"Added {user.email} as {role.value}",
        metadata={"user_id": str(user_id), "role": role.value},
    )
    _commit(db, "member addition")
    db.refresh(member)
    return member


def _get_member_or_404(db: Session, project_id: UUID, member_id: UUID) -> ProjectMember:
    member = (
        db.query(ProjectMember)
        .filter(ProjectMember.id == member_id, ProjectMember.project_id == project_id)
        .first()
    )
    if not member:
        raise NotFound("Member not found")
    return member


def update_member_role(
    db: Session, actor: Actor, project_id: UUID, member_id: UUID, role: ProjectRole
) -> ProjectMember:
    authorize_project_management(db, actor, project_id)
    member = _get_member_or_404(db, project_id, member_id)
    previous = member.role
    member.role = role.value
    log_activity(
        db,
        project_id=project_id,
        user_id=actor.user_id,
        activity_type=ActivityType.MEMBER_ROLE_CHANGED,
        target_type=ActivityTarget.MEMBER,
        target_id=member.id,
        description=f"Changed role from {previous} to {role.value}",
        metadata={"user_id": str(member.user_id), "from": previous, "to": role.value},
    )
    _commit(db, "member role change")
    db.refresh(member)
    return member


def remove_member(db: Session, actor: Actor, project_id: UUID, member_id: UUID) -> None:
    authorize_project_management(db, actor, project_id)
    member = _get_member_or_404(db, project_id, member_id)
    log_activity(
        db,
        project_id=project_id,
        user_id=actor.user_id,
        activity_type=ActivityType.MEMBER_REMOVED,
        target_type=ActivityTarget.MEMBER,
        target_id=member.id,
        description=f"Removed member {member.user_id}",
        metadata={"user_id": str(member.user_id), "role": member.role},
    )
    db.delete(member)
    _commit(db, "member removal")
