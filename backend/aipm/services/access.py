"""
Access control.

All role checks live here: resolving the acting user from a session token,
project access and management, document read/modify rights and approval
eligibility per workflow step.
"""
from dataclasses import dataclass
from typing import Optional
from uuid import UUID
import logging

from sqlalchemy import or_, and_
from sqlalchemy.orm import Session

from aipm.core.enums import DocumentStatus, GlobalRole, ProjectRole
from aipm.core.workflow import APPROVAL_MATRIX, approver_roles_for_step
from aipm.errors import Forbidden, NotFound, Unauthenticated
from aipm.models import PlanningDocument, Project, ProjectMember, User
from aipm.security import decode_access_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    user_id: UUID
    email: str
    global_role: GlobalRole

    @property
    def is_admin(self) -> bool:
        return self.global_role == GlobalRole.ADMIN


def actor_from_user(user: User) -> Actor:
    return Actor(user_id=user.id, email=user.email, global_role=GlobalRole(user.role))


def resolve_actor(db: Session, token: Optional[str]) -> Actor:
    if not token:
        raise Unauthenticated("Authentication required")
    subject = decode_access_token(token)
    if not subject:
        raise Unauthenticated("Invalid or expired session")
    try:
        user_id = UUID(subject)
    except ValueError:
        raise Unauthenticated("Invalid or expired session")
    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise Unauthenticated("User not found or inactive")
    return actor_from_user(user)


def require_admin(actor: Actor) -> None:
    if not actor.is_admin:
        raise Forbidden("Administrator privileges required")


def get_project_or_404(db: Session, project_id: UUID) -> Project:
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise NotFound("Project not found")
    return project


def get_membership(db: Session, project_id: UUID, user_id: UUID) -> Optional[ProjectMember]:
    return (
        db.query(ProjectMember)
        .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        .first()
    )


def authorize_project_access(db: Session, actor: Actor, project_id: UUID) -> Optional[ProjectRole]:
    """Return the actor's project role; admins who are not members get None."""
    get_project_or_404(db, project_id)
    membership = get_membership(db, project_id, actor.user_id)
    if membership:
        return ProjectRole(membership.role)
    if actor.is_admin:
        return None
    logger.warning(f"Project access denied: user {actor.user_id} is not a member of project {project_id}")
    raise Forbidden("You do not have access to this project")


def authorize_project_management(db: Session, actor: Actor, project_id: UUID) -> Project:
    project = get_project_or_404(db, project_id)
    if not actor.is_admin:
        raise Forbidden("Only administrators can manage projects")
    return project


def can_approve_step(db: Session, actor: Actor, project_id: UUID, step: int) -> bool:
    if actor.is_admin:
        return True
    membership = get_membership(db, project_id, actor.user_id)
    if not membership:
        return False
    return ProjectRole(membership.role) in approver_roles_for_step(step)


def can_approve_document(db: Session, actor: Actor, document: PlanningDocument) -> bool:
    return can_approve_step(db, actor, document.project_id, document.workflow_step)


def can_read_document(db: Session, actor: Actor, document: PlanningDocument) -> bool:
    if actor.is_admin or document.created_by == actor.user_id:
        return True
    membership = get_membership(db, document.project_id, actor.user_id)
    if not membership:
        return False
    if document.status == DocumentStatus.OFFICIAL.value:
        return True
    if document.status == DocumentStatus.PENDING_APPROVAL.value:
        return ProjectRole(membership.role) in approver_roles_for_step(document.workflow_step)
    return False


def can_modify_document(actor: Actor, document: PlanningDocument) -> bool:
    return actor.is_admin or document.created_by == actor.user_id


def readable_documents_filter(actor: Actor, member_role: Optional[ProjectRole]):
    """SQL criterion matching the documents ``can_read_document`` allows."""
    if actor.is_admin:
        return None
    clauses = [
        PlanningDocument.created_by == actor.user_id,
        PlanningDocument.status == DocumentStatus.OFFICIAL.value,
    ]
    approvable_steps = [
        step for step, roles in APPROVAL_MATRIX.items() if member_role is not None and member_role in roles
    ]
    if approvable_steps:
        clauses.append(
            and_(
                PlanningDocument.status == DocumentStatus.PENDING_APPROVAL.value,
                PlanningDocument.workflow_step.in_(approvable_steps),
            )
        )
    return or_(*clauses)


def has_eligible_approver(db: Session, project_id: UUID, step: int) -> bool:
    roles = [role.value for role in approver_roles_for_step(step)]
    if not roles:
        return False
    return (
        db.query(ProjectMember.id)
        .filter(ProjectMember.project_id == project_id, ProjectMember.role.in_(roles))
        .first()
        is not None
    )
