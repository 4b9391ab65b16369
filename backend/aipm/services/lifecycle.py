"""
Document lifecycle engine.

Owns the approval state machine for planning documents::

    private -> pending_approval -> official
                      |
                      +-> rejected -> (edit) -> pending_approval

Each operation runs as a single transaction: the status change, its
approval history entry, any version snapshot and the activity row are
committed together or not at all.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aipm.core.enums import ActivityTarget, ActivityType, DocumentStatus, HistoryAction, ProjectRole
from aipm.core.workflow import APPROVAL_MATRIX, is_valid_step, step_name
from aipm.errors import AIpmError, Conflict, DatabaseError, Forbidden, NotFound, ValidationError
from aipm.models import ApprovalHistoryEntry, DocumentVersion, PlanningDocument, Project, ProjectMember, utcnow
from aipm.schemas.documents import DocumentPatch
from aipm.services.access import (
    Actor,
    authorize_project_access,
    can_approve_document,
    can_modify_document,
    can_read_document,
    has_eligible_approver,
    readable_documents_filter,
)
from aipm.services.activity import log_activity

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255
MAX_CONTENT_LENGTH = 100_000
MAX_REASON_LENGTH = 1000

# Status changes allowed through a generic update, and the history action each records
_UPDATE_TRANSITIONS = {
    (DocumentStatus.PENDING_APPROVAL, DocumentStatus.PRIVATE): HistoryAction.WITHDRAWN,
    (DocumentStatus.REJECTED, DocumentStatus.PRIVATE): HistoryAction.REOPENED,
    (DocumentStatus.OFFICIAL, DocumentStatus.PRIVATE): HistoryAction.REVOKED,
    (DocumentStatus.OFFICIAL, DocumentStatus.REJECTED): HistoryAction.REVOKED,
}


@dataclass
class PendingApproval:
    document: PlanningDocument
    project_name: str
    step_name: str


@dataclass
class StepProgress:
    workflow_step: int
    step_name: str
    has_official_document: bool
    document_count: int
    last_updated: Optional[datetime]


@contextmanager
def _transaction(db: Session, operation: str):
    try:
        yield
        db.commit()
    except AIpmError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error during {operation}: {e}")
        raise DatabaseError(f"Database error during {operation}") from e


def _validate_step(workflow_step) -> int:
    if not is_valid_step(workflow_step):
        raise ValidationError("Workflow step must be an integer between 1 and 9")
    return workflow_step


def _validate_title(title: Optional[str]) -> str:
    if title is None or not title.strip():
        raise ValidationError("Title is required")
    title = title.strip()
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return title


def _validate_content(content: Optional[str], required: bool = False) -> str:
    if content is None:
        raise ValidationError("Content cannot be null")
    if required and not content.strip():
        raise ValidationError("Content is required")
    if len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content must be at most {MAX_CONTENT_LENGTH} characters")
    return content


def _load_for_update(db: Session, document_id: UUID) -> PlanningDocument:
    document = (
        db.query(PlanningDocument)
        .filter(PlanningDocument.id == document_id)
        .with_for_update()
        .first()
    )
    if not document:
        raise NotFound("Document not found")
    return document


def _set_status(
    db: Session,
    document: PlanningDocument,
    actor: Actor,
    new_status: DocumentStatus,
    action: HistoryAction,
    reason: Optional[str] = None,
) -> ApprovalHistoryEntry:
    previous = document.status
    document.status = new_status.value
    document.updated_at = utcnow()
    entry = ApprovalHistoryEntry(
        document_id=document.id,
        user_id=actor.user_id,
        action=action.value,
        previous_status=previous,
        new_status=new_status.value,
        reason=reason,
    )
    db.add(entry)
    db.flush()
    logger.info(
        f"Document {document.id} {action.value}: {previous} -> {new_status.value} by user {actor.user_id}"
    )
    return entry


def create_document(
    db: Session, actor: Actor, project_id: UUID, workflow_step: int, title: str, content: str
) -> PlanningDocument:
    authorize_project_access(db, actor, project_id)
    workflow_step = _validate_step(workflow_step)
    title = _validate_title(title)
    content = _validate_content(content, required=True)

    with _transaction(db, "document creation"):
        document = PlanningDocument(
            project_id=project_id,
            workflow_step=workflow_step,
            title=title,
            content=content,
            status=DocumentStatus.PRIVATE.value,
            version=1,
            created_by=actor.user_id,
        )
        db.add(document)
        db.flush()
        log_activity(
            db,
            project_id=project_id,
            user_id=actor.user_id,
            activity_type=ActivityType.DOCUMENT_CREATED,
            target_type=ActivityTarget.DOCUMENT,
            target_id=document.id,
            description=f"Created document '{title}' for step {workflow_step}",
            metadata={"workflow_step": workflow_step, "title": title},
        )
    db.refresh(document)
    logger.info(f"Document {document.id} created in project {project_id} step {workflow_step} by {actor.user_id}")
    return document


def list_documents(
    db: Session,
    actor: Actor,
    project_id: UUID,
    workflow_step: Optional[int] = None,
    status: Optional[DocumentStatus] = None,
) -> List[PlanningDocument]:
    member_role = authorize_project_access(db, actor, project_id)
    query = db.query(PlanningDocument).filter(PlanningDocument.project_id == project_id)
    if workflow_step is not None:
        query = query.filter(PlanningDocument.workflow_step == _validate_step(workflow_step))
    if status is not None:
        query = query.filter(PlanningDocument.status == status.value)
    criterion = readable_documents_filter(actor, member_role)
    if criterion is not None:
        query = query.filter(criterion)
    return query.order_by(PlanningDocument.created_at.desc()).all()


def get_document(db: Session, actor: Actor, document_id: UUID) -> PlanningDocument:
    document = db.query(PlanningDocument).filter(PlanningDocument.id == document_id).first()
    if not document:
        raise NotFound("Document not found")
    if not can_read_document(db, actor, document):
        raise Forbidden("You do not have access to this document")
    return document


def save_document(db: Session, actor: Actor, document_id: UUID, patch: DocumentPatch) -> PlanningDocument:
    fields = patch.model_fields_set
    with _transaction(db, "document update"):
        document = _load_for_update(db, document_id)
        if not can_modify_document(actor, document):
            raise Forbidden("Only the document creator or an administrator can edit this document")
        if (
            "expected_version" in fields
            and patch.expected_version is not None
            and patch.expected_version != document.version
        ):
            raise Conflict(
                f"Document was modified concurrently (expected version {patch.expected_version}, "
                f"current version {document.version})"
            )

        changed = []
        if "title" in fields:
            title = _validate_title(patch.title)
            if title != document.title:
                document.title = title
                changed.append("title")
        if "content" in fields:
            content = _validate_content(patch.content)
            if content != document.content:
                db.add(
                    DocumentVersion(
                        document_id=document.id,
                        version=document.version,
                        content=document.content,
                        created_by=actor.user_id,
                    )
                )
                document.content = content
                document.version = document.version + 1
                changed.append("content")
        if changed:
            document.updated_at = utcnow()
            db.flush()
            log_activity(
                db,
                project_id=document.project_id,
                user_id=actor.user_id,
                activity_type=ActivityType.DOCUMENT_UPDATED,
                target_type=ActivityTarget.DOCUMENT,
                target_id=document.id,
                description=f"Updated document '{document.title}'",
                metadata={"fields": changed, "version": document.version},
            )

        if "status" in fields and patch.status is not None:
            _apply_status_change(db, actor, document, patch.status)
    db.refresh(document)
    return document


def change_status(
    db: Session, actor: Actor, document_id: UUID, new_status: DocumentStatus, reason: Optional[str] = None
) -> PlanningDocument:
    with _transaction(db, "status change"):
        document = _load_for_update(db, document_id)
        if not can_modify_document(actor, document):
            raise Forbidden("Only the document creator or an administrator can change the status")
        _apply_status_change(db, actor, document, new_status, reason)
    db.refresh(document)
    return document


def _apply_status_change(
    db: Session, actor: Actor, document: PlanningDocument, new_status: DocumentStatus, reason: Optional[str] = None
) -> None:
    current = DocumentStatus(document.status)
    if new_status == current:
        return
    if new_status == DocumentStatus.OFFICIAL:
        raise ValidationError("Use the approval endpoint to make a document official")
    if new_status == DocumentStatus.PENDING_APPROVAL:
        _request_approval(db, actor, document)
        return

    action = _UPDATE_TRANSITIONS.get((current, new_status))
    if action is None:
        raise ValidationError(f"Cannot change status from {current.value} to {new_status.value}")
    if current == DocumentStatus.OFFICIAL:
        document.approved_by = None
        document.approved_at = None
    _set_status(db, document, actor, new_status, action, reason)
    log_activity(
        db,
        project_id=document.project_id,
        user_id=actor.user_id,
        activity_type=ActivityType.DOCUMENT_STATUS_CHANGED,
        target_type=ActivityTarget.DOCUMENT,
        target_id=document.id,
        description=f"Changed status of '{document.title}' to {new_status.value}",
        metadata={"from": current.value, "to": new_status.value},
    )


def request_approval(db: Session, actor: Actor, document_id: UUID) -> PlanningDocument:
    with _transaction(db, "approval request"):
        document = _load_for_update(db, document_id)
        _request_approval(db, actor, document)
    db.refresh(document)
    return document


def _request_approval(db: Session, actor: Actor, document: PlanningDocument) -> None:
    if not can_modify_document(actor, document):
        raise Forbidden("Only the document creator or an administrator can request approval")
    current = DocumentStatus(document.status)
    if current not in (DocumentStatus.PRIVATE, DocumentStatus.REJECTED):
        raise ValidationError(f"Cannot request approval for a document in status {current.value}")
    if not (document.title or "").strip():
        raise ValidationError("Title is required before requesting approval")
    if not (document.content or "").strip():
        raise ValidationError("Content is required before requesting approval")
    if not has_eligible_approver(db, document.project_id, document.workflow_step):
        raise ValidationError(
            f"No project member can approve documents for step {document.workflow_step}; "
            "add a member with an eligible role first"
        )
    _set_status(db, document, actor, DocumentStatus.PENDING_APPROVAL, HistoryAction.REQUESTED)
    log_activity(
        db,
        project_id=document.project_id,
        user_id=actor.user_id,
        activity_type=ActivityType.DOCUMENT_APPROVAL_REQUESTED,
        target_type=ActivityTarget.DOCUMENT,
        target_id=document.id,
        description=f"Requested approval for '{document.title}'",
        metadata={"workflow_step": document.workflow_step},
    )


def approve_document(db: Session, actor: Actor, document_id: UUID) -> PlanningDocument:
    with _transaction(db, "approval"):
        document = _load_for_update(db, document_id)
        if document.status != DocumentStatus.PENDING_APPROVAL.value:
            raise ValidationError("Only documents pending approval can be approved")
        if not can_approve_document(db, actor, document):
            logger.warning(f"User {actor.user_id} is not allowed to approve document {document.id}")
            raise Forbidden("You are not allowed to approve documents for this step")

        # One official document per (project, step): demote the previous one
        previous_official = (
            db.query(PlanningDocument)
            .filter(
                PlanningDocument.project_id == document.project_id,
                PlanningDocument.workflow_step == document.workflow_step,
                PlanningDocument.status == DocumentStatus.OFFICIAL.value,
                PlanningDocument.id != document.id,
            )
            .with_for_update()
            .all()
        )
        for old in previous_official:
            old.approved_by = None
            old.approved_at = None
            _set_status(
                db, old, actor, DocumentStatus.PRIVATE, HistoryAction.REVOKED,
                reason=f"Superseded by document {document.id}",
            )

        document.approved_by = actor.user_id
        document.approved_at = utcnow()
        _set_status(db, document, actor, DocumentStatus.OFFICIAL, HistoryAction.APPROVED)
        log_activity(
            db,
            project_id=document.project_id,
            user_id=actor.user_id,
            activity_type=ActivityType.DOCUMENT_APPROVED,
            target_type=ActivityTarget.DOCUMENT,
            target_id=document.id,
            description=f"Approved '{document.title}'",
            metadata={"superseded": [str(old.id) for old in previous_official]},
        )
    db.refresh(document)
    return document


def reject_document(db: Session, actor: Actor, document_id: UUID, reason: Optional[str] = None) -> PlanningDocument:
    if reason is not None:
        reason = reason.strip() or None
    if reason and len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Reason must be at most {MAX_REASON_LENGTH} characters")

    with _transaction(db, "rejection"):
        document = _load_for_update(db, document_id)
        if document.status != DocumentStatus.PENDING_APPROVAL.value:
            raise ValidationError("Only documents pending approval can be rejected")
        if not can_approve_document(db, actor, document):
            logger.warning(f"User {actor.user_id} is not allowed to reject document {document.id}")
            raise Forbidden("You are not allowed to reject documents for this step")
        _set_status(db, document, actor, DocumentStatus.REJECTED, HistoryAction.REJECTED, reason)
        log_activity(
            db,
            project_id=document.project_id,
            user_id=actor.user_id,
            activity_type=ActivityType.DOCUMENT_REJECTED,
            target_type=ActivityTarget.DOCUMENT,
            target_id=document.id,
            description=f"Rejected '{document.title}'",
            metadata={"reason": reason},
        )
    db.refresh(document)
    return document


def delete_document(db: Session, actor: Actor, document_id: UUID) -> None:
    with _transaction(db, "document deletion"):
        document = _load_for_update(db, document_id)
        if not can_modify_document(actor, document):
            raise Forbidden("Only the document creator or an administrator can delete this document")
        log_activity(
            db,
            project_id=document.project_id,
            user_id=actor.user_id,
            activity_type=ActivityType.DOCUMENT_DELETED,
            target_type=ActivityTarget.DOCUMENT,
            target_id=document.id,
            description=f"Deleted document '{document.title}'",
            metadata={"workflow_step": document.workflow_step, "status": document.status},
        )
        db.delete(document)
    logger.info(f"Document {document_id} deleted by user {actor.user_id}")


def list_versions(db: Session, actor: Actor, document_id: UUID) -> List[DocumentVersion]:
    get_document(db, actor, document_id)
    return (
        db.query(DocumentVersion)
        .filter(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version.desc())
        .all()
    )


def list_approval_history(db: Session, actor: Actor, document_id: UUID) -> List[ApprovalHistoryEntry]:
    get_document(db, actor, document_id)
    return (
        db.query(ApprovalHistoryEntry)
        .filter(ApprovalHistoryEntry.document_id == document_id)
        .order_by(ApprovalHistoryEntry.created_at.asc(), ApprovalHistoryEntry.id.asc())
        .all()
    )


def list_pending_approvals(db: Session, actor: Actor) -> List[PendingApproval]:
    """Pending documents across all projects that the actor may approve, oldest first."""
    query = (
        db.query(PlanningDocument, Project.name)
        .join(Project, Project.id == PlanningDocument.project_id)
        .filter(PlanningDocument.status == DocumentStatus.PENDING_APPROVAL.value)
    )
    if not actor.is_admin:
        memberships = db.query(ProjectMember).filter(ProjectMember.user_id == actor.user_id).all()
        criteria = []
        for membership in memberships:
            role = ProjectRole(membership.role)
            steps = [step for step, roles in APPROVAL_MATRIX.items() if role in roles]
            if steps:
                criteria.append(
                    and_(
                        PlanningDocument.project_id == membership.project_id,
                        PlanningDocument.workflow_step.in_(steps),
                    )
                )
        if not criteria:
            return []
        query = query.filter(or_(*criteria))

    rows = query.order_by(PlanningDocument.updated_at.asc()).all()
    return [
        PendingApproval(document=document, project_name=name, step_name=step_name(document.workflow_step))
        for document, name in rows
    ]


def project_progress(db: Session, project_id: UUID) -> List[StepProgress]:
    rows = (
        db.query(PlanningDocument.workflow_step, PlanningDocument.status, PlanningDocument.updated_at)
        .filter(PlanningDocument.project_id == project_id)
        .all()
    )
    progress = []
    for step in range(1, 10):
        step_rows = [row for row in rows if row.workflow_step == step]
        progress.append(
            StepProgress(
                workflow_step=step,
                step_name=step_name(step),
                has_official_document=any(row.status == DocumentStatus.OFFICIAL.value for row in step_rows),
                document_count=len(step_rows),
                last_updated=max((row.updated_at for row in step_rows), default=None),
            )
        )
    return progress
