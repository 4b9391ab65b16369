"""
Conflict analysis.

Compares a draft with the official documents of the project's other workflow
steps. Only documents the caller may read are sent to the completion service.
"""
from typing import List
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from aipm.core.enums import DocumentStatus
from aipm.core.workflow import is_valid_step
from aipm.errors import ValidationError
from aipm.models import PlanningDocument, User, utcnow
from aipm.schemas.documents import ConflictAnalysis, ConflictAnalysisRead
from aipm.services import lifecycle
from aipm.services.access import Actor, authorize_project_access
from aipm.services.completion import CompletionService, ReferenceDocument

logger = logging.getLogger(__name__)

NOTHING_TO_COMPARE = "There are no official documents from other workflow steps to compare against."


def _reference_documents(db: Session, documents: List[PlanningDocument]) -> List[ReferenceDocument]:
    author_ids = {doc.created_by for doc in documents}
    authors = {}
    if author_ids:
        authors = {user.id: user.name or user.email for user in db.query(User).filter(User.id.in_(author_ids))}
    return [
        ReferenceDocument(
            workflow_step=doc.workflow_step,
            title=doc.title,
            version=doc.version,
            author=authors.get(doc.created_by, "Unknown"),
            content=doc.content,
        )
        for doc in documents
    ]


def analyze_conflicts(
    db: Session,
    actor: Actor,
    project_id: UUID,
    workflow_step: int,
    title: str,
    content: str,
    completion: CompletionService,
) -> ConflictAnalysisRead:
    authorize_project_access(db, actor, project_id)
    if not is_valid_step(workflow_step):
        raise ValidationError("Workflow step must be an integer between 1 and 9")
    if not content or not content.strip():
        raise ValidationError("Content is required")
    if len(content) > lifecycle.MAX_CONTENT_LENGTH:
        raise ValidationError(f"Content must be at most {lifecycle.MAX_CONTENT_LENGTH} characters")

    official = [
        doc
        for doc in lifecycle.list_documents(db, actor, project_id, status=DocumentStatus.OFFICIAL)
        if doc.workflow_step != workflow_step
    ]
    official.sort(key=lambda doc: doc.workflow_step)

    if not official:
        analysis = ConflictAnalysis(summary=NOTHING_TO_COMPARE)
    else:
        analysis = completion.analyze_conflicts(
            title, content, workflow_step, _reference_documents(db, official)
        )
    logger.info(
        f"Conflict analysis for project {project_id} step {workflow_step}: "
        f"level {analysis.conflict_level} across {len(official)} document(s)"
    )
    return ConflictAnalysisRead(analysis=analysis, analyzed_documents=len(official), timestamp=utcnow())
