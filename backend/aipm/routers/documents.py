from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional
from uuid import UUID

from aipm.core.enums import DocumentStatus
from aipm.db import get_db
from aipm.dependencies import get_completion_service, get_conversation_manager, get_current_actor
from aipm.schemas import (
    ApprovalHistoryRead,
    ConflictAnalysisRead,
    ConflictAnalysisRequest,
    DocumentCreate,
    DocumentPatch,
    DocumentRead,
    DocumentVersionRead,
    GenerateDocumentRequest,
    PendingApprovalRead,
    RejectRequest,
)
from aipm.services import conflicts, generator, lifecycle
from aipm.services.access import Actor
from aipm.services.completion import CompletionService
from aipm.services.conversations import ConversationManager

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=List[DocumentRead])
def list_documents(
    project_id: UUID,
    workflow_step: Optional[int] = Query(None),
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.list_documents(db, actor, project_id, workflow_step, status_filter)


@router.post("", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def create_document(
    payload: DocumentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.create_document(
        db, actor, payload.project_id, payload.workflow_step, payload.title, payload.content
    )


@router.get("/pending-approvals", response_model=List[PendingApprovalRead])
def pending_approvals(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return [
        PendingApprovalRead(
            **DocumentRead.model_validate(item.document).model_dump(),
            project_name=item.project_name,
            step_name=item.step_name,
        )
        for item in lifecycle.list_pending_approvals(db, actor)
    ]


@router.post("/generate", response_model=DocumentRead, status_code=status.HTTP_201_CREATED)
def generate_document(
    payload: GenerateDocumentRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
):
    return generator.generate_document(db, actor, payload.project_id, payload.workflow_step, conversations)


@router.post("/analyze-conflicts", response_model=ConflictAnalysisRead)
def analyze_conflicts(
    payload: ConflictAnalysisRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    completion: CompletionService = Depends(get_completion_service),
):
    """Check a draft against the official documents of the project's other steps."""
    return conflicts.analyze_conflicts(
        db, actor, payload.project_id, payload.workflow_step, payload.title, payload.content, completion
    )


@router.get("/{document_id}", response_model=DocumentRead)
def get_document(document_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return lifecycle.get_document(db, actor, document_id)


@router.put("/{document_id}", response_model=DocumentRead)
def update_document(
    document_id: UUID,
    payload: DocumentPatch,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return lifecycle.save_document(db, actor, document_id, payload)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_document(document_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    lifecycle.delete_document(db, actor, document_id)


@router.post("/{document_id}/request-approval", response_model=DocumentRead)
def request_approval(document_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return lifecycle.request_approval(db, actor, document_id)


@router.post("/{document_id}/approve", response_model=DocumentRead)
def approve_document(document_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return lifecycle.approve_document(db, actor, document_id)


@router.post("/{document_id}/reject", response_model=DocumentRead)
def reject_document(
    document_id: UUID,
    payload: Optional[RejectRequest] = Body(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    reason = payload.reason if payload else None
    return lifecycle.reject_document(db, actor, document_id, reason)


@router.get("/{document_id}/versions", response_model=List[DocumentVersionRead])
def list_versions(document_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return lifecycle.list_versions(db, actor, document_id)


@router.get("/{document_id}/approval-history", response_model=List[ApprovalHistoryRead])
def approval_history(document_id: UUID, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return lifecycle.list_approval_history(db, actor, document_id)
