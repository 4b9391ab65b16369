from typing import List, Literal, Optional
from uuid import UUID
from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime

from aipm.core.enums import DocumentStatus


class DocumentCreate(BaseModel):
    project_id: UUID
    workflow_step: int
    title: str
    content: str


class DocumentPatch(BaseModel):
    """Partial update; only fields present in the request body are applied."""
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[DocumentStatus] = None
    expected_version: Optional[int] = None  # Rejects the save with 409 if the stored version differs


class DocumentRead(BaseModel):
    id: UUID
    project_id: UUID
    workflow_step: int
    title: str
    content: str
    status: DocumentStatus
    version: int
    created_by: UUID
    approved_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DocumentVersionRead(BaseModel):
    id: UUID
    document_id: UUID
    version: int
    content: str
    created_by: UUID
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovalHistoryRead(BaseModel):
    id: int
    document_id: UUID
    user_id: UUID
    action: str
    previous_status: DocumentStatus
    new_status: DocumentStatus
    reason: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class RejectRequest(BaseModel):
    reason: Optional[str] = None


class GenerateDocumentRequest(BaseModel):
    project_id: UUID
    workflow_step: int


class PendingApprovalRead(DocumentRead):
    project_name: str
    step_name: str


class ConflictItem(BaseModel):
    type: Literal["content", "requirement", "design", "technical"] = "content"
    description: str
    conflicting_document: str = Field("", validation_alias=AliasChoices("conflicting_document", "conflictingDocument"))
    severity: Literal["low", "medium", "high"] = "medium"
    suggestion: str = ""


class ConflictAnalysis(BaseModel):
    """Model output as parsed from its JSON reply; camelCase keys are accepted."""
    has_conflicts: bool = Field(False, validation_alias=AliasChoices("has_conflicts", "hasConflicts"))
    conflict_level: Literal["none", "minor", "major", "critical"] = Field(
        "none", validation_alias=AliasChoices("conflict_level", "conflictLevel")
    )
    conflicts: List[ConflictItem] = []
    recommendations: List[str] = []
    summary: str = ""


class ConflictAnalysisRequest(BaseModel):
    project_id: UUID
    workflow_step: int
    title: str = ""
    content: str


class ConflictAnalysisRead(BaseModel):
    analysis: ConflictAnalysis
    analyzed_documents: int
    timestamp: datetime
