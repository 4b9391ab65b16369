from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Boolean,
    CheckConstraint,
    UniqueConstraint,
    Index,
    JSON,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID as PostgresUUID
import uuid
from sqlalchemy.orm import relationship

from aipm.core.enums import DocumentStatus, GlobalRole
from aipm.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String, nullable=True)
    role = Column(String(20), default=GlobalRole.USER.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Project(Base):
    __tablename__ = "projects"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    creator = relationship("User")
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)
    documents = relationship("PlanningDocument", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)
    conversations = relationship("AIConversation", cascade="all, delete-orphan", passive_deletes=True)
    activities = relationship("ProjectActivity", cascade="all, delete-orphan", passive_deletes=True)


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(PostgresUUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    role = Column(String(50), nullable=False)
    added_by = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    added_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member_project_user"),
        Index("ix_project_member_user", "user_id"),
    )

    project = relationship("Project", back_populates="members")
    user = relationship("User", foreign_keys=[user_id])


class PlanningDocument(Base):
    __tablename__ = "planning_documents"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(PostgresUUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    workflow_step = Column(Integer, nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False, default="")
    status = Column(String(32), default=DocumentStatus.PRIVATE.value, nullable=False)
    version = Column(Integer, default=1, nullable=False)
    created_by = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    approved_by = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
    approved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("ix_planning_document_project_step", "project_id", "workflow_step"),
        Index("ix_planning_document_status", "status"),
        CheckConstraint("workflow_step BETWEEN 1 AND 9", name="ck_planning_document_step"),
    )

    project = relationship("Project", back_populates="documents")
    versions = relationship(
        "DocumentVersion",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentVersion.version",
    )
    history = relationship(
        "ApprovalHistoryEntry",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ApprovalHistoryEntry.id",
    )


class DocumentVersion(Base):
    __tablename__ = "document_versions"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    document_id = Column(
        PostgresUUID(as_uuid=True), ForeignKey("planning_documents.id", ondelete="CASCADE"), nullable=False
    )
    version = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    created_by = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("document_id", "version", name="uq_document_version_number"),)

    document = relationship("PlanningDocument", back_populates="versions")


class ApprovalHistoryEntry(Base):
    __tablename__ = "approval_history"

    # Integer key gives a tiebreak for entries sharing a created_at
    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(
        PostgresUUID(as_uuid=True), ForeignKey("planning_documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    action = Column(String(32), nullable=False)
    previous_status = Column(String(32), nullable=False)
    new_status = Column(String(32), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    document = relationship("PlanningDocument", back_populates="history")


class AIConversation(Base):
    __tablename__ = "ai_conversations"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(PostgresUUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    workflow_step = Column(Integer, nullable=False)
    user_id = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    messages = Column(JSONType, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "workflow_step", "user_id", name="uq_ai_conversation_key"),
    )


class ProjectActivity(Base):
    __tablename__ = "project_activities"

    id = Column(PostgresUUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    project_id = Column(PostgresUUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(PostgresUUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    activity_type = Column(String(50), nullable=False)
    target_type = Column(String(20), nullable=True)
    target_id = Column(String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json = Column("metadata", JSONType, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("ix_project_activity_project_created", "project_id", "created_at"),)
