import enum


class GlobalRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


class ProjectRole(str, enum.Enum):
    CONTENT_PLANNING = "content_planning"
    SERVICE_PLANNING = "service_planning"
    UX_PLANNING = "ux_planning"
    DEVELOPER = "developer"


class DocumentStatus(str, enum.Enum):
    PRIVATE = "private"
    PENDING_APPROVAL = "pending_approval"
    OFFICIAL = "official"
    REJECTED = "rejected"


class HistoryAction(str, enum.Enum):
    REQUESTED = "requested"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"  # pending_approval -> private
    REOPENED = "reopened"  # rejected -> private
    REVOKED = "revoked"  # official -> private/rejected


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ActivityType(str, enum.Enum):
    PROJECT_CREATED = "project_created"
    PROJECT_UPDATED = "project_updated"
    MEMBER_ADDED = "member_added"
    MEMBER_REMOVED = "member_removed"
    MEMBER_ROLE_CHANGED = "member_role_changed"
    DOCUMENT_CREATED = "document_created"
    DOCUMENT_UPDATED = "document_updated"
    DOCUMENT_APPROVAL_REQUESTED = "document_approval_requested"
    DOCUMENT_APPROVED = "document_approved"
    DOCUMENT_REJECTED = "document_rejected"
    DOCUMENT_STATUS_CHANGED = "document_status_changed"
    DOCUMENT_DELETED = "document_deleted"
    AI_CONVERSATION_STARTED = "ai_conversation_started"
    AI_CONVERSATION_CLEARED = "ai_conversation_cleared"


class ActivityTarget(str, enum.Enum):
    PROJECT = "project"
    MEMBER = "member"
    DOCUMENT = "document"
    CONVERSATION = "conversation"
