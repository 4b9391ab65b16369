from .entities import (
    User,
    Project,
    ProjectMember,
    PlanningDocument,
    DocumentVersion,
    ApprovalHistoryEntry,
    AIConversation,
    ProjectActivity,
    utcnow,
)

__all__ = [
    "User",
    "Project",
    "ProjectMember",
    "PlanningDocument",
    "DocumentVersion",
    "ApprovalHistoryEntry",
    "AIConversation",
    "ProjectActivity",
    "utcnow",
]
