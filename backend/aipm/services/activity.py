"""
Project activity feed.

Every project, membership, document and conversation change appends a
ProjectActivity row in the caller's transaction.
"""
from typing import Optional, Dict, Any, List
from datetime import datetime
from sqlalchemy.orm import Session
from uuid import UUID
import logging

from aipm.core.enums import ActivityType, ActivityTarget
from aipm.models import ProjectActivity

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    project_id: UUID,
    user_id: Optional[UUID],
    activity_type: ActivityType,
    target_type: Optional[ActivityTarget] = None,
    target_id: Any = None,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> ProjectActivity:
    """
    Record an activity for a project.

    Args:
        db: Database session; the caller commits
        project_id: Project the activity belongs to
        user_id: Acting user, if any
        activity_type: What happened (from ActivityType)
        target_type: Kind of entity acted upon
        target_id: Id of that entity
        description: Human-readable summary
        metadata: Extra JSON-serializable detail
    """
    activity = ProjectActivity(
        project_id=project_id,
        user_id=user_id,
        activity_type=activity_type.value,
        target_type=target_type.value if target_type else None,
        target_id=str(target_id) if target_id is not None else None,
        description=description,
        metadata_json=_jsonable(metadata) if metadata else None,
    )
    db.add(activity)
    db.flush()
    logger.info(
        f"Activity: {activity_type.value} on {activity.target_type} {activity.target_id} "
        f"by user {user_id} in project {project_id}"
    )
    return activity


def list_activities(db: Session, project_id: UUID, limit: int = 50) -> List[ProjectActivity]:
    return (
        db.query(ProjectActivity)
        .filter(ProjectActivity.project_id == project_id)
        .order_by(ProjectActivity.created_at.desc())
        .limit(limit)
        .all()
    )


def model_to_dict(model, fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Convert a SQLAlchemy model to a JSON-friendly dictionary for activity metadata.
    """
    result = {}
    for column in model.__table__.columns:
        if fields is not None and column.key not in fields:
            continue
        result[column.key] = getattr(model, column.key)
    return _jsonable(result)


def _jsonable(data: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for key, value in data.items():
        if isinstance(value, UUID):
            result[key] = str(value)
        elif isinstance(value, datetime):
            result[key] = value.isoformat()
        elif hasattr(value, "value") and isinstance(getattr(value, "value"), str):
            result[key] = value.value
        else:
            result[key] = value
    return result
