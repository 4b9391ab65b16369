from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import List
import logging

from aipm.db import get_db
from aipm.dependencies import get_current_actor
from aipm.errors import Conflict, ValidationError
from aipm.models import User
from aipm.schemas.auth import UserCreate, UserRead
from aipm.security import get_password_hash
from aipm.services.access import Actor, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/search", response_model=List[UserRead])
def search_users(
    q: str = Query("", max_length=255),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Search active users by email or name (admins, for adding project members)."""
    require_admin(actor)
    query = db.query(User).filter(User.is_active == True)  # noqa: E712
    term = q.strip()
    if term:
        pattern = f"%{term}%"
        query = query.filter(or_(User.email.ilike(pattern), User.name.ilike(pattern)))
    return query.order_by(User.email).limit(limit).all()


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    require_admin(actor)
    if not payload.name.strip():
        raise ValidationError("Name is required")
    if len(payload.password) < 8:
        raise ValidationError("Password must be at least 8 characters")
    if db.query(User).filter(User.email == payload.email).first():
        raise Conflict("A user with this email already exists")
    user = User(
        email=payload.email,
        name=payload.name.strip(),
        password_hash=get_password_hash(payload.password),
        role=payload.role.value,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.email} created by {actor.user_id}")
    return user
