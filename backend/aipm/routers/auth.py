from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from aipm.db import get_db
from aipm.dependencies import get_current_actor
from aipm.errors import Unauthenticated
from aipm.models import User
from aipm.schemas import LoginRequest, Token, UserRead
from aipm.security import verify_password, create_access_token
from aipm.services.access import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=Token)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    logger.info(f"Login request received: email={payload.email}")
    user = db.query(User).filter(User.email == payload.email).first()
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        logger.warning(f"Login failed for {payload.email}")
        raise Unauthenticated("Invalid credentials")
    token = create_access_token(str(user.id))
    logger.info(f"Login successful for user: {user.email}")
    return Token(access_token=token, user=UserRead.model_validate(user))


@router.get("/me", response_model=UserRead)
def me(actor: Actor = Depends(get_current_actor), db: Session = Depends(get_db)):
    return db.query(User).filter(User.id == actor.user_id).first()
