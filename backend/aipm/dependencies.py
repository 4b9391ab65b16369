from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from aipm.db import get_db
from aipm.services.access import Actor, resolve_actor
from aipm.services.completion import CompletionService
from aipm.services.conversations import ConversationManager

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> Actor:
    token = credentials.credentials if credentials else None
    return resolve_actor(db, token)


def get_conversation_manager(request: Request) -> ConversationManager:
    return request.app.state.conversation_manager


def get_completion_service(request: Request) -> CompletionService:
    return request.app.state.completion_service
