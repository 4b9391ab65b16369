from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse, StreamingResponse
from sqlalchemy.orm import Session
from typing import Callable, Iterator, List
from uuid import UUID
import json
import logging

from aipm.core.enums import MessageRole
from aipm.core.workflow import is_valid_step
from aipm.db import SessionLocal, get_db
from aipm.dependencies import get_completion_service, get_conversation_manager, get_current_actor
from aipm.errors import AIpmError, ErrorKind, ValidationError
from aipm.models import Project
from aipm.schemas import ChatMessage, ChatRequest, ChatResponse, ConversationHistoryRead, ConversationRead
from aipm.services.access import Actor, authorize_project_access, get_project_or_404
from aipm.services.completion import CompletionService, screen_prompt
from aipm.services.conversations import ConversationManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


def _check_step(workflow_step: int) -> int:
    if not is_valid_step(workflow_step):
        raise ValidationError("Workflow step must be an integer between 1 and 9")
    return workflow_step


def _project_context(project: Project) -> str:
    return f"Project name: {project.name}\nProject description: {project.description or 'None'}"


def _sse(payload) -> str:
    return f"data: {json.dumps(payload)}\n\n"


def _conversation(
    db: Session, conversations: ConversationManager, project_id: UUID, workflow_step: int, actor: Actor
) -> ConversationRead:
    return ConversationRead(
        project_id=project_id,
        workflow_step=workflow_step,
        user_id=actor.user_id,
        messages=conversations.get_current_messages(db, project_id, workflow_step, actor.user_id),
    )


def stream_reply(
    conversations: ConversationManager,
    completion: CompletionService,
    project_id: UUID,
    workflow_step: int,
    user_id: UUID,
    history: List[ChatMessage],
    context: str,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Iterator[str]:
    """SSE frames for one streamed reply.

    The buffer is saved even when the client goes away mid-stream; the
    assistant message only exists once the reply completed.
    """
    save_error = None
    try:
        sent = ""
        for chunk in completion.generate_streaming_response(history, workflow_step, context):
            if chunk.error:
                yield _sse({"error": ErrorKind.AI_SERVICE_ERROR.value, "message": chunk.error})
                break
            if chunk.is_complete:
                conversations.add_message(project_id, workflow_step, user_id, MessageRole.ASSISTANT, chunk.content)
                break
            delta = chunk.content[len(sent):]
            sent = chunk.content
            if delta:
                yield _sse({"content": delta})
    finally:
        session = session_factory()
        try:
            conversations.force_save(session, project_id, workflow_step, user_id)
        except AIpmError as e:
            logger.error(f"Failed to store streamed conversation for project {project_id} step {workflow_step}: {e}")
            save_error = e
        finally:
            session.close()

    if save_error is not None:
        yield _sse(save_error.to_dict())
    yield "data: [DONE]\n\n"


@router.post("", response_model=ChatResponse)
def send_message(
    payload: ChatRequest,
    project_id: UUID = Query(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
    completion: CompletionService = Depends(get_completion_service),
):
    authorize_project_access(db, actor, project_id)
    step = _check_step(payload.workflow_step)
    project = get_project_or_404(db, project_id)
    screen_prompt(payload.message)

    conversations.add_message(project_id, step, actor.user_id, MessageRole.USER, payload.message)
    try:
        history = conversations.get_current_messages(db, project_id, step, actor.user_id)
        reply = completion.generate_response(history, step, _project_context(project))
        assistant_message = conversations.add_message(project_id, step, actor.user_id, MessageRole.ASSISTANT, reply)
    finally:
        conversations.force_save(db, project_id, step, actor.user_id)

    return ChatResponse(
        message=assistant_message,
        conversation=_conversation(db, conversations, project_id, step, actor),
    )


@router.post("/stream")
def stream_message(
    payload: ChatRequest,
    project_id: UUID = Query(...),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
    completion: CompletionService = Depends(get_completion_service),
):
    """Send a message and stream the reply as server-sent events.

    Frames are ``{"content": <delta>}``, at most one ``{"error": ..., "message": ...}``,
    then ``[DONE]``. The assistant message is stored only once the reply is complete.
    """
    authorize_project_access(db, actor, project_id)
    step = _check_step(payload.workflow_step)
    project = get_project_or_404(db, project_id)
    context = _project_context(project)
    user_id = actor.user_id
    screen_prompt(payload.message)

    conversations.add_message(project_id, step, user_id, MessageRole.USER, payload.message)
    history = conversations.get_current_messages(db, project_id, step, user_id)

    return StreamingResponse(
        stream_reply(conversations, completion, project_id, step, user_id, history, context),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.get("", response_model=ConversationRead)
def get_conversation(
    project_id: UUID,
    workflow_step: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
):
    authorize_project_access(db, actor, project_id)
    step = _check_step(workflow_step)
    return _conversation(db, conversations, project_id, step, actor)


@router.delete("")
def clear_conversation(
    project_id: UUID,
    workflow_step: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
):
    authorize_project_access(db, actor, project_id)
    step = _check_step(workflow_step)
    cleared = conversations.clear_conversation(db, project_id, step, actor.user_id)
    return {"success": True, "cleared": cleared}


@router.get("/history", response_model=ConversationHistoryRead)
def conversation_history(
    project_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
):
    authorize_project_access(db, actor, project_id)
    return conversations.list_summaries(db, project_id, actor.user_id)


@router.get("/export")
def export_conversation(
    project_id: UUID,
    workflow_step: int,
    format: str = Query("markdown", pattern="^(markdown|text)$"),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    conversations: ConversationManager = Depends(get_conversation_manager),
):
    authorize_project_access(db, actor, project_id)
    step = _check_step(workflow_step)
    project = get_project_or_404(db, project_id)
    body = conversations.export_conversation(db, project_id, step, actor.user_id, project.name, format)
    extension = "md" if format == "markdown" else "txt"
    media_type = "text/markdown" if format == "markdown" else "text/plain"
    return PlainTextResponse(
        body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="conversation-step-{step}.{extension}"'},
    )
