"""
Conversation manager.

One conversation per (project, workflow step, user). New messages are held
in a process-local buffer and written to ``ai_conversations`` on
``force_save``; reads merge the stored rows with whatever is still buffered.
Each key has its own lock so users chatting in parallel never wait on each
other. Locks are referenced weakly and vanish once no caller holds them.
An optional background thread flushes the buffer on a fixed interval.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID
import logging
import secrets
import threading
import time
import weakref

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aipm.core.enums import ActivityTarget, ActivityType, MessageRole
from aipm.core.workflow import step_name
from aipm.errors import DatabaseError, ValidationError
from aipm.models import AIConversation, utcnow
from aipm.schemas.chat import (
    ChatMessage,
    ConversationHistoryRead,
    ConversationStatsRead,
    ConversationSummary,
)
from aipm.services.activity import log_activity

logger = logging.getLogger(__name__)

ConversationKey = Tuple[UUID, int, UUID]

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)


@dataclass
class ConversationStats:
    message_count: int
    user_message_count: int
    assistant_message_count: int
    last_activity: Optional[datetime]


def new_message_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def merge_messages(saved: List[ChatMessage], pending: List[ChatMessage]) -> List[ChatMessage]:
    """Stored messages overlaid with buffered ones (same id: buffered wins), in timestamp order."""
    by_id: Dict[str, ChatMessage] = {}
    for message in saved:
        by_id[message.id] = message
    for message in pending:
        by_id[message.id] = message
    return sorted(by_id.values(), key=lambda m: m.timestamp)


class ConversationManager:
    def __init__(self, max_messages: int = 100, max_message_length: int = 5000):
        self.max_messages = max_messages
        self.max_message_length = max_message_length
        self._pending: Dict[ConversationKey, List[ChatMessage]] = {}
        self._locks = weakref.WeakValueDictionary()  # ConversationKey -> threading.Lock
        self._registry_lock = threading.Lock()
        self._autosave_thread: Optional[threading.Thread] = None
        self._autosave_stop = threading.Event()

    def _lock_for(self, key: ConversationKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def add_message(
        self, project_id: UUID, workflow_step: int, user_id: UUID, role: MessageRole, content: str
    ) -> ChatMessage:
        if not content or not content.strip():
            raise ValidationError("Message content is required")
        if role == MessageRole.USER and len(content) > self.max_message_length:
            raise ValidationError(f"Message must be at most {self.max_message_length} characters")
        key = (project_id, workflow_step, user_id)
        message = ChatMessage(id=new_message_id(), role=role, content=content, timestamp=utcnow())
        with self._lock_for(key):
            self._pending.setdefault(key, []).append(message)
        return message

    def pending_messages(self, project_id: UUID, workflow_step: int, user_id: UUID) -> List[ChatMessage]:
        key = (project_id, workflow_step, user_id)
        with self._lock_for(key):
            return list(self._pending.get(key, []))

    def load_conversation(
        self, db: Session, project_id: UUID, workflow_step: int, user_id: UUID, for_update: bool = False
    ) -> Optional[AIConversation]:
        query = db.query(AIConversation).filter(
            AIConversation.project_id == project_id,
            AIConversation.workflow_step == workflow_step,
            AIConversation.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def _saved_messages(record: Optional[AIConversation]) -> List[ChatMessage]:
        if record is None or not record.messages:
            return []
        return [ChatMessage.model_validate(item) for item in record.messages]

    def get_current_messages(
        self, db: Session, project_id: UUID, workflow_step: int, user_id: UUID
    ) -> List[ChatMessage]:
        record = self.load_conversation(db, project_id, workflow_step, user_id)
        pending = self.pending_messages(project_id, workflow_step, user_id)
        return merge_messages(self._saved_messages(record), pending)

    def force_save(
        self, db: Session, project_id: UUID, workflow_step: int, user_id: UUID
    ) -> Optional[AIConversation]:
        """Write buffered messages for one key; no-op when nothing is buffered."""
        key = (project_id, workflow_step, user_id)
        with self._lock_for(key):
            pending = list(self._pending.get(key, []))
            if not pending:
                return None
            try:
                record = self.load_conversation(db, project_id, workflow_step, user_id, for_update=True)
                merged = merge_messages(self._saved_messages(record), pending)[-self.max_messages:]
                payload = [message.model_dump(mode="json") for message in merged]
                if record is None:
                    record = AIConversation(
                        project_id=project_id,
                        workflow_step=workflow_step,
                        user_id=user_id,
                        messages=payload,
                    )
                    db.add(record)
                    db.flush()
                    log_activity(
                        db,
                        project_id=project_id,
                        user_id=user_id,
                        activity_type=ActivityType.AI_CONVERSATION_STARTED,
                        target_type=ActivityTarget.CONVERSATION,
                        target_id=record.id,
                        description=f"Started AI conversation for step {workflow_step}",
                        metadata={"workflow_step": workflow_step},
                    )
                else:
                    record.messages = payload
                    record.updated_at = utcnow()
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to save conversation {key}: {e}")
                raise DatabaseError("Failed to save conversation") from e
            self._pending.pop(key, None)
        db.refresh(record)
        logger.info(f"Saved {len(pending)} buffered message(s) for conversation {key}")
        return record

    def clear_conversation(self, db: Session, project_id: UUID, workflow_step: int, user_id: UUID) -> bool:
        """Drop buffered and stored messages; returns whether a stored conversation existed."""
        key = (project_id, workflow_step, user_id)
        with self._lock_for(key):
            self._pending.pop(key, None)
            try:
                record = self.load_conversation(db, project_id, workflow_step, user_id, for_update=True)
                if record is None:
                    return False
                db.delete(record)
                log_activity(
                    db,
                    project_id=project_id,
                    user_id=user_id,
                    activity_type=ActivityType.AI_CONVERSATION_CLEARED,
                    target_type=ActivityTarget.CONVERSATION,
                    target_id=record.id,
                    description=f"Cleared AI conversation for step {workflow_step}",
                    metadata={"workflow_step": workflow_step},
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to clear conversation {key}: {e}")
                raise DatabaseError("Failed to clear conversation") from e
        logger.info(f"Cleared conversation {key}")
        return True

    def conversation_stats(
        self, db: Session, project_id: UUID, workflow_step: int, user_id: UUID
    ) -> ConversationStats:
        messages = self.get_current_messages(db, project_id, workflow_step, user_id)
        return ConversationStats(
            message_count=len(messages),
            user_message_count=sum(1 for m in messages if m.role == MessageRole.USER),
            assistant_message_count=sum(1 for m in messages if m.role == MessageRole.ASSISTANT),
            last_activity=messages[-1].timestamp if messages else None,
        )

    def export_conversation(
        self,
        db: Session,
        project_id: UUID,
        workflow_step: int,
        user_id: UUID,
        project_name: str,
        fmt: str = "markdown",
    ) -> str:
        messages = self.get_current_messages(db, project_id, workflow_step, user_id)
        title = f"{project_name} - Step {workflow_step}: {step_name(workflow_step)}"
        exported_at = utcnow().strftime("%Y-%m-%d %H:%M:%S")

        if fmt == "text":
            lines = [title, f"Exported at {exported_at} UTC", ""]
            for message in messages:
                speaker = "User" if message.role == MessageRole.USER else "Assistant"
                lines.append(f"[{message.timestamp:%Y-%m-%d %H:%M:%S}] {speaker}: {message.content}")
            return "\n".join(lines) + "\n"
        if fmt != "markdown":
            raise ValidationError("Export format must be 'markdown' or 'text'")

        lines = [f"# {title}", "", f"_Exported at {exported_at} UTC_", ""]
        for message in messages:
            speaker = "User" if message.role == MessageRole.USER else "Assistant"
            lines.append(f"### {speaker} ({message.timestamp:%Y-%m-%d %H:%M:%S})")
            lines.append("")
            lines.append(message.content)
            lines.append("")
        return "\n".join(lines)

    def list_summaries(self, db: Session, project_id: UUID, user_id: UUID) -> ConversationHistoryRead:
        records = (
            db.query(AIConversation)
            .filter(AIConversation.project_id == project_id, AIConversation.user_id == user_id)
            .all()
        )
        steps = {record.workflow_step for record in records}
        with self._registry_lock:
            buffered_keys = list(self._pending.keys())
        steps.update(step for (pid, step, uid) in buffered_keys if pid == project_id and uid == user_id)

        saved_by_step = {record.workflow_step: record for record in records}
        summaries = []
        for step in sorted(steps):
            messages = merge_messages(
                self._saved_messages(saved_by_step.get(step)),
                self.pending_messages(project_id, step, user_id),
            )
            if not messages:
                continue
            summaries.append(
                ConversationSummary(
                    workflow_step=step,
                    step_name=step_name(step),
                    message_count=len(messages),
                    last_activity=messages[-1].timestamp,
                    last_message_preview=messages[-1].content[:100],
                )
            )

        activity_by_step = {summary.workflow_step: summary.message_count for summary in summaries}
        most_active_step = None
        if activity_by_step:
            most_active_step = max(sorted(activity_by_step), key=lambda step: activity_by_step[step])
        cutoff = utcnow() - RECENT_ACTIVITY_WINDOW
        stats = ConversationStatsRead(
            total_conversations=len(summaries),
            total_messages=sum(activity_by_step.values()),
            most_active_step=most_active_step,
            activity_by_step=activity_by_step,
            recent_activity_count=sum(
                1 for summary in summaries if summary.last_activity and summary.last_activity >= cutoff
            ),
        )
        return ConversationHistoryRead(conversations=summaries, stats=stats)

    def discard_project(self, project_id: UUID) -> None:
        with self._registry_lock:
            keys = [key for key in list(self._pending) if key[0] == project_id]
        for key in keys:
            with self._lock_for(key):
                self._pending.pop(key, None)
        if keys:
            logger.info(f"Discarded {len(keys)} buffered conversation(s) for project {project_id}")

    def flush_all(self, session_factory: Callable[[], Session]) -> int:
        """Save every buffered conversation; returns how many were written."""
        with self._registry_lock:
            keys = [key for key, messages in list(self._pending.items()) if messages]
        saved = 0
        for project_id, workflow_step, user_id in keys:
            db = session_factory()
            try:
                if self.force_save(db, project_id, workflow_step, user_id) is not None:
                    saved += 1
            except DatabaseError as e:
                logger.error(f"Could not flush conversation ({project_id}, {workflow_step}, {user_id}): {e}")
            finally:
                db.close()
        if keys:
            logger.info(f"Flushed {saved} buffered conversation(s)")
        return saved

    def start_autosave(self, session_factory: Callable[[], Session], interval_seconds: float) -> bool:
        """Flush the buffer every ``interval_seconds`` on a daemon thread; 0 disables it."""
        if interval_seconds <= 0:
            logger.info("Conversation autosave disabled")
            return False
        if self._autosave_thread is not None and self._autosave_thread.is_alive():
            return True
        self._autosave_stop.clear()

        def _run():
            while not self._autosave_stop.wait(interval_seconds):
                try:
                    self.flush_all(session_factory)
                except Exception as e:
                    logger.error(f"Conversation autosave failed: {e}")

        self._autosave_thread = threading.Thread(target=_run, name="conversation-autosave", daemon=True)
        self._autosave_thread.start()
        logger.info(f"Conversation autosave every {interval_seconds}s")
        return True

    def stop_autosave(self, timeout: float = 5.0) -> None:
        self._autosave_stop.set()
        if self._autosave_thread is not None:
            self._autosave_thread.join(timeout)
            self._autosave_thread = None
