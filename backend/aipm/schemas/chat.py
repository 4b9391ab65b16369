from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel
from datetime import datetime

from aipm.core.enums import MessageRole


class ChatMessage(BaseModel):
    id: str
    role: MessageRole
    content: str
    timestamp: datetime


class ChatRequest(BaseModel):
    workflow_step: int
    message: str


class ConversationRead(BaseModel):
    project_id: UUID
    workflow_step: int
    user_id: UUID
    messages: List[ChatMessage]


class ChatResponse(BaseModel):
    message: ChatMessage
    conversation: ConversationRead


class ConversationSummary(BaseModel):
    workflow_step: int
    step_name: str
    message_count: int
    last_activity: Optional[datetime] = None
    last_message_preview: Optional[str] = None


class ConversationStatsRead(BaseModel):
    total_conversations: int
    total_messages: int
    most_active_step: Optional[int] = None
    activity_by_step: Dict[int, int]
    recent_activity_count: int


class ConversationHistoryRead(BaseModel):
    conversations: List[ConversationSummary]
    stats: ConversationStatsRead
