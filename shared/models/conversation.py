"""Pydantic models for short-term conversation memory."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str
    timestamp: datetime


class ConversationHistory(BaseModel):
    """Per-user message history, oldest message first."""

    user_id: str
    messages: list[ConversationMessage] = []
    created_at: datetime
    updated_at: datetime
