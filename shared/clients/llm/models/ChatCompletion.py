"""Request/response models of the generative provider contract."""

from typing import Literal

from pydantic import BaseModel


class ChatMessage(BaseModel):
    """A single role-tagged message sent to a generative model."""

    role: Literal["system", "user", "assistant"]
    content: str


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ChatCompletion(BaseModel):
    """Text completion plus token counters as returned by an LLM client."""

    content: str
    usage: TokenUsage = TokenUsage()
