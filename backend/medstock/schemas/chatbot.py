from typing import List, Literal
from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatbotRequest(BaseModel):
    query: str = ""
    conversation_history: List[ChatMessage] = Field(default_factory=list)


class ChatbotResponse(BaseModel):
    reply: str
    conversation_id: int
    timestamp: str
