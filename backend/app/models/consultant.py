from pydantic import BaseModel, ConfigDict, Field
from typing import Literal
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConversationMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Literal["user", "assistant"]
    content: str
    document_ids: list[int] | None = Field(default=None, alias="documentIds")
    tokens_used: int | None = Field(default=None, alias="tokensUsed")
    timestamp: str = Field(default_factory=utc_now_iso)


class ConsultantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: str | None = Field(default=None, alias="conversationId")
    conversation_history: list[ConversationMessage] | None = Field(
        default=None, alias="conversationHistory"
    )
    use_pro_model: bool = Field(default=False, alias="useProModel")


class ConversationSummary(BaseModel):
    id: str
    title: str
    model_used: str | None = None
    total_tokens: int = 0
    created_at: datetime
    updated_at: datetime


class ConversationOut(ConversationSummary):
    messages: list[ConversationMessage]


class ConversationList(BaseModel):
    conversations: list[ConversationSummary]
    total: int
