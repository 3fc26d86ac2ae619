from pydantic import BaseModel, Field
from typing import Any
from datetime import date, datetime


class SearchDocument(BaseModel):
    id: int
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    similarity: float = 0.0

    @property
    def title(self) -> str:
        return self.metadata.get("title") or f"文件 #{self.id}"


class SearchRequest(BaseModel):
    query: str


class SearchResultOut(BaseModel):
    id: int
    content: str
    metadata: dict[str, Any]
    similarity: float
    title: str


class SearchResponse(BaseModel):
    query: str
    keywords: list[str]
    results: list[SearchResultOut]
    tokens_used: int
    remaining_tokens: int


class QARequest(BaseModel):
    question: str


class QAResponse(BaseModel):
    question: str
    answer: str
    sources: list[SearchResultOut]
    tokens_used: int
    remaining_tokens: int


class HistoryEntry(BaseModel):
    id: str
    created_at: datetime
    document_ids: list[int]
    tokens_used: int = 0
    query: str | None = None
    question: str | None = None
    answer: str | None = None


class HistoryList(BaseModel):
    history: list[HistoryEntry]
    total: int


class LawOut(BaseModel):
    id: int
    law_id: str | None = None
    title: str | None = None
    content: str | None = None
    category: str | None = None
    effective_date: date | str | None = None
    last_updated: datetime | str | None = None
    source_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    relate: dict[str, Any] | None = None
