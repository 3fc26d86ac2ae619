"""
Vendor-neutral shapes exchanged with the generative model.

The consultant loop only sees these types; app.core.gemini translates them
to and from the Gemini REST payloads.
"""
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class TextPart(BaseModel):
    kind: Literal["text"] = "text"
    value: str


class ToolCallPart(BaseModel):
    kind: Literal["tool_call"] = "tool_call"
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    # Opaque provider token that must be echoed back with the call
    signature: str | None = None


class ToolResultPart(BaseModel):
    kind: Literal["tool_result"] = "tool_result"
    name: str
    response: dict[str, Any] = Field(default_factory=dict)


Part = Annotated[Union[TextPart, ToolCallPart, ToolResultPart], Field(discriminator="kind")]


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    parts: list[Part]


class ChatResult(BaseModel):
    parts: list[Part] = Field(default_factory=list)
    usage_tokens: int = 0
    finish_reason: str | None = None
    # Set when the provider reports a tool call it could not express as a part
    tool_call_signaled: bool = False

    @property
    def text(self) -> str | None:
        chunks = [p.value for p in self.parts if isinstance(p, TextPart) and p.value]
        return "".join(chunks) if chunks else None

    @property
    def tool_calls(self) -> list[ToolCallPart]:
        return [p for p in self.parts if isinstance(p, ToolCallPart)]

    @property
    def requested_tools(self) -> bool:
        return self.tool_call_signaled or bool(self.tool_calls)


class EmbeddingResult(BaseModel):
    values: list[float]
    token_count: int = 0


class ToolDeclaration(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]
