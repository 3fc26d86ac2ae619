"""Tests for Gemini payload translation."""

import pytest
from unittest.mock import AsyncMock, patch

from app.config import get_settings
from app.core.gemini import GeminiClient, parse_chat_response, to_contents
from app.core.search import SEARCH_TOOL
from app.models.llm import ChatMessage, TextPart, ToolCallPart, ToolResultPart
from app.models.search import SearchDocument


def test_parse_text_response():
    result = parse_chat_response({
        "candidates": [{
            "content": {"role": "model", "parts": [{"text": "你好"}, {"text": "！"}]},
            "finishReason": "STOP",
        }],
        "usageMetadata": {"promptTokenCount": 5, "candidatesTokenCount": 3, "totalTokenCount": 8},
    })
    assert result.text == "你好！"
    assert result.usage_tokens == 8
    assert not result.requested_tools


def test_parse_function_call_response():
    result = parse_chat_response({
        "candidates": [{
            "content": {"role": "model", "parts": [
                {"functionCall": {"name": "search_legal_knowledge_base", "args": {"keywords": "勞動 加班"}},
                 "thoughtSignature": "abc"},
            ]},
            "finishReason": "STOP",
        }],
        "usageMetadata": {"totalTokenCount": 12},
    })
    assert result.requested_tools
    call = result.tool_calls[0]
    assert call.name == "search_legal_knowledge_base"
    assert call.args == {"keywords": "勞動 加班"}
    assert call.signature == "abc"
    assert result.text is None


def test_parse_malformed_function_call_is_signaled():
    result = parse_chat_response({
        "candidates": [{"finishReason": "MALFORMED_FUNCTION_CALL"}],
        "usageMetadata": {"totalTokenCount": 4},
    })
    assert result is not None
    assert result.requested_tools
    assert result.tool_calls == []


def test_parse_thought_parts_skipped():
    result = parse_chat_response({
        "candidates": [{"content": {"parts": [
            {"text": "thinking...", "thought": True},
            {"text": "answer"},
        ]}}],
    })
    assert result.text == "answer"
    assert result.usage_tokens == 0


def test_parse_without_candidates_returns_none():
    assert parse_chat_response({"promptFeedback": {"blockReason": "SAFETY"}}) is None
    assert parse_chat_response({"candidates": [{"finishReason": "SAFETY"}]}) is None


def test_to_contents_roundtrips_tool_turns():
    contents = to_contents([
        ChatMessage(role="user", parts=[TextPart(value="q")]),
        ChatMessage(role="model", parts=[ToolCallPart(name="t", args={"keywords": "k"}, signature="s")]),
        ChatMessage(role="user", parts=[ToolResultPart(name="t", response={"content": "md"})]),
    ])
    assert contents == [
        {"role": "user", "parts": [{"text": "q"}]},
        {"role": "model", "parts": [{"functionCall": {"name": "t", "args": {"keywords": "k"}}, "thoughtSignature": "s"}]},
        {"role": "user", "parts": [{"functionResponse": {"name": "t", "response": {"content": "md"}}}]},
    ]


@pytest.mark.asyncio
async def test_generate_chat_builds_request_body():
    client = GeminiClient(get_settings())
    response = {"candidates": [{"content": {"parts": [{"text": "ok"}]}}], "usageMetadata": {"totalTokenCount": 3}}

    with patch.object(GeminiClient, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = response
        result = await client.generate_chat(
            [ChatMessage(role="user", parts=[TextPart(value="q")])],
            True,
            system_instruction="system",
            tools=[SEARCH_TOOL],
        )

    model, method, body = mock_post.call_args[0]
    assert model == get_settings().gemini_pro_model
    assert method == "generateContent"
    assert body["systemInstruction"] == {"parts": [{"text": "system"}]}
    declaration = body["tools"][0]["functionDeclarations"][0]
    assert declaration["name"] == "search_legal_knowledge_base"
    assert declaration["parameters"]["required"] == ["keywords"]
    assert result.text == "ok"


@pytest.mark.asyncio
async def test_embed_estimates_token_count():
    client = GeminiClient(get_settings())
    with patch.object(GeminiClient, "_post", new_callable=AsyncMock) as mock_post:
        mock_post.return_value = {"embedding": {"values": [0.5, 0.25]}}
        result = await client.embed("一二三四五")

    assert result.values == [0.5, 0.25]
    assert result.token_count == 2
    assert mock_post.call_args[0][1] == "embedContent"


@pytest.mark.asyncio
async def test_search_keywords_split_and_capped():
    client = GeminiClient(get_settings())
    text = "勞動關係\n\n加班\n補償\n僱主\n僱員\n合同"
    response = {"candidates": [{"content": {"parts": [{"text": text}]}}], "usageMetadata": {"totalTokenCount": 20}}
    with patch.object(GeminiClient, "_post", new_callable=AsyncMock, return_value=response):
        keywords, tokens = await client.generate_search_keywords("加班費")

    assert keywords == ["勞動關係", "加班", "補償", "僱主", "僱員"]
    assert tokens == 20


@pytest.mark.asyncio
async def test_legal_answer_includes_document_context():
    client = GeminiClient(get_settings())
    docs = [SearchDocument(id=1, content="第一條內容", metadata={}, similarity=0.87)]
    response = {"candidates": [{"content": {"parts": [{"text": "答案"}]}}], "usageMetadata": {"totalTokenCount": 30}}
    with patch.object(GeminiClient, "_post", new_callable=AsyncMock, return_value=response) as mock_post:
        answer, tokens = await client.generate_legal_answer("問題", docs)

    prompt = mock_post.call_args[0][2]["contents"][0]["parts"][0]["text"]
    assert "第一條內容" in prompt
    assert "87%" in prompt
    assert (answer, tokens) == ("答案", 30)
