"""
Thin async Gemini client using httpx against the REST API.

Translates between app.models.llm types and Gemini's generateContent /
embedContent payloads. Returns None from generate_chat when the API answers
without a usable candidate; HTTP failures raise httpx.HTTPStatusError.
"""
import httpx
from loguru import logger

from app.config import Settings, get_settings
from app.core.tokens import count_tokens
from app.models.llm import (
    ChatMessage,
    ChatResult,
    EmbeddingResult,
    Part,
    TextPart,
    ToolCallPart,
    ToolDeclaration,
    ToolResultPart,
)
from app.models.search import SearchDocument

MALFORMED_FUNCTION_CALL = "MALFORMED_FUNCTION_CALL"


def _part_to_wire(part: Part) -> dict:
    if isinstance(part, TextPart):
        return {"text": part.value}
    if isinstance(part, ToolCallPart):
        wire: dict = {"functionCall": {"name": part.name, "args": part.args}}
        if part.signature:
            wire["thoughtSignature"] = part.signature
        return wire
    return {"functionResponse": {"name": part.name, "response": part.response}}


def _part_from_wire(raw: dict) -> tuple[Part | None, bool]:
    """Returns (part, malformed_call)."""
    if "functionCall" in raw:
        call = raw["functionCall"] or {}
        name = call.get("name")
        if not name:
            return None, True
        return ToolCallPart(
            name=name,
            args=call.get("args") or {},
            signature=raw.get("thoughtSignature"),
        ), False
    if raw.get("thought"):
        return None, False
    if "text" in raw:
        return TextPart(value=raw["text"]), False
    return None, False


def to_contents(messages: list[ChatMessage]) -> list[dict]:
    return [
        {"role": m.role, "parts": [_part_to_wire(p) for p in m.parts]}
        for m in messages
    ]


def parse_chat_response(data: dict) -> ChatResult | None:
    candidates = data.get("candidates") or []
    if not candidates:
        logger.warning("[gemini] response without candidates: {}", data.get("promptFeedback"))
        return None

    candidate = candidates[0]
    finish_reason = candidate.get("finishReason")
    parts: list[Part] = []
    signaled = finish_reason == MALFORMED_FUNCTION_CALL

    for raw in (candidate.get("content") or {}).get("parts") or []:
        part, malformed = _part_from_wire(raw)
        signaled = signaled or malformed
        if part is not None:
            parts.append(part)

    if not parts and not signaled:
        logger.warning("[gemini] empty candidate, finishReason={}", finish_reason)
        return None

    usage = (data.get("usageMetadata") or {}).get("totalTokenCount") or 0
    return ChatResult(
        parts=parts,
        usage_tokens=int(usage),
        finish_reason=finish_reason,
        tool_call_signaled=signaled,
    )


class GeminiClient:
    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def _url(self, model: str, method: str) -> str:
        return f"{self.settings.gemini_base_url}/models/{model}:{method}"

    @property
    def _headers(self) -> dict:
        return {"x-goog-api-key": self.settings.gemini_api_key}

    async def _post(self, model: str, method: str, body: dict) -> dict:
        async with httpx.AsyncClient(timeout=self.settings.gemini_timeout) as client:
            resp = await client.post(self._url(model, method), json=body, headers=self._headers)
            if resp.status_code != 200:
                logger.error("[gemini] {} {} failed {}: {}", model, method, resp.status_code, resp.text[:500])
            resp.raise_for_status()
            return resp.json()

    async def generate_chat(
        self,
        messages: list[ChatMessage],
        use_pro_model: bool = False,
        *,
        system_instruction: str | None = None,
        tools: list[ToolDeclaration] | None = None,
    ) -> ChatResult | None:
        model = self.settings.chat_model(use_pro_model)
        body: dict = {"contents": to_contents(messages)}
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}
        if tools:
            body["tools"] = [{
                "functionDeclarations": [
                    {"name": t.name, "description": t.description, "parameters": t.parameters}
                    for t in tools
                ]
            }]

        data = await self._post(model, "generateContent", body)
        result = parse_chat_response(data)
        if result is not None:
            logger.debug(
                "[gemini] {} tokens={} tool_calls={}",
                model, result.usage_tokens, len(result.tool_calls),
            )
        return result

    async def generate_text(self, prompt: str, use_pro_model: bool = False) -> ChatResult | None:
        return await self.generate_chat(
            [ChatMessage(role="user", parts=[TextPart(value=prompt)])],
            use_pro_model,
        )

    async def embed(self, text: str) -> EmbeddingResult:
        """Embed text. The embedding API reports no usage, so the cost is estimated."""
        model = self.settings.gemini_embedding_model
        data = await self._post(
            model,
            "embedContent",
            {"model": f"models/{model}", "content": {"parts": [{"text": text}]}},
        )
        return EmbeddingResult(values=data["embedding"]["values"], token_count=count_tokens(text))

    async def generate_search_keywords(self, query: str) -> tuple[list[str], int]:
        """Ask the flash model for 3-5 legal search keywords. Returns (keywords, tokens)."""
        prompt = (
            "作為澳門法律專家，分析以下用戶查詢並生成最佳的搜索關鍵詞：\n\n"
            f'用戶查詢: "{query}"\n\n'
            "請提供3-5個最相關的法律搜索關鍵詞，這些關鍵詞應該：\n"
            "1. 包含核心法律概念\n"
            "2. 使用澳門法律術語\n"
            "3. 涵蓋相關的法律領域\n"
            "4. 適合向量搜索\n\n"
            "只返回關鍵詞，每行一個，不要其他解釋。"
        )
        result = await self.generate_text(prompt)
        if result is None or not result.text:
            return [], result.usage_tokens if result else 0
        keywords = [line.strip() for line in result.text.splitlines() if line.strip()]
        return keywords[:5], result.usage_tokens

    async def generate_legal_answer(
        self,
        question: str,
        documents: list[SearchDocument],
    ) -> tuple[str | None, int]:
        """Answer a question from retrieved documents. Returns (answer, tokens)."""
        context = "\n".join(
            f"文件 {n} (相關度: {round(doc.similarity * 100)}%):\n{doc.content}\n---"
            for n, doc in enumerate(documents, start=1)
        )
        prompt = (
            "你是澳門法律專家AI助手。基於以下法律文件內容，回答用戶的法律問題。\n\n"
            f'用戶問題: "{question}"\n\n'
            f"相關法律文件:\n{context}\n\n"
            "請提供專業、準確的法律答案，要求：\n"
            "1. 基於提供的法律文件內容\n"
            "2. 使用繁體中文回答\n"
            "3. 結構清晰，包含要點\n"
            "4. 如果信息不足，請說明限制\n"
            "5. 提及相關的法律條文或規定\n\n"
            "答案:"
        )
        result = await self.generate_text(prompt)
        if result is None:
            return None, 0
        return result.text, result.usage_tokens

    async def ping(self) -> bool:
        async with httpx.AsyncClient(timeout=2.0) as client:
            resp = await client.get(
                f"{self.settings.gemini_base_url}/models/{self.settings.gemini_flash_model}",
                headers=self._headers,
            )
            return resp.status_code == 200
