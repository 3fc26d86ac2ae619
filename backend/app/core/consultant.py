"""
Streaming legal consultation: one turn of the multi-turn tool-call loop.

A turn sends the running conversation to the chat model. While the model asks
for the knowledge-base tool, each call is served by embedding its keywords and
running a similarity search, and the results go back to the model. Progress is
written to an EventChannel as it happens. Every turn ends with exactly one
terminal event (completion or a fatal error) followed by the channel closing.

Token accounting: every chat call's reported usage plus every embedding's
token count, multiplied by the pro surcharge when the pro model is used.
"""
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from app.core.context import (
    CONSULTANT_SYSTEM_PROMPT,
    conversation_title,
    seed_history,
    to_model_messages,
)
from app.core.search import SEARCH_TOOL, SEARCH_TOOL_NAME, format_search_results
from app.core.stream import EventChannel, StreamEvent
from app.db.conversations import FEATURE_CONSULTANT
from app.models.consultant import ConversationMessage, utc_now_iso
from app.models.llm import (
    ChatMessage,
    ChatResult,
    EmbeddingResult,
    ToolCallPart,
    ToolDeclaration,
    ToolResultPart,
)
from app.models.search import SearchDocument

GENERIC_ERROR = "處理請求時發生錯誤，請稍後再試"

STEP_PROCESSING = "正在處理您的問題..."
STEP_GENERATING = "正在生成回應..."
STEP_TOOL_CALLS = "正在處理工具調用..."
STEP_EMBEDDING = "正在生成搜尋向量..."
STEP_SEARCHING = "正在搜尋法律知識庫..."
STEP_RESUMING = "正在根據搜尋結果生成回應..."

NO_RESULTS = "未找到相關法律文件"


class ConsultationError(Exception):
    """Fatal condition inside a turn; message is shown to the user as-is."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GenerativeTextClient(Protocol):
    async def generate_chat(
        self,
        messages: list[ChatMessage],
        use_pro_model: bool = False,
        *,
        system_instruction: str | None = None,
        tools: list[ToolDeclaration] | None = None,
    ) -> ChatResult | None: ...


class EmbeddingClient(Protocol):
    async def embed(self, text: str) -> EmbeddingResult: ...


class DocumentSearchClient(Protocol):
    async def search_documents(self, embedding: list[float], match_count: int = 20) -> list[SearchDocument]: ...


class ConversationStore(Protocol):
    async def get_messages(self, conversation_id: str, user_id: str) -> list[ConversationMessage]: ...

    async def save_conversation(
        self,
        user_id: str,
        conversation_id: str | None,
        messages: list[ConversationMessage],
        title: str | None,
        tokens_used: int,
        model_name: str,
    ) -> str: ...

    async def update_token_usage(self, user_id: str, tokens_used: int) -> None: ...

    async def log_usage(self, user_id: str, feature: str, tokens_used: int, model_name: str) -> None: ...


@dataclass
class ConsultationTurn:
    user: dict
    message: str
    conversation_id: str | None = None
    history: list[ConversationMessage] | None = None
    use_pro_model: bool = False


@dataclass
class _TurnState:
    tokens: int = 0
    document_ids: list[int] = field(default_factory=list)

    def add_documents(self, documents: list[SearchDocument]) -> None:
        for doc in documents:
            if doc.id not in self.document_ids:
                self.document_ids.append(doc.id)


class ConsultationOrchestrator:
    def __init__(
        self,
        chat_client: GenerativeTextClient,
        embedding_client: EmbeddingClient,
        documents: DocumentSearchClient,
        store: ConversationStore,
        *,
        flash_model: str,
        pro_model: str,
        max_tool_rounds: int = 5,
        search_top_k: int = 20,
        pro_multiplier: int = 10,
        max_history_messages: int = 50,
    ):
        self.chat_client = chat_client
        self.embedding_client = embedding_client
        self.documents = documents
        self.store = store
        self.flash_model = flash_model
        self.pro_model = pro_model
        self.max_tool_rounds = max_tool_rounds
        self.search_top_k = search_top_k
        self.pro_multiplier = pro_multiplier
        self.max_history_messages = max_history_messages

    async def run(self, turn: ConsultationTurn, channel: EventChannel) -> None:
        """Drive one turn, writing events to channel. The channel is always closed on exit."""
        async with channel:
            try:
                await self._run_turn(turn, channel)
            except ConsultationError as e:
                logger.warning("[consultant] turn failed for user {}: {}", turn.user["id"], e.message)
                await channel.send(StreamEvent.error(e.message))
            except Exception:
                logger.exception("[consultant] unexpected error for user {}", turn.user["id"])
                await channel.send(StreamEvent.error(GENERIC_ERROR))

    async def _generate(self, messages: list[ChatMessage], turn: ConsultationTurn, state: _TurnState) -> ChatResult:
        result = await self.chat_client.generate_chat(
            messages,
            turn.use_pro_model,
            system_instruction=CONSULTANT_SYSTEM_PROMPT,
            tools=[SEARCH_TOOL],
        )
        if result is None:
            raise ConsultationError("AI 模型未返回有效回應")
        state.tokens += result.usage_tokens
        return result

    async def _run_turn(self, turn: ConsultationTurn, channel: EventChannel) -> None:
        user_id = turn.user["id"]
        state = _TurnState()

        await channel.send(StreamEvent.step(STEP_PROCESSING))

        stored = None
        if not turn.history and turn.conversation_id:
            stored = await self.store.get_messages(turn.conversation_id, user_id)
        history = seed_history(turn.history, stored)
        history.append(ConversationMessage(role="user", content=turn.message, timestamp=utc_now_iso()))

        await channel.send(StreamEvent.step(STEP_GENERATING))

        messages = to_model_messages(history, self.max_history_messages)
        result = await self._generate(messages, turn, state)

        rounds = 0
        while result.requested_tools:
            rounds += 1
            if rounds > self.max_tool_rounds:
                raise ConsultationError(f"工具調用次數超過上限 ({self.max_tool_rounds})，請簡化問題後再試")

            if result.text:
                await channel.send(StreamEvent.chunk(result.text))
            await channel.send(StreamEvent.step(STEP_TOOL_CALLS))

            calls = result.tool_calls
            if not calls:
                raise ConsultationError("AI 模型返回了無效的工具調用")

            responses = [await self._handle_tool_call(call, channel, state) for call in calls]

            messages.append(ChatMessage(role="model", parts=result.parts))
            messages.append(ChatMessage(role="user", parts=responses))

            await channel.send(StreamEvent.step(STEP_RESUMING))
            result = await self._generate(messages, turn, state)

        answer = result.text
        if not answer:
            raise ConsultationError("AI 模型未生成回答")
        await channel.send(StreamEvent.chunk(answer))

        tokens_used = state.tokens * self.pro_multiplier if turn.use_pro_model else state.tokens
        model_name = self.pro_model if turn.use_pro_model else self.flash_model

        history.append(ConversationMessage(
            role="assistant",
            content=answer,
            document_ids=list(state.document_ids),
            tokens_used=tokens_used,
            timestamp=utc_now_iso(),
        ))

        conversation_id = await self._persist(turn, history, tokens_used, model_name)

        await channel.send(StreamEvent.completion(
            conversationId=conversation_id,
            tokensUsed=tokens_used,
            remainingTokens=(turn.user.get("remaining_tokens") or 0) - tokens_used,
            documentIds=list(state.document_ids),
            modelUsed=model_name,
        ))
        logger.info(
            "[consultant] user={} conversation={} tokens={} rounds={}",
            user_id, conversation_id, tokens_used, rounds,
        )

    async def _handle_tool_call(
        self,
        call: ToolCallPart,
        channel: EventChannel,
        state: _TurnState,
    ) -> ToolResultPart:
        if call.name != SEARCH_TOOL_NAME:
            logger.warning("[consultant] model requested unknown tool {!r}", call.name)
            return ToolResultPart(name=call.name, response={"error": f"unknown tool: {call.name}"})

        keywords = str(call.args.get("keywords") or "").strip()
        if not keywords:
            await channel.send(StreamEvent.error(NO_RESULTS))
            return ToolResultPart(name=call.name, response={"content": ""})

        await channel.send(StreamEvent.step(STEP_EMBEDDING))
        embedding = await self.embedding_client.embed(keywords)
        state.tokens += embedding.token_count

        await channel.send(StreamEvent.step(STEP_SEARCHING))
        hits = await self.documents.search_documents(embedding.values, self.search_top_k)
        logger.debug("[consultant] keywords={!r} hits={}", keywords[:60], len(hits))

        if not hits:
            await channel.send(StreamEvent.error(NO_RESULTS))
            return ToolResultPart(name=call.name, response={"content": ""})

        state.add_documents(hits)
        return ToolResultPart(name=call.name, response={"content": format_search_results(hits)})

    async def _persist(
        self,
        turn: ConsultationTurn,
        history: list[ConversationMessage],
        tokens_used: int,
        model_name: str,
    ) -> str:
        """Ledger, conversation and usage log. Persistence faults never fail the turn."""
        user_id = turn.user["id"]

        try:
            await self.store.update_token_usage(user_id, tokens_used)
        except Exception:
            logger.exception("[consultant] token ledger update failed for user {}", user_id)

        title = None if turn.conversation_id else conversation_title(turn.message)
        try:
            conversation_id = await self.store.save_conversation(
                user_id,
                turn.conversation_id,
                history,
                title,
                tokens_used,
                model_name,
            )
        except Exception:
            conversation_id = f"temp_{uuid.uuid4().hex}"
            logger.exception("[consultant] saving conversation failed, using {}", conversation_id)

        try:
            await self.store.log_usage(user_id, FEATURE_CONSULTANT, tokens_used, model_name)
        except Exception as e:
            logger.warning("[consultant] usage log failed for user {}: {}", user_id, e)

        return conversation_id
