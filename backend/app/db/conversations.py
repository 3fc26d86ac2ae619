"""
Consultant conversations, the per-user token ledger and the usage log.

Conversation messages are stored as a JSONB array on the conversations row;
the whole array is rewritten on every save.
"""
import uuid
from decimal import Decimal

from loguru import logger

from app.db import postgres
from app.models.consultant import ConversationMessage

FEATURE_SEARCH = "legal_search"
FEATURE_QA = "legal_qa"
FEATURE_CONSULTANT = "legal_consultant"

# Rough USD cost per token, for reporting only
COST_PER_TOKEN_USD = Decimal("0.00001")


class ConversationNotFound(LookupError):
    pass


def _dump(messages: list[ConversationMessage]) -> list[dict]:
    return [m.model_dump(mode="json", exclude_none=True) for m in messages]


class ConversationStore:
    async def get_conversation(self, conversation_id: str, user_id: str) -> dict | None:
        """Return the conversation row or None if not found / not owned by this user."""
        try:
            uuid.UUID(conversation_id)
        except ValueError:
            return None
        row = await postgres.fetch_one(
            """SELECT id::text AS id, title, model_used, total_tokens, messages,
                      created_at, updated_at
               FROM conversations
               WHERE id = $1::uuid AND user_id = $2::uuid""",
            conversation_id,
            user_id,
        )
        return dict(row) if row else None

    async def get_messages(self, conversation_id: str, user_id: str) -> list[ConversationMessage]:
        conv = await self.get_conversation(conversation_id, user_id)
        if not conv:
            return []
        return [ConversationMessage.model_validate(m) for m in conv["messages"] or []]

    async def list_conversations(self, user_id: str, limit: int = 20, offset: int = 0) -> list[dict]:
        rows = await postgres.fetch_all(
            """SELECT id::text AS id, title, model_used, total_tokens, created_at, updated_at
               FROM conversations
               WHERE user_id = $1::uuid
               ORDER BY updated_at DESC
               LIMIT $2 OFFSET $3""",
            user_id,
            limit,
            offset,
        )
        return [dict(r) for r in rows]

    async def delete_conversation(self, conversation_id: str, user_id: str) -> bool:
        if await self.get_conversation(conversation_id, user_id) is None:
            return False
        await postgres.execute(
            "DELETE FROM conversations WHERE id = $1::uuid AND user_id = $2::uuid",
            conversation_id,
            user_id,
        )
        return True

    async def save_conversation(
        self,
        user_id: str,
        conversation_id: str | None,
        messages: list[ConversationMessage],
        title: str | None,
        tokens_used: int,
        model_name: str,
    ) -> str:
        """
        Create the conversation when conversation_id is None, otherwise replace its
        messages and add tokens_used to its running total. Raises ConversationNotFound
        if the given id does not exist or belongs to another user.
        """
        payload = _dump(messages)

        if conversation_id:
            saved_id = await postgres.fetch_value(
                """UPDATE conversations SET
                       messages     = $1,
                       total_tokens = total_tokens + $2,
                       model_used   = $3,
                       updated_at   = NOW()
                   WHERE id = $4::uuid AND user_id = $5::uuid
                   RETURNING id::text""",
                payload,
                tokens_used,
                model_name,
                conversation_id,
                user_id,
            )
            if saved_id is None:
                raise ConversationNotFound(conversation_id)
            return saved_id

        return await postgres.fetch_value(
            """INSERT INTO conversations (user_id, title, model_used, total_tokens, messages)
               VALUES ($1::uuid, $2, $3, $4, $5)
               RETURNING id::text""",
            user_id,
            title or "新對話",
            model_name,
            tokens_used,
            payload,
        )

    async def update_token_usage(self, user_id: str, tokens_used: int) -> None:
        status = await postgres.execute(
            """UPDATE users SET
                   remaining_tokens = remaining_tokens - $2,
                   tokens_used      = tokens_used + $2,
                   updated_at       = NOW()
               WHERE id = $1::uuid""",
            user_id,
            tokens_used,
        )
        if status.endswith(" 0"):
            raise LookupError(f"user {user_id} not found")

    async def log_usage(
        self,
        user_id: str,
        feature: str,
        tokens_used: int,
        model_name: str,
    ) -> None:
        logger.info("[usage] user={} feature={} tokens={}", user_id, feature, tokens_used)
        await postgres.execute(
            """INSERT INTO token_usage (user_id, feature_type, tokens_used, model_used, cost_usd)
               VALUES ($1::uuid, $2, $3, $4, $5)""",
            user_id,
            feature,
            tokens_used,
            model_name,
            tokens_used * COST_PER_TOKEN_USD,
        )
