from loguru import logger

from app.models.consultant import ConversationMessage
from app.models.llm import ChatMessage, TextPart

TITLE_PREFIX = "諮詢: "
TITLE_CHARS = 50

CONSULTANT_SYSTEM_PROMPT = (
    "你是專業的澳門法律顧問AI助手。請基於對話歷史，提供專業的法律建議和指導。\n\n"
    "請遵循以下原則：\n"
    "1. 提供專業、準確的澳門法律建議\n"
    "2. 使用繁體中文回答\n"
    "3. 保持對話的連貫性\n"
    "4. 如需更多信息，主動詢問\n"
    "5. 需要引用具體法律條文時，使用 search_legal_knowledge_base 工具搜尋法律知識庫，"
    "並在回答中註明所引用的文件\n"
    "6. 保持專業但友善的語調\n"
    "7. 如果涉及複雜法律問題，建議尋求專業律師協助"
)


def seed_history(
    supplied: list[ConversationMessage] | None,
    stored: list[ConversationMessage] | None,
) -> list[ConversationMessage]:
    """
    Working history for a turn: the caller's history when non-empty, else the
    stored conversation, else nothing. Always a full copy; this is what gets saved.
    """
    if supplied:
        return list(supplied)
    if stored:
        return list(stored)
    return []


def to_model_messages(
    history: list[ConversationMessage],
    max_messages: int | None = None,
) -> list[ChatMessage]:
    """
    Relabel conversation roles for the model: assistant turns become model turns.
    With max_messages, only the most recent messages are sent.
    """
    if max_messages is not None and len(history) > max_messages:
        logger.debug("[context] sending last {} of {} messages to the model", max_messages, len(history))
        history = history[-max_messages:]
    return [
        ChatMessage(
            role="model" if m.role == "assistant" else "user",
            parts=[TextPart(value=m.content)],
        )
        for m in history
        if m.content
    ]


def conversation_title(first_message: str) -> str:
    return TITLE_PREFIX + first_message.strip()[:TITLE_CHARS] + "..."
