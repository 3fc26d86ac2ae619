from functools import lru_cache

from app.config import get_settings
from app.core.consultant import ConsultationOrchestrator
from app.core.gemini import GeminiClient
from app.db.conversations import ConversationStore
from app.db.documents import DocumentStore


@lru_cache(maxsize=1)
def get_gemini() -> GeminiClient:
    return GeminiClient(get_settings())


@lru_cache(maxsize=1)
def get_document_store() -> DocumentStore:
    return DocumentStore()


@lru_cache(maxsize=1)
def get_conversation_store() -> ConversationStore:
    return ConversationStore()


@lru_cache(maxsize=1)
def get_orchestrator() -> ConsultationOrchestrator:
    settings = get_settings()
    gemini = get_gemini()
    return ConsultationOrchestrator(
        chat_client=gemini,
        embedding_client=gemini,
        documents=get_document_store(),
        store=get_conversation_store(),
        flash_model=settings.gemini_flash_model,
        pro_model=settings.gemini_pro_model,
        max_tool_rounds=settings.consultant_max_tool_rounds,
        search_top_k=settings.search_top_k,
        pro_multiplier=settings.pro_model_multiplier,
        max_history_messages=settings.consultant_max_history_messages,
    )
