import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from app.api.deps import get_conversation_store, get_document_store, get_gemini
from app.config import get_settings
from app.core.gemini import GeminiClient
from app.core.security import get_current_user, require_feature, require_text, require_tokens
from app.core.tokens import estimate_request_tokens
from app.db.conversations import FEATURE_SEARCH, ConversationStore
from app.db.documents import DocumentStore
from app.models.search import (
    HistoryEntry,
    HistoryList,
    SearchRequest,
    SearchResponse,
    SearchResultOut,
)

router = APIRouter(prefix="/api/search", tags=["search"])

MAX_QUERY_CHARS = 1000
SEARCH_OVERHEAD_TOKENS = 50


@router.post("", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    current_user: dict = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini),
    documents: DocumentStore = Depends(get_document_store),
    store: ConversationStore = Depends(get_conversation_store),
) -> SearchResponse:
    settings = get_settings()
    require_feature(current_user, "search")
    require_text(body.query, MAX_QUERY_CHARS, field="query")
    require_tokens(current_user, estimate_request_tokens(body.query, SEARCH_OVERHEAD_TOKENS))

    try:
        keywords, keyword_tokens = await gemini.generate_search_keywords(body.query)
        embedding = await gemini.embed(body.query)
    except httpx.HTTPError as e:
        logger.exception("[search] Gemini request failed")
        raise HTTPException(status_code=502, detail="AI processing failed") from e

    hits = await documents.search_documents(embedding.values, settings.search_route_top_k)
    tokens_used = keyword_tokens + embedding.token_count
    user_id = current_user["id"]

    await store.update_token_usage(user_id, tokens_used)
    await documents.save_search_history(user_id, body.query, [h.id for h in hits], tokens_used)
    try:
        await store.log_usage(user_id, FEATURE_SEARCH, tokens_used, settings.gemini_embedding_model)
    except Exception as e:
        logger.warning("[search] usage log failed: {}", e)

    return SearchResponse(
        query=body.query,
        keywords=keywords,
        results=[
            SearchResultOut(
                id=h.id,
                content=h.content,
                metadata=h.metadata,
                similarity=h.similarity,
                title=h.title,
            )
            for h in hits
        ],
        tokens_used=tokens_used,
        remaining_tokens=(current_user.get("remaining_tokens") or 0) - tokens_used,
    )


@router.get("/history", response_model=HistoryList)
async def search_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    documents: DocumentStore = Depends(get_document_store),
) -> HistoryList:
    rows = await documents.list_search_history(current_user["id"], limit, offset)
    return HistoryList(history=[HistoryEntry(**r) for r in rows], total=len(rows))
