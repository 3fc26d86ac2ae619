import httpx
from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from app.api.deps import get_conversation_store, get_document_store, get_gemini
from app.config import get_settings
from app.core.gemini import GeminiClient
from app.core.search import truncate_content
from app.core.security import get_current_user, require_feature, require_text, require_tokens
from app.core.tokens import estimate_request_tokens
from app.db.conversations import FEATURE_QA, ConversationStore
from app.db.documents import DocumentStore
from app.models.search import HistoryEntry, HistoryList, QARequest, QAResponse, SearchResultOut

router = APIRouter(prefix="/api/qa", tags=["qa"])

MAX_QUESTION_CHARS = 2000
QA_OVERHEAD_TOKENS = 200


@router.post("", response_model=QAResponse)
async def ask(
    body: QARequest,
    current_user: dict = Depends(get_current_user),
    gemini: GeminiClient = Depends(get_gemini),
    documents: DocumentStore = Depends(get_document_store),
    store: ConversationStore = Depends(get_conversation_store),
) -> QAResponse:
    settings = get_settings()
    require_feature(current_user, "qa")
    require_text(body.question, MAX_QUESTION_CHARS, field="question")
    require_tokens(current_user, estimate_request_tokens(body.question, QA_OVERHEAD_TOKENS))

    try:
        embedding = await gemini.embed(body.question)
        hits = await documents.search_documents(embedding.values, settings.qa_top_k)
        if not hits:
            raise HTTPException(
                status_code=400,
                detail={"error": "no_documents", "message": "No relevant legal documents found for your question"},
            )
        answer, answer_tokens = await gemini.generate_legal_answer(body.question, hits)
    except httpx.HTTPError as e:
        logger.exception("[qa] Gemini request failed")
        raise HTTPException(status_code=502, detail="AI processing failed") from e

    if not answer:
        raise HTTPException(status_code=502, detail="AI processing failed")

    tokens_used = embedding.token_count + answer_tokens
    user_id = current_user["id"]
    document_ids = [h.id for h in hits]

    await store.update_token_usage(user_id, tokens_used)
    await documents.save_qa_history(user_id, body.question, answer, document_ids, tokens_used)
    try:
        await store.log_usage(user_id, FEATURE_QA, tokens_used, settings.gemini_flash_model)
    except Exception as e:
        logger.warning("[qa] usage log failed: {}", e)

    return QAResponse(
        question=body.question,
        answer=answer,
        sources=[
            SearchResultOut(
                id=h.id,
                content=truncate_content(h.content),
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
async def qa_history(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    documents: DocumentStore = Depends(get_document_store),
) -> HistoryList:
    rows = await documents.list_qa_history(current_user["id"], limit, offset)
    return HistoryList(history=[HistoryEntry(**r) for r in rows], total=len(rows))
