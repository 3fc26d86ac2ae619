import asyncio

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from loguru import logger

from app.api.deps import get_conversation_store, get_orchestrator
from app.config import get_settings
from app.core.consultant import ConsultationOrchestrator, ConsultationTurn
from app.core.security import (
    get_current_user,
    require_feature,
    require_text,
    require_tokens,
)
from app.core.stream import EventChannel
from app.core.tokens import estimate_request_tokens
from app.db.conversations import ConversationStore
from app.models.consultant import (
    ConsultantRequest,
    ConversationList,
    ConversationOut,
    ConversationSummary,
)

router = APIRouter(prefix="/api/consultant", tags=["consultant"])


@router.post("")
async def consult(
    body: ConsultantRequest,
    current_user: dict = Depends(get_current_user),
    orchestrator: ConsultationOrchestrator = Depends(get_orchestrator),
):
    settings = get_settings()

    # Pre-flight checks before streaming starts; can't change status mid-stream
    require_feature(current_user, "consultant")
    require_text(body.message, settings.consultant_max_message_chars)
    if body.use_pro_model:
        require_feature(current_user, "pro_model")

    multiplier = settings.pro_model_multiplier if body.use_pro_model else 1
    estimated = estimate_request_tokens(body.message, settings.consultant_token_overhead, multiplier)
    require_tokens(current_user, estimated)

    turn = ConsultationTurn(
        user=current_user,
        message=body.message,
        conversation_id=body.conversation_id,
        history=body.conversation_history,
        use_pro_model=body.use_pro_model,
    )
    channel = EventChannel()

    async def stream_response():
        producer = asyncio.create_task(orchestrator.run(turn, channel))
        try:
            async for event in channel.events():
                yield event.to_sse()
            await producer
        finally:
            # Client went away mid-turn: stop the in-flight upstream calls
            if not producer.done():
                logger.info("[consultant] client disconnected, cancelling turn for user {}", current_user["id"])
                producer.cancel()
            channel.close()

    return StreamingResponse(
        stream_response(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@router.get("/conversations", response_model=ConversationList)
async def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationList:
    require_feature(current_user, "consultant")
    rows = await store.list_conversations(current_user["id"], limit, offset)
    return ConversationList(
        conversations=[ConversationSummary(**r) for r in rows],
        total=len(rows),
    )


@router.get("/conversations/{conversation_id}", response_model=ConversationOut)
async def get_conversation(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
) -> ConversationOut:
    require_feature(current_user, "consultant")
    conv = await store.get_conversation(conversation_id, current_user["id"])
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationOut(**conv)


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(
    conversation_id: str,
    current_user: dict = Depends(get_current_user),
    store: ConversationStore = Depends(get_conversation_store),
):
    require_feature(current_user, "consultant")
    if not await store.delete_conversation(conversation_id, current_user["id"]):
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.info("Deleted conversation {} for user {}", conversation_id, current_user["id"])
    return {"conversation_id": conversation_id, "deleted": True}
