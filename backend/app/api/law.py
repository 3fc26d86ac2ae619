from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_document_store
from app.core.security import get_current_user
from app.db.documents import DocumentStore
from app.models.search import LawOut

router = APIRouter(prefix="/api/law", tags=["law"])


@router.get("/{law_id}", response_model=LawOut)
async def get_law(
    law_id: str,
    current_user: dict = Depends(get_current_user),
    documents: DocumentStore = Depends(get_document_store),
) -> LawOut:
    law = await documents.get_law(law_id)
    if not law:
        raise HTTPException(status_code=404, detail="Law document not found")
    return LawOut(**law)
