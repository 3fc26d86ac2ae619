import asyncio

from fastapi import APIRouter, Depends
from loguru import logger

from app.api.deps import get_gemini
from app.core.gemini import GeminiClient
from app.db import postgres
from app.models.system import HealthResponse

router = APIRouter(prefix="/api/system", tags=["system"])


async def check_postgres() -> bool:
    try:
        row = await postgres.fetch_one("SELECT 1")
        return row is not None
    except Exception as e:
        logger.warning("Postgres check failed: {}", e)
        return False


async def check_gemini(gemini: GeminiClient) -> bool:
    try:
        return await gemini.ping()
    except Exception as e:
        logger.warning("Gemini check failed: {}", e)
        return False


@router.get("/health", response_model=HealthResponse)
async def health(gemini: GeminiClient = Depends(get_gemini)) -> HealthResponse:
    postgres_ok, gemini_ok = await asyncio.gather(
        check_postgres(),
        check_gemini(gemini),
    )

    return HealthResponse(
        status="ok" if postgres_ok and gemini_ok else "error",
        dependencies={
            "postgres": "connected" if postgres_ok else "error",
            "gemini": "connected" if gemini_ok else "error",
        },
    )
