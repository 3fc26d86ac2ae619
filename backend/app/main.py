import asyncio
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.config import get_settings
from app.db import postgres
from app.api import auth, consultant, law, qa, search, system


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("Starting Macau Law Knowledge Base backend...")

    for attempt in range(10):
        try:
            await postgres.create_pool()
            break
        except Exception as e:
            if attempt < 9:
                logger.warning(
                    f"DB connection attempt {attempt + 1} failed: {e}. Retrying in 2s..."
                )
                await asyncio.sleep(2)
            else:
                logger.error("Failed to connect to database after 10 attempts")
                raise

    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY is not set; AI features will fail")

    logger.info("Backend ready")
    yield

    await postgres.close_pool()
    logger.info("Backend shut down")


app = FastAPI(
    title="Macau Law Knowledge Base API",
    version="0.1.0",
    description="AI-assisted legal search, Q&A and consultation over Macau legislation",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(consultant.router)
app.include_router(search.router)
app.include_router(qa.router)
app.include_router(law.router)
app.include_router(system.router)


@app.get("/")
async def root():
    return {"message": "Macau Law Knowledge Base API", "version": "0.1.0", "docs": "/docs"}
