"""
Duo Finance backend — FastAPI application entry-point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.database import init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(name)-30s  %(levelname)-5s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(
        "AI providers: primary %s, secondary %s",
        "configured" if settings.GEMINI_API_KEY else "NOT configured",
        "configured" if settings.OPENAI_API_KEY else "NOT configured",
    )
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Duo Finance",
    description="Family finance ledger with AI receipt, voice and advice helpers",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/")
async def root():
    return {"service": "Duo Finance", "version": "0.1.0", "status": "ok"}


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# ── Register API routers ─────────────────────────────────────────────────
from app.routers.auth import router as auth_router  # noqa: E402
from app.routers.family import router as family_router  # noqa: E402
from app.routers.ai import router as ai_router  # noqa: E402

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(family_router, prefix="/api", tags=["Family"])
app.include_router(ai_router, prefix="/api", tags=["AI"])
