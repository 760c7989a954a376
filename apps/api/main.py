"""
Tab Fusion - FastAPI Backend
Adaptive fusion of rule, model, and LLM tab categorizations.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_trust_settings
from database import engine, Base
import models  # noqa: F401
from routers import categorize, feedback, health, trust
from services.fusion import build_fusion_services

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(level: str) -> None:
    """Install a stderr handler once and apply LOG_LEVEL to the root logger."""
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger().setLevel(level.upper())


configure_logging(settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Tab Fusion API...")
    validate_trust_settings(settings)
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")

    fusion = build_fusion_services(settings)
    await fusion.tracker.load()
    app.state.fusion = fusion
    weights = fusion.tracker.get_trust_weights()
    print(
        f"⚖️ Trust weights loaded: rules={weights.rules:.2f} "
        f"model={weights.model:.2f} llm={weights.llm:.2f} (trainer={fusion.trainer.name})"
    )
    yield
    # Shutdown
    await fusion.feedback.wait_for_training()
    app.state.fusion = None
    print("👋 Shutting down API...")


app = FastAPI(
    title="Tab Fusion API",
    description="Trust-weighted fusion of tab categorizations with feedback-driven learning",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(categorize.router, prefix="/categorize", tags=["Categorize"])
app.include_router(trust.router, prefix="/trust", tags=["Trust"])
app.include_router(feedback.router, prefix="/feedback", tags=["Feedback"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Tab Fusion API",
        "version": "0.1.0",
        "status": "running"
    }
