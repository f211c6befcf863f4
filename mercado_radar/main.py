"""Mercado Radar API - Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mercado_radar import __version__
from mercado_radar.api import pipeline, promotions
from mercado_radar.config import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    from mercado_radar.database import close_db, init_models

    await init_models()
    if settings.scheduler_enabled:
        from mercado_radar.jobs.scheduler import start_scheduler

        scheduler = start_scheduler()
        yield
        scheduler.shutdown()
    else:
        yield
    await close_db()


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Promoções de supermercados extraídas dos posts do Instagram",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(pipeline.router, prefix="/api/v1")
app.include_router(promotions.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {
        "app": "Mercado Radar",
        "version": __version__,
        "docs": "/docs",
    }
