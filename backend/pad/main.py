"""Planted Availability API - Main FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pad.api import changelog, discovered_venues
from pad.config import get_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.scheduler_enabled:
        from pad.jobs.scheduler import start_scheduler

        scheduler = start_scheduler()
        yield
        scheduler.shutdown()
    else:
        yield


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Review pipeline for venues and dishes with planted products on delivery platforms",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register API routers
app.include_router(discovered_venues.router, prefix="/api/v1")
app.include_router(changelog.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
    }
