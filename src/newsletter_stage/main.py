# src/newsletter_stage/main.py
"""Main entry point for the newsletter application."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from newsletter_stage.api.v1 import newsletters_router
from newsletter_stage.core.settings import settings
from newsletter_stage.services.delivery_worker import DeliveryWorker, build_workers
from newsletter_stage.services.email_client import close_email_client

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Newsletter publishing with idempotent submissions and queued delivery",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(newsletters_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    app.state.delivery_workers = []
    if settings.delivery_worker_enabled:
        workers = build_workers(concurrency=settings.delivery_worker_concurrency)
        for worker in workers:
            await worker.start()
        app.state.delivery_workers = workers


@app.on_event("shutdown")
async def on_shutdown() -> None:
    workers: list[DeliveryWorker] = getattr(app.state, "delivery_workers", [])
    for worker in workers:
        await worker.stop()
    app.state.delivery_workers = []
    await close_email_client()

@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}

@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("newsletter_stage.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
