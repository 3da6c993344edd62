"""
POS API main application.
Entry point for the FastAPI server.
"""

from fastapi import FastAPI

from pos_api.core.lifespan import lifespan
from pos_api.routers import health_router, sync_router


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(
        title="POS API",
        description="Offline-first point of sale backend",
        version="0.1.0",
        lifespan=lifespan_handler,
    )
    app.include_router(health_router)
    app.include_router(sync_router)
    return app


app = create_app()
