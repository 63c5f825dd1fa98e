"""
Main application module for the STEP mesh service.

This file sets up the FastAPI application, configures CORS so browser
viewers can post uploads directly, and exposes a simple health check.
The mesh routes are included under the ``/api`` namespace.
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes_meshes import router as meshes_router


def create_app() -> FastAPI:
    """Factory to create and configure the FastAPI application.

    Returns:
        FastAPI: The configured FastAPI application instance.
    """
    app = FastAPI(title="stepmesh")

    # Allow all origins by default.  Restrict this in production.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(meshes_router, prefix="/api", tags=["meshes"])

    return app


# Uvicorn imports this when running `uvicorn stepmesh.main:app` from backend/
app = create_app()
