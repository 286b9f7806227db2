"""FastAPI application factory."""
from __future__ import annotations
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from ..config import Settings
from ..pipeline import EmailProcessingPipeline
from ..storage.database import init_db, close_db
from ..utils.logging import setup_logging
from .middleware import RequestLoggingMiddleware
from .routes import health, orders, review


def create_app(settings: Settings | None = None, pipeline: EmailProcessingPipeline | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(settings.log_level)
        session_factory = init_db(settings.database_url.get_secret_value())
        if app.state.pipeline is None:
            app.state.pipeline = EmailProcessingPipeline(settings, session_factory=session_factory)
        yield
        # Shutdown
        await close_db()

    app = FastAPI(
        title="OrderPulse API",
        description="Order email aggregation pipeline API",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(RequestLoggingMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store settings and pipeline in app state
    app.state.settings = settings
    app.state.pipeline = pipeline

    # Register routes
    app.include_router(health.router, tags=["health"])
    app.include_router(review.router, prefix="/review", tags=["review"])
    app.include_router(orders.router, prefix="/orders", tags=["orders"])

    return app


def main():
    """Serve the API with uvicorn on the configured host and port."""
    import uvicorn
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)
