"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from educhain.badges.router import router as badges_router
from educhain.config import get_settings
from educhain.container import Marketplace
from educhain.enrollment.router import router as enrollment_router
from educhain.health.router import router as health_router
from educhain.middleware import setup_middleware
from educhain.profiles.router import router as profiles_router
from educhain.questions.router import router as questions_router
from educhain.recommendations.router import router as recommendations_router
from educhain.tasks.router import router as tasks_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the marketplace on startup and close it on shutdown.

    A marketplace injected through ``create_app`` is owned by the caller and
    left alone.
    """
    if getattr(app.state, "marketplace", None) is not None:
        yield
        return

    market = await Marketplace.open(get_settings())
    await market.start()
    app.state.marketplace = market

    yield

    await market.close()
    app.state.marketplace = None


def create_app(marketplace: Marketplace | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="EduChain Marketplace API",
        description="Task marketplace with staked enrollments, recommendations and proof-of-learning badges",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.marketplace = marketplace

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(profiles_router)
    app.include_router(tasks_router)
    app.include_router(enrollment_router)
    app.include_router(recommendations_router)
    app.include_router(badges_router)
    app.include_router(questions_router)

    return app


app = create_app()
