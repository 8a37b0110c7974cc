# backend/shooty/main.py
from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.routing import APIRoute

from .core.config import settings
from .errors import register_error_handlers
from .routes import metrics
from .routes.v1 import payments as payments_v1
from .routes.v1 import quotes as quotes_v1
from .routes.v1 import reservations as reservations_v1

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

API_TITLE = "Shooty Booking API"
API_DESCRIPTION = "Quotes, reservations and settlement for the Shooty photography marketplace"
API_VERSION = "1.0.0"


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown."""
    logger.info(f"{API_TITLE} starting up...")
    logger.info(f"Environment: {settings.environment}")
    if not settings.stripe_configured:
        logger.warning("Stripe secret key not configured; checkouts and refunds will fail")

    yield

    logger.info(f"{API_TITLE} shutting down...")


def _unique_operation_id(route: APIRoute) -> str:
    methods = "_".join(sorted(m.lower() for m in route.methods or []))
    path = route.path_format.replace("/", "_").replace("{", "").replace("}", "").strip("_")
    name = (route.name or "operation").lower().replace(" ", "_")
    return f"{methods}__{path}__{name}".strip("_")


def create_app() -> FastAPI:
    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
        generate_unique_id_function=_unique_operation_id,
    )
    register_error_handlers(app)

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(quotes_v1.router)
    api_v1.include_router(reservations_v1.router)
    api_v1.include_router(payments_v1.router)
    app.include_router(api_v1)

    # Infrastructure routes (unversioned)
    app.include_router(metrics.router)

    @app.get("/health", include_in_schema=False)
    def health() -> dict:
        return {"status": "healthy", "environment": settings.environment}

    return app


app = create_app()
