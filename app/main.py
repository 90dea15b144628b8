import logging
import re
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from database import init_db
from app.api import api_router
from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.services.drafts import DraftSweeper
from app.services.version_sync import VersionReconciler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    reconciler = VersionReconciler()
    sweeper = DraftSweeper()
    app.state.reconciler = reconciler
    if settings.run_background_tasks:
        reconciler.subscribe(
            lambda n: logger.info(f"{n.component} moved to v{n.new_version}: {n.description}")
        )
        reconciler.start()
        sweeper.start()
    yield
    # Shutdown
    await reconciler.stop()
    await sweeper.stop()


class DynamicCORSMiddleware(BaseHTTPMiddleware):
    """CORS middleware matching allowed origins against a configured pattern in production."""

    def __init__(self, app, origin_pattern: str = ""):
        super().__init__(app)
        self.origin_pattern = re.compile(origin_pattern) if origin_pattern else None

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")

        # Handle preflight requests
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)

        if origin:
            if settings.environment == "production":
                if self.origin_pattern and self.origin_pattern.match(origin):
                    response.headers["Access-Control-Allow-Origin"] = origin
                    response.headers["Access-Control-Allow-Credentials"] = "true"
                else:
                    logger.warning(f"CORS rejected - Origin '{origin}' does not match pattern")
            else:
                # Development: allow all origins
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Credentials"] = "true"

        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS, PATCH"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization, X-Requested-With"

        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="MOCards",
        description="Dental loyalty card program API",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(DynamicCORSMiddleware, origin_pattern=settings.cors_origin_pattern)
    register_exception_handlers(app)

    # Include all routes
    app.include_router(api_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
