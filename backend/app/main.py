import os
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api import legacy_router, router as api_router
from app.services import Services
from utils.config import Settings, cors_origins_from_env
from utils.errors import AuthError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if app.state.services is None:
        # ConfigError propagates here so the process refuses to start
        app.state.services = Services.from_settings(Settings.from_env())
    logger.info("Video transcoder service started")
    try:
        yield
    finally:
        await app.state.services.runner.shutdown()
        logger.info("Video transcoder service stopped")


def create_app(services: Services = None) -> FastAPI:
    app = FastAPI(
        title="Video Transcoder API",
        description="Transcodes uploaded videos into web-playable MP4 and republishes them",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = services

    origins = services.settings.cors_origins if services else cors_origins_from_env()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        logger.warning(f"Rejected request to {request.url.path}: {str(exc)}")
        return JSONResponse(status_code=401, content={"success": False, "error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})

    app.include_router(api_router, prefix="/api")
    app.include_router(legacy_router)

    @app.get("/health")
    async def health_check():
        return {"status": "ok", "service": "video-transcoder"}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")), log_level="info")
