import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette import status

from screenshot_ingest.app.api.routes import api_router
from screenshot_ingest.app.api.routes.screenshots import CORS_HEADERS
from screenshot_ingest.app.core.config import get_settings

logger = logging.getLogger(__name__)


async def validation_exception_handler(request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []) if part is not None)
        msg = err.get("msg", "Invalid value")
        details.append({"field": loc or None, "message": msg})
    status_code = (
        status.HTTP_422_UNPROCESSABLE_ENTITY
        if get_settings().distinct_error_status
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": "Invalid request payload.",
            "details": details,
        },
        headers=CORS_HEADERS,
    )


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="Screenshot Ingest", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.include_router(api_router)
    if settings.storage_backend == "local":
        app.mount("/media", StaticFiles(directory=settings.media_root), name="media")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    logger.info("Storing screenshots with the %s backend", settings.storage_backend)
    return app


app = create_app()
