from fastapi import APIRouter

from screenshot_ingest.app.api.routes import screenshots

api_router = APIRouter()
api_router.include_router(screenshots.router)
