"""Screenshot ingestion pipeline.

Resolves a caller-supplied URL (a direct image or a screenshot host's landing
page) to image bytes and stores them with a metadata row for an Interessent.
"""

from screenshot_ingest.app.services.screenshot_ingest.errors import (
    BadRequest,
    BlockedHost,
    ExtractionFailed,
    FetchFailed,
    IngestionError,
    MetadataFailed,
    NoImageFound,
    PayloadTooLarge,
    StorageFailed,
    Unauthorized,
    UnsupportedContent,
)
from screenshot_ingest.app.services.screenshot_ingest.saga import Saga, SagaStep
from screenshot_ingest.app.services.screenshot_ingest.service import (
    IngestionRequest,
    IngestionResult,
    ScreenshotIngestionService,
)
from screenshot_ingest.app.services.screenshot_ingest.strategies import (
    DEFAULT_STRATEGIES,
    ExtractionStrategy,
    extract_image_url,
    normalize_candidate_url,
)

__all__ = [
    # Errors
    "BadRequest",
    "BlockedHost",
    "ExtractionFailed",
    "FetchFailed",
    "IngestionError",
    "MetadataFailed",
    "NoImageFound",
    "PayloadTooLarge",
    "StorageFailed",
    "Unauthorized",
    "UnsupportedContent",
    # Pipeline
    "IngestionRequest",
    "IngestionResult",
    "ScreenshotIngestionService",
    "Saga",
    "SagaStep",
    # Extraction
    "DEFAULT_STRATEGIES",
    "ExtractionStrategy",
    "extract_image_url",
    "normalize_candidate_url",
]
