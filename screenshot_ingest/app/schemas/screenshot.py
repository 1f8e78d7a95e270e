from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SaveScreenshotRequest(BaseModel):
    """Body sent by the dashboard; field names follow its camelCase payload."""

    model_config = ConfigDict(populate_by_name=True)

    image_url: Optional[str] = Field(None, alias="imageUrl")
    interessent_id: Optional[str] = Field(None, alias="interessentId")


class SaveScreenshotResponse(BaseModel):
    success: bool = True
    fileName: str
    message: str = "Screenshot saved successfully"


class ErrorDetail(BaseModel):
    field: Optional[str] = None
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    details: Optional[List[ErrorDetail]] = None


class ScreenshotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    interessent_id: str
    screenshot_path: str
    created_at: datetime
    signed_url: Optional[str] = None
