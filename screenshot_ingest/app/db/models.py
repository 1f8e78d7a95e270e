import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, Index, String

from screenshot_ingest.app.db.base import Base


class EmailScreenshot(Base):
    """An email screenshot stored for an Interessent.

    The row and the blob at ``screenshot_path`` are written as a pair by the
    ingestion pipeline; one never outlives a failed write of the other.
    """

    __tablename__ = "interessenten_email_verlauf"
    __table_args__ = (Index("ix_email_verlauf_owner", "user_id", "interessent_id"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    interessent_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False)
    screenshot_path = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
