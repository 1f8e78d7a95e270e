import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from screenshot_ingest.app.db import models

logger = logging.getLogger(__name__)


class MetadataStoreError(RuntimeError):
    pass


class AttachmentStore:
    def __init__(self, db: Session):
        self.db = db

    def insert(self, record: models.EmailScreenshot) -> models.EmailScreenshot:
        path = record.screenshot_path
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to insert screenshot record for %s", path)
            raise MetadataStoreError(str(exc)) from exc
        # Committed; a failed reload must not be reported as a failed insert
        try:
            self.db.refresh(record)
        except SQLAlchemyError as exc:
            logger.warning("Stored screenshot record for %s but could not reload it: %s", path, exc)
        return record

    def list_for_owner(self, user_id: str, interessent_id: str) -> List[models.EmailScreenshot]:
        return (
            self.db.query(models.EmailScreenshot)
            .filter(
                models.EmailScreenshot.user_id == user_id,
                models.EmailScreenshot.interessent_id == interessent_id,
            )
            .order_by(models.EmailScreenshot.created_at.desc())
            .all()
        )

    def get(self, user_id: str, record_id: str) -> Optional[models.EmailScreenshot]:
        return (
            self.db.query(models.EmailScreenshot)
            .filter(models.EmailScreenshot.id == record_id, models.EmailScreenshot.user_id == user_id)
            .first()
        )

    def delete(self, record: models.EmailScreenshot) -> None:
        try:
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise MetadataStoreError(str(exc)) from exc
