"""Translation job model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Float, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from recipe_engine.core.database import Base


class TranslationJobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EntityType(str, Enum):
    RECIPE = "recipe"
    COLLECTION = "collection"
    CUISINE = "cuisine"
    LOCATION = "location"
    TAG = "tag"
    INGREDIENT = "ingredient"


def tuple_key(entity_type: str, entity_id: str, target_lang: str) -> str:
    return f"{entity_type}:{entity_id}:{target_lang}"


class TranslationJob(Base):
    """Translation job model - one entity into one target language."""

    __tablename__ = "translation_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    target_lang: Mapped[str] = mapped_column(String(10), nullable=False)

    # Unique while pending/processing; NULL otherwise
    active_key: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, unique=True)

    # Queue
    status: Mapped[str] = mapped_column(String(20), default=TranslationJobStatus.PENDING.value, index=True)
    priority: Mapped[int] = mapped_column(Integer, default=5)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, default=3)
    available_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Outcome
    quality_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "targetLang": self.target_lang,
            "status": self.status,
            "priority": self.priority,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "availableAt": self.available_at.isoformat() if self.available_at else None,
            "qualityScore": self.quality_score,
            "result": self.result,
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "updatedAt": self.updated_at.isoformat(),
        }
