"""Generation job model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from recipe_engine.core.database import Base


class GenerateJobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


class GenerateJob(Base):
    """Generate job model - a batch request to produce recipes."""

    __tablename__ = "generate_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    source_type: Mapped[str] = mapped_column(String(20), nullable=False)  # collection, manual
    collection_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # Unique while pending/running; NULL otherwise
    active_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)

    # Request
    recipe_names: Mapped[list] = mapped_column(JSON, default=list)
    locked_tags: Mapped[dict] = mapped_column(JSON, default=dict)

    # Progress
    status: Mapped[str] = mapped_column(String(20), default=GenerateJobStatus.PENDING.value, index=True)
    total_count: Mapped[int] = mapped_column(Integer, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, default=0)
    results: Mapped[list] = mapped_column(JSON, default=list)
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

    @property
    def progress(self) -> int:
        if self.total_count <= 0:
            return 0
        return round((self.success_count + self.failed_count) / self.total_count * 100)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "sourceType": self.source_type,
            "collectionId": self.collection_id,
            "recipeNames": list(self.recipe_names or []),
            "lockedTags": self.locked_tags,
            "status": self.status,
            "totalCount": self.total_count,
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "progress": self.progress,
            "results": list(self.results or []),
            "errorMessage": self.error_message,
            "createdAt": self.created_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "updatedAt": self.updated_at.isoformat(),
        }
