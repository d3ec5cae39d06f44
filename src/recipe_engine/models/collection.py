"""Collection model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Text, DateTime, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from recipe_engine.core.database import Base


class CollectionStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"


class Collection(Base):
    """Collection model - a rule-matched, editorially curated group of recipes."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    path: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seo: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Matching
    rules: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    cuisine_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("cuisines.id"), nullable=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    tag_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("tags.id"), nullable=True)

    # Curation
    pinned_recipe_ids: Mapped[list] = mapped_column(JSON, default=list)
    excluded_recipe_ids: Mapped[list] = mapped_column(JSON, default=list)

    # Thresholds
    min_required: Mapped[int] = mapped_column(Integer, default=10)
    target_count: Mapped[int] = mapped_column(Integer, default=20)

    # Cached counters (listing only; decisions recount live)
    cached_published_count: Mapped[int] = mapped_column(Integer, default=0)
    cached_pending_count: Mapped[int] = mapped_column(Integer, default=0)
    cached_draft_count: Mapped[int] = mapped_column(Integer, default=0)
    cached_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(String(20), default=CollectionStatus.DRAFT.value)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    trans_status: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "path": self.path,
            "type": self.type,
            "description": self.description,
            "seo": self.seo,
            "rules": self.rules,
            "cuisineId": self.cuisine_id,
            "locationId": self.location_id,
            "tagId": self.tag_id,
            "pinnedRecipeIds": list(self.pinned_recipe_ids or []),
            "excludedRecipeIds": list(self.excluded_recipe_ids or []),
            "minRequired": self.min_required,
            "targetCount": self.target_count,
            "cachedPublishedCount": self.cached_published_count,
            "cachedPendingCount": self.cached_pending_count,
            "cachedDraftCount": self.cached_draft_count,
            "cachedAt": self.cached_at.isoformat() if self.cached_at else None,
            "status": self.status,
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
            "transStatus": self.trans_status,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
