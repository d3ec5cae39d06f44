"""Translated entity variants."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Boolean, DateTime, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from recipe_engine.core.database import Base


class EntityTranslation(Base):
    """One translated variant of one entity, keyed by (entity_type, entity_id, locale)."""

    __tablename__ = "entity_translations"
    __table_args__ = (
        UniqueConstraint("entity_type", "entity_id", "locale", name="uq_entity_translation"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    locale: Mapped[str] = mapped_column(String(10), nullable=False)

    slug: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[dict] = mapped_column(JSON, default=dict)
    trans_method: Mapped[str] = mapped_column(String(20), default="ai")
    is_reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

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
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "locale": self.locale,
            "slug": self.slug,
            "content": self.content,
            "transMethod": self.trans_method,
            "isReviewed": self.is_reviewed,
            "reviewedAt": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
