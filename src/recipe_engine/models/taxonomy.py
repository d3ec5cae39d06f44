"""Taxonomy models: cuisines, locations, tags and ingredients."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Boolean, Text, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from recipe_engine.core.database import Base


class TagType(str, Enum):
    SCENE = "scene"
    METHOD = "method"
    TASTE = "taste"
    CROWD = "crowd"
    OCCASION = "occasion"
    INGREDIENT = "ingredient"


class _TaxonomyMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    trans_status: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "isActive": self.is_active,
            "sortOrder": self.sort_order,
            "transStatus": self.trans_status,
            "createdAt": self.created_at.isoformat(),
        }


class Cuisine(_TaxonomyMixin, Base):
    __tablename__ = "cuisines"


class Location(_TaxonomyMixin, Base):
    __tablename__ = "locations"


class Tag(_TaxonomyMixin, Base):
    """Tag - one row per (type, slug); scene/method/taste/crowd/occasion dimensions."""

    __tablename__ = "tags"

    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["type"] = self.type
        return data


class Ingredient(_TaxonomyMixin, Base):
    __tablename__ = "ingredients"

    unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["unit"] = self.unit
        return data
