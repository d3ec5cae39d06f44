"""Recipe model."""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import String, Integer, Boolean, Text, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from recipe_engine.core.database import Base


class RecipeStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PUBLISHED = "published"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Recipe(Base):
    """Recipe model - a human-curated or AI-generated recipe."""

    __tablename__ = "recipes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Publishing
    status: Mapped[str] = mapped_column(String(20), default=RecipeStatus.DRAFT.value, index=True)
    review_status: Mapped[str] = mapped_column(String(20), default=ReviewStatus.PENDING.value)
    review_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Taxonomy
    cuisine_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("cuisines.id"), nullable=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)

    # Numeric attributes used by custom rules
    cook_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    prep_time: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    difficulty: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    servings: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Structured content
    summary: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    story: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    ingredients: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    steps: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    tips: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    faq: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    nutrition: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    seo: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    image_shots: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    cover_image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Provenance
    ai_generated: Mapped[bool] = mapped_column(Boolean, default=False)
    generate_job_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    # locale -> "completed" | "pending_review", plus generation warnings
    trans_status: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow
    )

    # Relationships
    tags: Mapped[list["RecipeTag"]] = relationship(
        "RecipeTag",
        back_populates="recipe",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "description": self.description,
            "status": self.status,
            "reviewStatus": self.review_status,
            "cuisineId": self.cuisine_id,
            "locationId": self.location_id,
            "cookTime": self.cook_time,
            "prepTime": self.prep_time,
            "difficulty": self.difficulty,
            "servings": self.servings,
            "summary": self.summary,
            "story": self.story,
            "ingredients": self.ingredients,
            "steps": self.steps,
            "tips": self.tips,
            "faq": self.faq,
            "nutrition": self.nutrition,
            "seo": self.seo,
            "imageShots": self.image_shots,
            "coverImage": self.cover_image,
            "aiGenerated": self.ai_generated,
            "generateJobId": self.generate_job_id,
            "transStatus": self.trans_status,
            "tagIds": [t.tag_id for t in self.tags],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    def to_summary(self) -> dict:
        """Short form used in listings and job detail."""
        return {
            "id": self.id,
            "title": self.title,
            "slug": self.slug,
            "status": self.status,
            "reviewStatus": self.review_status,
            "coverImage": self.cover_image,
            "createdAt": self.created_at.isoformat(),
        }


class RecipeTag(Base):
    """Many-to-many association between recipes and tags."""

    __tablename__ = "recipe_tags"
    __table_args__ = (UniqueConstraint("recipe_id", "tag_id", name="uq_recipe_tag"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipe_id: Mapped[str] = mapped_column(String(36), ForeignKey("recipes.id"), nullable=False, index=True)
    tag_id: Mapped[str] = mapped_column(String(36), ForeignKey("tags.id"), nullable=False, index=True)

    recipe: Mapped["Recipe"] = relationship("Recipe", back_populates="tags")
