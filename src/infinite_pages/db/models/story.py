"""
Story, Chapter, GenerationLog and StoryPurchase models
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, ForeignKey, Numeric, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from datetime import datetime
from decimal import Decimal
import enum

from ..base import Base, JSONType


class StoryStatus(str, enum.Enum):
    """Story lifecycle status"""
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PUBLISHED = "published"


class PurchaseType(str, enum.Enum):
    """How a reader unlocked story content"""
    CHAPTER = "chapter"
    BUNDLE = "bundle"
    PREMIUM_UNLOCK = "premium_unlock"


class OperationType(str, enum.Enum):
    """AI operation kinds, used for pricing and generation logs"""
    FOUNDATION = "foundation"
    CHARACTER = "character"
    CHAPTER = "chapter"
    IMPROVEMENT = "improvement"
    ANALYSIS = "analysis"


class Story(Base):
    """Story model"""
    __tablename__ = "stories"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    genre = Column(String(50), nullable=False, index=True)
    premise = Column(Text, nullable=False)
    foundation = Column(JSONType, nullable=True)
    characters = Column(JSONType, nullable=True)
    status = Column(String, default=StoryStatus.DRAFT.value, nullable=False, index=True)

    word_count = Column(Integer, default=0, nullable=False)
    chapter_count = Column(Integer, default=0, nullable=False)
    total_tokens_used = Column(Integer, default=0, nullable=False)
    total_cost_usd = Column(Numeric(10, 4), default=Decimal("0"), nullable=False)

    # Reader pricing, set when the creator publishes
    is_published = Column(Boolean, default=False, nullable=False, index=True)
    price_per_chapter = Column(Integer, default=5, nullable=False)
    bundle_discount = Column(Integer, default=0, nullable=False)
    premium_unlock_price = Column(Integer, default=50, nullable=False)
    price_usd = Column(Numeric(10, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="stories")
    chapters = relationship(
        "Chapter",
        back_populates="story",
        cascade="all, delete-orphan",
        order_by="Chapter.chapter_number"
    )


class Chapter(Base):
    """Chapter model"""
    __tablename__ = "chapters"

    id = Column(Integer, primary_key=True, index=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    chapter_number = Column(Integer, nullable=False)
    title = Column(String(200), nullable=False)
    content = Column(Text, nullable=False, default="")
    summary = Column(Text, nullable=True)
    word_count = Column(Integer, default=0, nullable=False)
    tokens_input = Column(Integer, default=0, nullable=False)
    tokens_output = Column(Integer, default=0, nullable=False)
    generation_cost_usd = Column(Numeric(10, 4), default=Decimal("0"), nullable=False)
    prompt_type = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    story = relationship("Story", back_populates="chapters")

    __table_args__ = (
        UniqueConstraint("story_id", "chapter_number", name="uq_chapters_story_number"),
    )


class GenerationLog(Base):
    """One row per AI operation for cost accounting"""
    __tablename__ = "generation_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="SET NULL"), nullable=True, index=True)
    chapter_id = Column(Integer, ForeignKey("chapters.id", ondelete="SET NULL"), nullable=True)
    operation_type = Column(String, nullable=False, index=True)
    tokens_input = Column(Integer, default=0, nullable=False)
    tokens_output = Column(Integer, default=0, nullable=False)
    cost_usd = Column(Numeric(10, 6), default=Decimal("0"), nullable=False)
    credits_charged = Column(Integer, default=0, nullable=False)
    from_cache = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("ix_generation_logs_story_created", "story_id", "created_at"),
    )


class StoryPurchase(Base):
    """Reader access to story content, paid in credits or through Stripe"""
    __tablename__ = "story_purchases"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    story_id = Column(Integer, ForeignKey("stories.id", ondelete="CASCADE"), nullable=False, index=True)
    creator_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    purchase_type = Column(String, nullable=False)
    chapters_unlocked = Column(JSONType, nullable=False, default=list)
    credits_spent = Column(Integer, default=0, nullable=False)
    cache_discount = Column(Integer, default=0, nullable=False)
    amount_usd = Column(Numeric(10, 2), nullable=True)
    stripe_payment_intent_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    story = relationship("Story")
