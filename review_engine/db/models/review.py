"""Review scheduling models."""
import uuid

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from review_engine.db.base import Base


class ReviewStateRecord(Base):
    """Persisted scheduling state for one learner and one item."""

    __tablename__ = "review_states"
    __table_args__ = (
        UniqueConstraint("learner_id", "item_id", name="uq_review_states_learner_item"),
        Index("ix_review_states_learner_due", "learner_id", "due_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    learner_id = Column(String(255), nullable=False)
    item_id = Column(String(255), nullable=False, index=True)

    ease_factor = Column(Float, nullable=False, default=2.5)
    interval_days = Column(Integer, nullable=False, default=0)
    repetition_count = Column(Integer, nullable=False, default=0)
    lapse_count = Column(Integer, nullable=False, default=0)
    phase = Column(String(20), nullable=False, default="new")  # "new", "learning", "review", "relearning"
    due_at = Column(DateTime(timezone=True), nullable=False)
    last_reviewed_at = Column(DateTime(timezone=True), nullable=True)
    tombstoned_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ReviewLog(Base):
    """Append-only history of graded reviews."""

    __tablename__ = "review_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    learner_id = Column(String(255), nullable=False, index=True)
    item_id = Column(String(255), nullable=False)
    session_id = Column(String(64), nullable=True)
    grade = Column(Integer, nullable=False)
    reviewed_at = Column(DateTime(timezone=True), nullable=False, index=True)

    phase_before = Column(String(20))
    phase_after = Column(String(20))
    interval_before = Column(Integer)
    interval_after = Column(Integer)
    ease_factor_before = Column(Float)
    ease_factor_after = Column(Float)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ItemTombstone(Base):
    """Marker for a learnable item deleted by the content layer."""

    __tablename__ = "item_tombstones"

    item_id = Column(String(255), primary_key=True)
    tombstoned_at = Column(DateTime(timezone=True), nullable=False)
