from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

CATEGORIES = ("finance", "ai_data")
SOURCES = ("manual", "discovered")
STATUSES = ("researched", "contacted", "scheduled", "completed", "declined")
# Ordinal, weakest first
RECOMMENDATIONS = ("STRONG_NO", "NO", "MAYBE", "YES", "STRONG_YES")
NEUTRAL_RECOMMENDATION = "MAYBE"

CATEGORY_LABELS = {"finance": "Finance Focused", "ai_data": "AI/Data Focused"}


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PodcastAnalysis(Base):
    __tablename__ = "podcast_analyses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, onupdate=_utcnow)

    # Basic info
    podcast_name: Mapped[str] = mapped_column(String(300), nullable=False)
    name_key: Mapped[str] = mapped_column(String(300), nullable=False, unique=True, index=True)
    host_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    podcast_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    podcast_category: Mapped[str | None] = mapped_column(String(20), nullable=True)  # finance | ai_data

    # Audience
    audience_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    audience_size: Mapped[str | None] = mapped_column(String(200), nullable=True)
    audience_fit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Business
    is_paid: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    estimated_cost: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Contact
    contact_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(300), nullable=True)
    contact_linkedin: Mapped[str | None] = mapped_column(String(500), nullable=True)
    contact_method: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Scoring
    overall_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    recommendation: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Pitch strategy
    suggested_topics_json: Mapped[str] = mapped_column(Text, default="[]")
    value_proposition: Mapped[str | None] = mapped_column(Text, nullable=True)
    pitch_angle: Mapped[str | None] = mapped_column(Text, nullable=True)
    matched_story: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Snapshot of the last model response
    full_report_json: Mapped[str] = mapped_column(Text, default="{}")

    # Tracking
    source: Mapped[str] = mapped_column(String(20), default="manual")  # manual | discovered
    status: Mapped[str] = mapped_column(String(20), default="researched")
