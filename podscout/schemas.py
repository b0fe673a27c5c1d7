"""Pydantic request/response schemas for the PodScout API."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

Category = Literal["finance", "ai_data"]
Source = Literal["manual", "discovered"]
Status = Literal["researched", "contacted", "scheduled", "completed", "declined"]
Recommendation = Literal["STRONG_NO", "NO", "MAYBE", "YES", "STRONG_YES"]


class PodcastInput(BaseModel):
    """Subject fields submitted for analysis. Only ``podcast_name`` is required."""
    podcast_name: str = ""
    podcast_url: str | None = None
    host_name: str | None = None
    podcast_description: str | None = None
    category: Category | None = None


class AnalyzeRequest(PodcastInput):
    media_kit: str | None = Field(None, description="Base64-encoded media kit PDF")
    media_kit_filename: str | None = None


class EnhanceRequest(BaseModel):
    """Media kit for an existing podcast. Subject fields override the stored ones."""
    media_kit: str | None = Field(None, description="Base64-encoded media kit PDF")
    media_kit_filename: str | None = None
    podcast_name: str | None = None
    host_name: str | None = None
    podcast_url: str | None = None
    category: Category | None = None


class DiscoverRequest(BaseModel):
    category: Category | None = None
    limit: int | None = Field(None, ge=1, le=20)


class StatusUpdate(BaseModel):
    status: Status


class PodcastOut(BaseModel):
    id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    podcast_name: str
    host_name: str | None = None
    podcast_url: str | None = None
    podcast_category: Category | None = None
    audience_description: str | None = None
    audience_size: str | None = None
    audience_fit_score: int | None = Field(None, ge=0, le=100)
    is_paid: bool | None = None
    estimated_cost: str | None = None
    contact_name: str | None = None
    contact_email: str | None = None
    contact_linkedin: str | None = None
    contact_method: str | None = None
    overall_score: int | None = Field(None, ge=0, le=100)
    recommendation: Recommendation | None = None
    suggested_topics: list[str] = []
    value_proposition: str | None = None
    pitch_angle: str | None = None
    matched_story: str | None = None
    full_analysis: str | None = None
    full_report: dict[str, Any] = {}
    source: Source
    status: Status


class PodcastListResponse(BaseModel):
    items: list[PodcastOut]
    total: int


class AnalyzeResponse(BaseModel):
    podcast: PodcastOut
    analysis: dict[str, Any]


class SubjectOutcome(BaseModel):
    name: str
    status: Literal["saved", "skipped", "error"]
    id: str | None = None
    score: int | None = None
    recommendation: str | None = None
    reason: str | None = None


class DiscoveryOut(BaseModel):
    discovered_count: int
    analyzed_count: int
    saved_count: int
    skipped_count: int
    podcasts: list[SubjectOutcome]


class OutreachEmailOut(BaseModel):
    podcast_id: str
    email: str


class StatsOut(BaseModel):
    total: int
    by_category: dict[str, int]
    by_status: dict[str, int]
    by_recommendation: dict[str, int]
    by_source: dict[str, int]
