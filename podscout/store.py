"""Persistence gateway over the ``podcast_analyses`` table.

Each write commits on its own; no transaction spans several statements.
SQLAlchemy failures are rolled back and re-raised as ``PersistenceError``.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from podscout.errors import DuplicatePodcastError, NotFoundError, PersistenceError
from podscout.models import PodcastAnalysis
from podscout.utils import name_key

log = logging.getLogger(__name__)

# Columns an update may touch. id, created_at, name_key and source are fixed at insert.
UPDATABLE_FIELDS = (
    "host_name", "podcast_url", "podcast_category",
    "audience_description", "audience_size", "audience_fit_score",
    "is_paid", "estimated_cost",
    "contact_name", "contact_email", "contact_linkedin", "contact_method",
    "overall_score", "recommendation",
    "suggested_topics_json", "value_proposition", "pitch_angle", "matched_story",
    "full_analysis", "full_report_json", "status",
)

INSERT_FIELDS = ("podcast_name", "source", *UPDATABLE_FIELDS)


def list_podcasts(
    session: Session, *, category: str | None = None, source: str | None = None,
    status: str | None = None, recommendation: str | None = None, search: str | None = None,
) -> list[PodcastAnalysis]:
    """Return podcasts matching the equality filters, newest first."""
    query = select(PodcastAnalysis)
    if category:
        query = query.where(PodcastAnalysis.podcast_category == category)
    if source:
        query = query.where(PodcastAnalysis.source == source)
    if status:
        query = query.where(PodcastAnalysis.status == status)
    if recommendation:
        query = query.where(PodcastAnalysis.recommendation == recommendation)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            PodcastAnalysis.podcast_name.ilike(pattern),
            PodcastAnalysis.host_name.ilike(pattern),
        ))
    query = query.order_by(PodcastAnalysis.created_at.desc(), PodcastAnalysis.podcast_name)
    try:
        return list(session.execute(query).scalars().all())
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to list podcasts: {exc}") from exc


def get_podcast(session: Session, podcast_id: str) -> PodcastAnalysis | None:
    try:
        return session.execute(
            select(PodcastAnalysis).where(PodcastAnalysis.id == podcast_id)
        ).scalars().first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to load podcast {podcast_id}: {exc}") from exc


def require_podcast(session: Session, podcast_id: str) -> PodcastAnalysis:
    podcast = get_podcast(session, podcast_id)
    if podcast is None:
        raise NotFoundError(f"Podcast {podcast_id} not found")
    return podcast


def find_by_name(session: Session, name: str) -> PodcastAnalysis | None:
    """Case-insensitive lookup by podcast name."""
    try:
        return session.execute(
            select(PodcastAnalysis).where(PodcastAnalysis.name_key == name_key(name))
        ).scalars().first()
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Failed to look up podcast '{name}': {exc}") from exc


def insert_podcast(session: Session, fields: dict[str, Any]) -> PodcastAnalysis:
    """Insert a row and return it with its generated id and timestamps."""
    name = fields["podcast_name"]
    podcast = PodcastAnalysis(
        name_key=name_key(name),
        **{k: v for k, v in fields.items() if k in INSERT_FIELDS},
    )
    session.add(podcast)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        existing = find_by_name(session, name)
        raise DuplicatePodcastError(name, existing.id if existing else None) from exc
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Failed to save podcast '{name}': {exc}") from exc
    session.refresh(podcast)
    log.info("Saved podcast %s (%s)", name, podcast.id)
    return podcast


def update_podcast(session: Session, podcast_id: str, updates: dict[str, Any]) -> PodcastAnalysis:
    """Overwrite the given columns in place and return the updated row."""
    podcast = require_podcast(session, podcast_id)
    for field in UPDATABLE_FIELDS:
        if field in updates:
            setattr(podcast, field, updates[field])
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Failed to update podcast {podcast_id}: {exc}") from exc
    session.refresh(podcast)
    return podcast


def update_status(session: Session, podcast_id: str, status: str) -> PodcastAnalysis:
    return update_podcast(session, podcast_id, {"status": status})


def delete_podcast(session: Session, podcast_id: str) -> None:
    podcast = require_podcast(session, podcast_id)
    session.delete(podcast)
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise PersistenceError(f"Failed to delete podcast {podcast_id}: {exc}") from exc
