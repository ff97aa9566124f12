"""Ingestion of sentences and recordings.

Sentences arrive either seeded by an administrator (status 1, no creator)
or contributed by a user (status 0, creator resolved at write time).
Recordings arrive as uploaded audio files.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from corpus import models
from corpus.config import settings
from corpus.errors import ConflictError, NotFoundError, StorageError, ValidationError
from corpus.pipelines.moderation import RecordingView, approve_recording, to_view
from corpus.pipelines.pagination import clamp_page, total_pages
from corpus.storage import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class SentencePage:
    sentences: list[models.Sentence]
    count: int
    total_count: int
    total_pages: int
    current_page: int


def _clean_content(content: str | None) -> str:
    if not content or not content.strip():
        raise ValidationError("Sentence content is required")
    return content.strip()


def parse_sentence_status(value: int | str | None) -> models.SentenceStatus | None:
    if value is None or value == "":
        return None
    try:
        return models.SentenceStatus(int(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid sentence status {value!r}. Allowed: 0, 1, 2, 3") from e


async def contribute_sentence(session: AsyncSession, person_id: int, content: str) -> models.Sentence:
    """Store a user-contributed sentence (status 0)."""
    content = _clean_content(content)
    person = await session.get(models.Person, person_id)
    if person is None:
        raise NotFoundError("Person", person_id)

    sentence = models.Sentence(
        content=content,
        status=int(models.SentenceStatus.USER_CREATED),
        created_by=person.email,
        created_by_id=person.id,
    )
    session.add(sentence)
    await session.commit()
    logger.info(f"Person {person.id} contributed sentence {sentence.id}")
    return sentence


async def create_sentences(session: AsyncSession, contents: Iterable[str]) -> list[models.Sentence]:
    """Seed admin sentences (status 1, no creator). Blank lines are skipped."""
    sentences = [
        models.Sentence(content=c.strip(), status=int(models.SentenceStatus.AVAILABLE))
        for c in contents
        if c and c.strip()
    ]
    if not sentences:
        raise ValidationError("At least one non-empty sentence is required")
    session.add_all(sentences)
    await session.commit()
    logger.info(f"Seeded {len(sentences)} sentences")
    return sentences


async def list_sentences(
    session: AsyncSession,
    *,
    status: int | str | None = None,
    page: int | str | None = 1,
    limit: int | str | None = 20,
) -> SentencePage:
    page, limit = clamp_page(page, limit, default_limit=20)
    status_filter = parse_sentence_status(status)

    query = select(models.Sentence)
    if status_filter is not None:
        query = query.where(models.Sentence.status == int(status_filter))

    total = (await session.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await session.execute(
        query.order_by(models.Sentence.created_at.desc(), models.Sentence.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    sentences = list(result.scalars().all())
    return SentencePage(
        sentences=sentences,
        count=len(sentences),
        total_count=total,
        total_pages=total_pages(total, limit),
        current_page=page,
    )


async def upload_recording(
    session: AsyncSession,
    storage: ObjectStorage,
    *,
    person_id: int | None,
    sentence_id: int | None,
    local_path: str | Path,
) -> RecordingView:
    """Upload an audio file and record it against a sentence.

    Upload failure is fatal (``StorageError`` propagates). If the insert
    fails afterwards the uploaded object is removed again. Persons on the
    auto-approve list go straight through the approval state machine.
    """
    if not person_id or not sentence_id:
        raise ValidationError("personId and sentenceId are required")

    person = await session.get(models.Person, person_id)
    if person is None:
        raise NotFoundError("Person", person_id)
    sentence = await session.get(models.Sentence, sentence_id)
    if sentence is None:
        raise NotFoundError("Sentence", sentence_id)

    stored = await storage.upload(local_path)

    recording = models.Recording(
        person_id=person.id,
        sentence_id=sentence.id,
        audio_url=stored.url,
        public_id=stored.object_id,
        duration=stored.duration,
        is_approved=int(models.ApprovalStatus.PENDING),
        recorded_at=models.utcnow(),
    )
    session.add(recording)
    try:
        await session.commit()
    except Exception:
        await session.rollback()
        try:
            await storage.delete(stored.object_id)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned audio {stored.object_id}: {e}")
        raise
    logger.info(f"Stored recording {recording.id} by person {person.id} for sentence {sentence.id}")

    if person.email in settings.moderation.auto_approve_emails:
        try:
            return await approve_recording(session, recording.id)
        except ConflictError as e:
            logger.warning(f"Auto-approval of recording {recording.id} refused: {e}")

    return to_view(recording, person, sentence)
