"""Moderation state machine for recordings and their sentences.

Recording states: 0 pending, 1 approved, 2 rejected, 3 superseded.
Sentence states: 0 user-created, 1 available, 2 has an approved recording,
3 rejected as duplicate.

A sentence holds at most one approved recording, and no two sentences with
the same normalized content may both be in state 2. Approval enforces this
inside one transaction:

1. take a per-content lock (PostgreSQL advisory lock, scoped to the
   transaction) so concurrent approvals of equal content serialize
2. re-read the target sentence and look for an approved twin
3. claim the sentence with one conditional update that requires
   ``status != 2`` and no approved twin

A loser is marked superseded (and its sentence rejected when the clash is
with a twin) and the compensating writes are committed before
``ConflictError`` is raised.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import case, exists, func, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from corpus import models
from corpus.errors import ConflictError, CorpusError, NotFoundError, StorageError, ValidationError
from corpus.pipelines.normalization import normalize_content, normalize_email, parse_datetime
from corpus.pipelines.pagination import clamp_page, total_pages
from corpus.storage import ObjectStorage

logger = logging.getLogger(__name__)

SECONDS_PER_HOUR = 3600


class ModerationError(CorpusError):
    """Raised when a moderation write fails unexpectedly."""
    pass


@dataclass
class RecordingView:
    """A recording joined with its person's email and sentence content."""
    recording_id: int
    person_id: int
    sentence_id: int
    audio_url: str
    is_approved: int
    duration: float | None
    recorded_at: datetime
    email: str | None = None
    content: str | None = None
    sentence_status: int | None = None


@dataclass
class DeletionResult:
    recording_id: int
    sentence_id: int
    sentence_deleted: bool
    audio_deleted: bool


@dataclass
class RecordingPage:
    """One page of recordings plus global moderation counters."""
    recordings: list[RecordingView]
    count: int
    total_count: int
    total_pages: int
    current_page: int
    total_duration_seconds: float
    total_duration_hours: float
    approved_count: int
    approved_duration_seconds: float
    approved_duration_hours: float
    pending_count: int
    rejected_count: int


@dataclass
class BulkApprovalResult:
    email: str
    matched_count: int
    approved_count: int
    conflict_count: int
    skipped_count: int
    conflicts: list[int] = field(default_factory=list)


def parse_approval_status(value: int | str | None) -> models.ApprovalStatus | None:
    """Validate an approval status filter; None means no filter."""
    if value is None or value == "":
        return None
    try:
        return models.ApprovalStatus(int(value))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid status {value!r}. Allowed: 0, 1, 2, 3") from e


def to_view(
    recording: models.Recording,
    person: models.Person | None = None,
    sentence: models.Sentence | None = None,
) -> RecordingView:
    return RecordingView(
        recording_id=recording.id,
        person_id=recording.person_id,
        sentence_id=recording.sentence_id,
        audio_url=recording.audio_url,
        is_approved=recording.is_approved,
        duration=recording.duration,
        recorded_at=recording.recorded_at,
        email=person.email if person is not None else None,
        content=sentence.content if sentence is not None else None,
        sentence_status=sentence.status if sentence is not None else None,
    )


async def _joined_view(session: AsyncSession, recording: models.Recording) -> RecordingView:
    person = await session.get(models.Person, recording.person_id)
    sentence = await session.get(models.Sentence, recording.sentence_id)
    return to_view(recording, person, sentence)


async def _get_recording(session: AsyncSession, recording_id: int) -> models.Recording:
    recording = await session.get(models.Recording, recording_id)
    if recording is None:
        raise NotFoundError("Recording", recording_id)
    return recording


async def _lock_content(session: AsyncSession, normalized: str) -> None:
    """Serialize approvals of the same normalized content until commit."""
    if session.get_bind().dialect.name != "postgresql":
        return
    await session.execute(
        text("SELECT pg_advisory_xact_lock(hashtext(:content))"),
        {"content": normalized},
    )


async def _approved_twin(session: AsyncSession, sentence_id: int, normalized: str) -> int | None:
    result = await session.execute(
        select(models.Sentence.id).where(
            models.Sentence.id != sentence_id,
            models.Sentence.status == int(models.SentenceStatus.RECORDED),
            models.Sentence.content_lower == normalized,
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def _supersede(
    session: AsyncSession,
    recording: models.Recording,
    sentence: models.Sentence,
    duplicate_id: int | None = None,
) -> None:
    """Commit the loser's compensating writes, then raise ``ConflictError``."""
    recording.is_approved = int(models.ApprovalStatus.SUPERSEDED)
    if duplicate_id is not None:
        sentence.status = int(models.SentenceStatus.REJECTED_DUPLICATE)
    await session.commit()

    if duplicate_id is not None:
        logger.warning(
            f"Recording {recording.id} superseded: sentence {sentence.id} duplicates approved sentence {duplicate_id}"
        )
        raise ConflictError(
            f"Sentence {duplicate_id} with the same content is already approved; "
            f"recording {recording.id} cannot be approved",
            recording_id=recording.id,
            duplicate_sentence_id=duplicate_id,
        )
    logger.warning(f"Recording {recording.id} superseded: sentence {sentence.id} already has an approved recording")
    raise ConflictError(
        f"Sentence {sentence.id} already has an approved recording; recording {recording.id} cannot be approved",
        recording_id=recording.id,
    )


async def approve_recording(session: AsyncSession, recording_id: int) -> RecordingView:
    """Approve a recording, enforcing one approved recording per content.

    The claim is a single guarded ``UPDATE``: the sentence must not be in
    state 2 and no other sentence with the same normalized content may be
    in state 2. SQLite serializes writers, so that statement alone is
    enough there. Under PostgreSQL READ COMMITTED two claims on different
    rows can both see "no twin", so the advisory lock taken first is what
    keeps equal-content approvals apart on that backend.

    Raises:
        NotFoundError: recording or its sentence is missing
        ConflictError: the sentence, or another sentence with the same
            normalized content, already has an approved recording
    """
    try:
        recording = await _get_recording(session, recording_id)
        sentence = await session.get(models.Sentence, recording.sentence_id)
        if sentence is None:
            raise NotFoundError("Sentence", recording.sentence_id)

        normalized = sentence.content_lower or normalize_content(sentence.content)
        await _lock_content(session, normalized)
        await session.refresh(sentence)

        if sentence.status == models.SentenceStatus.RECORDED:
            await _supersede(session, recording, sentence)

        duplicate_id = await _approved_twin(session, sentence.id, normalized)
        if duplicate_id is not None:
            await _supersede(session, recording, sentence, duplicate_id)

        twin = aliased(models.Sentence)
        claimed = await session.execute(
            update(models.Sentence)
            .where(
                models.Sentence.id == sentence.id,
                models.Sentence.status != int(models.SentenceStatus.RECORDED),
                ~exists().where(
                    twin.id != sentence.id,
                    twin.status == int(models.SentenceStatus.RECORDED),
                    twin.content_lower == normalized,
                ),
            )
            .values(status=int(models.SentenceStatus.RECORDED))
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount == 0:
            # Another approval got in between the checks and the claim
            await session.refresh(sentence)
            logger.warning(f"Recording {recording_id} lost the approval race for sentence {sentence.id}")
            if sentence.status == models.SentenceStatus.RECORDED:
                await _supersede(session, recording, sentence)
            await _supersede(session, recording, sentence, await _approved_twin(session, sentence.id, normalized))

        recording.is_approved = int(models.ApprovalStatus.APPROVED)
        await session.commit()
        await session.refresh(sentence)

        logger.info(f"Approved recording {recording_id} for sentence {sentence.id}")
        person = await session.get(models.Person, recording.person_id)
        return to_view(recording, person, sentence)

    except CorpusError:
        raise
    except Exception as e:
        logger.error(f"Approval of recording {recording_id} failed: {e}", exc_info=True)
        await session.rollback()
        raise ModerationError(f"Approval failed: {e}") from e


async def reject_recording(session: AsyncSession, recording_id: int) -> RecordingView:
    """Mark a recording rejected. The sentence is left untouched."""
    recording = await _get_recording(session, recording_id)
    recording.is_approved = int(models.ApprovalStatus.REJECTED)
    await session.commit()
    logger.info(f"Rejected recording {recording_id}")
    return await _joined_view(session, recording)


async def discard_audio(storage: ObjectStorage, recording: models.Recording) -> bool:
    """Best-effort removal of a recording's audio object.

    Returns False (and logs) instead of raising when the store fails.
    """
    object_id = recording.public_id or storage.object_id_from_url(recording.audio_url)
    if not object_id:
        logger.warning(f"Recording {recording.id} has no resolvable audio object; skipping storage cleanup")
        return False
    try:
        await storage.delete(object_id)
        return True
    except StorageError as e:
        logger.warning(f"Failed to delete audio {object_id} for recording {recording.id}: {e}")
        return False


async def delete_recording(
    session: AsyncSession,
    storage: ObjectStorage,
    recording_id: int,
) -> DeletionResult:
    """Delete a recording and its sentence.

    Other recordings of the same sentence are not touched and keep pointing
    at the deleted sentence.
    """
    recording = await _get_recording(session, recording_id)
    audio_deleted = await discard_audio(storage, recording)

    try:
        sentence = await session.get(models.Sentence, recording.sentence_id)
        await session.delete(recording)
        if sentence is not None:
            await session.delete(sentence)
        await session.commit()
    except Exception as e:
        logger.error(f"Deleting recording {recording_id} failed: {e}", exc_info=True)
        await session.rollback()
        raise ModerationError(f"Delete failed: {e}") from e

    logger.info(
        f"Deleted recording {recording_id} and sentence {recording.sentence_id} "
        f"(audio removed: {audio_deleted})"
    )
    return DeletionResult(
        recording_id=recording_id,
        sentence_id=recording.sentence_id,
        sentence_deleted=sentence is not None,
        audio_deleted=audio_deleted,
    )


async def approve_recordings_by_email(
    session: AsyncSession,
    email: str,
    *,
    from_date: str | datetime | None = None,
    to_date: str | datetime | None = None,
) -> BulkApprovalResult:
    """Approve every pending recording of one person, optionally windowed.

    The candidate set is fixed when the call starts; each recording goes
    through ``approve_recording`` so duplicates end up superseded.
    """
    email = normalize_email(email)
    start = parse_datetime(from_date, "fromDate")
    end = parse_datetime(to_date, "toDate")

    person = (
        await session.execute(select(models.Person).where(models.Person.email == email))
    ).scalar_one_or_none()
    if person is None:
        raise NotFoundError("Person", email)

    query = select(models.Recording.id).where(
        models.Recording.person_id == person.id,
        models.Recording.is_approved == int(models.ApprovalStatus.PENDING),
    )
    if start is not None:
        query = query.where(models.Recording.recorded_at >= start)
    if end is not None:
        query = query.where(models.Recording.recorded_at <= end)
    snapshot = list((await session.execute(query.order_by(models.Recording.recorded_at))).scalars().all())

    result = BulkApprovalResult(
        email=email,
        matched_count=len(snapshot),
        approved_count=0,
        conflict_count=0,
        skipped_count=0,
    )
    for recording_id in snapshot:
        try:
            await approve_recording(session, recording_id)
            result.approved_count += 1
        except ConflictError:
            result.conflict_count += 1
            result.conflicts.append(recording_id)
        except NotFoundError as e:
            logger.warning(f"Skipping recording {recording_id} during bulk approval: {e}")
            result.skipped_count += 1

    logger.info(
        f"Bulk approval for {email}: {result.approved_count}/{result.matched_count} approved, "
        f"{result.conflict_count} conflicts"
    )
    return result


async def list_recordings(
    session: AsyncSession,
    page: int | str | None = 1,
    limit: int | str | None = 20,
    *,
    status: int | str | None = None,
    email: str | None = None,
) -> RecordingPage:
    """Newest-first page of recordings with global approval counters."""
    page, limit = clamp_page(page, limit, default_limit=20)
    status_filter = parse_approval_status(status)

    filters = []
    if status_filter is not None:
        filters.append(models.Recording.is_approved == int(status_filter))
    if email and email.strip():
        filters.append(models.Person.email.contains(email.strip().lower(), autoescape=True))

    base = (
        select(models.Recording, models.Person, models.Sentence)
        .outerjoin(models.Person, models.Person.id == models.Recording.person_id)
        .outerjoin(models.Sentence, models.Sentence.id == models.Recording.sentence_id)
        .where(*filters)
    )
    total_count = (
        await session.execute(select(func.count()).select_from(base.subquery()))
    ).scalar_one()
    rows = (
        await session.execute(
            base.order_by(models.Recording.created_at.desc(), models.Recording.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).all()
    views = [to_view(rec, person, sentence) for rec, person, sentence in rows]

    approved = int(models.ApprovalStatus.APPROVED)
    counters = (
        await session.execute(
            select(
                func.coalesce(func.sum(case((models.Recording.is_approved == approved, 1), else_=0)), 0),
                func.coalesce(
                    func.sum(
                        case(
                            (models.Recording.is_approved == approved, func.coalesce(models.Recording.duration, 0)),
                            else_=0,
                        )
                    ),
                    0,
                ),
                func.coalesce(
                    func.sum(case((models.Recording.is_approved == int(models.ApprovalStatus.PENDING), 1), else_=0)),
                    0,
                ),
                func.coalesce(
                    func.sum(case((models.Recording.is_approved == int(models.ApprovalStatus.REJECTED), 1), else_=0)),
                    0,
                ),
            )
        )
    ).one()
    approved_count, approved_seconds, pending_count, rejected_count = counters

    page_seconds = float(sum(v.duration or 0 for v in views))
    return RecordingPage(
        recordings=views,
        count=len(views),
        total_count=total_count,
        total_pages=total_pages(total_count, limit),
        current_page=page,
        total_duration_seconds=page_seconds,
        total_duration_hours=page_seconds / SECONDS_PER_HOUR,
        approved_count=int(approved_count),
        approved_duration_seconds=float(approved_seconds),
        approved_duration_hours=float(approved_seconds) / SECONDS_PER_HOUR,
        pending_count=int(pending_count),
        rejected_count=int(rejected_count),
    )


async def recordings_by_status(session: AsyncSession, status: int | str) -> list[RecordingView]:
    status_value = parse_approval_status(status)
    if status_value is None:
        raise ValidationError("Status is required")
    result = await session.execute(
        select(models.Recording)
        .where(models.Recording.is_approved == int(status_value))
        .order_by(models.Recording.created_at.desc(), models.Recording.id.desc())
    )
    return [to_view(r) for r in result.scalars().all()]
