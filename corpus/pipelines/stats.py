"""Contribution statistics across persons, sentences and recordings.

Every ranking is computed over the whole dataset first and only then sorted
and sliced, so a page always holds the true ranks for its offset. Each call
is O(total entities); there is no precomputed ranking index.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import case, distinct, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from corpus import models
from corpus.errors import NotFoundError, ValidationError
from corpus.pipelines.moderation import parse_approval_status
from corpus.pipelines.normalization import parse_datetime
from corpus.pipelines.pagination import as_int, clamp_limit, clamp_page, page_slice, total_pages

logger = logging.getLogger(__name__)

APPROVED = int(models.ApprovalStatus.APPROVED)
PENDING = int(models.ApprovalStatus.PENDING)
REJECTED = int(models.ApprovalStatus.REJECTED)
ACTIVE_STATES = (PENDING, APPROVED)


def _count_if(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


# -- result types --------------------------------------------------------------


@dataclass
class RecordingEntry:
    sentence_id: int
    content: str | None
    duration: float | None
    recorded_at: datetime
    audio_url: str | None
    is_approved: int


@dataclass
class SentenceEntry:
    sentence_id: int
    content: str
    status: int
    created_at: datetime
    created_by: str | None = None


@dataclass
class UserStats:
    user_id: int
    email: str
    name: str | None
    gender: str
    role: str
    created_at: datetime
    total_recordings: int = 0
    total_recording_duration: float = 0.0
    approved_recordings: int = 0
    pending_recordings: int = 0
    total_sentence_contributions: int = 0
    recordings: list[RecordingEntry] = field(default_factory=list)
    sentence_contributions: list[SentenceEntry] = field(default_factory=list)


@dataclass
class UserListing:
    users: list[UserStats]
    count: int
    total_count: int
    total_pages: int
    current_page: int
    from_date: datetime | None
    to_date: datetime | None
    total_male: int
    total_female: int
    total_completed_sentences: int
    total_contributed_sentences: int


@dataclass
class RecorderStats:
    user_id: int
    email: str | None
    gender: str | None
    created_at: datetime | None
    total_recordings: int
    approved_recordings: int
    pending_recordings: int
    rejected_recordings: int


@dataclass
class RecordedSentence:
    sentence_id: int
    content: str | None
    recording_count: int = 1
    approved_count: int = 1


@dataclass
class SentenceContributorStats:
    user_email: str
    user_id: int | None
    created_at: datetime | None
    total_sentences: int
    status1_count: int
    status2_count: int
    status3_count: int
    recorded_sentences: list[RecordedSentence] = field(default_factory=list)
    recording_total_count: int = 0


@dataclass
class ContributorStats:
    user_id: int | None
    email: str
    gender: str | None
    role: str | None
    created_at: datetime | None
    total_contributed_sentences: int
    total_recordings: int
    approved_recordings: int


@dataclass
class ContributorPage:
    users: list[ContributorStats]
    count: int
    total_count: int
    total_pages: int
    current_page: int


@dataclass
class DistinctSentenceStats:
    user_id: int
    email: str | None
    unique_sentences: int
    created_at: datetime | None


@dataclass
class UserDetail:
    person_id: int
    email: str
    name: str | None
    gender: str
    role: str
    created_at: datetime
    sentences_done: list[RecordedSentence]
    total_recording_duration: float
    total_sentences_done: int
    total_contributed_by_user: int
    created_sentences: list[SentenceEntry]


@dataclass
class ContributionTotals:
    total_contributed: int
    current_page: int
    page_limit: int
    sentences: list[SentenceEntry] | None = None
    count: int | None = None
    total_pages: int | None = None


@dataclass
class SearchHit:
    id: int
    email: str
    gender: str
    role: str
    created_at: datetime
    recording_count: int
    approved_count: int
    pending_count: int
    total_duration: float


@dataclass
class SearchPage:
    users: list[SearchHit]
    count: int
    total_count: int
    total_pages: int
    current_page: int
    search_email: str


# -- shared lookups -------------------------------------------------------------


async def _persons_by_id(session: AsyncSession, ids) -> dict[int, models.Person]:
    ids = list(ids)
    if not ids:
        return {}
    result = await session.execute(select(models.Person).where(models.Person.id.in_(ids)))
    return {p.id: p for p in result.scalars().all()}


async def _persons_by_email(session: AsyncSession, emails) -> dict[str, models.Person]:
    emails = [e for e in emails if e]
    if not emails:
        return {}
    result = await session.execute(select(models.Person).where(models.Person.email.in_(emails)))
    return {p.email: p for p in result.scalars().all()}


async def _sentence_contents(session: AsyncSession, ids) -> dict[int, str]:
    ids = list(ids)
    if not ids:
        return {}
    result = await session.execute(
        select(models.Sentence.id, models.Sentence.content).where(models.Sentence.id.in_(ids))
    )
    return {sid: content for sid, content in result.all()}


async def _approved_sentences_for(session: AsyncSession, person_id: int) -> list[RecordedSentence]:
    """Distinct sentences this person has an approved recording for."""
    rows = (
        await session.execute(
            select(models.Recording.sentence_id, func.count(models.Recording.id))
            .where(
                models.Recording.person_id == person_id,
                models.Recording.is_approved == APPROVED,
            )
            .group_by(models.Recording.sentence_id)
            .order_by(models.Recording.sentence_id)
        )
    ).all()
    contents = await _sentence_contents(session, [sid for sid, _ in rows])
    return [
        RecordedSentence(
            sentence_id=sid,
            content=contents.get(sid),
            recording_count=int(count),
            approved_count=int(count),
        )
        for sid, count in rows
    ]


def _window(query, start: datetime | None, end: datetime | None):
    if start is not None:
        query = query.where(models.Recording.recorded_at >= start)
    if end is not None:
        query = query.where(models.Recording.recorded_at <= end)
    return query


def _sentence_entry(s: models.Sentence) -> SentenceEntry:
    return SentenceEntry(
        sentence_id=s.id,
        content=s.content,
        status=s.status,
        created_at=s.created_at,
        created_by=s.created_by,
    )


# -- operations -------------------------------------------------------------------


async def list_users(
    session: AsyncSession,
    page: int | str | None = 1,
    limit: int | str | None = 20,
    *,
    from_date: str | datetime | None = None,
    to_date: str | datetime | None = None,
) -> UserListing:
    """Every person ranked by active (pending + approved) recordings.

    The recording counts, durations and per-user recording lists honour the
    optional ``recorded_at`` window; the global totals do not.
    """
    page, limit = clamp_page(page, limit, default_limit=20)
    start = parse_datetime(from_date, "fromDate")
    end = parse_datetime(to_date, "toDate")
    if start is not None and end is not None and start > end:
        raise ValidationError("fromDate must not be after toDate")

    persons = list((await session.execute(select(models.Person))).scalars().all())

    total_male = sum(1 for p in persons if p.gender == models.Gender.MALE.value)
    total_female = sum(1 for p in persons if p.gender == models.Gender.FEMALE.value)
    total_completed = (
        await session.execute(
            select(func.count(models.Recording.id)).where(models.Recording.is_approved == APPROVED)
        )
    ).scalar_one()
    total_contributed = (
        await session.execute(
            select(func.count(models.Sentence.id)).where(models.Sentence.created_by.is_not(None))
        )
    ).scalar_one()

    rec_query = _window(
        select(
            models.Recording.person_id,
            func.count(models.Recording.id),
            func.coalesce(func.sum(func.coalesce(models.Recording.duration, 0)), 0),
            _count_if(models.Recording.is_approved == APPROVED),
            _count_if(models.Recording.is_approved == PENDING),
        ).where(models.Recording.is_approved.in_(ACTIVE_STATES)),
        start,
        end,
    ).group_by(models.Recording.person_id)
    rec_stats = {row[0]: row[1:] for row in (await session.execute(rec_query)).all()}

    contribution_counts = dict(
        (
            await session.execute(
                select(models.Sentence.created_by, func.count(models.Sentence.id))
                .where(
                    models.Sentence.created_by.is_not(None),
                    models.Sentence.status == int(models.SentenceStatus.AVAILABLE),
                )
                .group_by(models.Sentence.created_by)
            )
        ).all()
    )

    ranked: list[UserStats] = []
    for p in persons:
        count, duration, approved, pending = rec_stats.get(p.id, (0, 0, 0, 0))
        ranked.append(
            UserStats(
                user_id=p.id,
                email=p.email,
                name=p.name,
                gender=p.gender,
                role=p.role,
                created_at=p.created_at,
                total_recordings=int(count),
                total_recording_duration=float(duration or 0),
                approved_recordings=int(approved),
                pending_recordings=int(pending),
                total_sentence_contributions=int(contribution_counts.get(p.email, 0)),
            )
        )
    ranked.sort(key=lambda u: (-u.total_recordings, u.user_id))
    logger.debug(f"Ranked {len(ranked)} persons for page {page} (limit {limit})")
    page_users = page_slice(ranked, page, limit)

    # Detail lists only for the page being returned
    for user in page_users:
        rows = (
            await session.execute(
                _window(
                    select(models.Recording, models.Sentence.content)
                    .outerjoin(models.Sentence, models.Sentence.id == models.Recording.sentence_id)
                    .where(
                        models.Recording.person_id == user.user_id,
                        models.Recording.is_approved.in_(ACTIVE_STATES),
                    ),
                    start,
                    end,
                ).order_by(models.Recording.recorded_at.desc(), models.Recording.id.desc())
            )
        ).all()
        user.recordings = [
            RecordingEntry(
                sentence_id=r.sentence_id,
                content=content,
                duration=r.duration,
                recorded_at=r.recorded_at,
                audio_url=r.audio_url,
                is_approved=r.is_approved,
            )
            for r, content in rows
        ]
        contributed = await session.execute(
            select(models.Sentence)
            .where(
                models.Sentence.created_by == user.email,
                models.Sentence.status == int(models.SentenceStatus.AVAILABLE),
            )
            .order_by(models.Sentence.created_at.desc(), models.Sentence.id.desc())
        )
        user.sentence_contributions = [_sentence_entry(s) for s in contributed.scalars().all()]

    return UserListing(
        users=page_users,
        count=len(page_users),
        total_count=len(persons),
        total_pages=total_pages(len(persons), limit),
        current_page=page,
        from_date=start,
        to_date=end,
        total_male=total_male,
        total_female=total_female,
        total_completed_sentences=int(total_completed),
        total_contributed_sentences=int(total_contributed),
    )


async def top_recorders(
    session: AsyncSession,
    *,
    status: int | str | None = None,
    limit: int | str | None = 10,
) -> list[RecorderStats]:
    """Persons ranked by number of recordings, optionally of one status."""
    status_filter = parse_approval_status(status)
    limit = clamp_limit(limit, default_limit=10)

    query = select(
        models.Recording.person_id,
        func.count(models.Recording.id),
        _count_if(models.Recording.is_approved == APPROVED),
        _count_if(models.Recording.is_approved == PENDING),
        _count_if(models.Recording.is_approved == REJECTED),
    )
    if status_filter is not None:
        query = query.where(models.Recording.is_approved == int(status_filter))
    rows = (await session.execute(query.group_by(models.Recording.person_id))).all()

    ranked = sorted(rows, key=lambda r: (-r[1], r[0]))[:limit]
    persons = await _persons_by_id(session, [r[0] for r in ranked])

    results = []
    for person_id, count, approved, pending, rejected in ranked:
        person = persons.get(person_id)
        results.append(
            RecorderStats(
                user_id=person_id,
                email=person.email if person else None,
                gender=person.gender if person else None,
                created_at=person.created_at if person else None,
                total_recordings=int(count),
                approved_recordings=int(approved),
                pending_recordings=int(pending),
                rejected_recordings=int(rejected),
            )
        )
    return results


async def top_sentence_contributors(
    session: AsyncSession,
    *,
    limit: int | str | None = None,
) -> list[SentenceContributorStats]:
    """Creators ranked by sentences in status 1, 2 or 3.

    Each row also lists the distinct sentences that creator has recorded
    with an approved recording.
    """
    counted_states = (
        int(models.SentenceStatus.AVAILABLE),
        int(models.SentenceStatus.RECORDED),
        int(models.SentenceStatus.REJECTED_DUPLICATE),
    )
    rows = (
        await session.execute(
            select(
                models.Sentence.created_by,
                func.count(models.Sentence.id),
                _count_if(models.Sentence.status == int(models.SentenceStatus.AVAILABLE)),
                _count_if(models.Sentence.status == int(models.SentenceStatus.RECORDED)),
                _count_if(models.Sentence.status == int(models.SentenceStatus.REJECTED_DUPLICATE)),
            )
            .where(
                models.Sentence.status.in_(counted_states),
                models.Sentence.created_by.is_not(None),
            )
            .group_by(models.Sentence.created_by)
        )
    ).all()

    ranked = sorted(rows, key=lambda r: (-r[1], r[0]))
    cap = as_int(limit)
    if cap and cap > 0:
        ranked = ranked[:clamp_limit(cap)]

    persons = await _persons_by_email(session, [r[0] for r in ranked])
    results = []
    for email, total, s1, s2, s3 in ranked:
        person = persons.get(email)
        entry = SentenceContributorStats(
            user_email=email,
            user_id=person.id if person else None,
            created_at=person.created_at if person else None,
            total_sentences=int(total),
            status1_count=int(s1),
            status2_count=int(s2),
            status3_count=int(s3),
        )
        if person is not None and entry.total_sentences > 0:
            entry.recorded_sentences = await _approved_sentences_for(session, person.id)
            entry.recording_total_count = sum(s.recording_count for s in entry.recorded_sentences)
        results.append(entry)
    return results


async def top_contributors(
    session: AsyncSession,
    page: int | str | None = 1,
    limit: int | str | None = 10,
) -> ContributorPage:
    """Sentence creators, ranked by their total recordings.

    Ranking is by recordings rather than by contributed sentences; the
    sentence count is reported alongside.
    """
    page, limit = clamp_page(page, limit, default_limit=10)

    sentence_counts = (
        await session.execute(
            select(models.Sentence.created_by, func.count(models.Sentence.id))
            .where(models.Sentence.created_by.is_not(None))
            .group_by(models.Sentence.created_by)
        )
    ).all()
    if not sentence_counts:
        return ContributorPage(users=[], count=0, total_count=0, total_pages=0, current_page=page)

    persons = await _persons_by_email(session, [email for email, _ in sentence_counts])
    person_ids = [p.id for p in persons.values()]
    rec_stats: dict[int, tuple[int, int]] = {}
    if person_ids:
        rows = await session.execute(
            select(
                models.Recording.person_id,
                func.count(models.Recording.id),
                _count_if(models.Recording.is_approved == APPROVED),
            )
            .where(models.Recording.person_id.in_(person_ids))
            .group_by(models.Recording.person_id)
        )
        rec_stats = {pid: (int(total), int(approved)) for pid, total, approved in rows.all()}

    ranked: list[ContributorStats] = []
    for email, count in sentence_counts:
        person = persons.get(email)
        total, approved = rec_stats.get(person.id, (0, 0)) if person else (0, 0)
        ranked.append(
            ContributorStats(
                user_id=person.id if person else None,
                email=email,
                gender=person.gender if person else None,
                role=person.role if person else None,
                created_at=person.created_at if person else None,
                total_contributed_sentences=int(count),
                total_recordings=total,
                approved_recordings=approved,
            )
        )
    ranked.sort(key=lambda c: (-c.total_recordings, c.email))
    logger.debug(f"Ranked {len(ranked)} sentence creators by recordings")
    page_users = page_slice(ranked, page, limit)

    return ContributorPage(
        users=page_users,
        count=len(page_users),
        total_count=len(ranked),
        total_pages=total_pages(len(ranked), limit),
        current_page=page,
    )


async def top_by_distinct_sentences(
    session: AsyncSession,
    *,
    status: int | str | None = None,
    limit: int | str | None = 10,
) -> list[DistinctSentenceStats]:
    """Persons ranked by how many different sentences they recorded."""
    status_filter = parse_approval_status(status)
    limit = clamp_limit(limit, default_limit=10)

    query = select(
        models.Recording.person_id,
        func.count(distinct(models.Recording.sentence_id)),
    )
    if status_filter is not None:
        query = query.where(models.Recording.is_approved == int(status_filter))
    rows = (await session.execute(query.group_by(models.Recording.person_id))).all()

    ranked = sorted(rows, key=lambda r: (-r[1], r[0]))[:limit]
    persons = await _persons_by_id(session, [r[0] for r in ranked])
    return [
        DistinctSentenceStats(
            user_id=person_id,
            email=persons[person_id].email if person_id in persons else None,
            unique_sentences=int(count),
            created_at=persons[person_id].created_at if person_id in persons else None,
        )
        for person_id, count in ranked
    ]


async def user_detail(session: AsyncSession, person_id: int) -> UserDetail:
    """Approved work and created sentences of one person."""
    if not person_id:
        raise ValidationError("userId is required")
    person = await session.get(models.Person, person_id)
    if person is None:
        raise NotFoundError("Person", person_id)

    sentences_done = await _approved_sentences_for(session, person.id)
    total_duration = (
        await session.execute(
            select(func.coalesce(func.sum(func.coalesce(models.Recording.duration, 0)), 0)).where(
                models.Recording.person_id == person.id,
                models.Recording.is_approved == APPROVED,
            )
        )
    ).scalar_one()

    # Older rows only carry the creator email
    created = await session.execute(
        select(models.Sentence)
        .where(
            or_(
                models.Sentence.created_by_id == person.id,
                models.Sentence.created_by == person.email,
            )
        )
        .order_by(models.Sentence.created_at.desc(), models.Sentence.id.desc())
    )
    created_sentences = [_sentence_entry(s) for s in created.scalars().all()]

    return UserDetail(
        person_id=person.id,
        email=person.email,
        name=person.name,
        gender=person.gender,
        role=person.role,
        created_at=person.created_at,
        sentences_done=[
            RecordedSentence(sentence_id=s.sentence_id, content=s.content) for s in sentences_done
        ],
        total_recording_duration=float(total_duration or 0),
        total_sentences_done=len(sentences_done),
        total_contributed_by_user=len(created_sentences),
        created_sentences=created_sentences,
    )


async def total_contributions(
    session: AsyncSession,
    *,
    include_sentences: bool = True,
    page: int | str | None = 1,
    limit: int | str | None = 20,
) -> ContributionTotals:
    """Count of user-created sentences, optionally with a newest-first page."""
    page, limit = clamp_page(page, limit, default_limit=20)
    contributed = models.Sentence.created_by.is_not(None)

    total = (
        await session.execute(select(func.count(models.Sentence.id)).where(contributed))
    ).scalar_one()
    totals = ContributionTotals(total_contributed=int(total), current_page=page, page_limit=limit)
    if not include_sentences:
        return totals

    result = await session.execute(
        select(models.Sentence)
        .where(contributed)
        .order_by(models.Sentence.created_at.desc(), models.Sentence.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    totals.sentences = [_sentence_entry(s) for s in result.scalars().all()]
    totals.count = len(totals.sentences)
    totals.total_pages = total_pages(int(total), limit)
    return totals


async def search_by_email(
    session: AsyncSession,
    email: str | None,
    page: int | str | None = 1,
    limit: int | str | None = 20,
) -> SearchPage:
    """Case-insensitive substring search on email, newest persons first."""
    if not email or not email.strip():
        raise ValidationError("Email is required")
    term = email.strip()
    page, limit = clamp_page(page, limit, default_limit=20)

    match = func.lower(models.Person.email).contains(term.lower(), autoescape=True)
    total = (
        await session.execute(select(func.count(models.Person.id)).where(match))
    ).scalar_one()
    persons = list(
        (
            await session.execute(
                select(models.Person)
                .where(match)
                .order_by(models.Person.created_at.desc(), models.Person.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
        ).scalars().all()
    )

    stats: dict[int, tuple] = {}
    if persons:
        rows = await session.execute(
            select(
                models.Recording.person_id,
                func.count(models.Recording.id),
                _count_if(models.Recording.is_approved == APPROVED),
                _count_if(models.Recording.is_approved == PENDING),
                func.coalesce(func.sum(func.coalesce(models.Recording.duration, 0)), 0),
            )
            .where(
                models.Recording.person_id.in_([p.id for p in persons]),
                models.Recording.is_approved.in_(ACTIVE_STATES),
            )
            .group_by(models.Recording.person_id)
        )
        stats = {row[0]: row[1:] for row in rows.all()}

    hits = []
    for p in persons:
        count, approved, pending, duration = stats.get(p.id, (0, 0, 0, 0))
        hits.append(
            SearchHit(
                id=p.id,
                email=p.email,
                gender=p.gender,
                role=p.role,
                created_at=p.created_at,
                recording_count=int(count),
                approved_count=int(approved),
                pending_count=int(pending),
                total_duration=float(duration or 0),
            )
        )
    return SearchPage(
        users=hits,
        count=len(hits),
        total_count=int(total),
        total_pages=total_pages(int(total), limit),
        current_page=page,
        search_email=term,
    )
