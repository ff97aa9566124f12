"""Corrective sweep for sentences holding more than one recording.

Two pending submissions for the same sentence can both land before either
is moderated. The sweep drops every recording of such a sentence and puts
the sentence back into the available pool so it gets recorded afresh.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from corpus import models
from corpus.pipelines.moderation import ModerationError, discard_audio
from corpus.storage import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    sentences_processed: int = 0
    recordings_deleted: int = 0
    dangling_groups: int = 0
    storage_failures: list[str] = field(default_factory=list)


async def find_duplicate_groups(session: AsyncSession) -> dict[int, list[models.Recording]]:
    """Recordings grouped by sentence, only for sentences with 2+ recordings."""
    duplicated = (
        select(models.Recording.sentence_id)
        .group_by(models.Recording.sentence_id)
        .having(func.count(models.Recording.id) >= 2)
    )
    result = await session.execute(
        select(models.Recording)
        .where(models.Recording.sentence_id.in_(duplicated))
        .order_by(models.Recording.sentence_id, models.Recording.id)
    )
    groups: dict[int, list[models.Recording]] = defaultdict(list)
    for recording in result.scalars().all():
        groups[recording.sentence_id].append(recording)
    return dict(groups)


async def delete_duplicate_recordings(session: AsyncSession, storage: ObjectStorage) -> DedupResult:
    """Delete all recordings of every duplicated sentence and reset it to 1.

    Works on the groups found when the sweep starts; each group commits on
    its own. Audio cleanup failures are collected, not raised.
    """
    groups = await find_duplicate_groups(session)
    outcome = DedupResult()
    if not groups:
        logger.info("Duplicate sweep: nothing to do")
        return outcome

    for sentence_id, recordings in groups.items():
        for recording in recordings:
            if not await discard_audio(storage, recording):
                outcome.storage_failures.append(
                    f"recording {recording.id}: {recording.public_id or recording.audio_url}"
                )

        try:
            for recording in recordings:
                await session.delete(recording)
            sentence = await session.get(models.Sentence, sentence_id)
            if sentence is not None:
                sentence.status = int(models.SentenceStatus.AVAILABLE)
            await session.commit()
        except Exception as e:
            logger.error(f"Duplicate sweep failed on sentence {sentence_id}: {e}", exc_info=True)
            await session.rollback()
            raise ModerationError(f"Duplicate sweep failed: {e}") from e

        outcome.recordings_deleted += len(recordings)
        if sentence is None:
            # Recordings left behind by an earlier sentence deletion
            outcome.dangling_groups += 1
        else:
            outcome.sentences_processed += 1

    logger.info(
        f"Duplicate sweep: {outcome.sentences_processed} sentences, "
        f"{outcome.recordings_deleted} recordings deleted, "
        f"{outcome.dangling_groups} dangling groups, "
        f"{len(outcome.storage_failures)} storage failures"
    )
    return outcome
