import pytest

from corpus import models
from corpus.errors import NotFoundError, StorageError, ValidationError
from corpus.pipelines import ingest

from conftest import TRUSTED_EMAIL, StubStorage


@pytest.mark.asyncio
async def test_contribute_sentence_records_creator(session, factory):
    alice = await factory.person("alice@example.com")

    sentence = await ingest.contribute_sentence(session, alice.id, "  Trời hôm nay đẹp quá  ")

    assert sentence.status == models.SentenceStatus.USER_CREATED
    assert sentence.content == "Trời hôm nay đẹp quá"
    assert sentence.content_lower == "trời hôm nay đẹp quá"
    assert sentence.created_by == "alice@example.com"
    assert sentence.created_by_id == alice.id


@pytest.mark.asyncio
async def test_contribute_sentence_errors(session, factory):
    alice = await factory.person("alice@example.com")
    with pytest.raises(ValidationError):
        await ingest.contribute_sentence(session, alice.id, "   ")
    with pytest.raises(NotFoundError):
        await ingest.contribute_sentence(session, 404, "Xin chào")


@pytest.mark.asyncio
async def test_create_and_list_sentences(session, factory):
    created = await ingest.create_sentences(session, ["Một", "", "  ", " Hai "])
    assert [s.content for s in created] == ["Một", "Hai"]
    assert all(s.status == 1 and s.created_by is None for s in created)

    alice = await factory.person("alice@example.com")
    await ingest.contribute_sentence(session, alice.id, "Ba")

    available = await ingest.list_sentences(session, status=1)
    assert available.total_count == 2
    contributed = await ingest.list_sentences(session, status="0")
    assert [s.content for s in contributed.sentences] == ["Ba"]

    with pytest.raises(ValidationError):
        await ingest.create_sentences(session, ["", " "])
    with pytest.raises(ValidationError):
        await ingest.list_sentences(session, status=5)


@pytest.mark.asyncio
async def test_upload_recording_stays_pending(session, factory, storage, tmp_path):
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Xin chào")
    audio = tmp_path / "take.wav"
    audio.write_bytes(b"RIFF")

    view = await ingest.upload_recording(
        session, storage, person_id=alice.id, sentence_id=sentence.id, local_path=audio
    )

    assert view.is_approved == models.ApprovalStatus.PENDING
    assert view.duration == 1.5
    assert storage.uploaded == ["lesson_audio/take.wav"]
    recording = await session.get(models.Recording, view.recording_id)
    assert recording.public_id == "lesson_audio/take.wav"


@pytest.mark.asyncio
async def test_upload_recording_auto_approves_trusted_contributor(session, factory, storage, tmp_path):
    trusted = await factory.person(TRUSTED_EMAIL)
    first = await factory.sentence("Cảm ơn")
    twin = await factory.sentence("cảm ơn")
    audio = tmp_path / "take.wav"
    audio.write_bytes(b"RIFF")

    view = await ingest.upload_recording(
        session, storage, person_id=trusted.id, sentence_id=first.id, local_path=audio
    )
    assert view.is_approved == models.ApprovalStatus.APPROVED
    assert view.sentence_status == models.SentenceStatus.RECORDED

    # A refused auto-approval still returns the stored recording
    refused = await ingest.upload_recording(
        session, storage, person_id=trusted.id, sentence_id=twin.id, local_path=audio
    )
    assert refused.is_approved == models.ApprovalStatus.SUPERSEDED
    await session.refresh(twin)
    assert twin.status == models.SentenceStatus.REJECTED_DUPLICATE


@pytest.mark.asyncio
async def test_upload_failure_is_fatal(session, factory, tmp_path):
    storage = StubStorage(fail_upload=True)
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Xin chào")

    with pytest.raises(StorageError):
        await ingest.upload_recording(
            session, storage, person_id=alice.id, sentence_id=sentence.id, local_path=tmp_path / "x.wav"
        )
    page = await ingest.list_sentences(session)
    assert page.total_count == 1
    assert await session.get(models.Recording, 1) is None


@pytest.mark.asyncio
async def test_upload_checks_references_before_storage(session, factory, storage, tmp_path):
    alice = await factory.person("alice@example.com")

    with pytest.raises(NotFoundError):
        await ingest.upload_recording(
            session, storage, person_id=alice.id, sentence_id=77, local_path=tmp_path / "x.wav"
        )
    with pytest.raises(ValidationError):
        await ingest.upload_recording(
            session, storage, person_id=None, sentence_id=1, local_path=tmp_path / "x.wav"
        )
    assert storage.uploaded == []


@pytest.mark.asyncio
async def test_failed_commit_removes_uploaded_audio(session, factory, storage, tmp_path, monkeypatch):
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Xin chào")

    async def broken_commit():
        raise RuntimeError("database went away")

    monkeypatch.setattr(session, "commit", broken_commit)

    with pytest.raises(RuntimeError):
        await ingest.upload_recording(
            session, storage, person_id=alice.id, sentence_id=sentence.id, local_path=tmp_path / "take.wav"
        )

    assert storage.uploaded == ["lesson_audio/take.wav"]
    assert storage.deleted == ["lesson_audio/take.wav"]
    monkeypatch.undo()
    assert await session.get(models.Recording, 1) is None
