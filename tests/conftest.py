import os
import tempfile
from pathlib import Path

import bcrypt
import pytest

ADMIN_PASSWORD = "s3cret-pass"
TRUSTED_EMAIL = "trusted@example.com"

# Settings are read once at import time
os.environ.setdefault("DB_URL", "sqlite+aiosqlite://")
os.environ.setdefault("AUTH_SECRET_KEY", "test-secret")
os.environ.setdefault("AUTH_ADMIN_USERNAME", "admin")
os.environ.setdefault(
    "AUTH_ADMIN_PASSWORD_HASH",
    bcrypt.hashpw(ADMIN_PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8"),
)
os.environ.setdefault("MODERATION_AUTO_APPROVE_EMAILS", f'["{TRUSTED_EMAIL}"]')
os.environ.setdefault("MODERATION_UPLOAD_DIR", tempfile.mkdtemp(prefix="corpus-uploads-"))
os.environ.setdefault("LOG_FORMAT", "text")

import httpx  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from corpus import models  # noqa: E402
from corpus.db import build_engine  # noqa: E402
from corpus.errors import StorageError  # noqa: E402
from corpus.storage import StoredObject  # noqa: E402

AUDIO_BASE = "https://audio.test/"


class StubStorage:
    """In-memory object store; can be told to fail uploads or deletes."""

    def __init__(self, fail_upload=False, fail_delete=False):
        self.fail_upload = fail_upload
        self.fail_delete = fail_delete
        self.uploaded = []
        self.deleted = []

    async def upload(self, local_path):
        if self.fail_upload:
            raise StorageError("upload refused")
        key = f"lesson_audio/{Path(local_path).name}"
        self.uploaded.append(key)
        return StoredObject(url=AUDIO_BASE + key, object_id=key, duration=1.5)

    async def delete(self, object_id):
        if self.fail_delete:
            raise StorageError("delete refused")
        self.deleted.append(object_id)

    def object_id_from_url(self, url):
        if url and url.startswith(AUDIO_BASE):
            return url[len(AUDIO_BASE):]
        return None


class Factory:
    """Direct row creation, bypassing the pipelines."""

    def __init__(self, session):
        self.session = session
        self._audio_seq = 0

    async def person(self, email, gender="Male", name=None, created_at=None):
        person = models.Person(email=email, gender=gender, name=name)
        if created_at is not None:
            person.created_at = created_at
        self.session.add(person)
        await self.session.commit()
        return person

    async def sentence(self, content, status=1, creator=None, created_by=None, created_at=None):
        sentence = models.Sentence(content=content, status=status)
        if creator is not None:
            sentence.created_by = creator.email
            sentence.created_by_id = creator.id
        elif created_by is not None:
            sentence.created_by = created_by
        if created_at is not None:
            sentence.created_at = created_at
        self.session.add(sentence)
        await self.session.commit()
        return sentence

    async def recording(self, person, sentence, is_approved=0, duration=2.0, recorded_at=None):
        self._audio_seq += 1
        key = f"lesson_audio/take-{self._audio_seq}.wav"
        recording = models.Recording(
            person_id=person.id,
            sentence_id=sentence.id,
            audio_url=AUDIO_BASE + key,
            public_id=key,
            is_approved=is_approved,
            duration=duration,
            recorded_at=recorded_at or models.utcnow(),
        )
        self.session.add(recording)
        await self.session.commit()
        return recording


@pytest.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def factory(session):
    return Factory(session)


@pytest.fixture
def storage():
    return StubStorage()


@pytest.fixture
async def client(session_maker, storage):
    from corpus.api import app
    from corpus.db import get_session
    from corpus.storage import get_object_storage

    async def _session():
        async with session_maker() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_object_storage] = lambda: storage
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    from corpus.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token('Admin')}"}
