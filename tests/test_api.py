import io
import wave

import pytest

from corpus.security import create_access_token

from conftest import ADMIN_PASSWORD


def user_headers(person_id, email):
    token = create_access_token("User", user_id=person_id, email=email)
    return {"Authorization": f"Bearer {token}"}


def wav_bytes(seconds=1, rate=8000):
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)
        wf.setframerate(rate)
        wf.writeframes(b"\x00\x00" * rate * seconds)
    return buffer.getvalue()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_guest_registration_and_login(client):
    created = await client.post("/persons/guest", json={"email": "Alice@Example.com", "gender": "Female"})
    assert created.status_code == 201
    assert created.json()["existed"] is False

    again = await client.post("/persons/guest", json={"email": "alice@example.com", "gender": "Female"})
    assert again.json()["existed"] is True
    assert again.json()["user_id"] == created.json()["user_id"]

    bad = await client.post("/persons/guest", json={"email": "alice@example.com", "gender": "robot"})
    assert bad.status_code == 400
    assert bad.json()["error"] == "validation_error"

    login = await client.post("/auth/login", json={"email": "alice@example.com"})
    assert login.status_code == 200
    assert login.json()["token"]

    missing = await client.post("/auth/login", json={"email": "ghost@example.com"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_admin_login(client):
    ok = await client.post("/auth/admin/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert ok.status_code == 200

    denied = await client.post("/auth/admin/login", json={"username": "admin", "password": "nope"})
    assert denied.status_code == 401


@pytest.mark.asyncio
async def test_moderation_routes_require_moderator(client, factory):
    alice = await factory.person("alice@example.com")

    anonymous = await client.get("/persons")
    assert anonymous.status_code == 401

    as_user = await client.get("/persons", headers=user_headers(alice.id, alice.email))
    assert as_user.status_code == 403

    garbage = await client.get("/persons", headers={"Authorization": "Bearer not-a-token"})
    assert garbage.status_code == 401


@pytest.mark.asyncio
async def test_approval_conflict_maps_to_409(client, factory, admin_headers):
    alice = await factory.person("alice@example.com")
    bob = await factory.person("bob@example.com")
    sentence = await factory.sentence("Xin chào")
    first = await factory.recording(alice, sentence)
    second = await factory.recording(bob, sentence)

    approved = await client.patch(f"/recordings/{first.id}/approve", headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["is_approved"] == 1

    conflict = await client.patch(f"/recordings/{second.id}/approve", headers=admin_headers)
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "conflict"

    status = await client.get("/recordings/status/3")
    assert [r["recording_id"] for r in status.json()["data"]] == [second.id]

    missing = await client.patch("/recordings/999/approve", headers=admin_headers)
    assert missing.status_code == 404
    assert "Recording" in missing.json()["detail"]


@pytest.mark.asyncio
async def test_reject_and_delete(client, factory, storage, admin_headers):
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Tạm biệt")
    recording = await factory.recording(alice, sentence)

    rejected = await client.patch(f"/recordings/{recording.id}/reject", headers=admin_headers)
    assert rejected.json()["is_approved"] == 2

    deleted = await client.delete(f"/recordings/{recording.id}", headers=admin_headers)
    assert deleted.status_code == 200
    assert deleted.json()["sentence_deleted"] is True
    assert storage.deleted == [recording.public_id]


@pytest.mark.asyncio
async def test_upload_recording_route(client, factory, storage):
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Một hai ba")

    response = await client.post(
        "/recordings",
        data={"personId": str(alice.id), "sentenceId": str(sentence.id)},
        files={"audio": ("take.wav", wav_bytes(), "audio/wav")},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["is_approved"] == 0
    assert body["audio_url"].endswith("-take.wav")
    assert len(storage.uploaded) == 1

    not_audio = await client.post(
        "/recordings",
        data={"personId": str(alice.id), "sentenceId": str(sentence.id)},
        files={"audio": ("notes.txt", b"hello", "text/plain")},
    )
    assert not_audio.status_code == 400


@pytest.mark.asyncio
async def test_upload_storage_failure_maps_to_502(client, factory, storage):
    storage.fail_upload = True
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Một hai ba")

    response = await client.post(
        "/recordings",
        data={"personId": str(alice.id), "sentenceId": str(sentence.id)},
        files={"audio": ("take.wav", wav_bytes(), "audio/wav")},
    )
    assert response.status_code == 502


@pytest.mark.asyncio
async def test_sentence_routes(client, factory, admin_headers):
    alice = await factory.person("alice@example.com")

    seeded = await client.post("/sentences", json={"contents": ["Một", "Hai"]}, headers=admin_headers)
    assert seeded.status_code == 201
    assert len(seeded.json()) == 2

    contributed = await client.post(
        "/sentences/contribute",
        json={"content": "Ba"},
        headers=user_headers(alice.id, alice.email),
    )
    assert contributed.status_code == 201
    assert contributed.json()["status"] == 0
    assert contributed.json()["created_by"] == "alice@example.com"

    listing = await client.get("/sentences", params={"status": 1, "limit": 1})
    assert listing.json()["total_count"] == 2
    assert listing.json()["total_pages"] == 2


@pytest.mark.asyncio
async def test_statistics_routes(client, factory, admin_headers):
    alice = await factory.person("alice@example.com")
    bob = await factory.person("bob@example.com")
    sentence = await factory.sentence("Một", creator=alice)
    await factory.recording(bob, sentence, is_approved=1)

    users = await client.get("/persons", params={"page": 1, "limit": 5}, headers=admin_headers)
    assert users.status_code == 200
    assert users.json()["users"][0]["email"] == "bob@example.com"

    top = await client.get("/persons/top-recorders", params={"status": 1, "limit": 500})
    assert top.json()["limit"] == 100
    assert top.json()["data"][0]["user_id"] == bob.id

    bad_status = await client.get("/persons/top-recorders", params={"status": 9})
    assert bad_status.status_code == 400

    contributors = await client.get("/persons/top-sentence-contributors")
    assert contributors.json()["data"][0]["user_email"] == "alice@example.com"

    ranked = await client.get("/persons/top-contributors")
    assert ranked.json()["users"][0]["email"] == "alice@example.com"

    distinct = await client.get("/persons/top-sentence-recorders")
    assert distinct.json()["data"][0]["unique_sentences"] == 1

    totals = await client.get("/persons/contributions", params={"include": "false"})
    assert totals.json()["total_contributed"] == 1
    assert totals.json()["sentences"] is None

    search = await client.get("/persons/search", params={"email": "BOB"})
    assert search.json()["users"][0]["approved_count"] == 1

    detail = await client.get(f"/persons/{alice.id}")
    assert detail.json()["total_contributed_by_user"] == 1

    missing = await client.get("/persons/9999")
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_person_maintenance_routes(client, factory, admin_headers):
    alice = await factory.person("alice@example.com")

    renamed = await client.patch(f"/persons/{alice.id}", json={"name": "Alice"}, headers=admin_headers)
    assert renamed.json()["name"] == "Alice"

    empty = await client.patch(f"/persons/{alice.id}", json={"name": " "}, headers=admin_headers)
    assert empty.status_code == 400

    deleted = await client.delete(f"/persons/{alice.id}", headers=admin_headers)
    assert deleted.status_code == 200
    assert (await client.get(f"/persons/{alice.id}")).status_code == 404


@pytest.mark.asyncio
async def test_approve_by_email_route(client, factory, admin_headers):
    alice = await factory.person("alice@example.com")
    s1 = await factory.sentence("Một")
    s2 = await factory.sentence("Hai")
    await factory.recording(alice, s1)
    await factory.recording(alice, s2)

    response = await client.post(
        "/persons/approve-by-email",
        json={"email": "alice@example.com", "fromDate": "2000-01-01"},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["approved_count"] == 2


@pytest.mark.asyncio
async def test_delete_duplicates_route(client, factory, admin_headers):
    alice = await factory.person("alice@example.com")
    sentence = await factory.sentence("Một")
    await factory.recording(alice, sentence)
    await factory.recording(alice, sentence)

    response = await client.post("/recordings/admin/delete-duplicates", headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["recordings_deleted"] == 2
    assert response.json()["dangling_groups"] == 0
