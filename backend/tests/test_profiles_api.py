"""Tests for onboarding, profile edits, avatar upload and app state."""

import pytest

from app.schemas.profiles import normalize_whatsapp
from app.services.storage import avatar_storage

from conftest import auth_headers, make_user

ONBOARDING = {
    "name": "Asha",
    "age": 21,
    "school": "School of ICT",
    "department": "Computer Science",
    "branch": "CSE",
    "whatsapp": "98765 43210",
}


@pytest.mark.parametrize(
    "raw",
    ["9876543210", "98765-43210", "(987) 654 3210", "+91 98765 43210", "919876543210"],
)
def test_normalize_whatsapp_accepts_common_formats(raw):
    assert normalize_whatsapp(raw) == "+919876543210"


@pytest.mark.parametrize("raw", ["12345", "98765432101234", "phone"])
def test_normalize_whatsapp_rejects_wrong_length(raw):
    with pytest.raises(ValueError):
        normalize_whatsapp(raw)


async def test_onboarding_upsert_creates_then_replaces(client, db):
    user = await make_user(db, "Asha", with_profile=False)
    headers = auth_headers(user.id)

    r = await client.get("/me/state", headers=headers)
    assert r.json()["view"] == "onboarding"

    r = await client.put("/profiles/me", json=ONBOARDING, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == str(user.id)
    assert body["whatsapp"] == "+919876543210"
    assert body["is_searching"] is False

    r = await client.put("/profiles/me", json={**ONBOARDING, "branch": "IT"}, headers=headers)
    assert r.json()["branch"] == "IT"

    r = await client.get("/me/state", headers=headers)
    assert r.json()["view"] == "dashboard"


async def test_onboarding_validation(client, db):
    user = await make_user(db, "Asha", with_profile=False)
    headers = auth_headers(user.id)

    r = await client.put("/profiles/me", json={**ONBOARDING, "whatsapp": "12345"}, headers=headers)
    assert r.status_code == 422
    r = await client.put("/profiles/me", json={**ONBOARDING, "age": 16}, headers=headers)
    assert r.status_code == 422


async def test_patch_profile(client, db):
    user = await make_user(db, "Asha")
    r = await client.patch("/profiles/me", json={"department": "Mathematics"}, headers=auth_headers(user.id))
    assert r.status_code == 200
    assert r.json()["department"] == "Mathematics"
    assert r.json()["name"] == "Asha"


async def test_get_profile_before_onboarding_is_404(client, db):
    user = await make_user(db, "Asha", with_profile=False)
    r = await client.get("/profiles/me", headers=auth_headers(user.id))
    assert r.status_code == 404


async def test_state_shows_chat_when_matched(client, chat, pair):
    r = await client.get("/me/state", headers=auth_headers(pair[1].id))
    body = r.json()
    assert body["view"] == "chat"
    assert body["active_chat"]["id"] == str(chat.id)


async def test_avatar_upload(client, db, monkeypatch):
    user = await make_user(db, "Asha")
    uploaded = {}

    async def fake_upload(key, data, content_type):
        uploaded.update(key=key, data=data, content_type=content_type)
        return f"https://cdn.test/{key}"

    monkeypatch.setattr(avatar_storage, "upload_avatar", fake_upload)

    r = await client.post(
        "/profiles/me/avatar",
        files={"file": ("me.png", b"\x89PNG fake", "image/png")},
        headers=auth_headers(user.id),
    )
    assert r.status_code == 200
    assert uploaded["key"].startswith(f"avatars/{user.id}-")
    assert uploaded["key"].endswith(".png")
    assert r.json()["avatar_url"] == f"https://cdn.test/{uploaded['key']}"


async def test_avatar_rejects_non_images(client, db):
    user = await make_user(db, "Asha")
    r = await client.post(
        "/profiles/me/avatar",
        files={"file": ("notes.pdf", b"%PDF-1.7", "application/pdf")},
        headers=auth_headers(user.id),
    )
    assert r.status_code == 400
