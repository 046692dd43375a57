"""Tests for TokenRecord and the JSON token file store."""

from __future__ import annotations

import json
import os
import stat
from datetime import datetime, timezone

import pytest

from modules.fitbit.exceptions import TokenFileCorruptError
from modules.fitbit.token_store import TokenRecord, TokenStore
from modules.fitbit.tests.fixtures import make_record


@pytest.fixture
def store(tmp_path):
    return TokenStore(tmp_path / "tokens.json")


# ---------------------------------------------------------------------------
# TokenRecord
# ---------------------------------------------------------------------------


def test_record_rejects_empty_access_token():
    with pytest.raises(ValueError, match="access_token"):
        TokenRecord(
            access_token="",
            refresh_token="r",
            expires_at=datetime.now(timezone.utc),
        )


def test_issued_now_derives_expiry_from_lifetime():
    before = datetime.now(timezone.utc)
    record = TokenRecord.issued_now("a", "r", expires_in=3600)
    after = datetime.now(timezone.utc)

    assert (record.expires_at - before).total_seconds() >= 3600
    assert (record.expires_at - after).total_seconds() <= 3600
    assert record.token_type == "Bearer"


def test_expiry_checks():
    assert make_record(expires_in=-10).is_expired
    assert not make_record(expires_in=3600).is_expired
    assert make_record(expires_in=60).expires_within(300)
    assert not make_record(expires_in=3600).expires_within(300)


def test_from_dict_accepts_epoch_seconds():
    record = TokenRecord.from_dict(
        {
            "access_token": "a",
            "refresh_token": "r",
            "expires_at": 1_800_000_000,
            "scope": "sleep weight",
            "token_type": "Bearer",
        }
    )

    assert record.expires_at == datetime.fromtimestamp(1_800_000_000, tz=timezone.utc)
    assert record.scope == frozenset({"sleep", "weight"})


def test_to_dict_layout():
    data = make_record(scope=frozenset({"weight", "sleep"})).to_dict()

    assert set(data) == {"access_token", "refresh_token", "expires_at", "scope", "token_type"}
    assert data["scope"] == "sleep weight"
    assert data["token_type"] == "Bearer"
    datetime.fromisoformat(data["expires_at"])


# ---------------------------------------------------------------------------
# TokenStore
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_save_then_load_returns_equal_record(store):
    record = make_record()

    await store.save(record)
    loaded = await store.load()

    assert loaded == record


@pytest.mark.asyncio
async def test_save_keeps_user_id(store):
    record = TokenRecord.issued_now("a", "r", 600, user_id="ABC123")

    await store.save(record)

    assert (await store.load()).user_id == "ABC123"


@pytest.mark.asyncio
async def test_load_missing_file_returns_none(store):
    assert await store.load() is None


@pytest.mark.asyncio
async def test_load_malformed_json_raises_corrupt(store):
    store.token_file.write_text("{not json")

    with pytest.raises(TokenFileCorruptError):
        await store.load()


@pytest.mark.asyncio
async def test_load_missing_field_raises_corrupt(store):
    store.token_file.write_text(json.dumps({"access_token": "a"}))

    with pytest.raises(TokenFileCorruptError):
        await store.load()


@pytest.mark.asyncio
async def test_save_overwrites_previous_record(store):
    await store.save(make_record(access_token="first"))
    await store.save(make_record(access_token="second"))

    assert (await store.load()).access_token == "second"
    # No temp file left behind
    assert [p.name for p in store.token_file.parent.iterdir()] == ["tokens.json"]


@pytest.mark.asyncio
async def test_save_sets_owner_only_permissions(store):
    await store.save(make_record())

    mode = stat.S_IMODE(os.stat(store.token_file).st_mode)
    assert mode == 0o600


@pytest.mark.asyncio
async def test_save_creates_parent_directory(tmp_path):
    store = TokenStore(tmp_path / "nested" / "dir" / "tokens.json")

    await store.save(make_record())

    assert store.exists()


@pytest.mark.asyncio
async def test_delete(store):
    assert await store.delete() is False

    await store.save(make_record())
    assert await store.delete() is True
    assert not store.exists()
