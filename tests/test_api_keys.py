"""Test API key issue, listing, revocation and resolution."""

import pytest
from fastapi.testclient import TestClient

from conftest import OTHER_SHOP, create_session, issue_key
from shop_access.core.api_keys import KEY_PATTERN, ApiKeyManager, generate_raw_key, hash_key
from shop_access.core.database import Database
from shop_access.core.errors import InvalidCredential, NotFound, ValidationError
from shop_access.core.models import ApiKey, MerchantSession


def test_generated_keys_are_unique_and_well_formed() -> None:
    """Test raw keys follow the sdk_ + 48 hex format and do not collide."""
    keys = {generate_raw_key() for _ in range(10_000)}
    assert len(keys) == 10_000
    assert all(KEY_PATTERN.match(key) for key in keys)


def test_issue_stores_only_the_hash(database: Database) -> None:
    """Test the plaintext secret is never persisted."""
    session = create_session(database)
    key_id, raw_key = issue_key(database, session)
    with database.session() as db:
        record = db.get(ApiKey, key_id)
        assert record.key_hash == hash_key(raw_key)
        assert raw_key not in (record.key_prefix, record.last_four, record.key_hash)
        assert record.masked_key == f"{raw_key[:12]}...{raw_key[-4:]}"


def test_issue_requires_name(database: Database) -> None:
    """Test a missing or blank name is rejected."""
    session = create_session(database)
    with database.session() as db:
        manager = ApiKeyManager(db)
        merchant = db.get(MerchantSession, session.id)
        for name in (None, "", "   "):
            with pytest.raises(ValidationError):
                manager.issue(merchant, name)


def test_resolve_active_key(database: Database) -> None:
    """Test an active key resolves to its session and records its use."""
    session = create_session(database)
    key_id, raw_key = issue_key(database, session)
    with database.session() as db:
        record = ApiKeyManager(db).resolve(raw_key)
        assert record.id == key_id
        assert record.session.shop == session.shop
    with database.session() as db:
        assert db.get(ApiKey, key_id).last_used_at is not None


def test_resolve_unknown_key(database: Database) -> None:
    """Test unknown and malformed keys are rejected alike."""
    with database.session() as db:
        manager = ApiKeyManager(db)
        for raw_key in (generate_raw_key(), "sdk_short", "not-a-key"):
            with pytest.raises(InvalidCredential):
                manager.resolve(raw_key)


def test_revoked_key_no_longer_resolves(database: Database) -> None:
    """Test revocation takes effect on the next resolution."""
    session = create_session(database)
    key_id, raw_key = issue_key(database, session)
    with database.session() as db:
        manager = ApiKeyManager(db)
        manager.revoke(db.get(MerchantSession, session.id), key_id)
        with pytest.raises(InvalidCredential):
            manager.resolve(raw_key)


def test_revoke_other_sessions_key(database: Database) -> None:
    """Test a session cannot revoke a key it does not own."""
    owner = create_session(database)
    intruder = create_session(database, shop=OTHER_SHOP)
    key_id, raw_key = issue_key(database, owner)
    with database.session() as db:
        manager = ApiKeyManager(db)
        with pytest.raises(NotFound):
            manager.revoke(db.get(MerchantSession, intruder.id), key_id)
        assert manager.resolve(raw_key).id == key_id


def test_create_key_route(client: TestClient, database: Database) -> None:
    """Test issuing a key returns the full secret once."""
    session = create_session(database)
    response = client.post(
        "/api/keys", json={"name": "Prod"}, headers={"X-Shopify-Session-Id": session.id}
    )
    assert response.status_code == 200
    key = response.json()["key"]
    assert key["name"] == "Prod"
    assert key["isActive"] is True
    assert key["sessionId"] == session.id
    assert KEY_PATTERN.match(key["key"])


def test_create_key_route_requires_name(client: TestClient, database: Database) -> None:
    """Test issuing a key without a name."""
    session = create_session(database)
    response = client.post("/api/keys", json={}, headers={"X-Shopify-Session-Id": session.id})
    assert response.status_code == 400
    assert response.json() == {"error": "Key name required"}


def test_list_keys_route_masks_secrets(client: TestClient, database: Database) -> None:
    """Test listed keys never carry the plaintext secret."""
    session = create_session(database)
    headers = {"X-Shopify-Session-Id": session.id}
    raw_key = client.post("/api/keys", json={"name": "Prod"}, headers=headers).json()["key"]["key"]
    client.post("/api/keys", json={"name": "Staging"}, headers=headers)

    response = client.get("/api/keys", headers=headers)
    assert response.status_code == 200
    keys = response.json()["keys"]
    assert {key["name"] for key in keys} == {"Prod", "Staging"}
    assert raw_key not in response.text
    prod = next(key for key in keys if key["name"] == "Prod")
    assert prod["key"] == f"{raw_key[:12]}...{raw_key[-4:]}"


def test_list_keys_route_is_per_session(client: TestClient, database: Database) -> None:
    """Test a session only sees its own keys."""
    owner = create_session(database)
    other = create_session(database, shop=OTHER_SHOP)
    issue_key(database, owner)
    response = client.get("/api/keys", headers={"X-Shopify-Session-Id": other.id})
    assert response.json() == {"keys": []}


def test_revoke_key_route(client: TestClient, database: Database) -> None:
    """Test revocation succeeds and repeating it is harmless."""
    session = create_session(database)
    key_id, _ = issue_key(database, session)
    headers = {"X-Shopify-Session-Id": session.id}

    for _ in range(2):
        response = client.delete(f"/api/keys/{key_id}", headers=headers)
        assert response.status_code == 200
        assert response.json() == {"success": True}

    keys = client.get("/api/keys", headers=headers).json()["keys"]
    assert keys[0]["isActive"] is False


def test_revoke_key_route_not_found(client: TestClient, database: Database) -> None:
    """Test revoking another session's key reports not found."""
    owner = create_session(database)
    other = create_session(database, shop=OTHER_SHOP)
    key_id, _ = issue_key(database, owner)
    response = client.delete(f"/api/keys/{key_id}", headers={"X-Shopify-Session-Id": other.id})
    assert response.status_code == 404
    assert response.json() == {"error": "API key not found"}
