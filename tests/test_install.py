"""Test the Shopify install flow and the remaining service routes."""

from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient

from conftest import TEST_SHOP, create_session, sign_params
from shop_access.api.v1.auth import STATE_COOKIE
from shop_access.core.database import Database
from shop_access.core.merchant import get_session_by_shop
from shop_access.core.scopes import list_scopes
from shop_access.core.settings import AppSettings
from shop_access.plugins.shopify import OAuthError, ShopifyGrant, ShopifyOAuth


def _callback_params(settings: AppSettings, state: str = "state123") -> dict[str, str]:
    return sign_params(
        settings,
        {"code": "code123", "shop": TEST_SHOP, "state": state, "timestamp": "1700000000", "host": "YWRtaW4"},
    )


def test_auth_requires_shop(client: TestClient) -> None:
    """Test the install entry point needs a shop."""
    response = client.get("/auth")
    assert response.status_code == 400
    assert response.json() == {"error": "Shop parameter required"}


def test_auth_rejects_foreign_domain(client: TestClient) -> None:
    """Test only myshopify domains can start an install."""
    response = client.get("/auth", params={"shop": "evil.example.com"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid shop domain"}


def test_auth_redirects_to_shopify(client: TestClient) -> None:
    """Test the install redirect carries the same state as the cookie."""
    response = client.get("/auth", params={"shop": TEST_SHOP}, follow_redirects=False)
    assert response.status_code == 307
    location = urlparse(response.headers["location"])
    assert location.netloc == TEST_SHOP
    assert parse_qs(location.query)["state"] == [response.cookies[STATE_COOKIE]]


def test_callback_stores_session(client: TestClient, database: Database, settings: AppSettings) -> None:
    """Test a verified callback stores the session and opens the dashboard."""
    grant = ShopifyGrant(shop=TEST_SHOP, access_token="shpat_new", scope="read_orders")
    client.cookies.set(STATE_COOKIE, "state123")

    with patch.object(ShopifyOAuth, "exchange_code", return_value=grant) as exchange:
        response = client.get("/auth/callback", params=_callback_params(settings), follow_redirects=False)

    exchange.assert_called_once_with(TEST_SHOP, "code123")
    assert response.status_code == 307
    with database.session() as db:
        session = get_session_by_shop(db, TEST_SHOP)
        assert session is not None
        assert session.access_token == "shpat_new"
        assert not any(scope.enabled for scope in list_scopes(db, session.id))

    location = urlparse(response.headers["location"])
    assert location.path == "/"
    assert parse_qs(location.query) == {"shop": [TEST_SHOP], "session": [session.id], "host": ["YWRtaW4"]}


def test_callback_rejects_bad_hmac(client: TestClient, settings: AppSettings) -> None:
    """Test a tampered callback is refused before the code is exchanged."""
    params = {**_callback_params(settings), "shop": "other-shop.myshopify.com"}
    client.cookies.set(STATE_COOKIE, "state123")

    with patch.object(ShopifyOAuth, "exchange_code") as exchange:
        response = client.get("/auth/callback", params=params, follow_redirects=False)

    assert response.status_code == 400
    exchange.assert_not_called()


def test_callback_rejects_state_mismatch(client: TestClient, settings: AppSettings) -> None:
    """Test the state must match the cookie set at install time."""
    client.cookies.set(STATE_COOKIE, "another-state")

    with patch.object(ShopifyOAuth, "exchange_code") as exchange:
        response = client.get("/auth/callback", params=_callback_params(settings), follow_redirects=False)

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid OAuth state"}
    exchange.assert_not_called()


def test_callback_exchange_failure(client: TestClient, settings: AppSettings) -> None:
    """Test a failed code exchange is reported without detail."""
    client.cookies.set(STATE_COOKIE, "state123")

    with patch.object(ShopifyOAuth, "exchange_code", side_effect=OAuthError("Token exchange returned 400")):
        response = client.get("/auth/callback", params=_callback_params(settings), follow_redirects=False)

    assert response.status_code == 500
    assert response.json() == {"error": "Authentication failed"}


def test_verify_session(client: TestClient, database: Database) -> None:
    """Test session id verification."""
    session = create_session(database)

    assert client.get("/auth/verify", params={"sessionId": session.id}).json() == {
        "valid": True,
        "shop": TEST_SHOP,
    }
    assert client.get("/auth/verify").status_code == 400
    assert client.get("/auth/verify", params={"sessionId": "missing"}).status_code == 401


def test_endpoint_listing(client: TestClient, database: Database) -> None:
    """Test the dashboard is told where the data endpoints live."""
    session = create_session(database)
    response = client.get("/api/endpoint", headers={"X-Shopify-Session-Id": session.id})
    assert response.status_code == 200
    assert response.json()["endpoints"] == {
        "orders": "https://app.example.com/data/orders",
        "customers": "https://app.example.com/data/customers",
        "inventory": "https://app.example.com/data/inventory",
    }


def test_health(client: TestClient) -> None:
    """Test the health check."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_unknown_route(client: TestClient) -> None:
    """Test framework errors are rendered with the error field."""
    response = client.get("/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
