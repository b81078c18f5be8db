"""Shared fixtures: a file backed SQLite store, the app, and a fake Shopify."""

import hashlib
import hmac
import time
from typing import Any, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from shop_access.core.api_keys import ApiKeyManager
from shop_access.core.database import Database
from shop_access.core.errors import UpstreamError
from shop_access.core.main import create_app
from shop_access.core.merchant import store_merchant_session
from shop_access.core.models import DataScope, MerchantSession
from shop_access.core.settings import AppSettings, ScopeName
from shop_access.plugins.shopify import ShopifyGrant, format_customers, format_inventory, format_orders

TEST_SHOP = "test-shop.myshopify.com"
OTHER_SHOP = "other-shop.myshopify.com"


def make_settings(**overrides: Any) -> AppSettings:
    values: dict[str, Any] = {
        "shopify_api_key": "test_api_key",
        "shopify_api_secret": "test_api_secret",
        "shopify_app_url": "https://app.example.com",
        "database_url": "sqlite://",
        "api_rate_limit": 1000,
        "api_rate_window_ms": 60_000,
    }
    values.update(overrides)
    return AppSettings(_env_file=None, **values)


class FakeDataService:
    """Stands in for ShopifyDataService and remembers what it was asked."""

    calls: list[tuple[str, str, dict]] = []
    records: dict[str, list[dict]] = {"orders": [], "customers": [], "inventory": []}
    fail: bool = False

    def __init__(self, shop: str, access_token: str, settings: AppSettings) -> None:
        self.shop = shop
        self.access_token = access_token

    def _fetch(self, resource: str, params: dict) -> list[dict]:
        FakeDataService.calls.append((resource, self.shop, params))
        if FakeDataService.fail:
            raise UpstreamError(resource)
        return FakeDataService.records[resource]

    def get_orders(self, params: dict) -> list[dict]:
        return format_orders(self._fetch("orders", params))

    def get_customers(self, params: dict) -> list[dict]:
        return format_customers(self._fetch("customers", params))

    def get_inventory(self, params: dict) -> list[dict]:
        return format_inventory(self._fetch("inventory", params))


@pytest.fixture
def settings() -> AppSettings:
    return make_settings()


@pytest.fixture
def database(tmp_path: Any) -> Generator[Database, None, None]:
    database = Database(f"sqlite:///{tmp_path / 'test.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def fake_shopify() -> Generator[type[FakeDataService], None, None]:
    FakeDataService.calls = []
    FakeDataService.records = {"orders": [], "customers": [], "inventory": []}
    FakeDataService.fail = False
    yield FakeDataService


@pytest.fixture
def app(settings: AppSettings, database: Database, fake_shopify: type[FakeDataService]) -> FastAPI:
    app = create_app(settings, database)
    app.state.data_service_factory = fake_shopify
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app) as client:
        yield client


def create_session(database: Database, shop: str = TEST_SHOP, session_id: str | None = None) -> MerchantSession:
    with database.session() as db:
        if session_id is None:
            session = store_merchant_session(
                db, ShopifyGrant(shop=shop, access_token=f"shpat_{shop}", scope="read_orders")
            )
        else:
            session = MerchantSession(id=session_id, shop=shop, access_token=f"shpat_{shop}")
            db.add(session)
            db.commit()
            db.refresh(session)
        db.expunge(session)
        return session


def set_scope(database: Database, session_id: str, scope_name: ScopeName, enabled: bool) -> None:
    with database.session() as db:
        scope = (
            db.query(DataScope)
            .filter_by(session_id=session_id, scope_name=scope_name.value)
            .first()
        )
        if scope is None:
            db.add(DataScope(session_id=session_id, scope_name=scope_name.value, enabled=enabled))
        else:
            scope.enabled = enabled
        db.commit()


def issue_key(database: Database, session: MerchantSession, name: str = "Test key") -> tuple[str, str]:
    """Returns (key id, raw key)."""
    with database.session() as db:
        record, raw_key = ApiKeyManager(db).issue(db.get(MerchantSession, session.id), name)
        return record.id, raw_key


def make_session_token(
    settings: AppSettings, shop: str = TEST_SHOP, secret: str | None = None, **claims: Any
) -> str:
    now = int(time.time())
    payload = {
        "iss": f"https://{shop}/admin",
        "dest": f"https://{shop}",
        "aud": settings.shopify_api_key,
        "sub": "42",
        "exp": now + 60,
        "nbf": now - 5,
        "iat": now - 5,
        "jti": "f8912129-1af6-4cad-9ca3-76b0f7621087",
        "sid": "aaea182f2732d44c23057c0fea584021a4485b2bd25d3eb7fd349313ad24c685",
    }
    payload.update(claims)
    return jwt.encode(payload, secret or settings.shopify_api_secret, algorithm="HS256")


def sign_params(settings: AppSettings, params: dict[str, str]) -> dict[str, str]:
    message = "&".join(f"{key}={value}" for key, value in sorted(params.items()))
    digest = hmac.new(
        settings.shopify_api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).hexdigest()
    return {**params, "hmac": digest}
