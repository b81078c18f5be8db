"""Shopify plugin module.

This module wraps everything the service needs from the Shopify platform:
decoding App Bridge session tokens, the OAuth install handshake, and the
Admin REST API calls behind the public data endpoints.

Upstream records are reshaped through allow-list models. Fields that are not
declared on a model are dropped, so internal tags, notes and metafields never
reach an API key holder.
"""

import hashlib
import hmac
import logging
import re
from typing import Any, Mapping, Optional, Union
from urllib.parse import urlencode, urlparse

import requests
from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shop_access.core.errors import TokenInvalid, UpstreamError
from shop_access.core.settings import AppSettings

# Setup module-level logger
logger = logging.getLogger("shopify")

SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")
SESSION_TOKEN_LEEWAY_SECONDS = 10

Identifier = Union[int, str, None]
Amount = Union[str, float, int, None]


class OAuthError(Exception):
    """The Shopify OAuth handshake failed."""


class ShopifyGrant(BaseModel):
    """Result of a successful OAuth code exchange."""

    shop: str
    access_token: str
    scope: str = ""
    is_online: bool = False


def sanitize_shop(shop: str | None) -> str | None:
    """
    Normalize a shop parameter to ``name.myshopify.com``.

    Returns:
        str | None: The shop domain, or None if it is not a valid myshopify domain.
    """
    if not shop:
        return None
    candidate = shop.strip().lower()
    if "://" in candidate:
        candidate = urlparse(candidate).hostname or ""
    candidate = candidate.rstrip("/")
    if not SHOP_DOMAIN_RE.match(candidate):
        return None
    return candidate


def decode_session_token(token: str, settings: AppSettings) -> str:
    """
    Validate an App Bridge session token and return the shop it was issued for.

    Session tokens are HS256 JWTs signed with the app secret, with the app API
    key as audience and the shop admin URL in the ``dest`` claim.

    Raises:
        TokenInvalid: If the token cannot be validated or carries no destination.
    """
    if not settings.shopify_api_secret:
        raise TokenInvalid("Shopify API secret is not configured")

    try:
        payload = jwt.decode(
            token,
            settings.shopify_api_secret,
            algorithms=["HS256"],
            audience=settings.shopify_api_key,
            options={"leeway": SESSION_TOKEN_LEEWAY_SECONDS},
        )
    except JWTError as e:
        raise TokenInvalid(str(e)) from e

    dest = payload.get("dest")
    if not isinstance(dest, str):
        raise TokenInvalid("Session token has no destination")

    shop = urlparse(dest).hostname
    if not shop:
        raise TokenInvalid("Session token destination is not a URL")

    issuer = payload.get("iss")
    if isinstance(issuer, str) and urlparse(issuer).hostname != shop:
        raise TokenInvalid("Session token issuer does not match destination")

    return shop


class ShopifyOAuth:
    """Authorization-code grant against a shop's admin."""

    def __init__(self, settings: AppSettings, http: requests.Session | None = None) -> None:
        self.settings = settings
        self._http = http or requests.Session()

    def authorization_url(self, shop: str, state: str) -> str:
        query = urlencode(
            {
                "client_id": self.settings.shopify_api_key,
                "scope": ",".join(self.settings.oauth_scopes),
                "redirect_uri": self.settings.redirect_uri,
                "state": state,
            }
        )
        return f"https://{shop}/admin/oauth/authorize?{query}"

    def verify_hmac(self, params: Mapping[str, str]) -> bool:
        """Check the ``hmac`` Shopify appends to every callback query string."""
        received = params.get("hmac")
        if not received or not self.settings.shopify_api_secret:
            return False
        message = "&".join(
            f"{key}={value}"
            for key, value in sorted(params.items())
            if key not in ("hmac", "signature")
        )
        digest = hmac.new(
            self.settings.shopify_api_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(digest, received)

    def exchange_code(self, shop: str, code: str) -> ShopifyGrant:
        """
        Exchange an authorization code for an access token.

        Raises:
            OAuthError: If Shopify rejects the code or the response is malformed.
        """
        logger.info("Obtaining access token for shop %s", shop)
        try:
            response = self._http.post(
                f"https://{shop}/admin/oauth/access_token",
                json={
                    "client_id": self.settings.shopify_api_key,
                    "client_secret": self.settings.shopify_api_secret,
                    "code": code,
                },
                timeout=self.settings.upstream_timeout_seconds,
            )
        except requests.RequestException as e:
            raise OAuthError(f"Token exchange request failed: {e}") from e

        if not response.ok:
            raise OAuthError(f"Token exchange returned {response.status_code}")

        try:
            body = response.json()
            access_token = body["access_token"]
        except (ValueError, KeyError, TypeError) as e:
            raise OAuthError("Malformed token exchange response") from e

        return ShopifyGrant(
            shop=shop,
            access_token=access_token,
            scope=body.get("scope", ""),
            is_online="associated_user" in body,
        )


class _Projection(BaseModel):
    # only keys are filtered; numeric values Shopify sends for text fields are kept as text
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class OrderCustomer(_Projection):
    id: Identifier = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LineItem(_Projection):
    id: Identifier = None
    product_id: Identifier = None
    variant_id: Identifier = None
    title: Optional[str] = None
    quantity: Optional[int] = None
    price: Amount = None


class Order(_Projection):
    id: Identifier = None
    order_number: Identifier = None
    customer: Optional[OrderCustomer] = None
    line_items: list[LineItem] = Field(default_factory=list)
    total_price: Amount = None
    currency: Optional[str] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("line_items", mode="before")
    @classmethod
    def empty_list_for_null(cls, value: Any) -> Any:
        return [] if value is None else value


class Address(_Projection):
    address1: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    zip: Optional[str] = None


class Customer(_Projection):
    id: Identifier = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    orders_count: Optional[int] = None
    total_spent: Amount = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    addresses: list[Address] = Field(default_factory=list)

    @field_validator("addresses", mode="before")
    @classmethod
    def empty_list_for_null(cls, value: Any) -> Any:
        return [] if value is None else value


class Variant(_Projection):
    id: Identifier = None
    sku: Optional[str] = None
    price: Amount = None
    inventory_quantity: Optional[int] = None
    inventory_item_id: Identifier = None
    title: Optional[str] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def available(self) -> bool:
        return (self.inventory_quantity or 0) > 0


class Product(_Projection):
    id: Identifier = None
    title: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    variants: list[Variant] = Field(default_factory=list)

    @field_validator("variants", mode="before")
    @classmethod
    def empty_list_for_null(cls, value: Any) -> Any:
        return [] if value is None else value


def reshape(resource: str, records: Any, model: type[_Projection]) -> list[dict]:
    """
    Project upstream records onto ``model``.

    Raises:
        UpstreamError: If the payload is not a list of objects the model accepts.
    """
    if not isinstance(records, list):
        logger.error("Malformed %s payload: expected a list, got %s", resource, type(records).__name__)
        raise UpstreamError(resource)
    try:
        return [model.model_validate(record).model_dump() for record in records]
    except PydanticValidationError as e:
        logger.error("Malformed %s record from Shopify: %s", resource, e)
        raise UpstreamError(resource) from e


def format_orders(orders: Any) -> list[dict]:
    return reshape("orders", orders, Order)


def format_customers(customers: Any) -> list[dict]:
    return reshape("customers", customers, Customer)


def format_inventory(products: Any) -> list[dict]:
    return reshape("inventory", products, Product)


class ShopifyDataService:
    """
    Read-only Admin REST client for one merchant session.

    Methods are blocking; callers on the event loop run them in a worker thread.
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        settings: AppSettings,
        http: requests.Session | None = None,
    ) -> None:
        self.shop = shop
        self.access_token = access_token
        self.api_version = settings.shopify_api_version
        self.timeout = settings.upstream_timeout_seconds
        self._http = http or requests.Session()

    @property
    def base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    def _get(self, resource: str, path: str, params: dict[str, Any]) -> dict:
        url = f"{self.base_url}/{path}.json"
        logger.debug("GET %s params=%s", url, params)
        try:
            response = self._http.get(
                url,
                headers={
                    "X-Shopify-Access-Token": self.access_token,
                    "Accept": "application/json",
                },
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error("Error fetching %s for %s: %s: %s", resource, self.shop, type(e).__name__, e)
            raise UpstreamError(resource) from e

        if not response.ok:
            logger.error(
                "Shopify returned %s fetching %s for %s: %s",
                response.status_code,
                resource,
                self.shop,
                response.text[:500],
            )
            raise UpstreamError(resource)

        try:
            body = response.json()
        except ValueError as e:
            logger.error("Shopify returned a non-JSON body fetching %s for %s", resource, self.shop)
            raise UpstreamError(resource) from e

        if not isinstance(body, dict):
            logger.error("Shopify returned an unexpected body fetching %s for %s", resource, self.shop)
            raise UpstreamError(resource)
        return body

    def get_orders(self, params: dict[str, Any]) -> list[dict]:
        body = self._get("orders", "orders", params)
        return format_orders(body.get("orders"))

    def get_customers(self, params: dict[str, Any]) -> list[dict]:
        body = self._get("customers", "customers", params)
        return format_customers(body.get("customers"))

    def get_inventory(self, params: dict[str, Any]) -> list[dict]:
        body = self._get("inventory", "products", params)
        return format_inventory(body.get("products"))
