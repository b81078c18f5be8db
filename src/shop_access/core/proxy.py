"""
Filter normalization and upstream dispatch for the public data endpoints.
"""

import logging
import re
from enum import Enum
from typing import Any, Callable, Optional

import anyio
from pydantic import BaseModel

from shop_access.core.errors import UpstreamError, ValidationError
from shop_access.core.models import MerchantSession
from shop_access.core.settings import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, AppSettings, ScopeName
from shop_access.plugins.shopify import ShopifyDataService

logger = logging.getLogger("proxy")

LEADING_INT_RE = re.compile(r"\s*[+-]?\d+")


class OrderStatus(str, Enum):
    ANY = "any"
    OPEN = "open"
    CLOSED = "closed"
    CANCELLED = "cancelled"


def normalize_limit(value: str | None) -> int:
    """
    Parse the ``limit`` query parameter.

    Only the leading integer is read, so ``"12.5"`` is 12. Missing,
    non-numeric and zero values fall back to the default page size; anything
    else is clamped to ``[1, MAX_PAGE_LIMIT]``.
    """
    match = LEADING_INT_RE.match(value or "")
    limit = int(match.group(0)) if match else 0
    if limit == 0:
        return DEFAULT_PAGE_LIMIT
    return max(1, min(limit, MAX_PAGE_LIMIT))


class _Filters(BaseModel):
    limit: int = DEFAULT_PAGE_LIMIT

    def to_params(self) -> dict[str, Any]:
        """Query parameters for Shopify, omitting filters that were not given."""
        return self.model_dump(exclude_none=True)


class OrderFilters(_Filters):
    status: str = OrderStatus.ANY.value
    created_at_min: Optional[str] = None
    created_at_max: Optional[str] = None
    customer_id: Optional[str] = None

    @classmethod
    def from_query(
        cls,
        limit: str | None = None,
        status: str | None = None,
        created_at_min: str | None = None,
        created_at_max: str | None = None,
        customer_id: str | None = None,
    ) -> "OrderFilters":
        if status:
            try:
                status = OrderStatus(status).value
            except ValueError as e:
                allowed = ", ".join(s.value for s in OrderStatus)
                raise ValidationError(f"Invalid status filter, expected one of: {allowed}") from e
        return cls(
            limit=normalize_limit(limit),
            status=status or OrderStatus.ANY.value,
            created_at_min=created_at_min or None,
            created_at_max=created_at_max or None,
            customer_id=customer_id or None,
        )


class CustomerFilters(_Filters):
    created_at_min: Optional[str] = None
    created_at_max: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_query(
        cls,
        limit: str | None = None,
        created_at_min: str | None = None,
        created_at_max: str | None = None,
        email: str | None = None,
    ) -> "CustomerFilters":
        return cls(
            limit=normalize_limit(limit),
            created_at_min=created_at_min or None,
            created_at_max=created_at_max or None,
            email=email or None,
        )


class InventoryFilters(_Filters):
    product_id: Optional[str] = None
    vendor: Optional[str] = None

    @classmethod
    def from_query(
        cls,
        limit: str | None = None,
        product_id: str | None = None,
        vendor: str | None = None,
    ) -> "InventoryFilters":
        return cls(
            limit=normalize_limit(limit),
            product_id=product_id or None,
            vendor=vendor or None,
        )

    def to_params(self) -> dict[str, Any]:
        params = super().to_params()
        # the products endpoint filters by a comma separated ``ids`` list
        if "product_id" in params:
            params["ids"] = params.pop("product_id")
        return params


DataServiceFactory = Callable[[str, str, AppSettings], ShopifyDataService]


def default_data_service(shop: str, access_token: str, settings: AppSettings) -> ShopifyDataService:
    return ShopifyDataService(shop, access_token, settings)


async def fetch_resource(
    resource: ScopeName,
    session: MerchantSession,
    filters: _Filters,
    settings: AppSettings,
    service_factory: DataServiceFactory = default_data_service,
) -> dict:
    """
    Call Shopify for ``resource`` and wrap the reshaped records in the
    public envelope.

    The blocking REST call runs in a worker thread.

    Raises:
        UpstreamError: If the upstream call fails for any reason.
    """
    service = service_factory(session.shop, session.access_token, settings)
    fetchers = {
        ScopeName.ORDERS: service.get_orders,
        ScopeName.CUSTOMERS: service.get_customers,
        ScopeName.INVENTORY: service.get_inventory,
    }
    params = filters.to_params()

    try:
        records = await anyio.to_thread.run_sync(fetchers[resource], params)
    except UpstreamError:
        raise
    except Exception as e:
        logger.error("%s endpoint error: %s: %s", resource.value, type(e).__name__, e)
        raise UpstreamError(resource.value) from e

    logger.info("Served %s %s records for %s", len(records), resource.value, session.shop)
    return {"success": True, "count": len(records), "data": records}
