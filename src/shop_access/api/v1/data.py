"""Public data endpoints, authenticated with an API key.

Admission runs in a fixed order: rate limit, API key, data scope. Only then
is Shopify called.
"""

from fastapi import APIRouter, Depends

from shop_access.core.auth import get_app_settings
from shop_access.core.dependencies import get_data_service_factory
from shop_access.core.models import MerchantSession
from shop_access.core.proxy import (
    CustomerFilters,
    DataServiceFactory,
    InventoryFilters,
    OrderFilters,
    fetch_resource,
)
from shop_access.core.rate_limit import enforce_rate_limit
from shop_access.core.scopes import require_scope
from shop_access.core.settings import AppSettings, ScopeName

router = APIRouter(prefix="/data", tags=["data"], dependencies=[Depends(enforce_rate_limit)])


@router.get("/orders")
async def get_orders(
    session: MerchantSession = Depends(require_scope(ScopeName.ORDERS)),
    filters: OrderFilters = Depends(OrderFilters.from_query),
    settings: AppSettings = Depends(get_app_settings),
    service_factory: DataServiceFactory = Depends(get_data_service_factory),
) -> dict:
    """
    Get orders data.

    Query parameters: ``limit`` (default 50, max 250), ``status`` (any, open,
    closed, cancelled), ``created_at_min``, ``created_at_max`` (ISO 8601) and
    ``customer_id``.
    """
    return await fetch_resource(ScopeName.ORDERS, session, filters, settings, service_factory)


@router.get("/customers")
async def get_customers(
    session: MerchantSession = Depends(require_scope(ScopeName.CUSTOMERS)),
    filters: CustomerFilters = Depends(CustomerFilters.from_query),
    settings: AppSettings = Depends(get_app_settings),
    service_factory: DataServiceFactory = Depends(get_data_service_factory),
) -> dict:
    """
    Get customers data.

    Query parameters: ``limit``, ``created_at_min``, ``created_at_max`` and ``email``.
    """
    return await fetch_resource(ScopeName.CUSTOMERS, session, filters, settings, service_factory)


@router.get("/inventory")
async def get_inventory(
    session: MerchantSession = Depends(require_scope(ScopeName.INVENTORY)),
    filters: InventoryFilters = Depends(InventoryFilters.from_query),
    settings: AppSettings = Depends(get_app_settings),
    service_factory: DataServiceFactory = Depends(get_data_service_factory),
) -> dict:
    """
    Get inventory (products and variants) data.

    Query parameters: ``limit``, ``product_id`` and ``vendor``.
    """
    return await fetch_resource(ScopeName.INVENTORY, session, filters, settings, service_factory)
