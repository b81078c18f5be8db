"""
FastAPI dependencies for the shop access application.
"""

import logging
from functools import lru_cache

from fastapi import Depends, Request

from shop_access.core.auth import get_app_settings
from shop_access.core.proxy import DataServiceFactory, default_data_service
from shop_access.core.settings import AppSettings
from shop_access.plugins.shopify import ShopifyOAuth

# Setup logger
logger = logging.getLogger("dependencies")


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get the settings for the shop access application.
    """
    settings = AppSettings()  # Reads SHOPIFY_* and service vars from .env
    logger.info("get_settings using Shopify API version %s", settings.shopify_api_version)
    return settings


def get_shopify_oauth(settings: AppSettings = Depends(get_app_settings)) -> ShopifyOAuth:
    """
    Injection method to get the Shopify OAuth client.
    """
    return ShopifyOAuth(settings)


def get_data_service_factory(request: Request) -> DataServiceFactory:
    """
    Returns the factory used to build per-merchant Admin API clients.
    """
    return getattr(request.app.state, "data_service_factory", default_data_service)
