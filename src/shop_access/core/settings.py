"""
Settings for the shop access application.
"""

from enum import Enum

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

SHOPIFY_API_VERSION = "2024-10"
MAX_PAGE_LIMIT = 250
DEFAULT_PAGE_LIMIT = 50

load_dotenv()


class ScopeName(str, Enum):
    """
    Resource kinds a merchant can expose through the data endpoints.
    """

    ORDERS = "orders"
    CUSTOMERS = "customers"
    INVENTORY = "inventory"


class AppSettings(BaseSettings):
    """
    Settings for the shop access application and the Shopify API.
    """

    shopify_api_key: str = ""
    shopify_api_secret: str = ""
    shopify_scopes: str = "read_orders,read_customers,read_products"
    shopify_app_url: str = "http://localhost:3000"
    shopify_api_version: str = SHOPIFY_API_VERSION

    database_url: str = ""
    upstream_timeout_seconds: float = 10.0
    database_timeout_seconds: float = 10.0

    api_rate_limit: int = 100
    api_rate_window_ms: int = 15 * 60 * 1000

    cors_allow_origin_regex: str = r"https://(.*\.myshopify\.com|admin\.shopify\.com)"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def oauth_scopes(self) -> list[str]:
        """Upstream OAuth scopes requested at install time."""
        return [scope.strip() for scope in self.shopify_scopes.split(",") if scope.strip()]

    @property
    def redirect_uri(self) -> str:
        """OAuth callback URL registered with Shopify."""
        return f"{self.shopify_app_url.rstrip('/')}/auth/callback"
