"""Admin dashboard endpoints: data scopes and API key management.

Every route here is authenticated with the merchant's Shopify session, never
with an API key, so a key cannot widen its own access.
"""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from shop_access.core.api_keys import ApiKeyManager, get_api_key_manager
from shop_access.core.auth import get_app_settings, verify_shopify_session
from shop_access.core.database import get_db
from shop_access.core.errors import ValidationError
from shop_access.core.models import (
    ApiKeyListResponse,
    ApiKeyOut,
    ApiKeyResponse,
    CreateApiKeyRequest,
    DataScopeOut,
    MerchantSession,
    ScopesResponse,
    ScopeToggle,
)
from shop_access.core.scopes import list_scopes, update_scopes
from shop_access.core.settings import AppSettings, ScopeName

logger = logging.getLogger("admin")

router = APIRouter(prefix="/api", tags=["admin"])

_toggles = TypeAdapter(list[ScopeToggle])


@router.get("/scopes", response_model=ScopesResponse)
def get_scopes(
    session: MerchantSession = Depends(verify_shopify_session),
    db: Session = Depends(get_db),
) -> ScopesResponse:
    """Get current data scope configuration."""
    scopes = list_scopes(db, session.id)
    return ScopesResponse(scopes=[DataScopeOut.model_validate(scope) for scope in scopes])


@router.put("/scopes", response_model=ScopesResponse)
def put_scopes(
    payload: Any = Body(...),
    session: MerchantSession = Depends(verify_shopify_session),
    db: Session = Depends(get_db),
) -> ScopesResponse:
    """Update data scope configuration from ``{"scopes": [{scopeName, enabled}]}``."""
    raw_scopes = payload.get("scopes") if isinstance(payload, dict) else None
    if not isinstance(raw_scopes, list):
        raise ValidationError("Scopes must be an array")

    try:
        toggles = _toggles.validate_python(raw_scopes)
    except PydanticValidationError as e:
        allowed = ", ".join(s.value for s in ScopeName)
        logger.info("Rejected scope update for session %s: %s", session.id, e)
        raise ValidationError(
            f"Each scope needs a scopeName ({allowed}) and a boolean enabled flag"
        ) from e

    scopes = update_scopes(db, session.id, toggles)
    return ScopesResponse(scopes=[DataScopeOut.model_validate(scope) for scope in scopes])


@router.get("/keys", response_model=ApiKeyListResponse)
def list_api_keys(
    session: MerchantSession = Depends(verify_shopify_session),
    manager: ApiKeyManager = Depends(get_api_key_manager),
) -> ApiKeyListResponse:
    """List all API keys for the current session, secrets masked."""
    keys = manager.list_keys(session)
    return ApiKeyListResponse(keys=[ApiKeyOut.from_record(key) for key in keys])


@router.post("/keys", response_model=ApiKeyResponse)
def create_api_key(
    body: CreateApiKeyRequest,
    session: MerchantSession = Depends(verify_shopify_session),
    manager: ApiKeyManager = Depends(get_api_key_manager),
) -> ApiKeyResponse:
    """
    Generate a new API key.

    The returned ``key.key`` is the only time the full secret is shown.
    """
    api_key, raw_key = manager.issue(session, body.name)
    return ApiKeyResponse(key=ApiKeyOut.from_record(api_key, raw_key=raw_key))


@router.delete("/keys/{key_id}")
def revoke_api_key(
    key_id: str,
    session: MerchantSession = Depends(verify_shopify_session),
    manager: ApiKeyManager = Depends(get_api_key_manager),
) -> dict:
    """Revoke an API key owned by the current session."""
    manager.revoke(session, key_id)
    return {"success": True}


@router.get("/endpoint")
def get_endpoints(
    session: MerchantSession = Depends(verify_shopify_session),
    settings: AppSettings = Depends(get_app_settings),
) -> dict:
    """Get the public data endpoint URLs."""
    base_url = settings.shopify_app_url.rstrip("/")
    return {
        "endpoints": {scope.value: f"{base_url}/data/{scope.value}" for scope in ScopeName},
        "documentation": f"{base_url}/docs",
    }
