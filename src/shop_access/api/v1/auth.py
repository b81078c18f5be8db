"""Shopify install flow endpoints."""

import logging
import secrets
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shop_access.core.database import get_db
from shop_access.core.dependencies import get_shopify_oauth
from shop_access.core.errors import InternalError, InvalidCredential, ValidationError
from shop_access.core.merchant import get_session_by_id, store_merchant_session
from shop_access.plugins.shopify import OAuthError, ShopifyOAuth, sanitize_shop

logger = logging.getLogger("install")

STATE_COOKIE = "shopify_oauth_state"
STATE_COOKIE_MAX_AGE = 10 * 60

router = APIRouter(tags=["auth"])


@router.get("/auth")
async def initiate_oauth(
    request: Request,
    shop: str | None = None,
    oauth: ShopifyOAuth = Depends(get_shopify_oauth),
) -> RedirectResponse:
    """Initiate OAuth flow for ``?shop=store-name.myshopify.com``."""
    if not shop:
        raise ValidationError("Shop parameter required")
    shop_domain = sanitize_shop(shop)
    if shop_domain is None:
        raise ValidationError("Invalid shop domain")

    state = secrets.token_urlsafe(24)
    oauth_url = oauth.authorization_url(shop_domain, state)
    logger.info("Starting OAuth for shop %s", shop_domain)

    response = RedirectResponse(oauth_url)
    response.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        secure=request.url.scheme == "https",
        samesite="lax",
    )
    return response


@router.get("/auth/callback")
def oauth_callback(
    request: Request,
    db: Session = Depends(get_db),
    oauth: ShopifyOAuth = Depends(get_shopify_oauth),
) -> RedirectResponse:
    """
    Handle OAuth callback from Shopify.

    - Verifies the callback HMAC and the anti-forgery state
    - Exchanges the authorization code for an access token
    - Upserts the merchant session and creates its data scopes, all disabled
    - Redirects to the dashboard with the shop and session id
    """
    params = dict(request.query_params)

    if not oauth.verify_hmac(params):
        logger.warning("OAuth callback with invalid HMAC for shop %s", params.get("shop"))
        raise ValidationError("Invalid OAuth callback signature")

    expected_state = request.cookies.get(STATE_COOKIE)
    if not expected_state or not secrets.compare_digest(expected_state, params.get("state", "")):
        logger.warning("OAuth callback with mismatched state for shop %s", params.get("shop"))
        raise ValidationError("Invalid OAuth state")

    shop = sanitize_shop(params.get("shop"))
    code = params.get("code")
    if shop is None or not code:
        raise ValidationError("Invalid OAuth callback parameters")

    try:
        grant = oauth.exchange_code(shop, code)
        stored_session = store_merchant_session(db, grant)
    except (OAuthError, SQLAlchemyError) as e:
        logger.error("Auth callback error for %s: %s: %s", shop, type(e).__name__, e)
        raise InternalError("Authentication failed") from e

    redirect_params = {"shop": stored_session.shop, "session": stored_session.id}
    for name in ("host", "embedded"):
        if params.get(name):
            redirect_params[name] = params[name]
    redirect_url = f"/?{urlencode(redirect_params)}"
    logger.info("Auth callback complete for %s, redirecting to dashboard", stored_session.shop)

    response = RedirectResponse(redirect_url)
    response.delete_cookie(STATE_COOKIE)
    return response


@router.get("/auth/verify")
def verify_session(
    session_id: str | None = Query(None, alias="sessionId"),
    db: Session = Depends(get_db),
) -> dict:
    """Verify that a session id is still valid."""
    if not session_id:
        raise ValidationError("Session ID required")

    try:
        session = get_session_by_id(db, session_id)
    except SQLAlchemyError as e:
        logger.error("Session verification error: %s", e)
        raise InternalError("Verification failed") from e

    if session is None:
        raise InvalidCredential()
    return {"valid": True, "shop": session.shop}
