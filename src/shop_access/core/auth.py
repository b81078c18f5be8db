"""Session verification for the admin dashboard routes."""

import logging
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shop_access.core.database import get_db
from shop_access.core.errors import (
    InternalError,
    InvalidCredential,
    MissingCredential,
    SessionNotFound,
    TokenInvalid,
)
from shop_access.core.merchant import get_session_by_id, get_session_by_shop
from shop_access.core.models import MerchantSession
from shop_access.core.settings import AppSettings
from shop_access.plugins.shopify import decode_session_token

logger = logging.getLogger("auth")

SESSION_ID_HEADER = "X-Shopify-Session-Id"


def get_app_settings(request: Request) -> AppSettings:
    return request.app.state.settings


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def resolve_merchant_session(
    db: Session,
    settings: AppSettings,
    authorization: str | None,
    session_id: str | None,
) -> MerchantSession:
    """
    Resolve an admin request to exactly one merchant session.

    A bearer session token is tried first. If it validates, its shop decides the
    outcome and the session id header is never consulted. If it does not
    validate, the ``X-Shopify-Session-Id`` header is used instead.

    Raises:
        SessionNotFound: The token is valid but its shop has no stored session.
        MissingCredential: Neither a usable token nor a session id was sent.
        InvalidCredential: The session id is unknown.
        InternalError: The store could not be queried.
    """
    try:
        token = _bearer_token(authorization)
        if token is not None:
            try:
                shop = decode_session_token(token, settings)
            except TokenInvalid as e:
                logger.warning("Session token verification failed, trying session id: %s", e)
            else:
                session = get_session_by_shop(db, shop)
                if session is None:
                    logger.warning("Valid session token for %s but no stored session", shop)
                    raise SessionNotFound()
                logger.debug("Session token verified for shop: %s", shop)
                return session

        if not session_id:
            raise MissingCredential()

        session = get_session_by_id(db, session_id)
        if session is None:
            raise InvalidCredential()
        return session
    except SQLAlchemyError as e:
        logger.error("Session verification error: %s: %s", type(e).__name__, e)
        raise InternalError("Session verification failed") from e


def verify_shopify_session(
    request: Request,
    authorization: Optional[str] = Header(None),
    x_shopify_session_id: Optional[str] = Header(None, alias=SESSION_ID_HEADER),
    db: Session = Depends(get_db),
    settings: AppSettings = Depends(get_app_settings),
) -> MerchantSession:
    """FastAPI dependency: the merchant session behind an admin request."""
    session = resolve_merchant_session(db, settings, authorization, x_shopify_session_id)
    request.state.shop = session.shop
    request.state.session_id = session.id
    return session
