"""API key lifecycle: issue, list, revoke and resolve third-party credentials."""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Optional

from fastapi import Depends, Header, Query, Request
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from shop_access.core.database import get_db
from shop_access.core.errors import InternalError, InvalidCredential, MissingCredential, NotFound, ValidationError
from shop_access.core.models import ApiKey, MerchantSession, utcnow

logger = logging.getLogger("api_keys")

KEY_PREFIX = "sdk_"
# 24 random bytes, 192 bits of entropy
KEY_RANDOM_BYTES = 24
KEY_PATTERN = re.compile(rf"^{KEY_PREFIX}[0-9a-f]{{{KEY_RANDOM_BYTES * 2}}}$")
DISPLAY_PREFIX_LENGTH = 12


def generate_raw_key() -> str:
    return f"{KEY_PREFIX}{secrets.token_hex(KEY_RANDOM_BYTES)}"


def hash_key(raw_key: str) -> str:
    """Compute SHA-256 hash of a raw API key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class ApiKeyManager:
    """Issues and checks the bearer credentials used on the data routes."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def issue(self, session: MerchantSession, name: str | None) -> tuple[ApiKey, str]:
        """
        Create a new active key for ``session``.

        Returns:
            tuple[ApiKey, str]: The stored key and its plaintext secret. The
            plaintext is not kept and cannot be recovered later.

        Raises:
            ValidationError: If ``name`` is missing or blank.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Key name required")

        raw_key = generate_raw_key()
        api_key = ApiKey(
            session_id=session.id,
            name=name,
            key_prefix=raw_key[:DISPLAY_PREFIX_LENGTH],
            key_hash=hash_key(raw_key),
            last_four=raw_key[-4:],
            is_active=True,
        )
        self.db.add(api_key)
        self.db.commit()
        self.db.refresh(api_key)

        logger.info("Issued API key %s (%s) for session %s", api_key.id, api_key.key_prefix, session.id)
        return api_key, raw_key

    def list_keys(self, session: MerchantSession) -> list[ApiKey]:
        return list(
            self.db.scalars(
                select(ApiKey)
                .where(ApiKey.session_id == session.id)
                .order_by(ApiKey.created_at.desc())
            )
        )

    def revoke(self, session: MerchantSession, key_id: str) -> ApiKey:
        """
        Deactivate a key owned by ``session``. Revoking twice is a no-op.

        Raises:
            NotFound: If the key does not exist or belongs to another session.
        """
        api_key = self.db.scalars(
            select(ApiKey).where(ApiKey.id == key_id, ApiKey.session_id == session.id)
        ).first()
        if api_key is None:
            raise NotFound("API key not found")

        if api_key.is_active:
            api_key.is_active = False
            self.db.commit()
            logger.info("Revoked API key %s for session %s", key_id, session.id)
        return api_key

    def resolve(self, raw_key: str) -> ApiKey:
        """
        Look up an active key by its secret and record that it was used.

        Raises:
            InvalidCredential: If the key is unknown or revoked.
        """
        if not KEY_PATTERN.match(raw_key):
            raise InvalidCredential("Invalid or inactive API key")

        key_hash = hash_key(raw_key)
        api_key = self.db.scalars(
            select(ApiKey).options(joinedload(ApiKey.session)).where(ApiKey.key_hash == key_hash)
        ).first()

        if api_key is None or not hmac.compare_digest(api_key.key_hash, key_hash):
            logger.info("Rejected unknown API key %s", raw_key[:DISPLAY_PREFIX_LENGTH])
            raise InvalidCredential("Invalid or inactive API key")
        if not api_key.is_active:
            logger.info("Rejected revoked API key %s", api_key.id)
            raise InvalidCredential("Invalid or inactive API key")

        self._touch(api_key)
        return api_key

    def _touch(self, api_key: ApiKey) -> None:
        # last-writer-wins; a lost update between concurrent requests is acceptable
        try:
            self.db.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key.id)
                .values(last_used_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Could not update last_used_at for API key %s: %s", api_key.id, e)


def get_api_key_manager(db: Session = Depends(get_db)) -> ApiKeyManager:
    return ApiKeyManager(db)


def get_api_key_session(
    request: Request,
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    api_key: Optional[str] = Query(None),
    manager: ApiKeyManager = Depends(get_api_key_manager),
) -> MerchantSession:
    """FastAPI dependency: the merchant session an API key is bound to."""
    raw_key = x_api_key or api_key
    if not raw_key:
        raise MissingCredential("API key required")

    try:
        record = manager.resolve(raw_key)
    except SQLAlchemyError as e:
        logger.error("API key verification error: %s: %s", type(e).__name__, e)
        raise InternalError("API key verification failed") from e

    request.state.api_key_id = record.id
    request.state.shop = record.session.shop
    return record.session
