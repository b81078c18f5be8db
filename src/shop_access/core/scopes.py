"""Per-merchant data scope toggles and the gate that enforces them."""

import logging
import uuid
from typing import Callable, Iterable

from fastapi import Depends
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shop_access.core.api_keys import get_api_key_session
from shop_access.core.database import dialect_insert, get_db
from shop_access.core.errors import InternalError, ScopeDisabled
from shop_access.core.models import DataScope, MerchantSession, ScopeToggle, utcnow
from shop_access.core.settings import ScopeName

logger = logging.getLogger("scopes")


def list_scopes(db: Session, session_id: str) -> list[DataScope]:
    return list(
        db.scalars(
            select(DataScope)
            .where(DataScope.session_id == session_id)
            .order_by(DataScope.scope_name)
            .execution_options(populate_existing=True)
        )
    )


def update_scopes(db: Session, session_id: str, toggles: Iterable[ScopeToggle]) -> list[DataScope]:
    """
    Upsert each toggle for the session and return the full scope set.

    Applying the same toggles twice leaves the stored state unchanged.
    """
    now = utcnow()
    for toggle in toggles:
        insert = dialect_insert(db, DataScope)
        statement = insert.values(
            id=str(uuid.uuid4()),
            session_id=session_id,
            scope_name=toggle.scope_name.value,
            enabled=toggle.enabled,
            created_at=now,
            updated_at=now,
        ).on_conflict_do_update(
            index_elements=["session_id", "scope_name"],
            set_={"enabled": insert.excluded.enabled, "updated_at": now},
        )
        db.execute(statement)
    db.commit()

    scopes = list_scopes(db, session_id)
    logger.info(
        "Updated scopes for session %s: %s",
        session_id,
        {scope.scope_name: scope.enabled for scope in scopes},
    )
    return scopes


def is_scope_enabled(db: Session, session_id: str, scope_name: ScopeName) -> bool:
    """A missing row counts as disabled."""
    enabled = db.scalar(
        select(DataScope.enabled).where(
            DataScope.session_id == session_id,
            DataScope.scope_name == scope_name.value,
        )
    )
    return bool(enabled)


def require_scope(scope_name: ScopeName) -> Callable[..., MerchantSession]:
    """
    Build a dependency that admits a request only if ``scope_name`` is enabled
    for the session behind its API key.
    """

    def scope_gate(
        session: MerchantSession = Depends(get_api_key_session),
        db: Session = Depends(get_db),
    ) -> MerchantSession:
        try:
            enabled = is_scope_enabled(db, session.id, scope_name)
        except SQLAlchemyError as e:
            logger.error("Scope verification error: %s: %s", type(e).__name__, e)
            raise InternalError("Scope verification failed") from e

        if not enabled:
            logger.info("Denied %s access for session %s", scope_name.value, session.id)
            raise ScopeDisabled(scope_name.value)
        return session

    scope_gate.__name__ = f"require_{scope_name.value}_scope"
    return scope_gate
