"""Store and look up merchant sessions created by the Shopify install flow."""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session

from shop_access.core.database import dialect_insert
from shop_access.core.models import DataScope, MerchantSession, utcnow
from shop_access.core.settings import ScopeName
from shop_access.plugins.shopify import ShopifyGrant

# Setup module-level logger
logger = logging.getLogger("merchant")


def store_merchant_session(db: Session, grant: ShopifyGrant) -> MerchantSession:
    """
    Upsert the session for ``grant.shop`` and make sure its data scopes exist.

    A re-install overwrites the access token and scope but keeps the session
    id, so issued API keys and scope choices stay attached to the shop.

    Args:
        db (Session): The database session.
        grant (ShopifyGrant): Result of the OAuth code exchange.

    Returns:
        MerchantSession: The stored session.
    """
    now = utcnow()
    insert = dialect_insert(db, MerchantSession)
    statement = insert.values(
        id=str(uuid.uuid4()),
        shop=grant.shop,
        access_token=grant.access_token,
        scope=grant.scope,
        is_online=grant.is_online,
        created_at=now,
        updated_at=now,
    ).on_conflict_do_update(
        index_elements=["shop"],
        set_={
            "access_token": insert.excluded.access_token,
            "scope": insert.excluded.scope,
            "is_online": insert.excluded.is_online,
            "updated_at": now,
        },
    )
    db.execute(statement)

    session = db.scalars(
        select(MerchantSession)
        .where(MerchantSession.shop == grant.shop)
        .execution_options(populate_existing=True)
    ).one()
    initialize_data_scopes(db, session.id)
    db.commit()
    db.refresh(session)

    logger.info("Stored session %s for shop %s", session.id, session.shop)
    return session


def initialize_data_scopes(db: Session, session_id: str) -> None:
    """Create every data scope disabled, leaving existing rows untouched."""
    now = utcnow()
    for scope_name in ScopeName:
        statement = (
            dialect_insert(db, DataScope)
            .values(
                id=str(uuid.uuid4()),
                session_id=session_id,
                scope_name=scope_name.value,
                enabled=False,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["session_id", "scope_name"])
        )
        db.execute(statement)


def get_session_by_id(db: Session, session_id: str) -> MerchantSession | None:
    return db.get(MerchantSession, session_id)


def get_session_by_shop(db: Session, shop: str) -> MerchantSession | None:
    return db.scalars(select(MerchantSession).where(MerchantSession.shop == shop)).first()
