"""
obsidian_pm/features/entitlements/service.py

Entitlement store.

Handles:
- Implicit creation of the default (free) entitlement on first read
- Target-state writes used by the billing reconciler (mark_paid / mark_free)
- Customer reference bookkeeping for checkout and cancellation lookups

Writes are plain assignments, never toggles, so concurrent writers that agree
on the target value can interleave in any order.
"""

from typing import Optional, Dict, Any
import logging
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from obsidian_pm.core.clock import utc_now
from obsidian_pm.core.database import get_db_session, entitlements
from obsidian_pm.models.entitlement import Entitlement, Tier


logger = logging.getLogger("obsidian")


def _row_to_entitlement(row) -> Entitlement:
    return Entitlement(
        user_id=row.user_id,
        tier=Tier(row.tier),
        billing_customer_ref=row.billing_customer_ref,
        updated_at=row.updated_at,
    )


def _fetch(user_id: str) -> Optional[Entitlement]:
    with get_db_session() as session:
        row = session.execute(
            select(entitlements).where(entitlements.c.user_id == user_id)
        ).first()
        return _row_to_entitlement(row) if row else None


def get_entitlement(user_id: str) -> Entitlement:
    """
    Return the user's entitlement, creating the default free row if absent.
    """
    existing = _fetch(user_id)
    if existing:
        return existing

    now = utc_now()
    try:
        with get_db_session() as session:
            session.execute(
                insert(entitlements).values(
                    user_id=user_id,
                    tier=Tier.FREE.value,
                    billing_customer_ref=None,
                    created_at=now,
                    updated_at=now,
                )
            )
    except IntegrityError:
        # Another request created it first; theirs is authoritative
        return _fetch(user_id)

    return Entitlement(user_id=user_id, tier=Tier.FREE, billing_customer_ref=None, updated_at=now)


def is_paid(user_id: str) -> bool:
    return get_entitlement(user_id).is_paid


def _upsert(user_id: str, values: Dict[str, Any]) -> None:
    """Assign `values` to the user's row, inserting it first if needed."""
    now = utc_now()
    values = {**values, "updated_at": now}

    with get_db_session() as session:
        result = session.execute(
            update(entitlements)
            .where(entitlements.c.user_id == user_id)
            .values(**values)
        )
        if result.rowcount:
            return

    try:
        with get_db_session() as session:
            session.execute(
                insert(entitlements).values(
                    user_id=user_id,
                    created_at=now,
                    **{"tier": Tier.FREE.value, **values},
                )
            )
    except IntegrityError:
        # Lost the insert race; the row exists now, so assign onto it
        with get_db_session() as session:
            session.execute(
                update(entitlements)
                .where(entitlements.c.user_id == user_id)
                .values(**values)
            )


def mark_paid(user_id: str, billing_customer_ref: Optional[str] = None) -> None:
    """
    Set tier=paid (idempotent).

    The customer reference is only overwritten when one is supplied.
    """
    values: Dict[str, Any] = {"tier": Tier.PAID.value}
    if billing_customer_ref:
        values["billing_customer_ref"] = billing_customer_ref
    _upsert(user_id, values)
    logger.info(
        "[entitlements] tier set",
        extra={"user_id": user_id, "tier": Tier.PAID.value},
    )


def mark_free(user_id: str) -> None:
    """Set tier=free (idempotent). Only called on explicit cancellation evidence."""
    _upsert(user_id, {"tier": Tier.FREE.value})
    logger.info(
        "[entitlements] tier set",
        extra={"user_id": user_id, "tier": Tier.FREE.value},
    )


def set_customer_ref(user_id: str, billing_customer_ref: str) -> None:
    """Record the provider customer for a user without touching the tier."""
    _upsert(user_id, {"billing_customer_ref": billing_customer_ref})


def find_user_by_customer_ref(billing_customer_ref: str) -> Optional[str]:
    with get_db_session() as session:
        row = session.execute(
            select(entitlements.c.user_id)
            .where(entitlements.c.billing_customer_ref == billing_customer_ref)
            .limit(1)
        ).first()
        return row.user_id if row else None
