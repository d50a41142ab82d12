"""Credit ledger: atomic balance mutation with an append-only audit trail."""

from __future__ import annotations

from typing import Any, Dict, Optional
import logging
import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.account import Account
from models.credit_audit import CreditAuditEntry
from services.errors import AccountNotFoundError, InsufficientCreditsError, InvalidRequestError
from services.pricing import ASPECT_DIMENSIONS, credit_cost_for_aspect

logger = logging.getLogger(__name__)

LEDGER_REASONS = ("generation", "unlock", "download", "grant", "refund")


def _validate_amount(amount: Any, reason: str) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidRequestError("Amount must be a positive integer")
    if reason not in LEDGER_REASONS:
        raise InvalidRequestError(f"Unsupported ledger reason: {reason}")
    return amount


async def get_credit_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(Account.credits).where(Account.user_id == user_id))
    balance = result.scalar_one_or_none()
    if balance is None:
        raise AccountNotFoundError(user_id)
    return int(balance)


async def _apply_delta(
    user_id: str,
    db: AsyncSession,
    *,
    delta: int,
    reason: str,
    reference_id: Optional[str],
    commit: bool,
) -> CreditAuditEntry:
    # One conditional UPDATE is the read-modify-write; the WHERE clause on
    # credits keeps concurrent debits from overdrawing the account.
    stmt = (
        update(Account)
        .where(Account.user_id == user_id)
        .values(credits=Account.credits + delta)
        .returning(Account.credits)
        .execution_options(synchronize_session=False)
    )
    if delta < 0:
        stmt = stmt.where(Account.credits >= -delta)

    try:
        result = await db.execute(stmt)
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            available = await db.execute(select(Account.credits).where(Account.user_id == user_id))
            current = available.scalar_one_or_none()
            if current is None:
                raise AccountNotFoundError(user_id)
            raise InsufficientCreditsError(required=-delta, available=int(current))

        entry = CreditAuditEntry(
            id=str(uuid.uuid4()),
            user_id=user_id,
            amount=delta,
            balance_after=int(balance_after),
            reason=reason,
            reference_id=reference_id,
        )
        db.add(entry)
        await db.flush()
        if commit:
            await db.commit()
    except Exception:
        await db.rollback()
        raise
    return entry


async def debit_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str,
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> CreditAuditEntry:
    """Atomically remove `amount` credits, or fail without touching state.

    With ``commit=False`` the debit stays in the caller's open transaction so
    it commits or rolls back together with the caller's other writes.
    """
    debit = _validate_amount(amount, reason)
    entry = await _apply_delta(
        user_id,
        db,
        delta=-debit,
        reason=reason,
        reference_id=reference_id,
        commit=commit,
    )
    logger.info("Debited %s credits from %s for %s (balance %s)", debit, user_id, reason, entry.balance_after)
    return entry


async def grant_credits(
    user_id: str,
    db: AsyncSession,
    *,
    amount: int,
    reason: str = "grant",
    reference_id: Optional[str] = None,
    commit: bool = True,
) -> CreditAuditEntry:
    """Atomically add `amount` credits to an existing account."""
    credit = _validate_amount(amount, reason)
    entry = await _apply_delta(
        user_id,
        db,
        delta=credit,
        reason=reason,
        reference_id=reference_id,
        commit=commit,
    )
    logger.info("Granted %s credits to %s for %s (balance %s)", credit, user_id, reason, entry.balance_after)
    return entry


async def get_credit_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await get_credit_balance(user_id, db)
    result = await db.execute(
        select(CreditAuditEntry)
        .where(CreditAuditEntry.user_id == user_id)
        .order_by(CreditAuditEntry.created_at.desc())
        .limit(30)
    )
    entries = result.scalars().all()
    return {
        "balance": balance,
        "costs": {
            "generation": {aspect: credit_cost_for_aspect(aspect) for aspect in ASPECT_DIMENSIONS},
        },
        "recent_entries": [
            {
                "id": entry.id,
                "amount": entry.amount,
                "balance_after": entry.balance_after,
                "reason": entry.reason,
                "reference_id": entry.reference_id,
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in entries
        ],
    }
