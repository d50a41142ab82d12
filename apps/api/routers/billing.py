"""Billing and credits router."""

from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.dependencies import AuthContext, commerce_http_error, get_auth_context, get_runtime, rate_limit
from services.commerce import spend_credits, validate_receipt
from services.errors import CommerceError
from services.ledger import get_credit_summary
from services.runtime import Runtime
from services.session_token import decode_spend_token

router = APIRouter()
logger = logging.getLogger(__name__)


class SpendCreditsRequest(BaseModel):
    amount: int = Field(ge=1, le=10000)
    reason: Literal["generation", "unlock", "download"]
    reference_id: Optional[str] = Field(default=None, max_length=200)


class SpendTokenVerifyRequest(BaseModel):
    token: str = Field(min_length=1)


class ValidateReceiptRequest(BaseModel):
    raw: str = Field(min_length=1, max_length=200000)
    platform: Literal["ios", "android"]


class ValidateReceiptResponse(BaseModel):
    validated: bool
    credits_granted: int
    already_processed: bool = False


@router.get("/credits")
async def credits_summary(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_credit_summary(auth.user_id, db)
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc


@router.post("/spend")
async def spend(
    request: SpendCreditsRequest,
    _rate_limit: None = Depends(rate_limit("billing_spend", limit=120, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await spend_credits(
            auth.user_id,
            db,
            amount=request.amount,
            reason=request.reason,
            reference_id=request.reference_id,
        )
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Spend credits error: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to spend credits") from exc


@router.post("/spend/verify")
async def verify_spend(
    request: SpendTokenVerifyRequest,
    auth: AuthContext = Depends(get_auth_context),
):
    try:
        claims = decode_spend_token(request.token, auth.user_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return {
        "valid": True,
        "reason": claims.get("reason"),
        "reference_id": claims.get("ref") or None,
        "expires_at": claims.get("exp"),
    }


@router.post("/receipts", response_model=ValidateReceiptResponse)
async def receipts(
    request: ValidateReceiptRequest,
    _rate_limit: None = Depends(rate_limit("billing_receipts", limit=30, window_seconds=3600)),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    """Credit a validated store purchase once per transaction."""
    try:
        return await validate_receipt(
            auth.user_id,
            db,
            raw=request.raw,
            platform=request.platform,
            validator=runtime.receipt_validator,
        )
    except CommerceError as exc:
        raise commerce_http_error(exc) from exc
    except Exception as exc:
        logger.exception("Receipt validation error: %s", exc)
        raise HTTPException(status_code=500, detail="Receipt validation failed") from exc
