"""App store receipt validators (Apple verifyReceipt, Google Play payload)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Literal

import httpx

from config import settings

logger = logging.getLogger(__name__)

StorePlatform = Literal["ios", "android"]
STORE_BY_PLATFORM = {"ios": "appstore", "android": "play"}


@dataclass(frozen=True)
class ReceiptValidation:
    validated: bool
    product_id: str = ""
    transaction_id: str = ""


REJECTED = ReceiptValidation(validated=False)


class ReceiptValidator:
    """Dispatches raw receipts to the validator for their platform."""

    def __init__(self, http_client: httpx.AsyncClient, *, apple_url: str, apple_shared_secret: str):
        self.http_client = http_client
        self.apple_url = apple_url
        self.apple_shared_secret = apple_shared_secret

    async def validate(self, raw: str, platform: str) -> ReceiptValidation:
        if platform == "ios":
            return await self.validate_apple(raw)
        if platform == "android":
            return self.validate_google(raw)
        return REJECTED

    async def validate_apple(self, raw: str) -> ReceiptValidation:
        try:
            response = await self.http_client.post(
                self.apple_url,
                json={"receipt-data": raw, "password": self.apple_shared_secret},
                timeout=settings.RECEIPT_VALIDATION_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Apple receipt validation error: %s", exc)
            return REJECTED

        if body.get("status") != 0:
            return REJECTED
        in_app = ((body.get("receipt") or {}).get("in_app") or [{}])[0] or {}
        return ReceiptValidation(
            validated=True,
            product_id=str(in_app.get("product_id") or ""),
            transaction_id=str(in_app.get("transaction_id") or ""),
        )

    @staticmethod
    def validate_google(raw: str) -> ReceiptValidation:
        # TODO: verify purchaseToken with the Google Play Developer API once a service account is provisioned.
        try:
            receipt = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.error("Google receipt validation error: %s", exc)
            return REJECTED
        if not isinstance(receipt, dict):
            return REJECTED
        return ReceiptValidation(
            validated=True,
            product_id=str(receipt.get("productId") or ""),
            transaction_id=str(receipt.get("purchaseToken") or ""),
        )


def build_receipt_validator(http_client: httpx.AsyncClient) -> ReceiptValidator:
    return ReceiptValidator(
        http_client,
        apple_url=settings.APPLE_VERIFY_RECEIPT_URL,
        apple_shared_secret=settings.APPLE_SHARED_SECRET,
    )
