"""Domain errors raised by ledger and commerce services.

Routers translate these into HTTP responses; anything else reaching a router
is reported as a generic internal failure.
"""

from __future__ import annotations


class CommerceError(Exception):
    """Caller-actionable failure with an HTTP status for the API boundary."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidRequestError(CommerceError):
    status_code = 422


class InsufficientCreditsError(CommerceError):
    status_code = 402

    def __init__(self, required: int, available: int):
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. "
            "Top up credits to continue."
        )
        self.required = required
        self.available = available


class NotFoundError(CommerceError):
    status_code = 404


class AccountNotFoundError(NotFoundError):
    def __init__(self, user_id: str):
        super().__init__("Credit account not found")
        self.user_id = user_id


class PermissionDeniedError(CommerceError):
    status_code = 403


class PreconditionFailedError(CommerceError):
    status_code = 409


class ReceiptRejectedError(CommerceError):
    status_code = 400
