# trm/errors.py
from __future__ import annotations


class TrmError(Exception):
    """
    Base for business errors surfaced to API callers.
    `code` is the stable machine-readable value rendered as `detail`.
    """

    code = "TRM_ERROR"
    http_status = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidTransition(TrmError):
    code = "INVALID_TRANSITION"
    http_status = 409


class NotFound(TrmError):
    code = "NOT_FOUND"
    http_status = 404


class Forbidden(TrmError):
    code = "FORBIDDEN"
    http_status = 403


class UnknownTransaction(TrmError):
    code = "UNKNOWN_TRANSACTION"
    http_status = 404


class ProviderUnavailable(TrmError):
    code = "PROVIDER_UNAVAILABLE"
    http_status = 503


class DoubleSettlement(TrmError):
    """
    Attempt to post earnings for a referral twice.
    Needs operator review; never retried automatically.
    """

    code = "DOUBLE_SETTLEMENT"
    http_status = 409


class DuplicateReferral(TrmError):
    code = "DUPLICATE_REFERRAL"
    http_status = 409
