"""
errors.py — AppError base class, engine error taxonomy and error code registry.

Every error returned by the NexLedger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (caller unknown) with 403 (caller known, not allowed).

Engine taxonomy:
  InvalidSplitError      (422) — bad input shares, rejected before any write.
  InconsistentStateError (500) — conservation law violated; upstream data
                                 corruption. Never silently patched.
  StaleSettlementError   (409) — lost a race on a specific debt. Callers
                                 re-fetch a fresh plan rather than retry blindly.
  NotFoundError          (404) — referenced debt/group/expense does not exist.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# IMPORTANT: these are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_SPLIT_POLICY       = "INVALID_SPLIT_POLICY"
    INVALID_SETTLEMENT_MODE    = "INVALID_SETTLEMENT_MODE"
    DUPLICATE_PARTICIPANT      = "DUPLICATE_PARTICIPANT"

    # ── Caller identity (401) ──────────────────────────────────────────────
    CALLER_MISSING             = "CALLER_MISSING"
    CALLER_INVALID             = "CALLER_INVALID"

    # ── Authorization (403) ────────────────────────────────────────────────
    FORBIDDEN                  = "FORBIDDEN"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    GROUP_NOT_FOUND            = "GROUP_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    DEBT_NOT_FOUND             = "DEBT_NOT_FOUND"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    STALE_SETTLEMENT           = "STALE_SETTLEMENT"

    # ── Business Rule Violations (422) ────────────────────────────────────
    INVALID_SPLIT              = "INVALID_SPLIT"
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    PARTICIPANT_NOT_MEMBER     = "PARTICIPANT_NOT_MEMBER"
    CURRENCY_MISMATCH          = "CURRENCY_MISMATCH"
    EXPENSE_DELETED            = "EXPENSE_DELETED"

    # ── System Errors (500) ────────────────────────────────────────────────
    INCONSISTENT_STATE         = "INCONSISTENT_STATE"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Engine errors ──────────────────────────────────────────────────────────

class InvalidSplitError(AppError):

    def __init__(self, message: str, field: str | None = "participants") -> None:
        super().__init__(ErrorCode.INVALID_SPLIT, message, 422, field=field)


class InconsistentStateError(AppError):

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.INCONSISTENT_STATE, message, 500)


class StaleSettlementError(AppError):

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.STALE_SETTLEMENT, message, 409)


class NotFoundError(AppError):

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code, message, 404)
