"""
middleware/identity.py — Caller identity decorator.

Authentication happens upstream (API gateway). The gateway forwards the
authenticated user's id in the X-User-Id header; this decorator:
  1. Reads the header
  2. Parses it as a positive integer
  3. Attaches it to flask.g.user_id for the duration of the request
  4. Raises the appropriate 401 error if either step fails

Strict responsibility boundary:
  - Middleware = identity (401). Services = authorization (403).
  - Services receive user_id as a plain integer argument, with no knowledge
    of HTTP headers.

Error codes:
  CALLER_MISSING (401) — no X-User-Id header
  CALLER_INVALID (401) — header is not a positive integer
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from nexledger.app.errors import AppError, ErrorCode

CALLER_HEADER = "X-User-Id"


def require_caller(f: Callable) -> Callable:
    """
    Route decorator that resolves the caller.

    Usage:
        @bp.route("/groups/<int:group_id>/balances")
        @require_caller
        def get_balances(group_id):
            caller_id = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.user_id = _resolve_caller()
        return f(*args, **kwargs)

    return decorated


def _resolve_caller() -> int:
    raw = request.headers.get(CALLER_HEADER, "").strip()

    if not raw:
        raise AppError(
            ErrorCode.CALLER_MISSING,
            f"Caller identity required. Provide the {CALLER_HEADER} header.",
            401,
        )

    if not raw.isdigit() or int(raw) < 1:
        raise AppError(
            ErrorCode.CALLER_INVALID,
            f"{CALLER_HEADER} must be a positive integer.",
            401,
        )

    return int(raw)
