"""Ledger error taxonomy.

Every error is an ``HTTPException`` so routers can let it propagate and the
registered handlers render the standard JSON envelope. ``detail`` carries a
``{code, message, details}`` dict.
"""

from __future__ import annotations

from fastapi import HTTPException


class LedgerError(HTTPException):
    status_code = 500
    code = "ledger_error"

    def __init__(self, message: str, details: object = None):
        self.message = message
        super().__init__(
            status_code=self.status_code,
            detail={"code": self.code, "message": message, "details": details},
        )


class LedgerValidationError(LedgerError):
    """Bad terms or bad input, shown to the user and never retried."""

    status_code = 400
    code = "validation_error"


class InsufficientFunds(LedgerError):
    status_code = 409
    code = "insufficient_funds"


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"


class AccessDenied(LedgerError):
    status_code = 403
    code = "access_denied"


class Unauthorized(LedgerError):
    status_code = 401
    code = "unauthorized"


class PersistenceFailure(LedgerError):
    """Datastore write failed; callers may retry."""

    status_code = 500
    code = "persistence_failure"
