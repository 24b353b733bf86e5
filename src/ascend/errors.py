"""Domain exception hierarchy.

Every error carries the HTTP status and stable ``code`` the API surfaces,
so routers can let them propagate to the global handler.
"""

from __future__ import annotations


class AscendError(Exception):
    """Base class for domain errors."""

    status_code: int = 400
    code: str = "error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


# ---------------------------------------------------------------------------
# Payment ingestion
# ---------------------------------------------------------------------------


class VerificationError(AscendError):
    """Notification authenticity could not be established."""

    status_code = 400
    code = "verification_failed"


class UnsupportedEvent(AscendError):
    """Provider notification type we deliberately do not act on."""

    status_code = 200
    code = "ignored"


class UnknownProduct(AscendError):
    """Product reference is not in the catalog."""

    status_code = 422
    code = "unknown_product"


class AccountCorrelationError(AscendError):
    """Notification cannot be tied to an account."""

    status_code = 422
    code = "account_correlation_failed"


class TransientProviderError(AscendError):
    """Retryable failure talking to a provider (timeout, 5xx)."""

    status_code = 503
    code = "provider_unavailable"


class InvalidTransition(AscendError):
    """Subscription event is impossible from the current state."""

    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, trigger: str) -> None:
        super().__init__(f"Invalid transition: {current} --{trigger}-->")
        self.current = current
        self.trigger = trigger


# ---------------------------------------------------------------------------
# Accounts & ledger
# ---------------------------------------------------------------------------


class AccountNotFound(AscendError):
    status_code = 404
    code = "account_not_found"


class AccountInactive(AscendError):
    status_code = 403
    code = "account_inactive"


class InsufficientFunds(AscendError):
    """Spend would take the balance below zero."""

    status_code = 409
    code = "insufficient_funds"

    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(f"Insufficient coins: balance {balance}, requested {requested}")
        self.balance = balance
        self.requested = requested


class AccountFrozen(AscendError):
    """Ledger writes are blocked until the account is reconciled."""

    status_code = 423
    code = "account_frozen"


class LedgerInvariantViolation(AccountFrozen):
    """Balance projection disagrees with the transaction log."""

    code = "ledger_invariant_violation"
