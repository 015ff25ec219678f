"""
Exception hierarchy for the Crowdfund Toolkit.

Exception Categories:
- RetryableException: Transient failures that may succeed on retry (RPC, network)
- NonRetryableException: Permanent failures that won't benefit from retry
- ConfigurationException: Startup/config errors that prevent operation

Concrete exceptions:
- LedgerTransportException -> RetryableException (RPC unreachable, malformed response)
- PreconditionFailed -> NonRetryableException (action refused before submission)
- OperationInProgress -> NonRetryableException (caller did not gate a second write)

Contract rejections are NOT exceptions: the ledger adapter returns them as
structured values so callers can route on the code (see ledger_service).
"""

from typing import Optional


class RetryableException(Exception):
    """
    Base class for exceptions that may succeed on retry.

    Use for transient failures like:
    - RPC timeouts
    - Rate limiting
    - Temporary network issues
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NonRetryableException(Exception):
    """
    Base class for exceptions that won't benefit from retry.

    Use for permanent failures like:
    - Invalid input data
    - Business logic violations
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationException(NonRetryableException):
    """
    Exception for configuration/startup errors.

    Use when:
    - Required environment variables are missing
    - An unknown network name is requested
    """

    pass


class LedgerTransportException(RetryableException):
    """
    Exception for ledger RPC failures.

    Raised for unreachable endpoints, HTTP errors, JSON-RPC error envelopes
    and responses that do not have the expected shape.
    """

    def __init__(self, message: str, method: Optional[str] = None):
        super().__init__(message)
        self.method = method


class PreconditionFailed(NonRetryableException):
    """An action was refused client-side, before anything was submitted."""

    def __init__(self, action: str, reason: str):
        super().__init__(f"{action}: {reason}")
        self.action = action
        self.reason = reason


class OperationInProgress(NonRetryableException):
    """A mutating operation was requested while another one is pending."""

    def __init__(self, requested: str, pending: str):
        super().__init__(
            f"Cannot start '{requested}' while '{pending}' is in progress"
        )
        self.requested = requested
        self.pending = pending
