"""Domain exceptions for the contact bridge.

Recoverable per-record and per-cohort failures are folded into sync results by
the reconcilers. The exceptions below are the ones that cross a boundary:

- CohortSizeError: a cohort was built above the batch ceiling (slicing bug)
- WriteBackError / MissingCorrelationKeyError: a remote id could not be persisted
- ContactStoreError / DuplicateEmailError: translated database failures
- AuthorizationRequiredError: no usable HubSpot credentials for the customer
- TokenExchangeError: HubSpot or the token service rejected a token request
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for all contact bridge errors."""


class CohortSizeError(BridgeError):
    """Raised when a cohort is constructed with more than the allowed members."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Batch is too big, please supply at most {limit} contacts (got {size})")
        self.size = size
        self.limit = limit


class WriteBackError(BridgeError):
    """Raised when a remote id cannot be saved onto the local contact."""


class MissingCorrelationKeyError(WriteBackError):
    """Raised when a remote record has no email to match a local contact by."""

    def __init__(self, remote_id: str) -> None:
        super().__init__(f"Need an email address to save remote contact {remote_id}")
        self.remote_id = remote_id


class ContactStoreError(BridgeError):
    """A local contact store operation failed.

    Attributes:
        code: SQLSTATE of the underlying database error, or "failed" when the
            driver did not report one.
    """

    def __init__(self, message: str, code: str = "failed") -> None:
        super().__init__(message)
        self.code = code


class DuplicateEmailError(ContactStoreError):
    """Unique email constraint violated on insert."""

    SQLSTATE = "23505"

    def __init__(self, email: str | None) -> None:
        super().__init__(f"Contact with email {email!r} already exists", code=self.SQLSTATE)
        self.email = email


class ContactNotFoundError(ContactStoreError):
    """No local contact matched the lookup key."""

    def __init__(self, email: str) -> None:
        super().__init__(f"No contact found with email {email!r}", code="not_found")
        self.email = email


class AuthorizationRequiredError(BridgeError):
    """No HubSpot credentials are stored for the customer; install the app first."""

    def __init__(self, customer_id: str) -> None:
        super().__init__(f"HubSpot is not connected for customer {customer_id}")
        self.customer_id = customer_id


class TokenExchangeError(BridgeError):
    """A token could not be obtained from HubSpot or the token service."""
