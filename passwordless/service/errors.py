from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base class for failures surfaced to callers of the auth client.

    Each subclass carries a stable ``error_code`` so a UI shell can decide how
    to react without parsing messages:
    - conflict
    - flow_rejected
    - challenge_failed
    - unauthorized
    - transport_failure
    - credential_store_error
    """

    error_code: str = "auth_error"

    def __init__(
        self,
        message: str,
        *,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ProviderError(AuthError):
    """The identity provider call failed or returned an unusable result."""

    error_code = "provider_error"

    def __init__(
        self,
        message: str,
        *,
        provider_code: Optional[str] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message, detail=detail, error_code=error_code)
        self.provider_code = provider_code


class ConflictError(ProviderError):
    """Identity already exists, e.g. duplicate registration."""

    error_code = "conflict"


class FlowRejectedError(ProviderError):
    """Provider declined to start a challenge or returned a malformed start."""

    error_code = "flow_rejected"


class ChallengeFailedError(ProviderError):
    """Wrong or expired answer, or a completion without an access token."""

    error_code = "challenge_failed"


class UnauthorizedError(ProviderError):
    """No stored session token, or the provider rejected it."""

    error_code = "unauthorized"


class TransportFailureError(ProviderError):
    """Network failure or the provider service is unavailable."""

    error_code = "transport_failure"


__all__ = [
    "AuthError",
    "ProviderError",
    "ConflictError",
    "FlowRejectedError",
    "ChallengeFailedError",
    "UnauthorizedError",
    "TransportFailureError",
]
