from __future__ import annotations

from typing import Any, Dict, Optional

from passwordless.service.errors import AuthError


class CredentialStoreError(AuthError):
    """Raised when the durable credential store cannot be read or written."""

    error_code = "credential_store_error"

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message, detail=detail)


__all__ = ["CredentialStoreError"]
