from __future__ import annotations

import asyncio
import threading
from typing import Optional

from passwordless.config import CredentialStoreBackend, Settings, get_settings, reset_settings_cache
from passwordless.logging import get_logger
from passwordless.provider.client import CognitoIdentityProviderClient, IdentityProviderClient
from passwordless.service.flow import AuthFlow
from passwordless.service.profile import ProfileService
from passwordless.storage.credentials import (
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)

logger = get_logger(__name__)


def build_credential_store(settings: Settings) -> CredentialStore:
    if settings.credential_store_backend == CredentialStoreBackend.MEMORY:
        return MemoryCredentialStore()
    return FileCredentialStore(
        settings.credential_store_dir,
        encryption_key=settings.credential_encryption_key,
    )


class Runtime:
    """Holds the shared provider client and credential store for callers."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        provider: Optional[IdentityProviderClient] = None,
        store: Optional[CredentialStore] = None,
    ) -> None:
        self.settings = settings or get_settings()
        try:
            self.store = store or build_credential_store(self.settings)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=self.settings.credential_store_backend.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        self.provider = provider or CognitoIdentityProviderClient.from_settings(self.settings)
        self.profile = ProfileService(
            self.provider, self.store, token_key=self.settings.access_token_key
        )
        logger.info(
            "runtime_initialized",
            store_type=self.settings.credential_store_backend.value,
            region=self.settings.aws_region,
        )

    def new_flow(self) -> AuthFlow:
        """Start a fresh flow instance; each login attempt gets its own."""
        return AuthFlow(self.provider, self.store, token_key=self.settings.access_token_key)

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()
# Closes scheduled from inside a running loop; held until they finish
_pending_closes: set[asyncio.Task] = set()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> None:
    """Drop the runtime singleton and cached settings for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                asyncio.run(runtime.aclose())
            else:
                task = loop.create_task(runtime.aclose())
                _pending_closes.add(task)
                task.add_done_callback(_pending_closes.discard)
        runtime = None
    reset_settings_cache()
