from __future__ import annotations

from typing import Mapping

from passwordless.config import DEFAULT_ACCESS_TOKEN_KEY
from passwordless.provider.client import IdentityProviderClient
from passwordless.service.errors import UnauthorizedError
from passwordless.storage.credentials import CredentialStore
from passwordless.storage.models import (
    ATTR_EMAIL,
    ATTR_FAMILY_NAME,
    ATTR_GIVEN_NAME,
    UserAttributes,
)


class ProfileService:
    """Reads and updates the signed-in user's attributes.

    Every call needs the stored session token; without one it fails with
    ``UnauthorizedError`` before contacting the provider.
    """

    def __init__(
        self,
        provider: IdentityProviderClient,
        store: CredentialStore,
        *,
        token_key: str = DEFAULT_ACCESS_TOKEN_KEY,
    ) -> None:
        self.provider = provider
        self.store = store
        self.token_key = token_key

    async def _require_token(self) -> str:
        access_token = await self.store.get(self.token_key)
        if not access_token:
            raise UnauthorizedError("No access token found")
        return access_token

    async def get_attributes(self) -> UserAttributes:
        access_token = await self._require_token()
        record = await self.provider.fetch_profile(access_token)
        return UserAttributes.from_profile(record)

    async def _update(self, delta: Mapping[str, str]) -> None:
        access_token = await self._require_token()
        await self.provider.update_attributes(access_token, delta)

    async def update_email(self, email: str) -> None:
        # A new address stays unverified until the provider confirms it
        await self._update({ATTR_EMAIL: email})

    async def update_names(self, given_name: str, family_name: str) -> None:
        await self._update({ATTR_GIVEN_NAME: given_name, ATTR_FAMILY_NAME: family_name})


__all__ = ["ProfileService"]
