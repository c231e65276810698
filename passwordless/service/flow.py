from __future__ import annotations

from enum import Enum
from typing import Optional

from passwordless.config import DEFAULT_ACCESS_TOKEN_KEY
from passwordless.logging import get_logger, redact_username, set_flow_id
from passwordless.provider.client import IdentityProviderClient
from passwordless.service.errors import ChallengeFailedError, FlowRejectedError
from passwordless.storage.credentials import CredentialStore
from passwordless.storage.errors import CredentialStoreError
from passwordless.storage.models import ChallengeStart

logger = get_logger(__name__)


class FlowState(str, Enum):
    ANONYMOUS = "anonymous"
    REGISTERING = "registering"
    CHALLENGE_STARTED = "challenge_started"
    AUTHENTICATED = "authenticated"


class AuthFlow:
    """Drives registration and the custom challenge login for one caller.

    A flow instance holds the session handle of at most one login attempt in
    memory. ``respond`` only proceeds for the handle issued by the most recent
    ``initiate`` on the same instance; the handle is consumed by the first
    ``respond`` regardless of its outcome.

    The stored access token is the only state that outlives the instance. It
    is written once, after the provider returns a non-empty token, and the flow
    does not count as authenticated until that write has succeeded.
    ``state`` tracks this instance only; ``get_session`` is the authority on
    whether a session exists on the device.
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
        self._state = FlowState.ANONYMOUS
        self._challenge: Optional[ChallengeStart] = None
        self._username: Optional[str] = None
        self.logger = logger

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def challenge(self) -> Optional[ChallengeStart]:
        """The challenge of the attempt in progress, if any."""
        return self._challenge

    def _reset_attempt(self) -> None:
        self._challenge = None
        self._username = None

    async def register(self, username: str, phone_number: str) -> None:
        previous = self._state
        self._state = FlowState.REGISTERING
        try:
            await self.provider.register(username, phone_number)
        finally:
            self._state = previous
        self.logger.info("registration_completed", user=redact_username(username))

    async def initiate(self, username: str) -> ChallengeStart:
        set_flow_id()
        # A new attempt supersedes any earlier one, including its enrollment
        # hint, even when the new attempt fails
        self._reset_attempt()
        self._state = FlowState.ANONYMOUS
        challenge = await self.provider.start_challenge(username)
        if not challenge.session_handle:
            self.logger.warning("challenge_start_without_handle", user=redact_username(username))
            raise FlowRejectedError(
                "Identity provider returned no challenge session handle",
                detail={"operation": "InitiateAuth"},
            )
        self._challenge = challenge
        self._username = username
        self._state = FlowState.CHALLENGE_STARTED
        self.logger.info(
            "challenge_started",
            user=redact_username(username),
            already_enrolled=challenge.already_enrolled,
            has_delivery_hint=challenge.delivery_token is not None,
        )
        return challenge

    async def respond(self, session_handle: str, username: str, answer: str) -> str:
        challenge = self._challenge
        if challenge is None or challenge.session_handle != session_handle:
            self.logger.info(
                "challenge_response_without_attempt",
                user=redact_username(username),
                has_attempt=challenge is not None,
            )
            raise ChallengeFailedError(
                "No challenge in progress for this session handle",
                detail={"operation": "RespondToAuthChallenge"},
            )
        if self._username is not None and self._username != username:
            self._reset_attempt()
            self._state = FlowState.ANONYMOUS
            raise ChallengeFailedError(
                "Challenge was issued for a different username",
                detail={"operation": "RespondToAuthChallenge"},
            )

        # The handle is single use whatever happens next
        self._reset_attempt()
        try:
            access_token = await self.provider.answer_challenge(session_handle, username, answer)
        except Exception:
            self._state = FlowState.ANONYMOUS
            raise
        if not access_token:
            self._state = FlowState.ANONYMOUS
            raise ChallengeFailedError(
                "Identity provider did not return an access token",
                detail={"operation": "RespondToAuthChallenge"},
            )

        try:
            await self.store.set(self.token_key, access_token)
        except CredentialStoreError:
            self._state = FlowState.ANONYMOUS
            self.logger.error("session_commit_failed", user=redact_username(username))
            raise
        except OSError as exc:
            self._state = FlowState.ANONYMOUS
            self.logger.error("session_commit_failed", user=redact_username(username))
            raise CredentialStoreError(
                "Unable to persist the session credential", detail={"error": str(exc)}
            ) from exc

        self._state = FlowState.AUTHENTICATED
        self.logger.info("session_established", user=redact_username(username))
        return access_token

    async def get_session(self) -> Optional[str]:
        return await self.store.get(self.token_key)

    async def sign_out(self) -> None:
        self._reset_attempt()
        await self.store.remove(self.token_key)
        self._state = FlowState.ANONYMOUS
        self.logger.info("signed_out")


__all__ = ["AuthFlow", "FlowState"]
