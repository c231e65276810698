from __future__ import annotations

import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Mapping, Optional, Protocol, Type

import httpx
from pydantic import ValidationError

from passwordless.config import Settings
from passwordless.logging import get_logger, redact_username
from passwordless.provider.schemas import (
    AttributeType,
    ErrorBody,
    GetUserRequest,
    GetUserResponse,
    InitiateAuthRequest,
    InitiateAuthResponse,
    RespondToAuthChallengeRequest,
    RespondToAuthChallengeResponse,
    SignUpRequest,
    SignUpResponse,
    UpdateUserAttributesRequest,
)
from passwordless.service.errors import (
    ChallengeFailedError,
    ConflictError,
    FlowRejectedError,
    ProviderError,
    TransportFailureError,
    UnauthorizedError,
)
from passwordless.storage.models import ATTR_PHONE_NUMBER, ChallengeStart, ProfileRecord

logger = get_logger(__name__)

TARGET_PREFIX = "AWSCognitoIdentityProviderService"
CONTENT_TYPE = "application/x-amz-json-1.1"

# Provider codes that mean "try again later" no matter which operation failed
_UNAVAILABLE_CODES: FrozenSet[str] = frozenset(
    {
        "InternalErrorException",
        "ServiceUnavailable",
        "ThrottlingException",
        "TooManyRequestsException",
        "LimitExceededException",
    }
)


class IdentityProviderClient(Protocol):
    async def register(self, username: str, phone_number: str) -> None: ...

    async def start_challenge(self, username: str) -> ChallengeStart: ...

    async def answer_challenge(
        self, session_handle: str, username: str, answer: str
    ) -> str: ...

    async def fetch_profile(self, access_token: str) -> ProfileRecord: ...

    async def update_attributes(
        self, access_token: str, delta: Mapping[str, str]
    ) -> None: ...


@dataclass(frozen=True)
class _ErrorPolicy:
    """How provider rejections of one operation map onto client errors."""

    default: Type[ProviderError]
    by_code: Dict[str, Type[ProviderError]] = field(default_factory=dict)

    def resolve(self, code: Optional[str]) -> Type[ProviderError]:
        if code in _UNAVAILABLE_CODES:
            return TransportFailureError
        return self.by_code.get(code or "", self.default)


_SIGN_UP_ERRORS = _ErrorPolicy(
    default=ProviderError,
    by_code={
        "UsernameExistsException": ConflictError,
        "AliasExistsException": ConflictError,
    },
)
_INITIATE_ERRORS = _ErrorPolicy(default=FlowRejectedError)
_RESPOND_ERRORS = _ErrorPolicy(default=ChallengeFailedError)
_GET_USER_ERRORS = _ErrorPolicy(
    default=ProviderError,
    by_code={
        "NotAuthorizedException": UnauthorizedError,
        "UserNotFoundException": UnauthorizedError,
        "PasswordResetRequiredException": UnauthorizedError,
        "UserNotConfirmedException": UnauthorizedError,
    },
)
_UPDATE_ERRORS = _ErrorPolicy(
    default=ProviderError,
    by_code={
        "NotAuthorizedException": UnauthorizedError,
        "UserNotFoundException": UnauthorizedError,
        "AliasExistsException": ConflictError,
    },
)


def placeholder_password() -> str:
    """Generate a throwaway password for the sign-up call.

    The provider insists on a password at registration even though this client
    only ever signs in through the custom challenge. The value is sent once and
    never kept. The fixed tail satisfies common complexity policies.
    """
    return secrets.token_urlsafe(24) + "Aa1!"


class CognitoIdentityProviderClient:
    """Async client for the five user-pool operations used by the auth flow."""

    def __init__(
        self,
        *,
        client_id: str,
        endpoint: str,
        timeout: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not client_id:
            raise ValueError("client_id is required")
        self.client_id = client_id
        self.endpoint = endpoint
        if http_client is None:
            client_kwargs: dict[str, Any] = {"follow_redirects": False}
            if timeout is not None:
                client_kwargs["timeout"] = timeout
            http_client = httpx.AsyncClient(**client_kwargs)
            self._owns_client = True
        else:
            self._owns_client = False
        self._http = http_client

    @classmethod
    def from_settings(
        cls, settings: Settings, *, http_client: httpx.AsyncClient | None = None
    ) -> "CognitoIdentityProviderClient":
        if not settings.user_pool_client_id:
            raise ValueError("USER_POOL_CLIENT_ID must be set to talk to the identity provider")
        return cls(
            client_id=settings.user_pool_client_id,
            endpoint=settings.provider_url,
            timeout=settings.provider_timeout_seconds,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def __aenter__(self) -> "CognitoIdentityProviderClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _call(
        self, operation: str, payload: dict, errors: _ErrorPolicy
    ) -> dict:
        headers = {
            "Content-Type": CONTENT_TYPE,
            "X-Amz-Target": f"{TARGET_PREFIX}.{operation}",
        }
        try:
            response = await self._http.post(
                self.endpoint, content=json.dumps(payload), headers=headers
            )
        except httpx.TransportError as exc:
            logger.warning(
                "provider_transport_error", operation=operation, error=type(exc).__name__
            )
            raise TransportFailureError(
                f"{operation} could not reach the identity provider",
                detail={"operation": operation},
            ) from exc

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if response.is_success:
            if not isinstance(body, dict):
                logger.error(
                    "provider_response_unparseable",
                    operation=operation,
                    status_code=response.status_code,
                )
                raise TransportFailureError(
                    f"{operation} returned an unreadable response",
                    detail={"operation": operation, "status_code": response.status_code},
                )
            return body

        error_body = ErrorBody()
        if isinstance(body, dict):
            try:
                error_body = ErrorBody.model_validate(body)
            except ValidationError:
                logger.warning(
                    "provider_error_envelope_malformed",
                    operation=operation,
                    status_code=response.status_code,
                )
        code = error_body.code
        if response.status_code >= 500:
            error_cls: Type[ProviderError] = TransportFailureError
        else:
            error_cls = errors.resolve(code)
        logger.info(
            "provider_call_rejected",
            operation=operation,
            status_code=response.status_code,
            provider_code=code,
            error_code=error_cls.error_code,
        )
        raise error_cls(
            error_body.text or f"{operation} was rejected by the identity provider",
            provider_code=code,
            detail={"operation": operation, "status_code": response.status_code},
        )

    @staticmethod
    def _parse(model, operation: str, body: dict, error_cls: Type[ProviderError]):
        try:
            return model.model_validate(body)
        except ValidationError as exc:
            raise error_cls(
                f"{operation} returned a malformed response",
                detail={"operation": operation},
            ) from exc

    async def register(self, username: str, phone_number: str) -> None:
        request = SignUpRequest(
            client_id=self.client_id,
            username=username,
            password=placeholder_password(),
            user_attributes=[AttributeType(name=ATTR_PHONE_NUMBER, value=phone_number)],
        )
        body = await self._call("SignUp", request.to_wire(), _SIGN_UP_ERRORS)
        result = self._parse(SignUpResponse, "SignUp", body, ProviderError)
        logger.info(
            "user_registered",
            user=redact_username(username),
            user_confirmed=result.user_confirmed,
        )

    async def start_challenge(self, username: str) -> ChallengeStart:
        request = InitiateAuthRequest(
            client_id=self.client_id,
            auth_parameters={"USERNAME": username},
        )
        body = await self._call("InitiateAuth", request.to_wire(), _INITIATE_ERRORS)
        result = self._parse(InitiateAuthResponse, "InitiateAuth", body, FlowRejectedError)
        if not result.session:
            raise FlowRejectedError(
                "Identity provider could not start the custom challenge flow",
                detail={"operation": "InitiateAuth"},
            )
        params = result.challenge_parameters or {}
        return ChallengeStart(
            session_handle=result.session,
            delivery_token=params.get("token") or None,
            already_enrolled=params.get("isEnrolled") == "true",
            challenge_name=result.challenge_name,
        )

    async def answer_challenge(self, session_handle: str, username: str, answer: str) -> str:
        request = RespondToAuthChallengeRequest(
            client_id=self.client_id,
            session=session_handle,
            challenge_responses={"USERNAME": username, "ANSWER": answer},
        )
        body = await self._call(
            "RespondToAuthChallenge", request.to_wire(), _RESPOND_ERRORS
        )
        result = self._parse(
            RespondToAuthChallengeResponse,
            "RespondToAuthChallenge",
            body,
            ChallengeFailedError,
        )
        access_token = (
            result.authentication_result.access_token
            if result.authentication_result
            else None
        )
        if not access_token:
            raise ChallengeFailedError(
                "Identity provider did not return an access token",
                detail={
                    "operation": "RespondToAuthChallenge",
                    "next_challenge": result.challenge_name,
                },
            )
        return access_token

    async def fetch_profile(self, access_token: str) -> ProfileRecord:
        request = GetUserRequest(access_token=access_token)
        body = await self._call("GetUser", request.to_wire(), _GET_USER_ERRORS)
        result = self._parse(GetUserResponse, "GetUser", body, ProviderError)
        return ProfileRecord(
            username=result.username,
            attributes=[
                {"Name": attr.name, "Value": attr.value}
                for attr in result.user_attributes or []
                if attr.value is not None
            ],
        )

    async def update_attributes(self, access_token: str, delta: Mapping[str, str]) -> None:
        if not delta:
            return
        request = UpdateUserAttributesRequest(
            access_token=access_token,
            user_attributes=[
                AttributeType(name=name, value=value) for name, value in delta.items()
            ],
        )
        await self._call("UpdateUserAttributes", request.to_wire(), _UPDATE_ERRORS)
        logger.info("user_attributes_updated", attributes=sorted(delta.keys()))


__all__ = [
    "CognitoIdentityProviderClient",
    "IdentityProviderClient",
    "placeholder_password",
]
