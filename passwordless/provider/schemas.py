from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_pascal

CUSTOM_AUTH_FLOW = "CUSTOM_AUTH"
CUSTOM_CHALLENGE = "CUSTOM_CHALLENGE"


class WireModel(BaseModel):
    """Provider payloads use PascalCase member names on the wire."""

    model_config = ConfigDict(
        alias_generator=to_pascal, populate_by_name=True, extra="ignore"
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class AttributeType(WireModel):
    name: str
    value: Optional[str] = None


class SignUpRequest(WireModel):
    client_id: str
    username: str
    password: str
    user_attributes: List[AttributeType] = Field(default_factory=list)


class SignUpResponse(WireModel):
    user_confirmed: Optional[bool] = None
    user_sub: Optional[str] = None


class InitiateAuthRequest(WireModel):
    client_id: str
    auth_flow: str = CUSTOM_AUTH_FLOW
    auth_parameters: Dict[str, str] = Field(default_factory=dict)


class InitiateAuthResponse(WireModel):
    challenge_name: Optional[str] = None
    session: Optional[str] = None
    challenge_parameters: Optional[Dict[str, str]] = None


class RespondToAuthChallengeRequest(WireModel):
    client_id: str
    challenge_name: str = CUSTOM_CHALLENGE
    session: str
    challenge_responses: Dict[str, str] = Field(default_factory=dict)


class AuthenticationResult(WireModel):
    access_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None


class RespondToAuthChallengeResponse(WireModel):
    authentication_result: Optional[AuthenticationResult] = None
    challenge_name: Optional[str] = None
    session: Optional[str] = None


class GetUserRequest(WireModel):
    access_token: str


class GetUserResponse(WireModel):
    username: str = ""
    user_attributes: Optional[List[AttributeType]] = None


class UpdateUserAttributesRequest(WireModel):
    access_token: str
    user_attributes: List[AttributeType]


class ErrorBody(BaseModel):
    """Error envelope returned with non-2xx responses."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type_: Optional[str] = Field(default=None, alias="__type")
    message: Optional[str] = None
    message_upper: Optional[str] = Field(default=None, alias="Message")

    @property
    def code(self) -> Optional[str]:
        # "com.amazonaws...#UsernameExistsException" -> "UsernameExistsException"
        if not self.type_:
            return None
        return self.type_.rsplit("#", 1)[-1].split(":", 1)[0] or None

    @property
    def text(self) -> str:
        return self.message or self.message_upper or ""
