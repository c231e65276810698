from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

# Well-known provider attribute names
ATTR_USER_ID = "sub"
ATTR_PHONE_NUMBER = "phone_number"
ATTR_EMAIL = "email"
ATTR_EMAIL_VERIFIED = "email_verified"
ATTR_GIVEN_NAME = "given_name"
ATTR_FAMILY_NAME = "family_name"


@dataclass
class ChallengeStart:
    """Provider response to starting a custom challenge for one login attempt."""

    session_handle: str
    delivery_token: Optional[str] = None
    already_enrolled: bool = False
    challenge_name: Optional[str] = None


@dataclass
class ProfileRecord:
    username: str
    attributes: List[Dict[str, str]] = field(default_factory=list)

    def attribute(self, name: str) -> Optional[str]:
        for entry in self.attributes:
            if entry.get("Name") == name:
                return entry.get("Value")
        return None


@dataclass
class UserAttributes:
    username: Optional[str] = None
    user_id: Optional[str] = None
    phone_number: Optional[str] = None
    email: Optional[str] = None
    email_verified: bool = False
    given_name: Optional[str] = None
    family_name: Optional[str] = None

    @classmethod
    def from_profile(cls, record: ProfileRecord) -> "UserAttributes":
        return cls(
            username=record.username or None,
            user_id=record.attribute(ATTR_USER_ID),
            phone_number=record.attribute(ATTR_PHONE_NUMBER),
            email=record.attribute(ATTR_EMAIL),
            email_verified=record.attribute(ATTR_EMAIL_VERIFIED) == "true",
            given_name=record.attribute(ATTR_GIVEN_NAME),
            family_name=record.attribute(ATTR_FAMILY_NAME),
        )
