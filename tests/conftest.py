import asyncio
import inspect
import os
import sys
import tempfile
import uuid
from pathlib import Path

# Keep test runs away from the real home directory and any real user pool
_test_tmp_dir = tempfile.mkdtemp(prefix="passwordless_test_")
os.environ.setdefault("CREDENTIAL_STORE_DIR", _test_tmp_dir)
os.environ.setdefault("CREDENTIAL_STORE_BACKEND", "memory")
os.environ.setdefault("USER_POOL_CLIENT_ID", "test-client-id")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from passwordless.service.errors import (  # noqa: E402
    ChallengeFailedError,
    ConflictError,
    FlowRejectedError,
    UnauthorizedError,
)
from passwordless.service.runtime import reset_runtime_for_tests  # noqa: E402
from passwordless.storage.models import ChallengeStart, ProfileRecord  # noqa: E402


class FakeIdentityProvider:
    """In-memory stand-in for the user pool with the same failure semantics."""

    def __init__(self, *, correct_answer: str = "123456") -> None:
        self.correct_answer = correct_answer
        self.users: dict[str, dict] = {}
        self.sessions: dict[str, str] = {}
        self.tokens: dict[str, str] = {}
        self.next_tokens: list[str] = ["tok-abc"]
        self.calls: list[tuple] = []
        self.blank_session_handle = False
        self.blank_access_token = False
        self._session_seq = 0

    async def register(self, username: str, phone_number: str) -> None:
        self.calls.append(("register", username))
        if username in self.users:
            raise ConflictError(
                "User already exists", provider_code="UsernameExistsException"
            )
        self.users[username] = {
            "sub": str(uuid.uuid4()),
            "enrolled": False,
            "attributes": {"phone_number": phone_number},
        }

    async def start_challenge(self, username: str) -> ChallengeStart:
        self.calls.append(("start_challenge", username))
        user = self.users.get(username)
        if user is None:
            raise FlowRejectedError("User does not exist.", provider_code="UserNotFoundException")
        self._session_seq += 1
        handle = f"sess-{self._session_seq}"
        self.sessions[handle] = username
        return ChallengeStart(
            session_handle="" if self.blank_session_handle else handle,
            delivery_token="delivery-1",
            already_enrolled=user["enrolled"],
            challenge_name="CUSTOM_CHALLENGE",
        )

    async def answer_challenge(self, session_handle: str, username: str, answer: str) -> str:
        self.calls.append(("answer_challenge", session_handle, username))
        owner = self.sessions.pop(session_handle, None)
        if owner is None or owner != username:
            raise ChallengeFailedError("Invalid session for the user.", provider_code="NotAuthorizedException")
        if answer != self.correct_answer:
            raise ChallengeFailedError("Incorrect answer.", provider_code="NotAuthorizedException")
        if self.blank_access_token:
            return ""
        token = self.next_tokens.pop(0) if self.next_tokens else f"tok-{uuid.uuid4().hex[:8]}"
        self.tokens[token] = username
        self.users[username]["enrolled"] = True
        return token

    async def fetch_profile(self, access_token: str) -> ProfileRecord:
        self.calls.append(("fetch_profile",))
        username = self.tokens.get(access_token)
        if username is None:
            raise UnauthorizedError("Invalid Access Token", provider_code="NotAuthorizedException")
        user = self.users[username]
        attributes = [{"Name": "sub", "Value": user["sub"]}]
        attributes += [
            {"Name": name, "Value": value} for name, value in user["attributes"].items()
        ]
        return ProfileRecord(username=username, attributes=attributes)

    async def update_attributes(self, access_token: str, delta) -> None:
        self.calls.append(("update_attributes", dict(delta)))
        username = self.tokens.get(access_token)
        if username is None:
            raise UnauthorizedError("Invalid Access Token", provider_code="NotAuthorizedException")
        attributes = self.users[username]["attributes"]
        attributes.update(delta)
        if "email" in delta:
            attributes["email_verified"] = "false"

    def remote_calls(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def fake_provider():
    return FakeIdentityProvider()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
