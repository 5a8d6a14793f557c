"""Shared pytest fixtures. The requests module is always replaced by a mock."""

import json
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest

import activity_client
from activity_client import ExchangeActivityClient
from auth_manager import Credential
from session_state import SessionState, default_session

ENV_VARS = [
    "OUTLOOK_AUTH_MODE",
    "OUTLOOK_CLIENT_ID",
    "OUTLOOK_TENANT_ID",
    "OUTLOOK_SCOPES",
    "OUTLOOK_USERNAME",
    "OUTLOOK_PASSWORD",
    "OUTLOOK_USER",
    "OUTLOOK_ACTIVITY_BASE_URL",
]


class FakeRequestException(Exception):
    pass


def make_response(
    payload: Any = None,
    *,
    status_code: int = 200,
    content_type: str = "application/json; odata.metadata=minimal",
    text: Optional[str] = None,
) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.headers = {"Content-Type": content_type}
    if payload is not None:
        response.content = json.dumps(payload).encode("utf-8")
        response.json.return_value = payload
    else:
        response.content = (text or "").encode("utf-8")
        response.json.side_effect = ValueError("No JSON object could be decoded")
    response.text = text if text is not None else response.content.decode("utf-8")
    return response


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(activity_client, "_default", None)
    default_session.clear()
    yield
    default_session.clear()


@pytest.fixture
def fake_requests(monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    fake = MagicMock()
    fake.RequestException = FakeRequestException
    fake.get.return_value = make_response({"value": []})
    monkeypatch.setattr(ExchangeActivityClient, "_load_requests", staticmethod(lambda: fake))
    return fake


@pytest.fixture
def credential() -> Credential:
    return Credential(username="admin@contoso.com", password="s3cret")


@pytest.fixture
def client(fake_requests: MagicMock) -> ExchangeActivityClient:
    return ExchangeActivityClient(session=SessionState())


def sent_request(fake: MagicMock) -> Dict[str, Any]:
    """Return url and keyword arguments of the single GET issued."""
    assert fake.get.call_count == 1
    args, kwargs = fake.get.call_args
    return {"url": args[0], **kwargs}
