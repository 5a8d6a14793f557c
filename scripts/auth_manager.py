#!/usr/bin/env python3
"""Authentication for Exchange Online activity requests.

Basic auth sends the credential as-is. OAuth mode exchanges the same
credential for a bearer token through MSAL's username/password flow.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class AuthConfigError(RuntimeError):
    """Raised when required auth configuration is missing or invalid."""


class DependencyError(RuntimeError):
    """Raised when runtime dependencies are missing."""


class AuthError(RuntimeError):
    """Raised when authentication fails."""


AUTH_MODES = {"basic", "oauth"}
DEFAULT_SCOPES = ["https://outlook.office365.com/.default"]


@dataclass(frozen=True)
class Credential:
    username: str
    password: str = field(repr=False)

    @classmethod
    def from_env(cls) -> Optional["Credential"]:
        username = os.environ.get("OUTLOOK_USERNAME", "").strip()
        if not username:
            return None
        return cls(username=username, password=os.environ.get("OUTLOOK_PASSWORD", ""))


@dataclass
class AuthConfig:
    mode: str = "basic"
    client_id: str = ""
    tenant_id: str = "common"
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @classmethod
    def from_env(cls) -> "AuthConfig":
        mode = os.environ.get("OUTLOOK_AUTH_MODE", "basic").strip().lower() or "basic"
        client_id = os.environ.get("OUTLOOK_CLIENT_ID", "").strip()
        tenant_id = os.environ.get("OUTLOOK_TENANT_ID", "common").strip() or "common"
        scopes = _parse_scopes(os.environ.get("OUTLOOK_SCOPES"))

        if mode not in AUTH_MODES:
            raise AuthConfigError("OUTLOOK_AUTH_MODE must be one of: basic, oauth")

        return cls(mode=mode, client_id=client_id, tenant_id=tenant_id, scopes=scopes)


class AuthManager:
    def __init__(self, config: Optional[AuthConfig] = None):
        self.config = config or AuthConfig()
        self._app = None

        if self.config.mode == "oauth" and not self.config.client_id:
            raise AuthConfigError("OUTLOOK_CLIENT_ID is required when OUTLOOK_AUTH_MODE=oauth")

    def authenticate(self, credential: Credential) -> Tuple[Optional[Tuple[str, str]], Dict[str, str]]:
        """Return the ``auth`` argument and extra headers for one request."""
        if self.config.mode == "basic":
            return (credential.username, credential.password), {}

        token = self.get_access_token(credential)
        return None, {"Authorization": f"Bearer {token}"}

    def get_access_token(self, credential: Credential) -> str:
        app = self._ensure_app()

        result = None
        accounts = app.get_accounts(username=credential.username)
        if accounts:
            result = app.acquire_token_silent(self.config.scopes, accounts[0])

        if not result or "access_token" not in result:
            result = app.acquire_token_by_username_password(
                credential.username,
                credential.password,
                scopes=self.config.scopes,
            )

        if result and "access_token" in result:
            return result["access_token"]

        raise AuthError(_extract_auth_error(result))

    def _ensure_app(self):
        if self._app is not None:
            return self._app

        try:
            import msal  # type: ignore
        except Exception as err:
            raise DependencyError(
                "Missing dependency 'msal'. Install with: python3 -m pip install msal"
            ) from err

        self._app = msal.PublicClientApplication(
            client_id=self.config.client_id,
            authority=self.config.authority,
        )
        return self._app


def _parse_scopes(raw: Optional[str]) -> List[str]:
    if raw is None:
        return list(DEFAULT_SCOPES)

    parts: List[str] = []
    seen = set()
    for chunk in raw.replace(",", " ").split():
        lowered = chunk.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        parts.append(chunk)

    return parts or list(DEFAULT_SCOPES)


def _extract_auth_error(result: Optional[Dict[str, Any]]) -> str:
    if not result:
        return "Authentication failed with an empty response"
    reason = result.get("error_description") or result.get("error") or "unknown error"
    return f"Token request for Exchange Online failed: {reason}"
