"""Tests for AuthConfig and AuthManager. MSAL is replaced by a mock application."""

from unittest.mock import MagicMock

import pytest

from auth_manager import (
    DEFAULT_SCOPES,
    AuthConfig,
    AuthConfigError,
    AuthError,
    AuthManager,
    Credential,
)


@pytest.fixture
def oauth_manager() -> AuthManager:
    manager = AuthManager(AuthConfig(mode="oauth", client_id="client-123"))
    manager._app = MagicMock()
    manager._app.get_accounts.return_value = []
    return manager


class TestCredential:
    def test_repr_hides_password(self, credential: Credential) -> None:
        assert "s3cret" not in repr(credential)
        assert "admin@contoso.com" in repr(credential)

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OUTLOOK_USERNAME", " admin@contoso.com ")
        monkeypatch.setenv("OUTLOOK_PASSWORD", "pw")
        assert Credential.from_env() == Credential("admin@contoso.com", "pw")

    def test_from_env_without_username(self) -> None:
        assert Credential.from_env() is None


class TestAuthConfig:
    def test_defaults(self) -> None:
        config = AuthConfig.from_env()
        assert config.mode == "basic"
        assert config.tenant_id == "common"
        assert config.scopes == DEFAULT_SCOPES
        assert config.authority == "https://login.microsoftonline.com/common"

    def test_invalid_mode(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OUTLOOK_AUTH_MODE", "kerberos")
        with pytest.raises(AuthConfigError, match="OUTLOOK_AUTH_MODE"):
            AuthConfig.from_env()

    def test_scopes_are_deduplicated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OUTLOOK_AUTH_MODE", "OAuth")
        monkeypatch.setenv("OUTLOOK_SCOPES", "Mail.Read, mail.read EWS.AccessAsUser.All")
        config = AuthConfig.from_env()
        assert config.mode == "oauth"
        assert config.scopes == ["Mail.Read", "EWS.AccessAsUser.All"]

    def test_oauth_requires_client_id(self) -> None:
        with pytest.raises(AuthConfigError, match="OUTLOOK_CLIENT_ID"):
            AuthManager(AuthConfig(mode="oauth"))


class TestAuthenticate:
    def test_basic_uses_credential_pair(self, credential: Credential) -> None:
        auth, headers = AuthManager().authenticate(credential)
        assert auth == ("admin@contoso.com", "s3cret")
        assert headers == {}

    def test_oauth_password_flow(self, oauth_manager: AuthManager, credential: Credential) -> None:
        oauth_manager._app.acquire_token_by_username_password.return_value = {"access_token": "tok-1"}

        auth, headers = oauth_manager.authenticate(credential)

        assert auth is None
        assert headers == {"Authorization": "Bearer tok-1"}
        oauth_manager._app.acquire_token_by_username_password.assert_called_once_with(
            "admin@contoso.com", "s3cret", scopes=DEFAULT_SCOPES
        )

    def test_oauth_prefers_cached_token(self, oauth_manager: AuthManager, credential: Credential) -> None:
        account = {"username": "admin@contoso.com"}
        oauth_manager._app.get_accounts.return_value = [account]
        oauth_manager._app.acquire_token_silent.return_value = {"access_token": "cached"}

        assert oauth_manager.get_access_token(credential) == "cached"
        oauth_manager._app.acquire_token_silent.assert_called_once_with(DEFAULT_SCOPES, account)
        oauth_manager._app.acquire_token_by_username_password.assert_not_called()

    def test_oauth_failure_raises(self, oauth_manager: AuthManager, credential: Credential) -> None:
        oauth_manager._app.acquire_token_by_username_password.return_value = {
            "error": "invalid_grant",
            "error_description": "AADSTS50126: Invalid username or password.",
        }

        with pytest.raises(AuthError, match="AADSTS50126"):
            oauth_manager.authenticate(credential)

    def test_oauth_empty_result(self, oauth_manager: AuthManager, credential: Credential) -> None:
        oauth_manager._app.acquire_token_by_username_password.return_value = None
        with pytest.raises(AuthError, match="empty response"):
            oauth_manager.get_access_token(credential)

    def test_oauth_error_code_without_description(self, oauth_manager: AuthManager, credential: Credential) -> None:
        oauth_manager._app.acquire_token_by_username_password.return_value = {"error": "invalid_client"}
        with pytest.raises(AuthError, match="Token request for Exchange Online failed: invalid_client"):
            oauth_manager.get_access_token(credential)
