"""Tests for switchboard/exceptions.py."""

import pytest

from switchboard.exceptions import (
    AuthorizationError,
    BackendNotAvailableError,
    ConfigurationError,
    CredentialError,
    EncryptionError,
    SwitchboardError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        "exc_class",
        [ConfigurationError, CredentialError, AuthorizationError],
    )
    def test_inherits_from_base(self, exc_class):
        assert issubclass(exc_class, SwitchboardError)

    @pytest.mark.parametrize(
        "exc_class",
        [BackendNotAvailableError, EncryptionError],
    )
    def test_credential_subclasses(self, exc_class):
        assert issubclass(exc_class, CredentialError)


class TestSwitchboardError:
    def test_message_attribute(self):
        error = ConfigurationError("Configuration file not found: x.yaml")

        assert error.message == "Configuration file not found: x.yaml"
        assert str(error) == error.message


class TestCredentialError:
    def test_reference_and_suggestion_in_str(self):
        error = CredentialError(
            "Keyring operation failed",
            reference="@keyring:search/oauth_token",
            suggestion="Unlock your keyring",
        )

        assert str(error) == (
            "Keyring operation failed (reference: @keyring:search/oauth_token)\nSuggestion: Unlock your keyring"
        )

    def test_message_keeps_original_text(self):
        error = EncryptionError("Invalid master password", suggestion="Verify your master password")

        assert error.message == "Invalid master password"
        assert error.reference is None


class TestAuthorizationError:
    def test_attributes(self):
        error = AuthorizationError("search", "No refresh token", interaction_required=True)

        assert error.provider == "search"
        assert error.interaction_required is True
        assert error.message == "Authorization for 'search' failed: No refresh token"

    def test_interaction_not_required_by_default(self):
        assert AuthorizationError("search", "HTTP 503").interaction_required is False
