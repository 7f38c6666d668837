"""Persistent OAuth token storage.

Tokens are stored as JSON strings in a credential backend, one entry per
provider:

- ``KeyringBackend``: OS credential store (Secret Service, Keychain,
  Windows Credential Locker). The default on developer machines.
- ``EncryptedFileBackend``: Fernet-encrypted file for headless systems
  without a keyring daemon.
"""

from __future__ import annotations

import base64
import json
import secrets
from pathlib import Path
from typing import Protocol, cast

import keyring
import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from keyring.errors import KeyringError, PasswordDeleteError

from switchboard.auth.tokens import OAuthToken
from switchboard.exceptions import BackendNotAvailableError, CredentialError, EncryptionError

log = structlog.get_logger(__name__)

SERVICE_PREFIX = "switchboard"
TOKEN_KEY = "oauth_token"


class CredentialBackend(Protocol):
    """Interface shared by the credential storage backends."""

    @property
    def name(self) -> str: ...

    @property
    def available(self) -> bool: ...

    def get(self, service: str, key: str) -> str | None: ...

    def set(self, service: str, key: str, value: str) -> None: ...

    def delete(self, service: str, key: str) -> bool: ...


class KeyringBackend:
    """OS-level credential storage using the system keyring.

    Example:
        >>> backend = KeyringBackend()
        >>> backend.set("github", "oauth_token", '{"access_token": "gho_abc"}')
        >>> backend.get("github", "oauth_token")
    """

    @property
    def name(self) -> str:
        return "keyring"

    @property
    def available(self) -> bool:
        """Check if a functional keyring backend is configured.

        Returns False on headless systems where keyring falls back to its
        fail backend.
        """
        try:
            backend = keyring.get_keyring()
        except Exception as e:
            log.debug("keyring_unavailable", error=str(e))
            return False
        return getattr(backend, "priority", 1) > 0

    def _require(self) -> None:
        if not self.available:
            raise BackendNotAvailableError(
                "Keyring backend is not available",
                suggestion="Configure a keyring daemon or use the encrypted file backend",
            )

    def get(self, service: str, key: str) -> str | None:
        """Retrieve a credential from the OS keyring.

        Raises:
            BackendNotAvailableError: If keyring is not available
            CredentialError: If the keyring operation fails
        """
        self._require()
        try:
            return cast(str | None, keyring.get_password(f"{SERVICE_PREFIX}/{service}", key))
        except KeyringError as e:
            raise CredentialError(f"Keyring operation failed: {e}", reference=f"@keyring:{service}/{key}") from e

    def set(self, service: str, key: str, value: str) -> None:
        self._require()
        if not value:
            raise ValueError("Credential value cannot be empty")
        try:
            keyring.set_password(f"{SERVICE_PREFIX}/{service}", key, value)
            log.info("credential_stored", backend=self.name, service=service, key=key)
        except KeyringError as e:
            raise CredentialError(f"Failed to store credential: {e}", reference=f"@keyring:{service}/{key}") from e

    def delete(self, service: str, key: str) -> bool:
        """Delete a credential; returns False if it did not exist."""
        self._require()
        try:
            keyring.delete_password(f"{SERVICE_PREFIX}/{service}", key)
        except PasswordDeleteError:
            return False
        except KeyringError as e:
            raise CredentialError(f"Failed to delete credential: {e}", reference=f"@keyring:{service}/{key}") from e
        log.info("credential_deleted", backend=self.name, service=service, key=key)
        return True


class EncryptedFileBackend:
    """Encrypted file-based credential storage.

    Credentials are kept as ``{service: {key: value}}`` JSON, encrypted with
    Fernet using a key derived from the master password (PBKDF2-HMAC-SHA256).
    A random salt lives next to the credentials file. Writes go through a
    temporary file and an atomic replace; both files are chmod 600.

    Example:
        >>> backend = EncryptedFileBackend(
        ...     Path("~/.config/switchboard/tokens.enc").expanduser(),
        ...     master_password="secure-password",
        ... )
        >>> backend.set("github", "oauth_token", '{"access_token": "gho_abc"}')
    """

    def __init__(self, file_path: Path, master_password: str, salt: bytes | None = None) -> None:
        self.file_path = file_path
        self.salt = salt or self._load_or_generate_salt()
        self.fernet = self._create_fernet(master_password, self.salt)
        self._cache: dict[str, dict[str, str]] | None = None

    @property
    def name(self) -> str:
        return "encrypted_file"

    @property
    def available(self) -> bool:
        return True

    @staticmethod
    def _create_fernet(password: str, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=480_000,
        )
        key = kdf.derive(password.encode("utf-8"))
        return Fernet(base64.urlsafe_b64encode(key))

    def _load_or_generate_salt(self) -> bytes:
        salt_file = self.file_path.parent / f"{self.file_path.stem}.salt"
        if salt_file.exists():
            return salt_file.read_bytes()

        salt = secrets.token_bytes(16)
        salt_file.parent.mkdir(parents=True, exist_ok=True)
        salt_file.write_bytes(salt)
        try:
            salt_file.chmod(0o600)
        except OSError as e:
            log.warning("salt_permissions_not_set", path=str(salt_file), error=str(e))
        return salt

    def _load(self) -> dict[str, dict[str, str]]:
        """Load and decrypt the credentials file.

        Raises:
            EncryptionError: If decryption or parsing fails
        """
        if self._cache is not None:
            return self._cache
        if not self.file_path.exists():
            self._cache = {}
            return self._cache

        try:
            decrypted = self.fernet.decrypt(self.file_path.read_bytes())
            credentials = cast(dict[str, dict[str, str]], json.loads(decrypted.decode("utf-8")))
        except InvalidToken as e:
            raise EncryptionError(
                "Invalid master password or corrupted credentials file",
                suggestion="Verify your master password",
            ) from e
        except json.JSONDecodeError as e:
            raise EncryptionError(
                "Credentials file is corrupted",
                suggestion="Delete the file and log in again",
            ) from e
        except OSError as e:
            raise EncryptionError(f"Failed to load credentials: {e}") from e

        self._cache = credentials
        return credentials

    def _save(self, credentials: dict[str, dict[str, str]]) -> None:
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            encrypted = self.fernet.encrypt(json.dumps(credentials, indent=2).encode("utf-8"))
            temp_file = self.file_path.with_suffix(".tmp")
            temp_file.write_bytes(encrypted)
            try:
                temp_file.chmod(0o600)
            except OSError as e:
                log.warning("credential_permissions_not_set", path=str(temp_file), error=str(e))
            temp_file.replace(self.file_path)
        except OSError as e:
            raise EncryptionError(f"Failed to save credentials: {e}") from e
        self._cache = credentials

    def get(self, service: str, key: str) -> str | None:
        return self._load().get(service, {}).get(key)

    def set(self, service: str, key: str, value: str) -> None:
        if not value:
            raise ValueError("Credential value cannot be empty")
        credentials = self._load()
        credentials.setdefault(service, {})[key] = value
        self._save(credentials)
        log.info("credential_stored", backend=self.name, service=service, key=key)

    def delete(self, service: str, key: str) -> bool:
        credentials = self._load()
        if key not in credentials.get(service, {}):
            return False
        del credentials[service][key]
        if not credentials[service]:
            del credentials[service]
        self._save(credentials)
        log.info("credential_deleted", backend=self.name, service=service, key=key)
        return True


class TokenStore:
    """Reads and writes OAuthToken values for providers.

    Attributes:
        backend: Credential backend holding the serialized tokens.
    """

    def __init__(self, backend: CredentialBackend | None = None) -> None:
        self.backend = backend or KeyringBackend()

    def load(self, provider: str) -> OAuthToken | None:
        """Return the stored token, or None if absent or unreadable.

        Raises:
            CredentialError: If the backend fails.
        """
        raw = self.backend.get(provider, TOKEN_KEY)
        if raw is None:
            return None
        try:
            return OAuthToken.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            log.warning("stored_token_invalid", provider=provider, error=str(e))
            return None

    def save(self, provider: str, token: OAuthToken) -> None:
        self.backend.set(provider, TOKEN_KEY, json.dumps(token.to_dict()))

    def delete(self, provider: str) -> bool:
        return self.backend.delete(provider, TOKEN_KEY)
