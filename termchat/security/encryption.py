"""Encryption of provider API keys stored in the config file."""

from __future__ import annotations

import base64
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Mapping, Optional, Tuple

from ..core.errors import SecretError

DEFAULT_PASSPHRASE_ENV = "TERMCHAT_PASSPHRASE"

_OPENSSL_PASS_ENV = "TERMCHAT_OPENSSL_PASS"


class EncryptionError(SecretError):
    """Raised when encryption/decryption fails."""


class KeyEncryptor(ABC):
    """Interface for secret-at-rest encryption."""

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext and return ciphertext."""

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        """Decrypt ciphertext and return plaintext."""


class OpenSSLEncryptor(KeyEncryptor):
    """
    AES-256-CBC + PBKDF2 through the ``openssl`` binary.

    The passphrase reaches openssl through its environment, never argv.
    Ciphertext is stored as ``enc:v1:<urlsafe base64>``.
    """

    PREFIX = "enc:v1:"

    def __init__(self, passphrase: str, env_label: str = DEFAULT_PASSPHRASE_ENV):
        if not passphrase:
            raise EncryptionError(f"passphrase required via {env_label} to use encrypted secrets")
        self._passphrase = passphrase
        self._env_label = env_label

    def _run_openssl(self, decrypt: bool, payload: bytes) -> bytes:
        args = [
            "openssl",
            "enc",
            "-aes-256-cbc",
            "-pbkdf2",
            "-iter",
            "200000",
            "-pass",
            f"env:{_OPENSSL_PASS_ENV}",
        ]
        if decrypt:
            args.insert(3, "-d")

        env = {**os.environ, _OPENSSL_PASS_ENV: self._passphrase}
        try:
            proc = subprocess.run(
                args,
                input=payload,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise EncryptionError("OpenSSL binary not found") from exc

        if proc.returncode != 0:
            action = "decrypt" if decrypt else "encrypt"
            raise EncryptionError(f"Failed to {action} secret with the passphrase from {self._env_label}")
        return proc.stdout

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise EncryptionError("Cannot encrypt empty secret")
        encrypted = self._run_openssl(decrypt=False, payload=plaintext.encode("utf-8"))
        return f"{self.PREFIX}{base64.urlsafe_b64encode(encrypted).decode('utf-8')}"

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext.startswith(self.PREFIX):
            raise EncryptionError("Unsupported ciphertext format")
        try:
            data = base64.urlsafe_b64decode(ciphertext[len(self.PREFIX):].encode("utf-8"))
        except ValueError as exc:
            raise EncryptionError("Stored secret is not valid base64") from exc
        plaintext = self._run_openssl(decrypt=True, payload=data)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncryptionError("Decrypted secret is not UTF-8") from exc


# ============================================================
# Passphrase / secret helpers
# ============================================================

def optional_passphrase_from_env(
    env_label: str = DEFAULT_PASSPHRASE_ENV,
    strict: bool = False,
    env: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """
    Read the passphrase variable.

    With ``strict`` a missing variable is an error; this is used when the
    user named the variable explicitly with ``--secret-env``.
    """
    env = os.environ if env is None else env
    value = env.get(env_label)
    if value is None and strict:
        raise SecretError(f"environment variable {env_label} is not set")
    return value


def require_passphrase_from_env(
    env_label: str = DEFAULT_PASSPHRASE_ENV,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    value = optional_passphrase_from_env(env_label, strict=False, env=env)
    if not value:
        raise SecretError(f"environment variable {env_label} must be set to use encrypted secrets")
    return value


def maybe_encrypt_secret(
    value: Optional[str],
    encrypt: bool,
    passphrase: Optional[str],
    env_label: str = DEFAULT_PASSPHRASE_ENV,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Return ``(plain, encrypted)`` for storing ``value``.

    Exactly one of the pair is set when a value is given.
    """
    if not encrypt or value is None:
        return value, None
    if not passphrase:
        raise SecretError(f"passphrase required via {env_label} when --encrypt-secrets is used")
    return None, OpenSSLEncryptor(passphrase, env_label).encrypt(value)


def resolve_secret(
    plain: Optional[str],
    encrypted: Optional[str],
    passphrase: Optional[str] = None,
    env_label: str = DEFAULT_PASSPHRASE_ENV,
) -> Optional[str]:
    """A plain value wins; otherwise decrypt the stored ciphertext."""
    if plain:
        return plain
    if encrypted:
        if not passphrase:
            passphrase = require_passphrase_from_env(env_label)
        return OpenSSLEncryptor(passphrase, env_label).decrypt(encrypted)
    return None
