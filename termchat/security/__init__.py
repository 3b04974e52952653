"""Security primitives."""

from .encryption import (
    DEFAULT_PASSPHRASE_ENV,
    EncryptionError,
    KeyEncryptor,
    OpenSSLEncryptor,
    maybe_encrypt_secret,
    optional_passphrase_from_env,
    require_passphrase_from_env,
    resolve_secret,
)
from .service_account import GENERATIVE_LANGUAGE_SCOPE, ServiceAccountTokenSource

__all__ = [
    "DEFAULT_PASSPHRASE_ENV",
    "EncryptionError",
    "KeyEncryptor",
    "OpenSSLEncryptor",
    "maybe_encrypt_secret",
    "optional_passphrase_from_env",
    "require_passphrase_from_env",
    "resolve_secret",
    "GENERATIVE_LANGUAGE_SCOPE",
    "ServiceAccountTokenSource",
]
