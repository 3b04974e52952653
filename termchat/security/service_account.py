"""Bearer tokens for Gemini from a Google service-account key file."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Union

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from ..core.errors import ConfigError, ConnectionFailedError, ProviderAuthError

GENERATIVE_LANGUAGE_SCOPE = "https://www.googleapis.com/auth/generative-language"


class ServiceAccountTokenSource:
    """
    Loads a service-account key once and caches its access token.

    The token is refreshed only when google-auth reports it as expired
    (or about to expire). Refreshing blocks, so it runs in a worker thread.
    """

    def __init__(self, key_file: Union[str, Path], provider: str = "google"):
        self.key_file = Path(key_file).expanduser()
        self.provider = provider
        self._credentials: Optional[service_account.Credentials] = None

    def _load(self) -> service_account.Credentials:
        try:
            return service_account.Credentials.from_service_account_file(
                str(self.key_file),
                scopes=[GENERATIVE_LANGUAGE_SCOPE],
            )
        except (OSError, ValueError) as exc:
            raise ConfigError(
                "service_account_unreadable",
                f"failed to read service account JSON at {self.key_file}: {exc}",
                {"provider": self.provider},
            ) from exc

    async def token(self) -> str:
        """
        Return a valid access token.

        Raises:
            ConfigError: The key file is missing or malformed.
            ProviderAuthError: Google refused the token exchange.
            ConnectionFailedError: The token endpoint could not be reached.
        """
        if self._credentials is None:
            self._credentials = self._load()

        credentials = self._credentials
        if not credentials.valid:
            try:
                await asyncio.to_thread(credentials.refresh, Request())
            except google.auth.exceptions.RefreshError as exc:
                raise ProviderAuthError(self.provider, f"service account token refresh failed: {exc}") from exc
            except google.auth.exceptions.TransportError as exc:
                raise ConnectionFailedError(self.provider, f"token endpoint: {exc}") from exc

        if not credentials.token:
            raise ProviderAuthError(self.provider, "token response had no access_token")
        return credentials.token
