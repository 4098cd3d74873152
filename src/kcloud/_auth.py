"""
Access-token management for the kcloud SDK.

This module provides the token snapshot, the token retrievers that produce
snapshots, and the TokenManager that keeps a client's snapshot fresh.

The main classes are:
- TokenContext: Immutable access-token snapshot.
- TokenRetriever: Abstract base class for token retrievers.
- StaticTokenRetriever: Returns a fixed, caller-supplied token.
- ClientCredentialsTokenRetriever: OAuth2 client credentials grant.
- RefreshTokenRetriever: OAuth2 refresh token grant.
- TokenManager: Owns the current snapshot and refreshes it under a lock.

Example:
    >>> from kcloud._auth import ClientCredentialsTokenRetriever, TokenManager
    >>> retriever = ClientCredentialsTokenRetriever(
    ...     client_id="my-client-id",
    ...     client_secret="my-client-secret",
    ... )
    >>> manager = TokenManager(retriever, expire_window=60)
    >>> manager.ensure_fresh()
    >>> manager.context.access_token
    'eyJ...'
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import requests

from kcloud._config import DEFAULT_TOKEN_URL

if TYPE_CHECKING:
    from kcloud._config import AuthConfig

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class TokenRetrievalError(Exception):
    """
    Raised when an access token cannot be retrieved.

    Surfaces immediately to the caller and aborts the in-flight request;
    retrying is the retriever's own responsibility.

    Attributes:
        message: Description of the retrieval failure.
        cause: The underlying exception that caused the failure, if any.
    """

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class TokenContext:
    """
    Immutable access-token snapshot.

    Never mutated in place: a refresh replaces the whole snapshot.

    Attributes:
        access_token: The access token sent as `Authorization: Bearer`.
        start_time: Unix epoch (seconds) at which the token was issued.
        expires_in: Validity of the token in seconds from start_time.
        token_type: Token type reported by the identity provider.
        refresh_token: Refresh token, when the grant returns one.
        scope: Granted scope, when reported.
    """

    access_token: str
    start_time: int = 0
    expires_in: int = 0
    token_type: str = "Bearer"
    refresh_token: str | None = None
    scope: str | None = None

    @property
    def expires_at(self) -> int:
        """Unix epoch (seconds) at which the token expires."""
        return self.start_time + self.expires_in


# =============================================================================
# Abstract Base Class
# =============================================================================


class TokenRetriever(ABC):
    """
    Abstract base class for token retrievers.

    A retriever is invoked once at client construction and again every time
    the current snapshot falls within the expiry window.

    Example:
        >>> class MyTokenRetriever(TokenRetriever):
        ...     def get_token_context(self) -> TokenContext:
        ...         return TokenContext("my-token", int(time.time()), 3600)
    """

    @abstractmethod
    def get_token_context(self) -> TokenContext:
        """
        Obtain a new token snapshot.

        Raises:
            TokenRetrievalError: If unable to obtain a token.
        """
        pass


# =============================================================================
# Implementations
# =============================================================================


class StaticTokenRetriever(TokenRetriever):
    """
    Retriever for a static, caller-supplied token.

    The snapshot it returns carries no validity window, so it is re-read
    whenever the freshness check runs. Re-reading does no I/O.
    """

    def __init__(self, token: str):
        assert token, "token cannot be empty"
        self._context = TokenContext(access_token=token)

    def get_token_context(self) -> TokenContext:
        return self._context


class _OAuth2TokenRetriever(TokenRetriever):
    """Base class for retrievers posting an OAuth2 grant to a token endpoint."""

    DEFAULT_TIMEOUT = 30

    def __init__(self, token_url: str, timeout: float = DEFAULT_TIMEOUT):
        assert token_url, "token_url cannot be empty"
        self._token_url = token_url
        self._timeout = timeout

    @abstractmethod
    def _grant_data(self) -> dict[str, str]:
        """Form fields of the grant request."""

    def get_token_context(self) -> TokenContext:
        """
        Post the grant and build a snapshot from the token response.

        Raises:
            TokenRetrievalError: If the token request fails or the payload is malformed.
        """
        issued_at = int(time.time())
        try:
            response = requests.post(
                self._token_url,
                data=self._grant_data(),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self._timeout,
            )
            response.raise_for_status()
            data: dict[str, Any] = response.json()

            return TokenContext(
                access_token=data["access_token"],
                start_time=issued_at,
                expires_in=int(data.get("expires_in", 0)),
                token_type=data.get("token_type", "Bearer"),
                refresh_token=data.get("refresh_token"),
                scope=data.get("scope"),
            )

        except requests.HTTPError as e:
            raise TokenRetrievalError(
                f"Failed to obtain access token (HTTP {e.response.status_code}): {e}",
                cause=e,
            ) from e
        except requests.RequestException as e:
            raise TokenRetrievalError(
                f"Failed to obtain access token: {e}",
                cause=e,
            ) from e
        except KeyError as e:
            raise TokenRetrievalError(
                f"Invalid token response: missing '{e}' field",
                cause=e,
            ) from e
        except ValueError as e:
            raise TokenRetrievalError(
                f"Invalid token response: {e}",
                cause=e,
            ) from e


class ClientCredentialsTokenRetriever(_OAuth2TokenRetriever):
    """
    OAuth2 client credentials flow, for machine-to-machine authentication.

    Args:
        client_id: OAuth2 client ID.
        client_secret: OAuth2 client secret.
        token_url: OAuth2 token endpoint URL.
        scope: Optional scope requested with the grant.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_url: str = DEFAULT_TOKEN_URL,
        scope: str | None = None,
        timeout: float = _OAuth2TokenRetriever.DEFAULT_TIMEOUT,
    ):
        assert client_id, "client_id cannot be empty"
        assert client_secret, "client_secret cannot be empty"
        super().__init__(token_url=token_url, timeout=timeout)

        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope

    def _grant_data(self) -> dict[str, str]:
        data = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        if self._scope:
            data["scope"] = self._scope
        return data


class RefreshTokenRetriever(_OAuth2TokenRetriever):
    """
    OAuth2 refresh token flow.

    Args:
        client_id: OAuth2 client ID the refresh token was issued to.
        refresh_token: The refresh token.
        token_url: OAuth2 token endpoint URL.
        scope: Optional scope requested with the grant.
    """

    def __init__(
        self,
        client_id: str,
        refresh_token: str,
        token_url: str = DEFAULT_TOKEN_URL,
        scope: str | None = None,
        timeout: float = _OAuth2TokenRetriever.DEFAULT_TIMEOUT,
    ):
        assert client_id, "client_id cannot be empty"
        assert refresh_token, "refresh_token cannot be empty"
        super().__init__(token_url=token_url, timeout=timeout)

        self._client_id = client_id
        self._refresh_token = refresh_token
        self._scope = scope

    def _grant_data(self) -> dict[str, str]:
        data = {
            "grant_type": "refresh_token",
            "client_id": self._client_id,
            "refresh_token": self._refresh_token,
        }
        if self._scope:
            data["scope"] = self._scope
        return data


# =============================================================================
# Token Manager
# =============================================================================


class TokenManager:
    """
    Owns a client's current token snapshot.

    The freshness check reads the snapshot without holding the lock; only
    the refresh-and-swap is serialized. Callers that observe a stale token
    at the same time each perform their own refresh, one after the other.

    Args:
        retriever: Source of new token snapshots.
        expire_window: Seconds before expiry within which a refresh is triggered.
        context: Initial snapshot. If None, the retriever is called immediately.

    Raises:
        TokenRetrievalError: If the initial snapshot cannot be retrieved.
    """

    def __init__(
        self,
        retriever: TokenRetriever,
        expire_window: float = 60.0,
        context: TokenContext | None = None,
    ):
        assert retriever is not None, "retriever cannot be None"
        assert expire_window >= 0, "expire_window must be >= 0"

        self._retriever = retriever
        self._expire_window = expire_window
        self._lock = threading.Lock()
        self._context = context if context is not None else self._retrieve()

    @property
    def context(self) -> TokenContext:
        return self._context

    def is_expired(self, now: float | None = None) -> bool:
        """Return True if the snapshot expires within the expiry window."""
        now = time.time() if now is None else now
        return int(now + self._expire_window) >= self._context.expires_at

    def ensure_fresh(self) -> TokenContext:
        """Refresh the snapshot if it is within the expiry window and return the current one."""
        if self.is_expired():
            return self.refresh()
        return self._context

    def refresh(self) -> TokenContext:
        """
        Retrieve and install a new snapshot under the lock.

        Raises:
            TokenRetrievalError: If the retriever fails. The current snapshot is kept.
        """
        with self._lock:
            context = self._retrieve()
            self._context = context
        logger.debug(f"Access token refreshed (expires_in={context.expires_in}s)")
        return context

    def _retrieve(self) -> TokenContext:
        try:
            return self._retriever.get_token_context()
        except TokenRetrievalError as e:
            logger.error(f"Token retrieval failed: {e}")
            raise
        except Exception as e:
            logger.error(f"Token retrieval failed: {e}")
            raise TokenRetrievalError(f"Failed to retrieve access token: {e}", cause=e) from e

    def update(self, context: TokenContext) -> None:
        """Replace the snapshot, e.g. with one obtained out of band."""
        with self._lock:
            self._context = context


# =============================================================================
# Helper Functions
# =============================================================================


def create_token_retriever(config: AuthConfig | None = None) -> TokenRetriever:
    """
    Create a TokenRetriever from configuration.

    A static token takes precedence over client credentials.

    Args:
        config: Optional AuthConfig. If None, uses KCLOUD.config.auth.

    Raises:
        ConfigValidationError: If neither a token nor client credentials are configured.

    Example:
        >>> from kcloud import KCLOUD
        >>> KCLOUD.configure(auth={"client_id": "x", "client_secret": "y"})
        >>> retriever = create_token_retriever()
    """
    from kcloud._config import ConfigValidationError

    if config is None:
        from kcloud._config import KCLOUD

        config = KCLOUD.config.auth

    if config.token:
        return StaticTokenRetriever(config.token)

    if not config.has_credentials():
        raise ConfigValidationError(
            "token", config.token,
            "Either a token or client credentials must be configured "
            "(KCLOUD_AUTH_TOKEN, or KCLOUD_AUTH_CLIENT_ID and KCLOUD_AUTH_CLIENT_SECRET).",
            section="auth",
        )

    return ClientCredentialsTokenRetriever(
        client_id=config.client_id,  # type: ignore[arg-type]
        client_secret=config.client_secret,  # type: ignore[arg-type]
        token_url=config.token_url,
    )
