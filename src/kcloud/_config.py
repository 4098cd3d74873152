"""
Global configuration for the kcloud SDK.

Settings resolve from four layers, highest precedence first:

1. A ClientConfig passed straight to BaseClient.
2. Values given to KCLOUD.configure().
3. KCLOUD_* environment variables (unless allow_env_override=False).
4. Dataclass defaults.

Nothing has to be configured up front: KCLOUD is loaded from defaults and
environment variables at import time.

Example:
    >>> from kcloud import KCLOUD
    >>> KCLOUD.config.client.timeout
    5.0
    >>> KCLOUD.configure(
    ...     client={"tenant": "acme", "tenant_scoped": True, "region": "us1"},
    ...     auth={"client_id": "x", "client_secret": "y"},
    ... )
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field, fields, replace
from typing import Any, Self

DEFAULT_ROOT_DOMAIN = "scp.khulnasoft.com"
DEFAULT_TOKEN_URL = "https://auth.scp.khulnasoft.com/token"

_TRUTHY = frozenset({"true", "1", "yes"})


# =============================================================================
# Exceptions
# =============================================================================


class ConfigEnvVarError(ValueError):
    """
    Raised when a KCLOUD_* environment variable cannot be parsed.

    Attributes:
        env_var: Name of the offending variable.
        value: Its raw value.
        expected_type: Name of the type it should convert to.
    """

    def __init__(self, env_var: str, value: str, expected_type: str, cause: Exception | None = None):
        super().__init__(f"{env_var}={value!r} is not a valid {expected_type}")
        self.env_var = env_var
        self.value = value
        self.expected_type = expected_type
        self.__cause__ = cause


class ConfigValidationError(ValueError):
    """
    Raised when a configuration field holds an unusable value.

    Attributes:
        field: Name of the field.
        value: The rejected value.
        section: Config section the field belongs to ("client", "auth"), if any.
    """

    def __init__(self, field: str, value: Any, message: str, section: str | None = None):
        where = f"{section}.{field}" if section else field
        super().__init__(f"Invalid {where}={value!r}: {message}")
        self.field = field
        self.value = value
        self.section = section


# =============================================================================
# Environment Variables
# =============================================================================


def _to_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


_CONVERTERS: dict[str, Callable[[str], Any]] = {
    "int": int,
    "float": float,
    "bool": _to_bool,
    "str": str,
}


class EnvVars:
    """
    Typed access to environment variables.

    Example:
        >>> EnvVars.get("KCLOUD_TIMEOUT", type_hint=float)
        5.0
        >>> EnvVars.get("KCLOUD_TENANT") is None  # unset or empty
        True
    """

    @staticmethod
    def get(var_name: str, type_hint: Any = str, converter: Callable[[str], Any] | None = None) -> Any:
        """
        Return the converted value of `var_name`, or None when it is unset or empty.

        `type_hint` may be a type or its name (annotations are strings under
        PEP 563); an explicit `converter` wins over it.

        Raises:
            ConfigEnvVarError: If the raw value does not convert.
        """
        raw = os.environ.get(var_name)
        if not raw:
            return None

        type_name = getattr(type_hint, "__name__", str(type_hint))
        convert = converter or _CONVERTERS.get(type_name, str)
        try:
            return convert(raw)
        except (TypeError, ValueError) as e:
            raise ConfigEnvVarError(var_name, raw, type_name, cause=e) from e


# =============================================================================
# Base Class
# =============================================================================


@dataclass(frozen=True)
class OverridableConfig:
    """
    Mixin for frozen config sections.

    Fields opt into environment variables through their metadata:
    `metadata={"env": "KCLOUD_X"}`, plus `"type"` when the annotation is not a
    plain int/float/bool/str, or `"converter"` for custom parsing.
    """

    def with_overrides(self, overrides: dict[str, Any]) -> Self:
        """
        Copy this section with some fields replaced. None values are skipped.

        Raises:
            ValueError: On unknown field names.
        """
        known = {f.name for f in fields(self)}
        unknown = set(overrides or {}) - known
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}. Valid fields are: {sorted(known)}")

        changes = {name: value for name, value in (overrides or {}).items() if value is not None}
        return replace(self, **changes) if changes else self

    def with_env_vars(self) -> Self:
        """
        Copy this section with the values of its declared environment variables.

        Raises:
            ConfigEnvVarError: If a variable holds an invalid value.
        """
        from_env = {}
        for f in fields(self):
            if "env" not in f.metadata:
                continue
            value = EnvVars.get(
                f.metadata["env"],
                type_hint=f.metadata.get("type", f.type),
                converter=f.metadata.get("converter"),
            )
            if value is not None:
                from_env[f.name] = value
        return self.with_overrides(from_env)


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass(frozen=True)
class SdkConfig:
    """
    SDK metadata (read-only, not configurable).

    Attributes:
        version: The installed SDK version.
    """

    version: str

    @classmethod
    def detect(cls) -> SdkConfig:
        from kcloud import __version__

        return cls(version=__version__)


@dataclass(frozen=True)
class ClientConfig(OverridableConfig):
    """
    Configuration for BaseClient instances.

    Attributes:
        tenant: Default tenant used to form request paths (and hosts when tenant-scoped).
            Env var: KCLOUD_TENANT

        host: Root domain (or domain:port) used to synthesize hosts. Requests
            go to `<scheme>://api.<host>/...` for most services.
            Defaults to `scp.khulnasoft.com` when unset.
            Env var: KCLOUD_HOST

        override_host: If set, every request goes to `<scheme>://<override_host>/...`
            regardless of root domain and service cluster. Cannot be combined with host.
            Env var: KCLOUD_OVERRIDE_HOST

        scheme: URL scheme, "https" or "http".
            Env var: KCLOUD_SCHEME

        timeout: Per-attempt HTTP timeout in seconds.
            Env var: KCLOUD_TIMEOUT

        token_expire_window: Seconds before expiry within which a new token is retrieved.
            Env var: KCLOUD_TOKEN_EXPIRE_WINDOW

        client_version: Optional caller name/version appended to the client-identification header.
            Env var: KCLOUD_CLIENT_VERSION

        tenant_scoped: True if hostnames are scoped to a specific tenant/region.
            Env var: KCLOUD_TENANT_SCOPED

        region: Region the tenant is contained in (used for system-namespace hosts).
            Env var: KCLOUD_REGION

        retry_requests: Prepend a retry handler to the response-handler chain.
            Env var: KCLOUD_RETRY_REQUESTS

    Example:
        >>> from kcloud import KCLOUD
        >>> KCLOUD.config.client.scheme
        'https'
    """

    tenant: str = field(default="", metadata={"env": "KCLOUD_TENANT"})
    host: str | None = field(default=None, metadata={"env": "KCLOUD_HOST", "type": str})
    override_host: str | None = field(default=None, metadata={"env": "KCLOUD_OVERRIDE_HOST", "type": str})
    scheme: str = field(default="https", metadata={"env": "KCLOUD_SCHEME"})
    timeout: float = field(default=5.0, metadata={"env": "KCLOUD_TIMEOUT"})
    token_expire_window: float = field(default=60.0, metadata={"env": "KCLOUD_TOKEN_EXPIRE_WINDOW"})
    client_version: str = field(default="", metadata={"env": "KCLOUD_CLIENT_VERSION"})
    tenant_scoped: bool = field(default=False, metadata={"env": "KCLOUD_TENANT_SCOPED"})
    region: str = field(default="", metadata={"env": "KCLOUD_REGION"})
    retry_requests: bool = field(default=False, metadata={"env": "KCLOUD_RETRY_REQUESTS"})

    @property
    def root_domain(self) -> str:
        """Root domain used to synthesize hosts, falling back to the default domain."""
        return self.host or DEFAULT_ROOT_DOMAIN

    def validate(self) -> Self:
        """Validate client configuration fields."""
        if self.host and self.override_host:
            raise ConfigValidationError(
                "override_host", self.override_host,
                "Either host or override_host may be set, setting both is invalid.", section="client"
            )
        if self.scheme not in ("http", "https"):
            raise ConfigValidationError(
                "scheme", self.scheme,
                "Must be 'http' or 'https'.", section="client"
            )
        if self.timeout <= 0:
            raise ConfigValidationError(
                "timeout", self.timeout,
                "Must be greater than 0.", section="client"
            )
        if self.token_expire_window < 0:
            raise ConfigValidationError(
                "token_expire_window", self.token_expire_window,
                "Must be >= 0.", section="client"
            )
        return self


@dataclass(frozen=True)
class AuthConfig(OverridableConfig):
    """
    Authentication configuration.

    Either a static token or client credentials are used to build the
    token retriever of a client that was not given one explicitly.

    Attributes:
        token: Static access token.
            Env var: KCLOUD_AUTH_TOKEN

        client_id: OAuth2 client ID for the client-credentials grant.
            Env var: KCLOUD_AUTH_CLIENT_ID

        client_secret: OAuth2 client secret for the client-credentials grant.
            Env var: KCLOUD_AUTH_CLIENT_SECRET

        token_url: OAuth2 token endpoint URL.
            Env var: KCLOUD_AUTH_TOKEN_URL
    """

    token: str | None = field(default=None, metadata={"env": "KCLOUD_AUTH_TOKEN", "type": str})
    client_id: str | None = field(default=None, metadata={"env": "KCLOUD_AUTH_CLIENT_ID", "type": str})
    client_secret: str | None = field(default=None, metadata={"env": "KCLOUD_AUTH_CLIENT_SECRET", "type": str})
    token_url: str = field(default=DEFAULT_TOKEN_URL, metadata={"env": "KCLOUD_AUTH_TOKEN_URL"})

    def has_credentials(self) -> bool:
        """True when both halves of the client-credentials pair are present."""
        return bool(self.client_id) and bool(self.client_secret)

    def validate(self) -> Self:
        if self.token == "":
            raise ConfigValidationError("token", self.token, "An empty token is never valid.", section="auth")
        if self.token_url and not self.token_url.startswith(("http://", "https://")):
            raise ConfigValidationError(
                "token_url", self.token_url, "The token endpoint must be an http(s) URL.", section="auth"
            )
        return self


@dataclass(frozen=True)
class KCloudConfig:
    """
    Global configuration for the kcloud SDK.

    Aggregates all configuration sections: sdk, client and auth.
    Access via the global `KCLOUD.config` property.
    """

    sdk: SdkConfig = field(default_factory=SdkConfig.detect)
    client: ClientConfig = field(default_factory=ClientConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    def with_env_vars(self) -> KCloudConfig:
        """Return a new config with KCLOUD_* environment variables applied on top."""
        return KCloudConfig(
            sdk=self.sdk,
            client=self.client.with_env_vars(),
            auth=self.auth.with_env_vars(),
        )

    def with_section_overrides(
        self,
        *,
        client: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
    ) -> KCloudConfig:
        """Return a new config with overrides applied to nested sections."""
        return KCloudConfig(
            sdk=self.sdk,
            client=self.client.with_overrides(client or {}),
            auth=self.auth.with_overrides(auth or {}),
        )


# =============================================================================
# Global Configuration Singleton
# =============================================================================


class _KCloud:
    """
    Process-wide holder of the active KCloudConfig.

    Clients built without an explicit ClientConfig (and token source) read
    from `KCLOUD.config` at construction time; later changes do not affect
    clients that already exist.
    """

    def __init__(self) -> None:
        self._config: KCloudConfig = KCloudConfig().with_env_vars()

    def configure(
        self,
        *,
        client: dict[str, Any] | None = None,
        auth: dict[str, Any] | None = None,
        allow_env_override: bool = True,
    ) -> KCloudConfig:
        """
        Replace the active configuration.

        Args:
            client: ClientConfig fields to set (tenant, host, region, timeout, ...).
            auth: AuthConfig fields to set (token, client_id, client_secret, token_url).
            allow_env_override: When True, KCLOUD_* variables fill in the
                fields not given here; when False they are not read at all.

        Raises:
            ValueError: On unknown field names.
            ConfigValidationError: If the resulting configuration is invalid.
        """
        base = KCloudConfig()
        if allow_env_override:
            base = base.with_env_vars()

        self._config = base.with_section_overrides(client=client, auth=auth)
        return self.validate()

    @property
    def config(self) -> KCloudConfig:
        return self._config

    def reset(self) -> KCloudConfig:
        """Go back to defaults plus environment variables (mostly for tests)."""
        self._config = KCloudConfig().with_env_vars()
        return self.validate()

    def validate(self) -> KCloudConfig:
        """Validate every section, raising ConfigValidationError on the first bad field."""
        self._config.client.validate()
        self._config.auth.validate()
        return self._config

    def __repr__(self) -> str:
        return f"KCLOUD(config={self._config!r})"


KCLOUD: _KCloud = _KCloud()
KCLOUD.validate()
