"""
KhulnaSoft Cloud SDK for Python: transport core.

Authenticates requests, builds tenant/region-aware URLs, executes HTTP
calls and runs a pluggable retry/response-handling pipeline. Generated
per-service endpoint callers build on top of BaseClient.

Quick Start:
    >>> from kcloud import BaseClient, ClientConfig, RequestParams
    >>> client = BaseClient(
    ...     ClientConfig(tenant="acme", tenant_scoped=True, region="us1"),
    ...     token="my-token",
    ...     retry_requests=True,
    ... )
    >>> url = client.build_url(None, "", "catalog", "v2", "datasets")
    >>> response = client.get(RequestParams(url=url))
    >>> print(response.json())

Global Configuration:
    >>> from kcloud import KCLOUD
    >>> KCLOUD.configure(
    ...     client={"tenant": "acme", "timeout": 10},
    ...     auth={"client_id": "x", "client_secret": "y"},
    ... )
    >>> client = BaseClient()  # uses KCLOUD.config

Main Classes:
    - BaseClient: Shared client; builds URLs and executes requests.
    - Request: Outgoing request with cumulative attempt/error counters.
    - RequestParams: Parameters of a call (method, url, body, headers).
    - FormData: Single-file multipart/form-data payload.
    - MethodMarshaler: Protocol for bodies that serialize themselves per HTTP method.
    - HttpStatusError: Typed error for HTTP status >= 400.

Authentication:
    - TokenContext: Immutable access-token snapshot.
    - TokenRetriever: Abstract base class for token retrievers.
    - StaticTokenRetriever, ClientCredentialsTokenRetriever, RefreshTokenRetriever.
    - TokenManager: Keeps a token snapshot fresh under a lock.
    - TokenRetrievalError: Raised when a token cannot be retrieved.

Response Handlers and Retry:
    - ResponseHandler, ResponseOrErrorHandler: Handler interfaces.
    - PassThroughResponseHandler, AuthnResponseHandler.
    - DefaultRetryResponseHandler, ConfigurableRetryResponseHandler.
    - DefaultRetryConfig, ConfigurableRetryConfig, RetryStrategyConfig.

Configuration:
    - KCLOUD: Global SDK singleton for configuration.
    - KCloudConfig, ClientConfig, AuthConfig, SdkConfig.
    - ConfigEnvVarError, ConfigValidationError.
"""

from importlib.metadata import version as _get_version

__version__ = _get_version("kcloud")

from kcloud._auth import (
    ClientCredentialsTokenRetriever,
    RefreshTokenRetriever,
    StaticTokenRetriever,
    TokenContext,
    TokenManager,
    TokenRetrievalError,
    TokenRetriever,
    create_token_retriever,
)
from kcloud._config import (
    KCLOUD,
    AuthConfig,
    ClientConfig,
    ConfigEnvVarError,
    ConfigValidationError,
    KCloudConfig,
    SdkConfig,
)
from kcloud._handlers import (
    AuthnResponseHandler,
    PassThroughResponseHandler,
    ResponseHandler,
    ResponseOrErrorHandler,
)
from kcloud._http import (
    BaseClient,
    FormData,
    FormDataError,
    HttpStatusError,
    MethodMarshaler,
    Request,
    RequestParams,
    parse_http_status_code,
)
from kcloud._retry import (
    ConfigurableRetryConfig,
    ConfigurableRetryResponseHandler,
    DefaultRetryConfig,
    DefaultRetryResponseHandler,
    RetryStrategyConfig,
    exponential_backoff,
    retry_on_status_codes,
)
from kcloud._urls import (
    UrlBuildError,
    build_host,
    build_url_from_path_params,
    build_url_with_tenant,
)

__all__ = [
    "__version__",
    # Configuration
    "KCLOUD",
    "KCloudConfig",
    "SdkConfig",
    "ClientConfig",
    "AuthConfig",
    "ConfigEnvVarError",
    "ConfigValidationError",
    # Authentication
    "TokenContext",
    "TokenRetriever",
    "StaticTokenRetriever",
    "ClientCredentialsTokenRetriever",
    "RefreshTokenRetriever",
    "TokenManager",
    "TokenRetrievalError",
    "create_token_retriever",
    # URL building
    "UrlBuildError",
    "build_host",
    "build_url_with_tenant",
    "build_url_from_path_params",
    # Request pipeline
    "BaseClient",
    "Request",
    "RequestParams",
    "FormData",
    "FormDataError",
    "MethodMarshaler",
    "HttpStatusError",
    "parse_http_status_code",
    # Response handlers
    "ResponseHandler",
    "ResponseOrErrorHandler",
    "PassThroughResponseHandler",
    "AuthnResponseHandler",
    # Retry
    "DefaultRetryConfig",
    "ConfigurableRetryConfig",
    "RetryStrategyConfig",
    "DefaultRetryResponseHandler",
    "ConfigurableRetryResponseHandler",
    "exponential_backoff",
    "retry_on_status_codes",
]
