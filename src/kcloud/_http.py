"""
Request pipeline for the kcloud SDK.

BaseClient is the long-lived client shared by generated endpoint callers.
It authenticates requests, builds tenant/region-aware URLs, executes HTTP
calls through a `requests.Session` and runs the response-handler chain.

Example:
    >>> from kcloud import BaseClient, ClientConfig, RequestParams
    >>> client = BaseClient(token="my-token", config=ClientConfig(tenant="acme"))
    >>> url = client.build_url(None, "", "catalog", "v2", "datasets")
    >>> response = client.get(RequestParams(url=url))
    >>> response.json()

With retries of rate-limited calls:
    >>> client = BaseClient(token="my-token", retry_requests=True)
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, BinaryIO, Protocol, runtime_checkable

import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict
from ulid import ULID
from urllib3 import encode_multipart_formdata

from kcloud._auth import StaticTokenRetriever, TokenContext, TokenManager, TokenRetriever, create_token_retriever
from kcloud._config import ClientConfig, ConfigValidationError
from kcloud._handlers import ResponseHandler, ResponseOrErrorHandler
from kcloud._urls import (
    QueryValues,
    build_base_url,
    build_host,
    build_url_from_path_params,
    build_url_with_tenant,
)

if TYPE_CHECKING:
    from kcloud._retry import RetryStrategyConfig

logger = logging.getLogger(__name__)

AUTHORIZATION_TYPE = "Bearer"
USER_AGENT = "client-sdk-python"
CLIENT_HEADER = "KCloud-Client"
DEFAULT_CONTENT_TYPE = "application/json"
MULTIPART_FORM_DATA = "multipart/form-data"

StatusTranslator = Callable[[requests.Response], requests.Response]


# =============================================================================
# Exceptions
# =============================================================================


class FormDataError(ValueError):
    """Raised when a request declared as multipart/form-data has a body that is not FormData."""


class HttpStatusError(requests.HTTPError):
    """
    Raised for responses with HTTP status >= 400.

    Carries the fields of the service error payload when the body is JSON.

    Attributes:
        status_code: The HTTP status code.
        status: The HTTP status line reason, e.g. "Too Many Requests".
        message: Error message from the payload, or the raw body.
        code: Service-specific error code, if any.
        more_info: Link to more information, if any.
        details: Additional error details, if any.
    """

    def __init__(
        self,
        status_code: int,
        status: str,
        message: str = "",
        code: str | None = None,
        more_info: str | None = None,
        details: Any = None,
        response: requests.Response | None = None,
    ):
        self.status_code = status_code
        self.status = status
        self.message = message
        self.code = code
        self.more_info = more_info
        self.details = details
        detail = f": {message}" if message else ""
        super().__init__(f"HTTP {status_code} {status}{detail}", response=response)


def parse_http_status_code(response: requests.Response) -> requests.Response:
    """
    Default status translator.

    Returns responses with status < 400 untouched.

    Raises:
        HttpStatusError: For responses with status >= 400.
    """
    if response.status_code < 400:
        return response

    message = response.text or ""
    code: str | None = None
    more_info: str | None = None
    details: Any = None
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        message = str(payload.get("message", message))
        code = payload.get("code")
        more_info = payload.get("moreInfo")
        details = payload.get("details")

    raise HttpStatusError(
        status_code=response.status_code,
        status=response.reason or "",
        message=message,
        code=str(code) if code is not None else None,
        more_info=more_info,
        details=details,
        response=response,
    )


# =============================================================================
# Request Types
# =============================================================================


@runtime_checkable
class MethodMarshaler(Protocol):
    """Body that knows how to serialize itself for a given HTTP method."""

    def marshal_json_by_method(self, method: str) -> bytes: ...


@dataclass(frozen=True)
class FormData:
    """
    Payload of a multipart/form-data request: a single file part.

    Attributes:
        key: Form field name of the file part.
        filename: File name sent with the part.
        stream: Binary stream with the file content.
    """

    key: str
    filename: str
    stream: BinaryIO


@dataclass
class RequestParams:
    """
    Parameters of a call, as supplied by generated endpoint callers.

    Attributes:
        url: The full request URL (see BaseClient.build_url()).
        method: HTTP method. Set by BaseClient.get()/post()/... helpers.
        body: Request body: bytes, FormData, a MethodMarshaler or any
            JSON-serializable value.
        headers: Headers overriding the defaults, key by key.
    """

    url: str
    method: str = "GET"
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)


class Request:
    """
    An outgoing request plus its attempt and error counters.

    The same Request is threaded through every retry of a logical call so
    its counters accumulate across attempts.

    Attributes:
        prepared: The prepared request sent by the transport.
        num_attempts: Total attempts made so far.
        num_errors_by_type: Occurrences of each error kind (HTTP status code as text).
        id: ULID identifying the logical call in log messages.
    """

    def __init__(self, prepared: requests.PreparedRequest):
        self.prepared = prepared
        self.num_attempts = 0
        self.num_errors_by_type: dict[str, int] = {}
        self.id = str(ULID())

    @property
    def method(self) -> str:
        return self.prepared.method or ""

    @property
    def url(self) -> str:
        return self.prepared.url or ""

    @property
    def headers(self) -> CaseInsensitiveDict[str]:
        return self.prepared.headers

    @property
    def body(self) -> bytes | str | None:
        return self.prepared.body

    @property
    def log_prefix(self) -> str:
        return f"Request({self.id})"

    def get_num_errors_by_response_code(self, status_code: int) -> int:
        """Return the number of attempts that ended with the given status code (>= 400)."""
        return self.num_errors_by_type.get(str(status_code), 0)

    def increment_errors_by_type(self, error_type: str) -> None:
        self.num_errors_by_type[error_type] = self.num_errors_by_type.get(error_type, 0) + 1

    def update_token(self, access_token: str) -> None:
        """Replace the access token in the `Authorization: Bearer` header."""
        self.prepared.headers["Authorization"] = f"{AUTHORIZATION_TYPE} {access_token}"

    def __repr__(self) -> str:
        return f"Request(id={self.id!r}, method={self.method!r}, url={self.url!r}, num_attempts={self.num_attempts})"


# =============================================================================
# Client
# =============================================================================


class BaseClient:
    """
    Client for communicating with KhulnaSoft Cloud services.

    Shared read-mostly by many threads: the only mutable shared state is the
    token snapshot held by the TokenManager.

    Args:
        config: Client configuration. If None, uses KCLOUD.config.client.
        token: Static access token. Mutually exclusive with token_retriever.
        token_retriever: Source of access tokens, invoked on construction and
            whenever the token is about to expire. Mutually exclusive with token.
            When neither is given, a retriever is built from KCLOUD.config.auth.
        response_handlers: Handlers called, in order, after each completed call.
        retry_requests: Prepend a retry handler to response_handlers.
            If None, uses config.retry_requests.
        retry_config: Retry strategy used when retry_requests is on.
            Defaults to the fixed rate-limit strategy.
        transport_adapter: Optional requests adapter mounted for http:// and https://.
        status_translator: Converts error responses into typed errors after
            the handler chain has finished. Defaults to parse_http_status_code().

    Raises:
        ConfigValidationError: On conflicting or missing options.
        TokenRetrievalError: If the initial token cannot be retrieved.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        token: str | None = None,
        token_retriever: TokenRetriever | None = None,
        response_handlers: list[ResponseHandler] | None = None,
        retry_requests: bool | None = None,
        retry_config: RetryStrategyConfig | None = None,
        transport_adapter: BaseAdapter | None = None,
        status_translator: StatusTranslator | None = None,
    ):
        if config is None:
            from kcloud._config import KCLOUD

            config = KCLOUD.config.client
        config.validate()

        if token and token_retriever is not None:
            raise ConfigValidationError(
                "token", token,
                "Either token or token_retriever must be set, not both.", section="client"
            )
        if token:
            token_retriever = StaticTokenRetriever(token)
        elif token_retriever is None:
            token_retriever = create_token_retriever()

        handlers = list(response_handlers or [])
        if config.retry_requests if retry_requests is None else retry_requests:
            from kcloud._retry import RetryStrategyConfig

            retry_handler = (retry_config or RetryStrategyConfig()).create_handler()
            handlers.insert(0, retry_handler)

        self._default_tenant = config.tenant
        self._root_domain = config.root_domain
        self._override_host = config.override_host
        self._scheme = config.scheme
        self._timeout = config.timeout
        self._client_version = config.client_version
        self._tenant_scoped = config.tenant_scoped
        self._region = config.region
        self._response_handlers = handlers
        self._chain: list[tuple[ResponseHandler, ResponseOrErrorHandler | None]] = [
            (h, h if isinstance(h, ResponseOrErrorHandler) else None) for h in handlers
        ]
        self._status_translator = status_translator or parse_http_status_code
        self._token_manager = TokenManager(token_retriever, expire_window=config.token_expire_window)

        self._session = requests.Session()
        if transport_adapter is not None:
            self._session.mount("http://", transport_adapter)
            self._session.mount("https://", transport_adapter)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def default_tenant(self) -> str:
        """The tenant used to form most request URLs."""
        return self._default_tenant

    @default_tenant.setter
    def default_tenant(self, tenant: str) -> None:
        self._default_tenant = tenant

    def set_override_host(self, host: str | None) -> None:
        """Force all requests to `<scheme>://<host>/...`, ignoring root domain and service cluster."""
        self._override_host = host

    @property
    def response_handlers(self) -> list[ResponseHandler]:
        return list(self._response_handlers)

    @property
    def token_context(self) -> TokenContext:
        return self._token_manager.context

    def update_token_context(self, context: TokenContext) -> None:
        """Install a token snapshot obtained out of band."""
        self._token_manager.update(context)

    def refresh_token(self) -> TokenContext:
        """Retrieve a new token snapshot now, regardless of its expiry."""
        return self._token_manager.refresh()

    # -------------------------------------------------------------------------
    # URL building
    # -------------------------------------------------------------------------

    def build_host(self, service_cluster: str, append_to_host: str = "") -> str:
        return build_host(
            service_cluster, append_to_host,
            root_domain=self._root_domain, override_host=self._override_host,
        )

    def build_url(self, query_values: QueryValues | None, service_cluster: str, *path_parts: str) -> str:
        """Build a URL for the default tenant (see build_url_with_tenant())."""
        return self.build_url_with_tenant(
            self._default_tenant, self._tenant_scoped, self._region,
            query_values, service_cluster, *path_parts,
        )

    def build_url_with_tenant(
        self,
        tenant: str,
        tenant_scoped: bool,
        region: str,
        query_values: QueryValues | None,
        service_cluster: str,
        *path_parts: str,
    ) -> str:
        return build_url_with_tenant(
            tenant, tenant_scoped, region, query_values, service_cluster, *path_parts,
            scheme=self._scheme, root_domain=self._root_domain, override_host=self._override_host,
        )

    def build_url_from_path_params(
        self,
        query_values: QueryValues | None,
        service_cluster: str,
        template: str,
        path_params: Any,
    ) -> str:
        return build_url_from_path_params(
            query_values, service_cluster, template, path_params,
            default_tenant=self._default_tenant,
            tenant_scoped=self._tenant_scoped,
            region=self._region,
            scheme=self._scheme,
            root_domain=self._root_domain,
            override_host=self._override_host,
        )

    def get_url(self, service_cluster: str) -> str:
        """Return `<scheme>://<host>` for a service cluster."""
        return build_base_url(
            service_cluster,
            default_tenant=self._default_tenant,
            tenant_scoped=self._tenant_scoped,
            scheme=self._scheme,
            root_domain=self._root_domain,
            override_host=self._override_host,
        )

    # -------------------------------------------------------------------------
    # Request construction
    # -------------------------------------------------------------------------

    def new_request(
        self,
        method: str,
        url: str,
        body: bytes | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Request:
        """
        Build a Request with authorization, client-identification and content-type headers.

        Caller-supplied headers override the defaults key by key.
        """
        request_headers: CaseInsensitiveDict[str] = CaseInsensitiveDict()
        context = self._token_manager.context
        if context is not None and context.access_token:
            request_headers["Authorization"] = f"{AUTHORIZATION_TYPE} {context.access_token}"

        request_headers[CLIENT_HEADER] = self._client_header()
        request_headers["Content-Type"] = DEFAULT_CONTENT_TYPE
        request_headers.update(headers or {})

        prepared = requests.Request(
            method=method.upper(),
            url=url,
            headers=dict(request_headers),
            data=body,
        ).prepare()
        return Request(prepared)

    def _client_header(self) -> str:
        from kcloud import __version__

        value = f"{USER_AGENT}/{__version__}"
        if self._client_version:
            value = f"{value},{self._client_version}"
        return value

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def do(self, request: Request) -> requests.Response:
        """
        Send the request and run the response-handler chain.

        Raises:
            requests.RequestException: On transport errors no handler resolved.
            Exception: Whatever a response handler raises.
        """
        try:
            response = self._send(request)
        except requests.RequestException as e:
            if not self._response_handlers:
                raise
            return self._run_chain(request, None, e)

        if not self._response_handlers:
            return response

        self._record_status(request, response)
        return self._run_chain(request, response, None)

    def resubmit(self, request: Request) -> requests.Response:
        """
        Make one more attempt of a request already sent through do().

        Used by response handlers to retry; the handler chain is not re-entered,
        the caller's own position in the chain carries on with the result.

        Raises:
            requests.RequestException: On transport errors.
        """
        response = self._send(request)
        self._record_status(request, response)
        return response

    def _send(self, request: Request) -> requests.Response:
        request.num_attempts += 1
        logger.debug(f"{request.log_prefix} | {request.method} {request.url} (attempt {request.num_attempts})")
        try:
            return self._session.send(request.prepared, timeout=self._timeout)
        except requests.RequestException as e:
            logger.warning(f"{request.log_prefix} | Attempt {request.num_attempts} failed: {type(e).__name__}: {e}")
            raise

    @staticmethod
    def _record_status(request: Request, response: requests.Response) -> None:
        if response.status_code >= 400:
            request.increment_errors_by_type(str(response.status_code))

    def _run_chain(
        self,
        request: Request,
        response: requests.Response | None,
        error: requests.RequestException | None,
    ) -> requests.Response:
        """
        Walk the handlers once, in order, carrying a (response, error) pair.

        While an error is pending only error-capable handlers are offered it;
        once one returns a response, the handlers after it see that response.
        A transport error escaping a response handler (e.g. from a resubmit)
        becomes the pending error for the handlers that follow.
        """
        for handler, error_handler in self._chain:
            if error is not None:
                if error_handler is None:
                    continue
                try:
                    response, error = error_handler.handle_request_error(self, request, error), None
                except requests.RequestException as e:
                    error = e
                continue

            assert response is not None
            try:
                response = handler.handle_response(self, request, response)
            except requests.HTTPError:
                raise
            except requests.RequestException as e:
                response, error = None, e

        if error is not None:
            raise error
        assert response is not None
        return response

    # -------------------------------------------------------------------------
    # High-level calls
    # -------------------------------------------------------------------------

    def get(self, params: RequestParams) -> requests.Response:
        params.method = "GET"
        return self.do_request(params)

    def post(self, params: RequestParams) -> requests.Response:
        params.method = "POST"
        return self.do_request(params)

    def put(self, params: RequestParams) -> requests.Response:
        params.method = "PUT"
        return self.do_request(params)

    def delete(self, params: RequestParams) -> requests.Response:
        """
        Execute an HTTP DELETE call.

        Some server implementations ignore bodies in DELETE requests.
        """
        params.method = "DELETE"
        return self.do_request(params)

    def patch(self, params: RequestParams) -> requests.Response:
        params.method = "PATCH"
        return self.do_request(params)

    def do_request(self, params: RequestParams) -> requests.Response:
        """
        Create and execute a request, then translate the response status.

        Raises:
            TokenRetrievalError: If the token is stale and cannot be refreshed.
            FormDataError: If a multipart request body is not FormData.
            requests.RequestException: On unresolved transport errors.
            HttpStatusError: For error responses (with the default translator).
        """
        self._token_manager.ensure_fresh()

        if _is_multipart(params.headers):
            request = self._make_form_request(params)
        else:
            request = self.new_request(params.method, params.url, self._encode_body(params), params.headers)

        response = self.do(request)
        return self._status_translator(response)

    @staticmethod
    def _encode_body(params: RequestParams) -> bytes | None:
        body = params.body
        if body is None:
            return None
        if isinstance(body, (bytes, bytearray)):
            return bytes(body)
        if isinstance(body, MethodMarshaler):
            return body.marshal_json_by_method(params.method)
        return json.dumps(body).encode("utf-8")

    def _make_form_request(self, params: RequestParams) -> Request:
        form = params.body
        if not isinstance(form, FormData):
            raise FormDataError("bad request of form data")

        content = form.stream.read()
        body, content_type = encode_multipart_formdata({form.key: (form.filename, content)})

        headers = {k: v for k, v in params.headers.items() if k.lower() != "content-type"}
        headers["Content-Type"] = content_type
        return self.new_request(params.method, params.url, body, headers)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> BaseClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _is_multipart(headers: Mapping[str, str]) -> bool:
    content_type = CaseInsensitiveDict(headers).get("Content-Type") or ""
    return content_type.lower().startswith(MULTIPART_FORM_DATA)
