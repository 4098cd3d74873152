"""
Response handlers for the kcloud request pipeline.

Handlers are tried in registration order once per completed call and can
resubmit the request through the client. A handler has up to two
capabilities:

- handle_response(): mandatory, invoked with a response (any status code).
- handle_request_error(): optional, invoked with a transport-level error.
  Only handlers extending ResponseOrErrorHandler provide it.

Available handlers:
    - PassThroughResponseHandler: Returns every response unchanged.
    - AuthnResponseHandler: Refreshes the token and resubmits once on HTTP 401.
    - DefaultRetryResponseHandler, ConfigurableRetryResponseHandler: see kcloud._retry.

Example:
    >>> class LoggingResponseHandler(ResponseHandler):
    ...     def handle_response(self, client, request, response):
    ...         logger.info(f"{request.method} {request.url} -> {response.status_code}")
    ...         return response
    >>>
    >>> client = BaseClient(token="...", response_handlers=[LoggingResponseHandler()])
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, override

import requests

if TYPE_CHECKING:
    from kcloud._http import BaseClient, Request

logger = logging.getLogger(__name__)


class ResponseHandler(ABC):
    """
    Handler invoked with the response of a completed attempt.

    Returning a response hands it to the next handler in the chain (a
    handler may return a different response, e.g. after a retry). Raising
    short-circuits the chain and propagates the exception to the caller,
    except transport errors (e.g. a failed resubmit), which are offered to
    the error-capable handlers registered later.
    """

    @abstractmethod
    def handle_response(
        self,
        client: BaseClient,
        request: Request,
        response: requests.Response,
    ) -> requests.Response:
        pass


class ResponseOrErrorHandler(ResponseHandler):
    """
    Handler that can also act on transport-level errors.

    handle_request_error() returns a response to clear the error; the
    handlers registered after it then see that response. Raising hands the
    (possibly different) error to the next error-capable handler.
    """

    @abstractmethod
    def handle_request_error(
        self,
        client: BaseClient,
        request: Request,
        error: requests.RequestException,
    ) -> requests.Response:
        pass


class PassThroughResponseHandler(ResponseHandler):
    """Handler that returns every response unchanged."""

    @override
    def handle_response(
        self,
        client: BaseClient,
        request: Request,
        response: requests.Response,
    ) -> requests.Response:
        return response


class AuthnResponseHandler(ResponseHandler):
    """
    Handler that recovers from an expired or revoked token.

    On HTTP 401 it retrieves a new token through the client, rewrites the
    request's `Authorization` header and resubmits the request once.
    Any other response is returned unchanged.
    """

    UNAUTHORIZED = 401

    @override
    def handle_response(
        self,
        client: BaseClient,
        request: Request,
        response: requests.Response,
    ) -> requests.Response:
        if response.status_code != self.UNAUTHORIZED:
            return response

        logger.warning(f"{request.log_prefix} | Received HTTP 401, retrieving a new access token...")
        context = client.refresh_token()
        request.update_token(context.access_token)
        return client.resubmit(request)
