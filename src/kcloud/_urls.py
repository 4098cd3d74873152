"""
Host and URL construction for tenant/region-aware endpoints.

All functions in this module are pure: identical inputs always yield
identical outputs, so they are safe to call concurrently.

Two URL builders are provided, and they detect the "system" namespace
differently:

- build_url_with_tenant(): the joined path *contains* "system" anywhere.
- build_url_from_path_params(): the rendered path *starts with* "/system/".

Example:
    >>> build_host("catalog", "", root_domain="example.com")
    'catalog.example.com'
    >>> build_url_with_tenant(
    ...     "acme", True, "us1", None, "", "catalog", "v2", "datasets",
    ...     scheme="https", root_domain="example.com",
    ... )
    'https://acme.api.example.com/acme/catalog/v2/datasets'
"""

from __future__ import annotations

import dataclasses
import posixpath
import string
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlencode, urlunsplit

QueryValues = Mapping[str, str | Sequence[str]]

SYSTEM_NAMESPACE = "system"
SYSTEM_PATH_PREFIX = "/system/"


class UrlBuildError(ValueError):
    """Raised when a request URL cannot be built from the given inputs."""


def build_host(
    service_cluster: str,
    append_to_host: str,
    *,
    root_domain: str,
    override_host: str | None = None,
) -> str:
    """
    Return the request host.

    The override host always wins. Otherwise the host is
    `[{append_to_host}.]{service_cluster}.{root_domain}`, with `api` as the
    service cluster when none is given.
    """
    if override_host:
        return override_host

    prefix = f"{append_to_host}." if append_to_host else ""
    if service_cluster:
        return f"{prefix}{service_cluster}.{root_domain}"
    return f"{prefix}api.{root_domain}"


def build_url_with_tenant(
    tenant: str,
    tenant_scoped: bool,
    region: str,
    query_values: QueryValues | None,
    service_cluster: str,
    *path_parts: str,
    scheme: str,
    root_domain: str,
    override_host: str | None = None,
) -> str:
    """
    Build a URL whose path starts with the tenant, followed by the path parts.

    Host prefix, when tenant-scoped:
        - region, if a region is set and the joined path contains "system";
        - tenant, if the joined path does not contain "system";
        - none otherwise.

    Raises:
        UrlBuildError: If tenant is empty.
    """
    if not tenant:
        raise UrlBuildError("a non-empty tenant must be specified")

    path = _join_path(tenant, *path_parts)

    append_to_host = ""
    if tenant_scoped and region and SYSTEM_NAMESPACE in path:
        append_to_host = region
    elif tenant_scoped and SYSTEM_NAMESPACE not in path:
        append_to_host = tenant

    host = build_host(
        service_cluster, append_to_host,
        root_domain=root_domain, override_host=override_host,
    )
    return _unsplit(scheme, host, path, query_values)


def build_url_from_path_params(
    query_values: QueryValues | None,
    service_cluster: str,
    template: str,
    path_params: Any,
    *,
    default_tenant: str,
    tenant_scoped: bool,
    region: str,
    scheme: str,
    root_domain: str,
    override_host: str | None = None,
) -> str:
    """
    Build a URL from a path template rendered against path parameters.

    The template uses `{name}` placeholders, resolved from a mapping, a
    dataclass, or the attributes of any other object. Paths outside the
    system namespace get the default tenant prepended.

    Host prefix, when tenant-scoped:
        - `region-{region}` for paths starting with "/system/";
        - the default tenant for every other path.

    Raises:
        UrlBuildError: If the template cannot be rendered, or if a
            tenant-scoped system-namespace path is requested without a region.
    """
    path = render_path_template(template, path_params)
    if not path.startswith(SYSTEM_PATH_PREFIX):
        path = f"/{default_tenant}{path}"
    # checked on the final path: a tenant named "system" lands in the namespace
    is_system = path.startswith(SYSTEM_PATH_PREFIX)

    if tenant_scoped and not region and is_system:
        raise UrlBuildError("region cannot be empty")

    append_to_host = ""
    if tenant_scoped and region and is_system:
        append_to_host = f"region-{region}"
    elif tenant_scoped and not is_system:
        append_to_host = default_tenant

    host = build_host(
        service_cluster, append_to_host,
        root_domain=root_domain, override_host=override_host,
    )
    return _unsplit(scheme, host, path, query_values)


def build_base_url(
    service_cluster: str,
    *,
    default_tenant: str,
    tenant_scoped: bool,
    scheme: str,
    root_domain: str,
    override_host: str | None = None,
) -> str:
    """Return `scheme://host` for a service cluster, tenant-prefixed when tenant-scoped."""
    append_to_host = default_tenant if tenant_scoped else ""
    host = build_host(
        service_cluster, append_to_host,
        root_domain=root_domain, override_host=override_host,
    )
    return urlunsplit((scheme, host, "", "", ""))


def render_path_template(template: str, path_params: Any) -> str:
    """
    Render a `{name}` path template.

    Raises:
        UrlBuildError: If a placeholder is missing from the parameters or the
            template is malformed.
    """
    if path_params is None:
        values: Mapping[str, Any] = {}
    elif isinstance(path_params, Mapping):
        values = path_params
    elif dataclasses.is_dataclass(path_params) and not isinstance(path_params, type):
        values = dataclasses.asdict(path_params)
    else:
        values = vars(path_params)

    try:
        return string.Formatter().vformat(template, (), values)
    except (KeyError, IndexError, ValueError) as e:
        raise UrlBuildError(f"cannot render path template {template!r}: {e}") from e


def _join_path(*parts: str) -> str:
    """Join path parts, skipping empty ones, and clean the result like a POSIX path."""
    joined = "/".join(part for part in parts if part)
    if not joined:
        return ""
    cleaned = posixpath.normpath(joined)
    # normpath keeps a leading "//"
    return cleaned.lstrip("/")


def _unsplit(scheme: str, host: str, path: str, query_values: QueryValues | None) -> str:
    if path and not path.startswith("/"):
        path = f"/{path}"
    query = urlencode(sorted((query_values or {}).items()), doseq=True)
    return urlunsplit((scheme, host, path, query, ""))
