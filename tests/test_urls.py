"""Tests for host and URL construction."""

import unittest
from dataclasses import dataclass

from kcloud import BaseClient, ClientConfig, UrlBuildError
from kcloud._urls import (
    build_base_url,
    build_host,
    build_url_from_path_params,
    build_url_with_tenant,
    render_path_template,
)


class TestBuildHost(unittest.TestCase):
    """Tests for build_host()."""

    def test_service_cluster_host(self):
        """Should form <serviceCluster>.<rootDomain>."""
        self.assertEqual(build_host("catalog", "", root_domain="example.com"), "catalog.example.com")

    def test_default_api_host(self):
        """Should use 'api' when no service cluster is given."""
        self.assertEqual(build_host("", "", root_domain="example.com"), "api.example.com")

    def test_prefix_is_dot_joined(self):
        """Should prepend '<prefix>.' when a prefix is given."""
        self.assertEqual(build_host("catalog", "acme", root_domain="example.com"), "acme.catalog.example.com")
        self.assertEqual(build_host("", "us1", root_domain="example.com"), "us1.api.example.com")

    def test_override_host_wins(self):
        """Should return the override host regardless of other inputs."""
        for cluster, prefix in (("", ""), ("catalog", ""), ("catalog", "acme"), ("", "region-us1")):
            with self.subTest(cluster=cluster, prefix=prefix):
                self.assertEqual(
                    build_host(cluster, prefix, root_domain="example.com", override_host="x.test"),
                    "x.test",
                )

    def test_is_pure(self):
        """Identical inputs should yield identical outputs."""
        first = build_host("catalog", "acme", root_domain="example.com")
        second = build_host("catalog", "acme", root_domain="example.com")
        self.assertEqual(first, second)


class TestBuildUrlWithTenant(unittest.TestCase):
    """Tests for build_url_with_tenant()."""

    def build(self, tenant="acme", tenant_scoped=True, region="us1", query=None, cluster="", *parts):
        return build_url_with_tenant(
            tenant, tenant_scoped, region, query, cluster, *parts,
            scheme="https", root_domain="example.com",
        )

    def test_empty_tenant_fails(self):
        """Should raise UrlBuildError for an empty tenant, whatever the other inputs."""
        for scoped, region, parts in ((True, "us1", ("system", "config")), (False, "", ("catalog",)), (True, "", ())):
            with self.subTest(scoped=scoped, region=region, parts=parts):
                with self.assertRaises(UrlBuildError):
                    self.build("", scoped, region, None, "", *parts)

    def test_region_prefix_when_path_contains_system(self):
        """Should prefix the host with the region when the path contains 'system'."""
        url = self.build("acme", True, "us1", None, "", "system/config")
        self.assertEqual(url, "https://us1.api.example.com/acme/system/config")

    def test_tenant_prefix_when_path_has_no_system(self):
        """Should prefix the host with the tenant when the path does not contain 'system'."""
        url = self.build("acme", True, "us1", None, "", "catalog", "datasets")
        self.assertEqual(url, "https://acme.api.example.com/acme/catalog/datasets")

    def test_substring_match_anywhere_in_path(self):
        """Should treat 'system' as a substring match, not a path segment."""
        url = self.build("acme", True, "us1", None, "", "catalog", "ecosystems")
        self.assertEqual(url, "https://us1.api.example.com/acme/catalog/ecosystems")

    def test_no_prefix_for_system_path_without_region(self):
        """Should not prefix the host for a system path when region is empty."""
        url = self.build("acme", True, "", None, "", "system", "config")
        self.assertEqual(url, "https://api.example.com/acme/system/config")

    def test_no_prefix_when_not_tenant_scoped(self):
        """Should not prefix the host when not tenant-scoped."""
        url = self.build("acme", False, "us1", None, "catalog", "catalog", "v2", "datasets")
        self.assertEqual(url, "https://catalog.example.com/acme/catalog/v2/datasets")

    def test_path_parts_are_cleaned(self):
        """Should join parts like a POSIX path join, dropping empty parts and duplicate slashes."""
        url = self.build("acme", False, "", None, "", "/catalog/", "", "v2//datasets")
        self.assertEqual(url, "https://api.example.com/acme/catalog/v2/datasets")

    def test_query_values_encoded_sorted_by_key(self):
        """Should encode query values sorted by key, repeating multi-valued keys."""
        url = self.build("acme", False, "", {"offset": "10", "fields": ["a", "b"], "filter": "x y"}, "", "datasets")
        self.assertEqual(url, "https://api.example.com/acme/datasets?fields=a&fields=b&filter=x+y&offset=10")

    def test_override_host_keeps_tenant_path(self):
        """Should use the override host but keep the tenant path."""
        url = build_url_with_tenant(
            "acme", True, "us1", None, "catalog", "datasets",
            scheme="http", root_domain="example.com", override_host="localhost:8080",
        )
        self.assertEqual(url, "http://localhost:8080/acme/datasets")


@dataclass
class DatasetParams:
    dataset_name: str


class TestBuildUrlFromPathParams(unittest.TestCase):
    """Tests for build_url_from_path_params()."""

    def build(self, template, params=None, tenant_scoped=True, region="us1", query=None, cluster=""):
        return build_url_from_path_params(
            query, cluster, template, params,
            default_tenant="acme",
            tenant_scoped=tenant_scoped,
            region=region,
            scheme="https",
            root_domain="example.com",
        )

    def test_tenant_prepended_for_non_system_path(self):
        """Should prepend the default tenant and use it as host prefix."""
        url = self.build("/catalog/v2/datasets/{dataset_name}", {"dataset_name": "main"})
        self.assertEqual(url, "https://acme.api.example.com/acme/catalog/v2/datasets/main")

    def test_system_path_uses_region_prefix(self):
        """Should keep /system/ paths tenant-less and prefix the host with region-<region>."""
        url = self.build("/system/provisioner/v1beta1/tenants")
        self.assertEqual(url, "https://region-us1.api.example.com/system/provisioner/v1beta1/tenants")

    def test_system_path_without_region_fails(self):
        """Should raise 'region cannot be empty' for a tenant-scoped system path without region."""
        with self.assertRaises(UrlBuildError) as ctx:
            self.build("/system/foo", region="")
        self.assertIn("region cannot be empty", str(ctx.exception))

    def test_tenant_named_system_is_in_system_namespace(self):
        """The namespace check should apply to the path after the tenant is prepended."""
        with self.assertRaises(UrlBuildError) as ctx:
            build_url_from_path_params(
                None, "", "/foo", None,
                default_tenant="system", tenant_scoped=True, region="",
                scheme="https", root_domain="example.com",
            )
        self.assertIn("region cannot be empty", str(ctx.exception))

        url = build_url_from_path_params(
            None, "", "/foo", None,
            default_tenant="system", tenant_scoped=True, region="us1",
            scheme="https", root_domain="example.com",
        )
        self.assertEqual(url, "https://region-us1.api.example.com/system/foo")

    def test_system_path_without_region_allowed_when_not_tenant_scoped(self):
        """Should not require a region when not tenant-scoped."""
        url = self.build("/system/foo", tenant_scoped=False, region="")
        self.assertEqual(url, "https://api.example.com/system/foo")

    def test_prefix_match_only(self):
        """Should detect the system namespace by path prefix, not substring."""
        url = self.build("/catalog/system/foo")
        self.assertEqual(url, "https://acme.api.example.com/acme/catalog/system/foo")

    def test_no_prefix_when_not_tenant_scoped(self):
        """Should not prefix the host when not tenant-scoped."""
        url = self.build("/search/v2/jobs", tenant_scoped=False, cluster="search")
        self.assertEqual(url, "https://search.example.com/acme/search/v2/jobs")

    def test_dataclass_params(self):
        """Should render templates against dataclass fields."""
        url = self.build("/catalog/v2/datasets/{dataset_name}", DatasetParams(dataset_name="main"))
        self.assertTrue(url.endswith("/acme/catalog/v2/datasets/main"))

    def test_query_values(self):
        """Should append encoded query values."""
        url = self.build("/search/v2/jobs", query={"count": "5"})
        self.assertEqual(url, "https://acme.api.example.com/acme/search/v2/jobs?count=5")


class TestRenderPathTemplate(unittest.TestCase):
    """Tests for render_path_template()."""

    def test_object_attributes(self):
        """Should resolve placeholders from object attributes."""

        class Params:
            def __init__(self):
                self.job_id = "42"

        self.assertEqual(render_path_template("/search/v2/jobs/{job_id}", Params()), "/search/v2/jobs/42")

    def test_no_params(self):
        """Should render templates without placeholders when params are None."""
        self.assertEqual(render_path_template("/system/foo", None), "/system/foo")

    def test_missing_param_fails(self):
        """Should raise UrlBuildError for a missing placeholder."""
        with self.assertRaises(UrlBuildError):
            render_path_template("/datasets/{dataset_name}", {})

    def test_malformed_template_fails(self):
        """Should raise UrlBuildError for a malformed template."""
        with self.assertRaises(UrlBuildError):
            render_path_template("/datasets/{dataset_name", {"dataset_name": "x"})


class TestBuildBaseUrl(unittest.TestCase):
    """Tests for build_base_url()."""

    def test_tenant_scoped(self):
        url = build_base_url("", default_tenant="acme", tenant_scoped=True, scheme="https", root_domain="example.com")
        self.assertEqual(url, "https://acme.api.example.com")

    def test_not_tenant_scoped(self):
        url = build_base_url("catalog", default_tenant="acme", tenant_scoped=False, scheme="https", root_domain="example.com")
        self.assertEqual(url, "https://catalog.example.com")


class TestClientUrlBuilding(unittest.TestCase):
    """Tests for the BaseClient URL-building wrappers."""

    def setUp(self):
        self.client = BaseClient(
            ClientConfig(tenant="acme", host="example.com", tenant_scoped=True, region="us1"),
            token="test-token",
        )

    def test_build_url_uses_default_tenant(self):
        self.assertEqual(
            self.client.build_url(None, "", "catalog", "datasets"),
            "https://acme.api.example.com/acme/catalog/datasets",
        )

    def test_build_url_with_explicit_tenant(self):
        self.assertEqual(
            self.client.build_url_with_tenant("beta", True, "eu1", None, "", "system", "config"),
            "https://eu1.api.example.com/beta/system/config",
        )

    def test_build_url_from_path_params(self):
        self.assertEqual(
            self.client.build_url_from_path_params(None, "", "/system/foo", None),
            "https://region-us1.api.example.com/system/foo",
        )

    def test_default_root_domain(self):
        client = BaseClient(ClientConfig(tenant="acme"), token="test-token")
        self.assertEqual(client.build_host(""), "api.scp.khulnasoft.com")

    def test_default_tenant_setter(self):
        self.client.default_tenant = "beta"
        self.assertEqual(self.client.default_tenant, "beta")
        self.assertEqual(
            self.client.build_url(None, "", "catalog"),
            "https://beta.api.example.com/beta/catalog",
        )

    def test_set_override_host(self):
        self.client.set_override_host("x.test")
        self.assertEqual(self.client.build_host("catalog", "acme"), "x.test")
        self.assertEqual(self.client.get_url("catalog"), "https://x.test")

    def test_get_url(self):
        self.assertEqual(self.client.get_url("catalog"), "https://acme.catalog.example.com")


if __name__ == "__main__":
    unittest.main()
