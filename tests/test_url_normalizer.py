"""Tests for URL normalization and fingerprinting."""

import hashlib

import pytest

from scrapture.url_normalizer import (
    calculate_url_priority,
    get_origin,
    hash_content,
    hash_url,
    is_non_html_resource,
    is_same_domain,
    is_valid_http_url,
    normalize_url,
)


class TestNormalizeUrl:
    """Tests for normalize_url()."""

    def test_equivalent_urls_share_fingerprint(self):
        """Fragment, tracking params, query order, default port and trailing slash are ignored."""
        variants = [
            "https://Example.com/page?b=2&a=1",
            "https://example.com:443/page/?a=1&b=2#section",
            "https://example.com/page?utm_source=news&a=1&b=2&fbclid=xyz",
            "HTTPS://EXAMPLE.COM/page?a=1&b=2",
        ]
        results = [normalize_url(v) for v in variants]

        assert all(r.valid for r in results)
        assert {r.normalized for r in results} == {"https://example.com/page?a=1&b=2"}
        assert len({r.fingerprint for r in results}) == 1

    def test_fingerprint_is_sha256_prefix(self):
        result = normalize_url("https://example.com/a")

        expected = hashlib.sha256(b"https://example.com/a").hexdigest()[:16]
        assert result.fingerprint == expected
        assert len(result.fingerprint) == 16

    def test_root_path_kept(self):
        assert normalize_url("https://example.com").normalized == "https://example.com/"
        assert normalize_url("https://example.com/").normalized == "https://example.com/"

    def test_only_one_trailing_slash_stripped(self):
        assert normalize_url("https://example.com/a//").normalized == "https://example.com/a/"

    def test_non_default_port_kept(self):
        assert normalize_url("http://example.com:8080/x").normalized == "http://example.com:8080/x"
        assert normalize_url("http://example.com:80/x").normalized == "http://example.com/x"

    def test_tracking_params_case_insensitive(self):
        result = normalize_url("https://example.com/?UTM_Source=x&id=5")
        assert result.normalized == "https://example.com/?id=5"

    def test_repeated_keys_keep_relative_order(self):
        result = normalize_url("https://example.com/s?z=1&tag=b&tag=a")
        assert result.normalized == "https://example.com/s?tag=b&tag=a&z=1"

    def test_relative_resolved_against_base(self):
        result = normalize_url("../b?x=1#top", base="https://example.com/docs/a/")
        assert result.valid
        assert result.normalized == "https://example.com/docs/b?x=1"

    @pytest.mark.parametrize("raw", [
        "not a url",
        "/relative/without/base",
        "mailto:someone@example.com",
        "ftp://example.com/file",
        "http://example.com:99999/",
        "",
    ])
    def test_malformed_input_never_raises(self, raw):
        result = normalize_url(raw)

        assert result.valid is False
        assert result.normalized == raw
        assert result.fingerprint == ""
        assert result.error


class TestHashing:
    def test_hash_content_full_digest(self):
        assert hash_content("<html></html>") == hashlib.sha256(b"<html></html>").hexdigest()

    def test_hash_url_stable(self):
        assert hash_url("https://example.com/") == hash_url("https://example.com/")
        assert hash_url("https://example.com/") != hash_url("https://example.com/a")


class TestDomainHelpers:
    def test_same_domain_exact(self):
        assert is_same_domain("https://example.com/a", "http://EXAMPLE.com/b")
        assert not is_same_domain("https://blog.example.com/", "https://example.com/")

    def test_same_domain_with_subdomains(self):
        assert is_same_domain("https://blog.example.com/", "https://example.com/", include_subdomains=True)
        assert not is_same_domain("https://example.org/", "https://example.com/", include_subdomains=True)

    def test_same_domain_unparsable(self):
        assert not is_same_domain("nonsense", "https://example.com/")

    def test_get_origin(self):
        assert get_origin("https://Shop.Example.com:8443/x?y=1") == "https://shop.example.com:8443"

    def test_is_valid_http_url(self):
        assert is_valid_http_url("https://example.com/")
        assert not is_valid_http_url("javascript:void(0)")
        assert not is_valid_http_url("/path")


class TestNonHtmlResource:
    @pytest.mark.parametrize("url", [
        "https://example.com/logo.PNG",
        "https://example.com/files/report.pdf",
        "https://example.com/static/app.js",
        "https://example.com/archive.tar.gz",
        "https://example.com/font.woff2?v=3",
    ])
    def test_non_html(self, url):
        assert is_non_html_resource(url)

    @pytest.mark.parametrize("url", [
        "https://example.com/",
        "https://example.com/about",
        "https://example.com/page.html",
        "https://example.com/js-guide",
    ])
    def test_html(self, url):
        assert not is_non_html_resource(url)


class TestUrlPriority:
    def test_priority_by_path_shape(self):
        assert calculate_url_priority("https://example.com/") == 10
        assert calculate_url_priority("https://example.com/sitemap") == 9
        assert calculate_url_priority("https://example.com/category/shoes") == 8
        assert calculate_url_priority("https://example.com/about") == 7
        assert calculate_url_priority("https://example.com/blog/post-1") == 6
        assert calculate_url_priority("https://example.com/team/jane") == 5
        assert calculate_url_priority("https://example.com/a/b/c/d/e") == 1
