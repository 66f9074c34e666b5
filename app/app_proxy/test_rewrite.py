"""
Tests for the response body rewrite engine.

Covers:
- Upstream origin replacement (always applied)
- Admin marker, ajax URL and form action rewriting (admin paths only)
- Rule ordering (no double prefixing)
- Content type and encoding handling of rewrite_content
"""

import pytest

from app.app_proxy.rewrite import (
    build_rewrite_rules,
    is_admin_path,
    is_textual_content,
    rewrite,
    rewrite_content,
)
from app.config import GatewayConfig

UPSTREAM = "https://example.com"


@pytest.fixture
def config():
    return GatewayConfig(upstream_url=UPSTREAM)


@pytest.fixture
def rules(config):
    return build_rewrite_rules(config)


class TestOriginRewrite:
    """The upstream origin is replaced on every response."""

    @pytest.mark.parametrize(
        "body",
        [
            "",
            "plain text without links",
            '<a href="/about">About</a>',
            '<a href="https://other.example.net/page">Elsewhere</a>',
            "https://example.org/ is a different host",
        ],
    )
    def test_body_without_upstream_is_unchanged(self, rules, body):
        assert rewrite(body, rules, False) == body

    def test_all_occurrences_replaced(self, rules):
        body = (
            '<link rel="stylesheet" href="https://example.com/style.css">'
            '<a href="https://example.com/2024/hello-world/">Hello</a>'
            '<img src="https://example.com/wp-content/uploads/a.png">'
        )

        result = rewrite(body, rules, False)

        assert UPSTREAM not in result
        assert 'href="/blog/style.css"' in result
        assert 'href="/blog/2024/hello-world/"' in result
        assert 'src="/blog/wp-content/uploads/a.png"' in result

    def test_upstream_url_is_matched_literally(self):
        # "." must not act as a wildcard
        rules = build_rewrite_rules(GatewayConfig(upstream_url="https://blog.example.com"))

        body = "https://blogXexampleYcom/page https://blog.example.com/page"
        result = rewrite(body, rules, False)

        assert result == "https://blogXexampleYcom/page /blog/page"

    def test_regex_metacharacters_in_upstream(self):
        rules = build_rewrite_rules(
            GatewayConfig(upstream_url="http://localhost:8080/site(1)+")
        )

        result = rewrite("go to http://localhost:8080/site(1)+/post", rules, False)

        assert result == "go to /blog/post"

    def test_admin_markers_untouched_on_public_pages(self, rules):
        body = '<a href="/wp-admin/edit.php">Edit</a><script>ajaxurl: "/x"</script>'
        assert rewrite(body, rules, False) == body

    def test_custom_prefix(self):
        rules = build_rewrite_rules(
            GatewayConfig(upstream_url=UPSTREAM, mount_prefix="/news")
        )
        assert rewrite("https://example.com/feed", rules, False) == "/news/feed"


class TestAdminRewrite:
    """Admin pages get their root-relative paths moved under the prefix."""

    def test_admin_link(self, rules):
        result = rewrite('<a href="/wp-admin/edit.php">', rules, True)
        assert result == '<a href="/blog/wp-admin/edit.php">'

    @pytest.mark.parametrize(
        "marker",
        ["/wp-admin", "/wp-login.php", "/wp-json", "/wp-includes"],
    )
    def test_each_marker_prefixed(self, rules, marker):
        result = rewrite(f'<a href="{marker}/thing">x</a>', rules, True)
        assert result == f'<a href="/blog{marker}/thing">x</a>'

    def test_ajax_url_assignment(self, rules):
        body = 'var opts = {ajaxurl: "https://example.com/wp-admin/admin-ajax.php"};'

        result = rewrite(body, rules, True)

        assert 'ajaxurl: "/blog/wp-admin/admin-ajax.php"' in result
        assert result.count("ajaxurl") == 1

    def test_ajax_url_with_single_quotes_and_spacing(self, rules):
        body = "ajaxurl   :   '/wp-admin/admin-ajax.php'"

        result = rewrite(body, rules, True)

        assert result == 'ajaxurl: "/blog/wp-admin/admin-ajax.php"'

    def test_form_action(self, rules):
        body = (
            '<form action="/wp-admin/options.php" method="post">'
            '<a href="/sample-page">Sample</a></form>'
        )

        result = rewrite(body, rules, True)

        assert 'action="/blog/wp-admin/options.php"' in result
        # Non-admin links stay as they are
        assert 'href="/sample-page"' in result

    def test_absolute_admin_url_not_double_prefixed(self, rules):
        body = (
            '<a href="https://example.com/wp-admin/post.php?post=1">'
            '<form action="https://example.com/wp-admin/post.php">'
            '<script src="https://example.com/wp-includes/js/jquery.js"></script>'
        )

        result = rewrite(body, rules, True)

        assert "/blog/blog" not in result
        assert 'href="/blog/wp-admin/post.php?post=1"' in result
        assert 'action="/blog/wp-admin/post.php"' in result
        assert 'src="/blog/wp-includes/js/jquery.js"' in result

    def test_login_redirect_query(self, rules):
        body = '<a href="/wp-login.php?redirect_to=https%3A%2F%2Fexample.com%2Fwp-admin%2F">'

        result = rewrite(body, rules, True)

        assert result.startswith('<a href="/blog/wp-login.php?redirect_to=')

    def test_configured_markers(self):
        config = GatewayConfig(
            upstream_url=UPSTREAM,
            admin_rewrite_markers=("/wp-admin", "/xmlrpc.php"),
        )
        rules = build_rewrite_rules(config)

        result = rewrite('<a href="/xmlrpc.php"><a href="/wp-json/">', rules, True)

        assert '<a href="/blog/xmlrpc.php">' in result
        # /wp-json is no longer a marker
        assert '<a href="/wp-json/">' in result

    def test_rules_are_ordered(self, rules):
        names = [rule.name for rule in rules.admin]
        assert names[-2:] == ["ajax-url", "form-action"]
        assert [rule.name for rule in rules.base] == ["upstream-origin"]

    def test_deterministic(self, rules):
        body = '<a href="https://example.com/wp-admin/">ajaxurl: "/x"</a>'
        assert rewrite(body, rules, True) == rewrite(body, rules, True)


class TestIsAdminPath:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/wp-admin", True),
            ("/wp-admin/edit.php", True),
            ("/wp-admin/admin-ajax.php", True),
            ("/wp-login.php", False),
            ("/2024/hello-world/", False),
            ("/", False),
            ("", False),
        ],
    )
    def test_detection(self, config, path, expected):
        assert is_admin_path(path, config) is expected


class TestRewriteContent:
    """Byte-level wrapper deciding whether a body is rewritten."""

    @pytest.mark.parametrize(
        "content_type",
        [
            "text/html; charset=UTF-8",
            "text/css",
            "application/javascript",
            "application/json",
            "application/rss+xml; charset=UTF-8",
            "",
        ],
    )
    def test_textual_types_rewritten(self, rules, content_type):
        result = rewrite_content(
            b"see https://example.com/feed", content_type, rules, False
        )
        assert result == b"see /blog/feed"

    @pytest.mark.parametrize(
        "content_type", ["image/png", "application/octet-stream", "font/woff2"]
    )
    def test_binary_types_untouched(self, rules, content_type):
        content = b"\x89PNG https://example.com/"
        assert rewrite_content(content, content_type, rules, False) == content

    def test_invalid_utf8_untouched(self, rules):
        content = b"\xff\xfe https://example.com/"
        assert rewrite_content(content, "text/html", rules, False) == content

    def test_empty_body(self, rules):
        assert rewrite_content(b"", "text/html", rules, True) == b""

    def test_unicode_body(self, rules):
        content = "Grüße von https://example.com/über".encode("utf-8")

        result = rewrite_content(content, "text/html; charset=utf-8", rules, False)

        assert result.decode("utf-8") == "Grüße von /blog/über"

    def test_is_textual_content(self):
        assert is_textual_content("TEXT/HTML")
        assert is_textual_content("application/ld+json")
        assert not is_textual_content("video/mp4")
