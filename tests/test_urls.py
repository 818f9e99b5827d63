"""URL normalization, resolution and domain scoping."""

import pytest

from site_mirror import (
    collapse_slash_groups,
    domain_list_contains,
    get_absolute_url,
    host_of,
)


# ---------------------------------------------------------------------------
# collapse_slash_groups
# ---------------------------------------------------------------------------
class TestCollapseSlashGroups:
    def test_collapses_path_runs(self):
        url = "https://example.com/this/is//a///weird////url/////lmao"
        assert collapse_slash_groups(url) == "https://example.com/this/is/a/weird/url/lmao"

    def test_keeps_query_slashes(self):
        url = "https://example.com/this/is//a///weird////url/////lmao?param=a///b"
        assert (
            collapse_slash_groups(url)
            == "https://example.com/this/is/a/weird/url/lmao?param=a///b"
        )

    def test_keeps_fragment_slashes_without_scheme(self):
        assert collapse_slash_groups("a////////b//c#d//////e") == "a/b/c#d//////e"

    def test_scheme_separator_survives(self):
        assert collapse_slash_groups("http://example.com/") == "http://example.com/"

    def test_empty(self):
        assert collapse_slash_groups("") == ""

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com//a//b?c=//d#e//f",
            "ftp://files.example.com////pub//x",
            "//cdn.example.com//lib.js",
        ],
    )
    def test_idempotent(self, url):
        once = collapse_slash_groups(url)
        assert collapse_slash_groups(once) == once


# ---------------------------------------------------------------------------
# get_absolute_url
# ---------------------------------------------------------------------------
class TestGetAbsoluteUrl:
    BASE = "http://example.com/a/b/page.html"

    def test_absolute_reference_kept(self):
        assert get_absolute_url("https://other.org/x", self.BASE) == "https://other.org/x"

    def test_ftp_reference_kept(self):
        assert get_absolute_url("ftp://files.org/f.zip", self.BASE) == "ftp://files.org/f.zip"

    def test_leading_slash_is_origin_relative(self):
        assert get_absolute_url("/img//x.png", self.BASE) == "http://example.com/img/x.png"

    def test_relative_segments(self):
        assert get_absolute_url("../c.png", self.BASE) == "http://example.com/a/c.png"
        assert get_absolute_url("./d.png", self.BASE) == "http://example.com/a/b/d.png"
        assert get_absolute_url("e.png", self.BASE) == "http://example.com/a/b/e.png"

    def test_query_and_fragment(self):
        assert get_absolute_url("?q=1", self.BASE) == "http://example.com/a/b/page.html?q=1"
        assert get_absolute_url("#top", self.BASE) == "http://example.com/a/b/page.html#top"

    def test_protocol_relative(self):
        assert get_absolute_url("//cdn.example.com/lib.js", "https://example.com/") == (
            "https://cdn.example.com/lib.js"
        )

    def test_whitespace_stripped(self):
        assert get_absolute_url("  next.html \n", self.BASE) == "http://example.com/a/b/next.html"

    def test_foreign_scheme_untouched(self):
        assert get_absolute_url("mailto:me@example.com", self.BASE) == "mailto:me@example.com"

    @pytest.mark.parametrize(
        "reference",
        ["/x//y", "../../z", "https://example.com//q//r?s=//t", "page.html#f//g"],
    )
    def test_idempotent(self, reference):
        once = get_absolute_url(reference, self.BASE)
        assert get_absolute_url(once, self.BASE) == once


# ---------------------------------------------------------------------------
# host_of
# ---------------------------------------------------------------------------
class TestHostOf:
    def test_plain(self):
        assert host_of("https://www.example.com/a?b#c") == "www.example.com"

    def test_port_kept_userinfo_dropped(self):
        assert host_of("http://user:pw@Example.com:8080/x") == "example.com:8080"


# ---------------------------------------------------------------------------
# domain_list_contains
# ---------------------------------------------------------------------------
class TestDomainListContains:
    DOMAINS = ["google.com", "example.com", "domain", "tests.abc.com"]

    def test_exact(self):
        assert domain_list_contains("google.com", self.DOMAINS) is True

    def test_parent_domain_rejected(self):
        assert domain_list_contains("abc.com", self.DOMAINS) is False

    def test_subdomain_of_single_label(self):
        assert domain_list_contains("sub.domain", self.DOMAINS) is True

    def test_longer_tld_rejected(self):
        assert domain_list_contains("google.com.mx", self.DOMAINS) is False

    def test_subdomain(self):
        assert domain_list_contains("images.google.com", self.DOMAINS) is True

    def test_not_a_label_boundary(self):
        assert domain_list_contains("badgoogle.com", ["google.com"]) is False

    def test_empty_list_allows_all(self):
        assert domain_list_contains("anything.org", []) is True

    def test_case_and_port(self):
        assert domain_list_contains("Images.Google.COM:8080", ["google.com"]) is True
        assert domain_list_contains("google.com:8080", ["google.com:8080"]) is True
        assert domain_list_contains("google.com:80", ["google.com:8080"]) is False
