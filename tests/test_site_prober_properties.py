"""
Property-based tests for the Site Prober module.

Sites are served through httpx.MockTransport; no real network access.
"""

import asyncio

import httpx
from bs4 import BeautifulSoup
from hypothesis import given, settings
from hypothesis import strategies as st

from provider_autoconfig.enums import ContentCategory, SiteType
from provider_autoconfig.exceptions import ConfigurationError
from provider_autoconfig.site_prober import (
    SiteProber,
    detect_content_category,
    extract_api_endpoints,
    extract_api_paths_from_robots,
    normalize_base_url,
)


ANIME_PAGE = """<html><head>
<title>AnimeSite - Watch Anime Online</title>
<meta name="description" content="Stream every episode">
</head><body>
<div id="root"></div>
<video></video>
<a href="/anime/1">One</a><a href="/watch/2">Two</a>
<img src="https://cdn.animesite.example/cover.jpg">
<script>fetch("/api/graphql")</script>
</body></html>"""

ROBOTS = "User-agent: *\nDisallow: /api/private\nDisallow: /admin\nAllow: /graphql\n"


def probe_with(handler, url: str = "https://animesite.example", deadline: float = 20.0):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await SiteProber(client, deadline_seconds=deadline).probe(url)

    return asyncio.run(run())


class TestBaseUrlNormalizationProperty:
    """Any URL on a site reduces to its scheme and host."""

    @given(
        host=st.sampled_from(["example.com", "Sub.Example.ORG", "a-b.example.net"]),
        path=st.sampled_from(["", "/", "/anime/123", "/search?q=x", "/a/b/c#frag"]),
        scheme=st.sampled_from(["http", "https"]),
    )
    @settings(max_examples=50)
    def test_path_and_query_are_dropped(self, host: str, path: str, scheme: str) -> None:
        assert normalize_base_url(f"{scheme}://{host}{path}") == f"{scheme}://{host.lower()}"

    def test_missing_scheme_defaults_to_https(self) -> None:
        assert normalize_base_url("example.com/anime") == "https://example.com"

    def test_port_is_kept(self) -> None:
        assert normalize_base_url("http://localhost:8080/x") == "http://localhost:8080"

    def test_idn_host_is_encoded(self) -> None:
        assert normalize_base_url("https://bücher.example/") == "https://xn--bcher-kva.example"

    @given(url=st.sampled_from(["ftp://example.com", "https://", "file:///etc/passwd"]))
    @settings(max_examples=5)
    def test_unusable_urls_are_rejected(self, url: str) -> None:
        try:
            normalize_base_url(url)
        except ConfigurationError as e:
            assert e.code == "invalid_config"
            return
        assert False, f"Expected ConfigurationError for {url}"


class TestMarkupInspectionProperty:
    """Static helpers classify robots.txt lines and page content."""

    def test_robots_api_paths(self) -> None:
        assert extract_api_paths_from_robots(ROBOTS) == ["/api/private", "/graphql"]

    @given(lines=st.lists(st.sampled_from(["User-agent: *", "Disallow: /admin", "Sitemap: /s.xml", "# api"])))
    @settings(max_examples=30)
    def test_robots_without_api_paths(self, lines: list[str]) -> None:
        assert extract_api_paths_from_robots("\n".join(lines)) == []

    def test_manga_reader_page(self) -> None:
        html = (
            "<html><body><div class='chapter-images'></div>"
            "<a href='/manga/1'>x</a><a href='/chapter/2'>y</a></body></html>"
        )
        soup = BeautifulSoup(html, "html.parser")
        assert detect_content_category(soup, html, "Read Manga", "") == ContentCategory.MANGA

    def test_empty_page_is_unknown(self) -> None:
        html = "<html><body></body></html>"
        soup = BeautifulSoup(html, "html.parser")
        assert detect_content_category(soup, html, "", "") == ContentCategory.UNKNOWN

    def test_endpoint_candidates_spanning_code_are_dropped(self) -> None:
        html = (
            "<html><body><script>\n"
            "var x = \";\n// see /api/docs\ny = \";\n"
            "fetch('/api/good');\n"
            "const tpl = `${base}/api/v1/`;\n"
            "</script><div data-url='/api/list page'></div><div data-api='/api/data'></div></body></html>"
        )
        soup = BeautifulSoup(html, "html.parser")
        endpoints = extract_api_endpoints(soup, html)

        assert "/api/good" in endpoints
        assert "/api/data" in endpoints
        assert all(not any(c.isspace() for c in e) for e in endpoints)
        assert all("${" not in e for e in endpoints)


class TestProbeProperty:
    """Probing gathers a profile and records failures instead of raising."""

    def test_anime_spa(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/robots.txt":
                return httpx.Response(200, text=ROBOTS)
            return httpx.Response(
                200,
                html=ANIME_PAGE,
                headers={"server": "cloudflare", "cf-ray": "abc123"},
            )

        profile = probe_with(handler, "https://animesite.example/anime/123?ep=1")

        assert profile.base_url == "https://animesite.example"
        assert profile.type == SiteType.SPA
        assert profile.category == ContentCategory.ANIME
        assert profile.requires_javascript
        assert profile.has_cloudflare_protection
        assert profile.has_graphql
        assert profile.server_software == "cloudflare"
        assert profile.site_title == "AnimeSite - Watch Anime Online"
        assert profile.site_description == "Stream every episode"
        assert "/api/graphql" in profile.detected_api_endpoints
        assert "/api/private" in profile.detected_api_endpoints
        assert len(set(profile.detected_api_endpoints)) == len(profile.detected_api_endpoints)
        assert "cdn.animesite.example" in profile.detected_cdn_hosts
        assert profile.headers["Referer"] == "https://animesite.example/"
        assert profile.robots_txt == ROBOTS
        assert profile.errors == ()

    def test_static_page_without_javascript(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/robots.txt":
                return httpx.Response(404)
            return httpx.Response(200, html="<html><head><title>Plain</title></head><body><p>Hi</p></body></html>")

        profile = probe_with(handler)

        assert profile.type == SiteType.STATIC
        assert not profile.requires_javascript
        assert profile.robots_txt is None
        assert profile.errors == ()

    def test_network_failures_are_recorded(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        profile = probe_with(handler)

        assert profile.category == ContentCategory.UNKNOWN
        assert profile.type == SiteType.UNKNOWN
        assert any("Failed to fetch main page" in e for e in profile.errors)
        assert any("Failed to fetch robots.txt" in e for e in profile.errors)

    def test_known_site_fills_gaps(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        profile = probe_with(handler, "https://mangadex.org/title/1")

        assert profile.known_site_info is not None
        assert profile.category == ContentCategory.MANGA
        assert "/api/v5/" in profile.detected_api_endpoints
        assert "Main page returned HTTP 404" in profile.errors

    def test_deadline_returns_partial_profile(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(2.0)
            return httpx.Response(200, html=ANIME_PAGE)

        profile = probe_with(handler, deadline=0.05)

        assert profile.base_url == "https://animesite.example"
        assert any("deadline" in e for e in profile.errors)
