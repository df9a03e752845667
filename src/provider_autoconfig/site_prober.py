"""
Site Prober for the provider autoconfig system.

Fingerprints a target site with a small, read-only set of requests (the
base page and robots.txt) and static inspection of the returned markup:
- Server software and Cloudflare protection from response headers
- Title, description and JavaScript framework from the markup
- Content category from keyword and link scoring
- Candidate API endpoints from robots.txt, inline scripts and data attributes
- CDN hostnames from image sources and absolute URLs

A failed sub-probe is recorded in the profile's error list; the probe as a
whole has one deadline after which the partial profile is returned.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Optional

import httpx
import idna
from bs4 import BeautifulSoup

from .audit_logger import AuditLogger, ComponentLogging
from .config import HttpConfig
from .enums import ContentCategory, ErrorCode, SiteType
from .exceptions import ConfigurationError
from .models import SiteKnowledge, SiteProfile

ANIME_KEYWORDS = (
    "anime", "episode", "watch", "stream", "sub", "dub", "season", "video", "play",
)
MANGA_KEYWORDS = (
    "manga", "chapter", "read", "scan", "webtoon", "comic", "manhwa", "manhua",
    "gallery", "page",
)
CDN_HINTS = (
    "cloudfront", "akamai", "fastly", "bunnycdn", "cloudflare",
    "cdn", "static", "assets", "media", "img", "images",
)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

KNOWN_SITES: dict[str, SiteKnowledge] = {
    "mangadex": SiteKnowledge(
        name="MangaDex",
        category=ContentCategory.MANGA,
        api_patterns=("/api/v5/",),
        notes="Search at /api/v5/manga?title={query}",
    ),
    "gogoanime": SiteKnowledge(
        name="Gogoanime",
        category=ContentCategory.ANIME,
        api_patterns=("/ajax/", "/api/"),
        notes="Search at /search.html?keyword={query}",
    ),
}

_SCRIPT_ENDPOINT_PATTERNS = [
    re.compile(r"""['"]([^'"]*?/api[^'"]*?)['"]""", re.IGNORECASE),
    re.compile(r"""['"]([^'"]*?/graphql[^'"]*?)['"]""", re.IGNORECASE),
    re.compile(r"""['"]([^'"]*?/v\d+/[^'"]*?)['"]""", re.IGNORECASE),
    re.compile(r"""fetch\s*\(\s*['"]([^'"]+)['"]""", re.IGNORECASE),
    re.compile(r"""axios\s*\.\s*\w+\s*\(\s*['"]([^'"]+)['"]""", re.IGNORECASE),
]

_ABSOLUTE_HOST_RE = re.compile(r"https?://([a-zA-Z0-9\-.]+)")


def normalize_base_url(url: str) -> str:
    """
    Reduce a URL to ``scheme://host[:port]`` with an IDNA-encoded host.

    Raises:
        ConfigurationError: If the URL has no usable host
    """
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"

    try:
        parsed = httpx.URL(candidate)
    except httpx.InvalidURL as e:
        raise ConfigurationError(
            code=ErrorCode.INVALID_CONFIG.value,
            message=f"Invalid URL: {url}",
            details={"url": url, "error": str(e)},
        )

    host = parsed.host.lower()
    if not host or parsed.scheme not in ("http", "https"):
        raise ConfigurationError(
            code=ErrorCode.INVALID_CONFIG.value,
            message=f"URL must be an http(s) URL with a host: {url}",
            details={"url": url},
        )

    if any(ord(c) > 127 for c in host):
        try:
            host = idna.encode(host, uts46=True).decode("ascii")
        except idna.IDNAError as e:
            raise ConfigurationError(
                code=ErrorCode.INVALID_CONFIG.value,
                message=f"IDNA encoding failed: {e}",
                details={"url": url},
            )

    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://{host}{port}"


def detect_known_site(host: str) -> Optional[SiteKnowledge]:
    lowered = host.lower()
    for key, knowledge in KNOWN_SITES.items():
        if key in lowered:
            return knowledge
    return None


def extract_api_paths_from_robots(robots_txt: str) -> list[str]:
    """Allow/Disallow paths mentioning ``api`` or ``graphql``."""
    paths = []
    for line in robots_txt.splitlines():
        stripped = line.strip()
        directive, _, value = stripped.partition(":")
        if directive.lower() not in ("allow", "disallow"):
            continue
        path = value.strip()
        if path and ("api" in path.lower() or "graphql" in path.lower()):
            paths.append(path)
    return paths


def detect_js_framework(soup: BeautifulSoup, html: str) -> Optional[str]:
    if "react" in html or "_reactRoot" in html or soup.select_one("[data-reactroot]"):
        return "React"
    if "vue" in html or "__vue__" in html:
        return "Vue"
    if "ng-version" in html or soup.select_one("[ng-app]"):
        return "Angular"
    if "__NEXT_DATA__" in html or "_next/" in html:
        return "Next.js"
    if "__NUXT__" in html or "_nuxt/" in html:
        return "Nuxt"
    if "svelte" in html:
        return "Svelte"
    return None


def detect_content_category(
    soup: BeautifulSoup,
    html: str,
    title: str,
    description: str,
) -> ContentCategory:
    full_text = f"{title} {description} {html}".lower()
    anime_score = sum(1 for keyword in ANIME_KEYWORDS if keyword in full_text)
    manga_score = sum(1 for keyword in MANGA_KEYWORDS if keyword in full_text)

    if soup.select_one("video, .video-player, .player-container"):
        anime_score += 3
    if soup.select_one(".manga-reader, .chapter-images, .page-container"):
        manga_score += 3

    for link in soup.select("a[href]")[:100]:
        href = link.get("href", "")
        if "/anime/" in href or "/watch/" in href:
            anime_score += 1
        if "/manga/" in href or "/chapter/" in href or "/read/" in href:
            manga_score += 1

    if anime_score > 0 and manga_score > 0 and abs(anime_score - manga_score) < 3:
        return ContentCategory.BOTH
    if anime_score > manga_score:
        return ContentCategory.ANIME
    if manga_score > anime_score:
        return ContentCategory.MANGA
    return ContentCategory.UNKNOWN


def _usable_endpoint(value: str) -> bool:
    # Template expressions such as `${base}/api` or {{ api }}, and quoted
    # spans that ran across code, are not endpoints
    if "{{" in value or "${" in value:
        return False
    return bool(value) and not any(c.isspace() for c in value)


def extract_api_endpoints(soup: BeautifulSoup, html: str) -> list[str]:
    """Candidate endpoints from inline script text, script sources and data attributes."""
    endpoints = []
    for pattern in _SCRIPT_ENDPOINT_PATTERNS:
        for match in pattern.finditer(html):
            endpoints.append(match.group(1))

    for script in soup.select("script[src]"):
        src = script.get("src", "")
        if "api" in src or "graphql" in src:
            endpoints.append(src)

    for element in soup.select("[data-api], [data-endpoint], [data-url]"):
        value = element.get("data-api") or element.get("data-endpoint") or element.get("data-url")
        if value:
            endpoints.append(value)

    return [endpoint for endpoint in endpoints if _usable_endpoint(endpoint)]


def extract_cdn_hosts(soup: BeautifulSoup, html: str) -> list[str]:
    hosts = []
    for image in soup.select("img[src]"):
        src = image.get("src", "")
        if not src.startswith(("http://", "https://")):
            continue
        try:
            host = httpx.URL(src).host
        except httpx.InvalidURL:
            continue
        if any(hint in host.lower() for hint in CDN_HINTS):
            hosts.append(host)

    for match in _ABSOLUTE_HOST_RE.finditer(html):
        host = match.group(1)
        if any(hint in host.lower() for hint in CDN_HINTS):
            hosts.append(host)
    return hosts


def _distinct(values: list[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(values))


@dataclass
class _ProbeState:
    """Mutable accumulator filled while probing; frozen into a SiteProfile at the end."""

    base_url: str
    known_site: Optional[SiteKnowledge] = None
    site_type: SiteType = SiteType.UNKNOWN
    category: ContentCategory = ContentCategory.UNKNOWN
    requires_javascript: bool = False
    has_cloudflare: bool = False
    has_graphql: bool = False
    server_software: Optional[str] = None
    js_framework: Optional[str] = None
    endpoints: list[str] = field(default_factory=list)
    cdn_hosts: list[str] = field(default_factory=list)
    site_title: Optional[str] = None
    site_description: Optional[str] = None
    robots_txt: Optional[str] = None
    errors: list[str] = field(default_factory=list)

    def to_profile(self) -> SiteProfile:
        endpoints = list(self.endpoints)
        category = self.category
        if self.known_site is not None:
            endpoints.extend(self.known_site.api_patterns)
            if category == ContentCategory.UNKNOWN:
                category = self.known_site.category

        has_graphql = self.has_graphql or any("graphql" in e.lower() for e in endpoints)

        return SiteProfile(
            base_url=self.base_url,
            type=self.site_type,
            category=category,
            requires_javascript=self.requires_javascript,
            has_cloudflare_protection=self.has_cloudflare,
            has_graphql=has_graphql,
            server_software=self.server_software,
            js_framework=self.js_framework,
            detected_api_endpoints=_distinct(endpoints),
            detected_cdn_hosts=_distinct(self.cdn_hosts),
            required_headers=(
                ("Referer", f"{self.base_url}/"),
                ("Origin", self.base_url),
            ),
            site_title=self.site_title,
            site_description=self.site_description,
            robots_txt=self.robots_txt,
            errors=tuple(self.errors),
            known_site_info=self.known_site,
        )


class SiteProber(ComponentLogging):
    """
    Probes a site and produces a SiteProfile.

    The prober never raises for network failures; they end up in
    ``SiteProfile.errors``.
    """

    COMPONENT = "SiteProber"

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        http_config: Optional[HttpConfig] = None,
        deadline_seconds: float = 20.0,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the prober.

        Args:
            http_client: Shared HTTP client; one is created and owned if omitted
            http_config: Timeout and user agent settings
            deadline_seconds: Overall deadline for one probe
            logger: Optional audit logger
        """
        self._client = http_client
        self._owns_client = http_client is None
        self._http_config = http_config or HttpConfig()
        self._deadline_seconds = deadline_seconds
        self._logger = logger

    async def __aenter__(self):
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._http_config.timeout_seconds),
                follow_redirects=self._http_config.follow_redirects,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def probe(self, url: str) -> SiteProfile:
        """
        Probe a site.

        Args:
            url: Any URL on the target site

        Returns:
            The site profile; partial if the deadline was exceeded

        Raises:
            ConfigurationError: If ``url`` is not a usable http(s) URL
        """
        base_url = normalize_base_url(url)
        state = _ProbeState(base_url=base_url)
        state.known_site = detect_known_site(base_url.split("://", 1)[1])

        self._log_info("Probing site", {"url": base_url})

        try:
            await asyncio.wait_for(self._run_probes(state), timeout=self._deadline_seconds)
        except asyncio.TimeoutError:
            message = f"Probe deadline of {self._deadline_seconds}s exceeded, profile is partial"
            state.errors.append(message)
            self._log_warn(message, {"url": base_url})

        profile = state.to_profile()
        self._log_info(
            "Probe complete",
            {
                "url": base_url,
                "site_type": profile.type.value,
                "category": profile.category.value,
                "has_graphql": profile.has_graphql,
                "endpoints": len(profile.detected_api_endpoints),
                "errors": len(profile.errors),
            },
        )
        return profile

    async def _run_probes(self, state: _ProbeState) -> None:
        html = await self._fetch_main_page(state)
        await self._fetch_robots(state)
        if html:
            self._inspect_markup(state, html)

    async def _fetch_main_page(self, state: _ProbeState) -> Optional[str]:
        headers = {"User-Agent": self._http_config.user_agent, "Accept": HTML_ACCEPT}
        try:
            response = await self._get_client().get(state.base_url, headers=headers)
        except httpx.HTTPError as e:
            state.errors.append(f"Failed to fetch main page: {e}")
            self._log_warn("Failed to fetch main page", {"url": state.base_url, "error": str(e)})
            return None

        server = response.headers.get("server")
        powered_by = response.headers.get("x-powered-by")
        state.server_software = server or powered_by
        state.has_cloudflare = "cf-ray" in response.headers or (
            server is not None and "cloudflare" in server.lower()
        )

        if not response.is_success:
            state.errors.append(f"Main page returned HTTP {response.status_code}")
        return response.text

    async def _fetch_robots(self, state: _ProbeState) -> None:
        robots_url = f"{state.base_url}/robots.txt"
        try:
            response = await self._get_client().get(
                robots_url, headers={"User-Agent": self._http_config.user_agent}
            )
        except httpx.HTTPError as e:
            state.errors.append(f"Failed to fetch robots.txt: {e}")
            return

        if not response.is_success:
            self._log_debug("robots.txt not available", {"status_code": response.status_code})
            return

        state.robots_txt = response.text
        state.endpoints.extend(extract_api_paths_from_robots(response.text))

    def _inspect_markup(self, state: _ProbeState, html: str) -> None:
        soup = BeautifulSoup(html, "html.parser")

        title = soup.title.get_text(strip=True) if soup.title else ""
        meta = soup.select_one("meta[name='description']")
        description = meta.get("content", "").strip() if meta else ""
        state.site_title = title or None
        state.site_description = description or None

        state.js_framework = detect_js_framework(soup, html)
        state.requires_javascript = bool(
            state.js_framework
            or "__NEXT_DATA__" in html
            or "__NUXT__" in html
            or soup.select_one("#app, #root, [data-reactroot]")
        )

        if state.requires_javascript:
            state.site_type = SiteType.HYBRID if "__NEXT_DATA__" in html else SiteType.SPA
        else:
            state.site_type = SiteType.STATIC

        state.category = detect_content_category(soup, html, title, description)
        state.endpoints.extend(extract_api_endpoints(soup, html))
        state.has_graphql = "graphql" in html.lower() or "__typename" in html
        state.cdn_hosts.extend(extract_cdn_hosts(soup, html))
