"""
API discovery for the provider autoconfig system.

Tests candidate endpoints found by the Site Prober plus a list of common
API paths, probes GraphQL endpoints with introspection and sample search
queries, and tries a handful of REST search URLs. Every failed request is
simply skipped; discovery never raises for network errors.
"""

import json
from typing import Optional
from urllib.parse import urlencode

import httpx

from .audit_logger import AuditLogger, ComponentLogging
from .config import HttpConfig
from .enums import ApiType, EndpointPurpose
from .models import ApiEndpoint, SiteProfile

COMMON_API_PATHS = (
    "/api", "/api/v1", "/api/v2", "/graphql", "/gql",
    "/api/anime", "/api/manga", "/api/search", "/api/shows",
)

GRAPHQL_PATHS = ("/graphql", "/api/graphql", "/gql", "/api")

INTROSPECTION_QUERY = "{ __schema { types { name } } }"

GRAPHQL_SEARCH_QUERIES = (
    "query($search: SearchInput) { shows(search: $search) { edges { _id name } } }",
    "query($search: SearchInput) { mangas(search: $search) { edges { _id name } } }",
    "query($query: String!) { search(query: $query) { id title } }",
    "query($q: String!) { anime(search: $q) { id title } }",
    "query($q: String!) { manga(search: $q) { id title } }",
)

GRAPHQL_CONTENT_QUERIES = (
    "query($showId: String!) { show(_id: $showId) { _id availableEpisodesDetail } }",
    "query($mangaId: String!) { manga(_id: $mangaId) { _id availableChaptersDetail } }",
    "query($id: ID!) { anime(id: $id) { episodes { number title } } }",
    "query($id: ID!) { manga(id: $id) { chapters { number title } } }",
)

REST_SEARCH_PATHS = (
    "/api/search?q=",
    "/search?q=",
    "/api/v1/search?query=",
    "/api/anime/search?q=",
    "/api/manga/search?q=",
)

SAMPLE_QUERY = "naruto"

SAMPLE_LIMIT = 500

BASE_CONFIDENCE = 50
JSON_BONUS = 20
MENTIONED_BONUS = 10


def _truncate(text: str) -> str:
    return text[:SAMPLE_LIMIT]


def build_url(base_url: str, path: str) -> str:
    if path.lower().startswith(("http://", "https://")):
        return path
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


def determine_purpose(path: str, content: str) -> EndpointPurpose:
    """Guess what an endpoint is for from its path and response text."""
    lower_path = path.lower()
    lower_content = content.lower()

    if "search" in lower_path or "query" in lower_path:
        return EndpointPurpose.SEARCH
    if "episode" in lower_path or "episode" in lower_content:
        return EndpointPurpose.EPISODES
    if "chapter" in lower_path or "chapter" in lower_content:
        return EndpointPurpose.CHAPTERS
    if any(hint in lower_path for hint in ("stream", "source", "watch")):
        return EndpointPurpose.STREAMS
    if "page" in lower_path or "image" in lower_path:
        return EndpointPurpose.PAGES
    if "info" in lower_path or "detail" in lower_path:
        return EndpointPurpose.DETAILS
    return EndpointPurpose.UNKNOWN


def dedupe_endpoints(endpoints: list[ApiEndpoint]) -> list[ApiEndpoint]:
    """Keep one endpoint per URL (highest confidence), in first-seen order."""
    best: dict[str, ApiEndpoint] = {}
    for endpoint in endpoints:
        current = best.get(endpoint.url)
        if current is None or endpoint.confidence > current.confidence:
            best[endpoint.url] = endpoint
    return list(best.values())


class ApiDiscoveryEngine(ComponentLogging):
    """Discovers GraphQL and REST endpoints on a probed site."""

    COMPONENT = "ApiDiscovery"

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        http_config: Optional[HttpConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._client = http_client
        self._owns_client = http_client is None
        self._http_config = http_config or HttpConfig()
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

    def _headers(self, profile: SiteProfile) -> dict[str, str]:
        headers = {
            "User-Agent": self._http_config.user_agent,
            "Accept": "application/json, */*",
            "Referer": f"{profile.base_url}/",
        }
        headers.update(profile.headers)
        return headers

    async def _get(self, profile: SiteProfile, url: str) -> Optional[httpx.Response]:
        try:
            return await self._get_client().get(url, headers=self._headers(profile))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._log_debug("Discovery request failed", {"url": url, "error": str(e)})
            return None

    async def discover(self, profile: SiteProfile) -> list[ApiEndpoint]:
        """
        Discover API endpoints for a probed site.

        Args:
            profile: Result of probing the site

        Returns:
            Endpoints de-duplicated by URL, highest confidence kept
        """
        self._log_info("Discovering APIs", {"url": profile.base_url})
        endpoints: list[ApiEndpoint] = []

        mentioned = [path.lower() for path in profile.detected_api_endpoints]
        for path in profile.detected_api_endpoints:
            endpoint = await self._test_endpoint(profile, path, mentioned=True)
            if endpoint is not None:
                endpoints.append(endpoint)

        for path in COMMON_API_PATHS:
            if any(path in candidate for candidate in mentioned):
                continue
            endpoint = await self._test_endpoint(profile, path, mentioned=False)
            if endpoint is not None:
                endpoints.append(endpoint)

        if profile.has_graphql:
            endpoints.extend(await self._discover_graphql(profile))

        if not any(e.purpose == EndpointPurpose.SEARCH for e in endpoints):
            search = await self._discover_rest_search(profile)
            if search is not None:
                endpoints.append(search)

        result = dedupe_endpoints(endpoints)
        self._log_info(
            "Discovery complete",
            {"url": profile.base_url, "endpoints": [e.url for e in result]},
        )
        return result

    async def _test_endpoint(
        self,
        profile: SiteProfile,
        path: str,
        mentioned: bool,
    ) -> Optional[ApiEndpoint]:
        url = build_url(profile.base_url, path)
        response = await self._get(profile, url)
        if response is None or not response.is_success:
            return None

        content = response.text
        content_type = response.headers.get("content-type", "").lower()
        is_json = "json" in content_type

        if is_json:
            compact = content.replace(" ", "")
            api_type = ApiType.GRAPHQL if "__typename" in content or '"data":{' in compact else ApiType.REST
        else:
            api_type = ApiType.CUSTOM

        confidence = BASE_CONFIDENCE
        if is_json:
            confidence += JSON_BONUS
        if mentioned:
            confidence += MENTIONED_BONUS

        return ApiEndpoint(
            url=url,
            type=api_type,
            method="GET",
            purpose=determine_purpose(path, content),
            sample_response=_truncate(content),
            confidence=confidence,
        )

    async def _discover_graphql(self, profile: SiteProfile) -> list[ApiEndpoint]:
        for path in GRAPHQL_PATHS:
            url = build_url(profile.base_url, path)
            response = await self._get(
                profile, f"{url}?{urlencode({'query': INTROSPECTION_QUERY})}"
            )
            if response is None or not response.is_success:
                continue
            if "__schema" not in response.text and "types" not in response.text:
                continue

            self._log_info("Found GraphQL endpoint", {"url": url})
            found = []
            search = await self._try_graphql_search(profile, url)
            if search is not None:
                found.append(search)
            content = await self._try_graphql_content(profile, url)
            if content is not None:
                found.append(content)
            return found
        return []

    async def _try_graphql_search(self, profile: SiteProfile, url: str) -> Optional[ApiEndpoint]:
        variables = json.dumps(
            {"search": {"query": SAMPLE_QUERY}, "query": SAMPLE_QUERY, "q": SAMPLE_QUERY}
        )
        for query in GRAPHQL_SEARCH_QUERIES:
            params = urlencode({"query": query, "variables": variables})
            response = await self._get(profile, f"{url}?{params}")
            if response is None or not response.is_success:
                continue
            content = response.text
            if any(marker in content for marker in ("edges", "results", '"id"', '"_id"')):
                return ApiEndpoint(
                    url=url,
                    type=ApiType.GRAPHQL,
                    purpose=EndpointPurpose.SEARCH,
                    sample_query=query,
                    sample_response=_truncate(content),
                    confidence=90,
                )
        return None

    async def _try_graphql_content(self, profile: SiteProfile, url: str) -> Optional[ApiEndpoint]:
        variables = json.dumps({"showId": "test", "mangaId": "test", "id": "test"})
        for query in GRAPHQL_CONTENT_QUERIES:
            params = urlencode({"query": query, "variables": variables})
            response = await self._get(profile, f"{url}?{params}")
            if response is None:
                continue
            content = response.text
            # A structured reply, even with null data, means the query shape is accepted
            if '"data"' in content and "Cannot query" not in content:
                purpose = (
                    EndpointPurpose.EPISODES
                    if "episode" in query.lower() or "show" in query
                    else EndpointPurpose.CHAPTERS
                )
                return ApiEndpoint(
                    url=url,
                    type=ApiType.GRAPHQL,
                    purpose=purpose,
                    sample_query=query,
                    confidence=80,
                )
        return None

    async def _discover_rest_search(self, profile: SiteProfile) -> Optional[ApiEndpoint]:
        for path in REST_SEARCH_PATHS:
            base_path, _, parameter = path.partition("?")
            url = build_url(profile.base_url, path + SAMPLE_QUERY)
            response = await self._get(profile, url)
            if response is None or not response.is_success:
                continue
            content = response.text
            if any(marker in content for marker in ("results", "data", "items", '"id"')):
                return ApiEndpoint(
                    url=build_url(profile.base_url, base_path),
                    type=ApiType.REST,
                    purpose=EndpointPurpose.SEARCH,
                    sample_query=f"?{parameter}${{query}}",
                    sample_response=_truncate(content),
                    confidence=85,
                )
        return None
