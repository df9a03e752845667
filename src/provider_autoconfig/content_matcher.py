"""
Content pattern matching for the provider autoconfig system.

Turns discovered endpoints into a ContentSchema: which endpoint searches,
which lists episodes or chapters, which resolves media, and how records are
laid out in their responses. Field mappings are inferred from the first
record of a sample response, relative to that record, so they can be fed
straight to the TransformEngine.
"""

import json
import re
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from .audit_logger import AuditLogger, ComponentLogging
from .config import HttpConfig
from .decoders import ALLANIME_SOURCE_DECODER
from .enums import ApiType, EndpointPurpose, SearchMethod
from .models import (
    ApiEndpoint,
    ContentIdentifierPattern,
    ContentListPattern,
    ContentSchema,
    MediaPattern,
    SearchPattern,
    SiteProfile,
)
from .provider_config import FieldMapping
from .transform_engine import parse_path

# Field names recognised in sample responses, by target field
FIELD_NAME_MAP = {
    "_id": "Id",
    "id": "Id",
    "name": "Title",
    "title": "Title",
    "englishname": "Title",
    "thumbnail": "CoverImage",
    "cover": "CoverImage",
    "image": "CoverImage",
    "poster": "CoverImage",
    "description": "Synopsis",
    "synopsis": "Synopsis",
    "number": "Number",
    "episode": "Number",
    "chapter": "Number",
    "url": "Url",
    "link": "Url",
    "sourceurl": "Url",
    "quality": "Quality",
    "resolution": "Quality",
}

MAX_DEPTH = 5

PROBE_QUERY = "naruto"

_ENCODED_URL_RE = re.compile(r"-[a-fA-F0-9]{20,}")

DEFAULT_QUERY_TEMPLATES = {
    ("search", True): "query($search: SearchInput) { shows(search: $search) { edges { _id name } } }",
    ("search", False): "?q=${query}",
    ("episodes", True): "query($showId: String!) { show(_id: $showId) { availableEpisodesDetail } }",
    ("episodes", False): "/${id}/episodes",
    ("chapters", True): "query($mangaId: String!) { manga(_id: $mangaId) { availableChaptersDetail } }",
    ("chapters", False): "/${id}/chapters",
    ("media", True): (
        "query($showId: String!, $ep: String!) "
        "{ episode(showId: $showId, episodeString: $ep) { sourceUrls } }"
    ),
    ("media", False): "/${id}/sources",
}


def endpoint_method(endpoint: ApiEndpoint) -> SearchMethod:
    if endpoint.type == ApiType.GRAPHQL:
        return SearchMethod.GRAPHQL
    if endpoint.type == ApiType.REST:
        return SearchMethod.REST
    return SearchMethod.HTML_SCRAPE


def default_query_template(endpoint: ApiEndpoint, context: str) -> str:
    if endpoint.type == ApiType.GRAPHQL and endpoint.sample_query:
        return endpoint.sample_query
    return DEFAULT_QUERY_TEMPLATES[(context, endpoint.type == ApiType.GRAPHQL)]


def _parse_json(text: Optional[str]) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def _resolve(document: Any, path: str) -> Any:
    current = document
    for segment in parse_path(path):
        if isinstance(segment, int):
            if not isinstance(current, list) or segment >= len(current):
                return None
        elif not isinstance(current, dict) or segment not in current:
            return None
        current = current[segment]
    return current


def extract_field_paths(element: Any, current_path: str = "$", depth: int = 0) -> list[tuple[str, str]]:
    """
    List ``(path, field_name)`` for every scalar leaf under ``element``.

    Arrays contribute the paths of their first element only.
    """
    fields: list[tuple[str, str]] = []
    if depth > MAX_DEPTH:
        return fields

    if isinstance(element, dict):
        for name, value in element.items():
            path = f"{current_path}.{name}"
            if isinstance(value, (str, int, float)) and not isinstance(value, bool):
                fields.append((path, name))
            else:
                fields.extend(extract_field_paths(value, path, depth + 1))
    elif isinstance(element, list) and element:
        fields.extend(extract_field_paths(element[0], f"{current_path}[0]", depth + 1))
    return fields


def infer_field_mappings(element: Any) -> list[FieldMapping]:
    """
    Map recognised field names of one record to target fields.

    The shallowest match wins for each target field.
    """
    candidates = sorted(
        extract_field_paths(element),
        key=lambda item: item[0].count(".") + item[0].count("["),
    )
    mappings: list[FieldMapping] = []
    seen: set[str] = set()
    for path, name in candidates:
        target = FIELD_NAME_MAP.get(name.lower())
        if target is None or target in seen:
            continue
        seen.add(target)
        mappings.append(FieldMapping(source_path=path, target_field=target))
    return mappings


def determine_results_path(document: Any) -> Optional[str]:
    if isinstance(document, list):
        return "$"
    if not isinstance(document, dict):
        return None

    data = document.get("data")
    if isinstance(data, dict):
        for name, value in data.items():
            if isinstance(value, dict) and "edges" in value:
                return f"$.data.{name}.edges"
            if isinstance(value, list):
                return f"$.data.{name}"
    if isinstance(data, list):
        return "$.data"
    if "results" in document:
        return "$.results"
    if "items" in document:
        return "$.items"
    return None


def determine_list_path(document: Any, context: str) -> Optional[str]:
    if not isinstance(document, dict) or not isinstance(document.get("data"), dict):
        return None

    keywords = (
        ("episodes", "availableEpisodesDetail")
        if context == "episodes"
        else ("chapters", "availableChaptersDetail")
    )
    for name, value in document["data"].items():
        if not isinstance(value, dict):
            continue
        for keyword in keywords:
            if keyword not in value:
                continue
            path = f"$.data.{name}.{keyword}"
            listed = value[keyword]
            # e.g. {"sub": [...], "dub": [...]}: use the first list
            if isinstance(listed, dict):
                for key, inner in listed.items():
                    if isinstance(inner, list):
                        return f"{path}.{key}"
            return path
    return None


def determine_media_path(document: Any) -> Optional[str]:
    if not isinstance(document, dict) or not isinstance(document.get("data"), dict):
        return None
    for name, value in document["data"].items():
        if not isinstance(value, dict):
            continue
        for key in ("sourceUrls", "sources", "pictureUrls"):
            if key in value:
                return f"$.data.{name}.{key}"
    return None


def find_id(element: Any, depth: int = 0) -> Optional[str]:
    if depth > MAX_DEPTH:
        return None
    if isinstance(element, dict):
        for name, value in element.items():
            if name.lower() in ("_id", "id") and isinstance(value, str):
                return value
            nested = find_id(value, depth + 1)
            if nested is not None:
                return nested
    elif isinstance(element, list):
        for item in element[:3]:
            nested = find_id(item, depth + 1)
            if nested is not None:
                return nested
    return None


def _first_record(document: Any, path: Optional[str]) -> Any:
    target = _resolve(document, path) if path else document
    if isinstance(target, list):
        return target[0] if target else None
    return target


def default_episode_mappings() -> list[FieldMapping]:
    return [
        FieldMapping("$._id", "Id"),
        FieldMapping("$.number", "Number"),
        FieldMapping("$.title", "Title"),
    ]


def default_chapter_mappings() -> list[FieldMapping]:
    return [
        FieldMapping("$._id", "Id"),
        FieldMapping("$.number", "Number"),
        FieldMapping("$.title", "Title"),
    ]


def default_stream_mappings() -> list[FieldMapping]:
    return [
        FieldMapping("$.sourceUrl", "Url"),
        FieldMapping("$.sourceName", "Provider"),
        FieldMapping("$.quality", "Quality"),
    ]


def default_page_mappings() -> list[FieldMapping]:
    return [
        FieldMapping("$.url", "Url"),
        FieldMapping("$.num", "Number"),
    ]


class ContentPatternMatcher(ComponentLogging):
    """
    Builds a ContentSchema from discovered endpoints.

    A search endpoint without a sample response is exercised once with a
    popular title; if that probe fails the search pattern is left empty.
    """

    COMPONENT = "ContentMatcher"

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

    async def analyze(self, profile: SiteProfile, endpoints: list[ApiEndpoint]) -> ContentSchema:
        """
        Infer the content structure of a site.

        Args:
            profile: Result of probing the site
            endpoints: Result of API discovery

        Returns:
            The content schema; patterns that could not be inferred are None
        """
        self._log_info("Analyzing content patterns", {"url": profile.base_url})

        def first(purpose: EndpointPurpose) -> Optional[ApiEndpoint]:
            candidates = [e for e in endpoints if e.purpose == purpose]
            if not candidates:
                return None
            return max(candidates, key=lambda e: e.confidence)

        search_endpoint = first(EndpointPurpose.SEARCH)
        search_pattern = None
        if search_endpoint is not None:
            search_pattern = await self._build_search_pattern(profile, search_endpoint)

        episode_endpoint = first(EndpointPurpose.EPISODES)
        chapter_endpoint = first(EndpointPurpose.CHAPTERS)

        schema = ContentSchema(
            search_pattern=search_pattern,
            id_pattern=self._analyze_id_pattern(endpoints),
            episode_pattern=(
                self._build_list_pattern(episode_endpoint, "episodes")
                if episode_endpoint is not None else None
            ),
            chapter_pattern=(
                self._build_list_pattern(chapter_endpoint, "chapters")
                if chapter_endpoint is not None else None
            ),
            media_pattern=self._build_media_pattern(
                first(EndpointPurpose.STREAMS), first(EndpointPurpose.PAGES)
            ),
            endpoints=list(endpoints),
        )

        self._log_info(
            "Content analysis complete",
            {
                "search": schema.search_pattern is not None,
                "episodes": schema.episode_pattern is not None,
                "chapters": schema.chapter_pattern is not None,
                "media": schema.media_pattern is not None,
            },
        )
        return schema

    async def _build_search_pattern(
        self,
        profile: SiteProfile,
        endpoint: ApiEndpoint,
    ) -> Optional[SearchPattern]:
        query_template = default_query_template(endpoint, "search")
        if endpoint.sample_query:
            query_template = endpoint.sample_query

        sample = endpoint.sample_response
        if not sample:
            sample = await self._probe_search(profile, endpoint, query_template)
            if sample is None:
                return None

        document = _parse_json(sample)
        results_path = endpoint.results_path or determine_results_path(document)

        mappings = list(endpoint.field_mappings)
        if not mappings and document is not None:
            mappings = infer_field_mappings(_first_record(document, results_path))

        self._log_debug(
            "Built search pattern",
            {"mappings": len(mappings), "results_path": results_path},
        )
        return SearchPattern(
            method=endpoint_method(endpoint),
            endpoint=endpoint.path_and_query,
            query_template=query_template,
            results_path=results_path,
            field_mappings=mappings,
        )

    async def _probe_search(
        self,
        profile: SiteProfile,
        endpoint: ApiEndpoint,
        query_template: str,
    ) -> Optional[str]:
        if endpoint.type == ApiType.GRAPHQL:
            variables = json.dumps(
                {"search": {"query": PROBE_QUERY}, "query": PROBE_QUERY, "q": PROBE_QUERY}
            )
            url = f"{endpoint.url}?{urlencode({'query': query_template, 'variables': variables})}"
        else:
            url = endpoint.url + query_template.replace("${query}", PROBE_QUERY)

        headers = {
            "User-Agent": self._http_config.user_agent,
            "Accept": "application/json, */*",
        }
        headers.update(profile.headers)
        try:
            response = await self._get_client().get(url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._log_warn("Search probe failed", {"url": url, "error": str(e)})
            return None
        if not response.is_success:
            self._log_warn(
                "Search probe returned an error status",
                {"url": url, "status_code": response.status_code},
            )
            return None
        return response.text

    def _build_list_pattern(self, endpoint: ApiEndpoint, context: str) -> ContentListPattern:
        document = _parse_json(endpoint.sample_response)
        list_path = determine_list_path(document, context)

        mappings: list[FieldMapping] = []
        record = _first_record(document, list_path) if document is not None else None
        if isinstance(record, dict):
            mappings = infer_field_mappings(record)
        elif record is not None:
            mappings = [FieldMapping("$", "Number")]

        if not mappings:
            mappings = (
                default_episode_mappings() if context == "episodes" else default_chapter_mappings()
            )

        return ContentListPattern(
            method=endpoint_method(endpoint),
            endpoint=endpoint.path_and_query,
            query_template=default_query_template(endpoint, context),
            list_path=list_path,
            field_mappings=mappings,
        )

    def _build_media_pattern(
        self,
        stream_endpoint: Optional[ApiEndpoint],
        page_endpoint: Optional[ApiEndpoint],
    ) -> Optional[MediaPattern]:
        endpoint = stream_endpoint or page_endpoint
        if endpoint is None:
            return None

        requires_decoding = False
        custom_decoder = None
        if endpoint.sample_response and _ENCODED_URL_RE.search(endpoint.sample_response):
            requires_decoding = True
            custom_decoder = ALLANIME_SOURCE_DECODER

        return MediaPattern(
            method=endpoint_method(endpoint),
            endpoint=endpoint.path_and_query,
            query_template=default_query_template(endpoint, "media"),
            media_path=determine_media_path(_parse_json(endpoint.sample_response)),
            requires_decoding=requires_decoding,
            custom_decoder=custom_decoder,
            field_mappings=(
                default_stream_mappings() if stream_endpoint is not None else default_page_mappings()
            ),
        )

    def _analyze_id_pattern(self, endpoints: list[ApiEndpoint]) -> Optional[ContentIdentifierPattern]:
        for endpoint in endpoints:
            document = _parse_json(endpoint.sample_response)
            if document is None:
                continue
            example = find_id(document)
            if example is not None:
                return ContentIdentifierPattern(
                    json_path=determine_results_path(document),
                    example=example,
                )
        return None
