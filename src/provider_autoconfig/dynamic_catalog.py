"""
Dynamic catalogs that execute a DynamicProviderConfig against a live site.

Requests are built from the config's query templates, sent through the
retry manager, and their responses are turned into domain items by the
TransformEngine. Failures never reach the caller: a failed call logs a
warning and returns an empty list.
"""

import json
import math
import re
import uuid
from typing import Any, Optional
from urllib.parse import quote, urlencode, urlsplit

import httpx

from .audit_logger import AuditLogger, ComponentLogging
from .catalog import Anime, Chapter, ChapterPage, Episode, Manga, StreamLink
from .config import HttpConfig
from .enums import AuthType, ErrorCode, SearchMethod, TransformType
from .exceptions import NetworkError
from .provider_config import DynamicProviderConfig, EndpointConfig
from .rate_limiter import RateLimiter
from .retry_manager import RetryManager
from .transform_engine import ExtractedRecord, TransformEngine

EPISODE_MARKER = ":ep-"
CHAPTER_MARKER = ":ch-"

TRANSLATION_TYPE = "sub"


def build_request(template: str, variables: dict[str, str], graphql: bool = False) -> str:
    """
    Substitute ``${name}``, ``$(name)`` and ``$name`` placeholders.

    Unknown names are left verbatim. For GraphQL documents the bare
    ``$name`` form is GraphQL's own variable syntax, so only the braced and
    parenthesised forms are substituted and values travel as variables.
    """
    result = template
    # Longest names first so $searchType is not clobbered by $search
    for name in sorted(variables, key=len, reverse=True):
        value = variables[name]
        result = result.replace("${" + name + "}", value)
        result = result.replace("$(" + name + ")", value)
        if not graphql:
            result = re.sub(r"\$" + re.escape(name) + r"(?!\w)", lambda _m: value, result)
    return result


def split_child_id(child_id: str, marker: str) -> Optional[tuple[str, str]]:
    """
    Split ``<parent><marker><n>`` at the last marker (case-insensitive).

    Returns:
        (parent_id, number_text), or None when the marker is absent
    """
    index = child_id.lower().rfind(marker)
    if index < 0:
        return None
    return child_id[:index], child_id[index + len(marker):]


def _parse_number(raw: Optional[str], default: float) -> float:
    if raw is None:
        return default
    try:
        number = float(raw.strip().strip('"'))
    except ValueError:
        return default
    return number if math.isfinite(number) else default


def _format_number(number: float) -> str:
    return str(int(number)) if float(number).is_integer() else str(number)


def _absolute_url(value: str, base: Optional[str] = None) -> Optional[str]:
    """Return an absolute http(s) URL, resolving relative values against ``base``."""
    candidate = value.strip()
    if candidate.startswith("//"):
        candidate = "https:" + candidate
    elif base and not candidate.lower().startswith(("http://", "https://")):
        candidate = f"{base.rstrip('/')}/{candidate.lstrip('/')}"

    try:
        parts = urlsplit(candidate)
    except ValueError:
        return None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return candidate


class DynamicCatalogBase(ComponentLogging):
    """Shared request execution for dynamic catalogs."""

    COMPONENT = "DynamicCatalog"

    def __init__(
        self,
        config: DynamicProviderConfig,
        transform_engine: Optional[TransformEngine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_manager: Optional[RetryManager] = None,
        rate_limiter: Optional[RateLimiter] = None,
        http_config: Optional[HttpConfig] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the catalog.

        Args:
            config: Provider configuration to execute
            transform_engine: Engine used for extraction (a default one is created if omitted)
            http_client: Shared HTTP client; one is created and owned if omitted
            retry_manager: Retry loop for requests
            rate_limiter: Optional limiter shared between catalogs
            http_config: HTTP settings used when the client is created here
            logger: Optional audit logger
        """
        self._config = config
        self._engine = transform_engine or TransformEngine(logger=logger)
        self._client = http_client
        self._owns_client = http_client is None
        self._retry = retry_manager or RetryManager(logger=logger)
        self._rate_limiter = rate_limiter
        self._http_config = http_config or HttpConfig()
        self._logger = logger

    async def __aenter__(self):
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def config(self) -> DynamicProviderConfig:
        return self._config

    @property
    def provider_slug(self) -> str:
        return self._config.slug

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._http_config.timeout_seconds),
                follow_redirects=self._http_config.follow_redirects,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this catalog created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def base_url(self) -> str:
        hosts = self._config.hosts
        return hosts.api_base or f"https://{hosts.base_host}"

    def _headers(self) -> dict[str, str]:
        hosts = self._config.hosts
        headers = {
            "User-Agent": hosts.user_agent,
            "Accept": "application/json, */*",
        }
        if hosts.referer:
            headers["Referer"] = hosts.referer
        headers.update(hosts.custom_headers)

        auth = self._config.auth
        if auth is not None:
            if auth.type == AuthType.API_KEY and auth.header_name and auth.header_value:
                headers[auth.header_name] = auth.header_value
            if auth.cookies:
                headers["Cookie"] = "; ".join(f"{k}={v}" for k, v in auth.cookies.items())
        return headers

    def _build_url(
        self,
        method: SearchMethod,
        endpoint: str,
        template: str,
        variables: dict[str, str],
    ) -> str:
        if endpoint.lower().startswith(("http://", "https://")):
            full = endpoint
        else:
            full = f"{self.base_url.rstrip('/')}/{endpoint.lstrip('/')}"

        if method == SearchMethod.GRAPHQL:
            query = build_request(template, variables, graphql=True)
            params = urlencode({"query": query, "variables": json.dumps(variables)})
            return f"{full}{'&' if '?' in full else '?'}{params}"

        if method == SearchMethod.REST:
            escaped = {name: quote(value, safe="") for name, value in variables.items()}
            built = build_request(template, escaped)
            if built.lower().startswith(("http://", "https://")):
                return built
            return full + built

        return full

    async def _execute(self, endpoint: EndpointConfig, variables: dict[str, str]) -> str:
        """
        Issue one templated request and return the response text.

        Raises:
            NetworkError: On transport failure or a non-success final status
        """
        url = self._build_url(
            endpoint.method, endpoint.endpoint, endpoint.query_template, variables
        )

        if self._rate_limiter is not None:
            await self._rate_limiter.wait_for_slot(self.provider_slug, self._config.rate_limit)

        response = await self._retry.send_with_retry(
            self._get_client(), "GET", url, headers=self._headers()
        )

        if not response.is_success:
            if self._rate_limiter is not None:
                delay = self._rate_limiter.apply_adaptive_delay(
                    self.provider_slug, self._config.rate_limit, response.status_code
                )
                if delay:
                    self._log_warn(
                        "Provider is throttling requests",
                        {"slug": self.provider_slug, "suggested_delay": delay},
                    )
            raise NetworkError(
                code=ErrorCode.HTTP_STATUS.value,
                message=f"{url} returned HTTP {response.status_code}",
                details={"url": url, "status_code": response.status_code},
            )

        if self._rate_limiter is not None:
            self._rate_limiter.reset_error_count(self.provider_slug)
        return response.text

    async def _fetch_records(
        self,
        endpoint: EndpointConfig,
        variables: dict[str, str],
        results_path: Optional[str],
    ) -> list[ExtractedRecord]:
        text = await self._execute(endpoint, variables)
        return self._engine.extract_all(text, endpoint.result_mapping, results_path)

    def _search_endpoint(self) -> EndpointConfig:
        search = self._config.search
        return EndpointConfig(
            method=search.method,
            endpoint=search.endpoint,
            query_template=search.query_template,
            result_mapping=search.result_mapping,
            results_path=search.results_path,
        )

    async def _search_records(self, query: str) -> list[ExtractedRecord]:
        variables = {
            "query": query,
            "search": query,
            "limit": str(self._config.search.page_size),
        }
        return await self._fetch_records(
            self._search_endpoint(), variables, self._config.search.results_path
        )

    def _decode_media_url(self, value: str, decoder_name: Optional[str]) -> str:
        if not decoder_name:
            return value
        rule = self._config.find_transform(decoder_name)
        if rule is not None:
            return self._engine.apply_custom_transform(value, rule)
        return self._engine.apply_transform(value, TransformType.CUSTOM, decoder_name)

    def _degrade(self, operation: str, error: Exception, data: Optional[dict] = None) -> list[Any]:
        payload = {"slug": self.provider_slug, "operation": operation, "error": str(error)}
        payload.update(data or {})
        self._log_warn(f"{operation} failed for provider '{self.provider_slug}'", payload)
        return []


class DynamicAnimeCatalog(DynamicCatalogBase):
    """Anime catalog driven by a provider configuration."""

    COMPONENT = "DynamicAnimeCatalog"

    async def search(self, query: str) -> list[Anime]:
        try:
            records = await self._search_records(query)
        except Exception as e:
            return self._degrade("search", e, {"query": query})

        return [
            Anime(
                id=record.id or str(uuid.uuid4()),
                title=record.title or "Unknown",
                synopsis=record.synopsis,
                cover_image=record.cover_image,
                detail_page=record.detail_page,
            )
            for record in records
        ]

    async def browse_popular(self) -> list[Anime]:
        return await self.search("")

    async def get_episodes(self, anime: Anime) -> list[Episode]:
        endpoint = self._config.content.episodes
        if endpoint is None:
            return []

        variables = {"showId": anime.id, "animeId": anime.id, "id": anime.id}
        try:
            records = await self._fetch_records(endpoint, variables, endpoint.results_path)
        except Exception as e:
            return self._degrade("get_episodes", e, {"anime_id": anime.id})

        episodes = []
        for counter, record in enumerate(records, start=1):
            number = int(_parse_number(record.number, counter))
            episodes.append(Episode(
                id=record.id or f"{anime.id}{EPISODE_MARKER}{number}",
                title=record.title or f"Episode {number}",
                number=number,
                page_url=record.detail_page or record.page,
            ))
        return sorted(episodes, key=lambda episode: episode.number)

    async def get_streams(self, episode: Episode) -> list[StreamLink]:
        endpoint = self._config.media.streams
        if endpoint is None:
            return []

        parsed = split_child_id(episode.id, EPISODE_MARKER)
        show_id, episode_string = parsed or (episode.id, str(episode.number))
        variables = {
            "showId": show_id,
            "animeId": show_id,
            "episodeId": episode.id,
            "episodeString": episode_string,
            "ep": episode_string,
            "translationType": TRANSLATION_TYPE,
        }
        try:
            records = await self._fetch_records(endpoint, variables, endpoint.results_path)
        except Exception as e:
            return self._degrade("get_streams", e, {"episode_id": episode.id})

        streams = []
        for record in records:
            if not record.url:
                continue
            decoded = self._decode_media_url(record.url, endpoint.custom_decoder)
            url = _absolute_url(decoded)
            if url is None:
                self._log_debug("Dropping non-absolute stream URL", {"url": decoded})
                continue
            streams.append(StreamLink(
                url=url,
                quality=record.quality or "auto",
                provider=record.provider or self._config.name,
                referrer=self._config.hosts.referer,
            ))
        return streams


class DynamicMangaCatalog(DynamicCatalogBase):
    """Manga catalog driven by a provider configuration."""

    COMPONENT = "DynamicMangaCatalog"

    async def search(self, query: str) -> list[Manga]:
        try:
            records = await self._search_records(query)
        except Exception as e:
            return self._degrade("search", e, {"query": query})

        return [
            Manga(
                id=record.id or str(uuid.uuid4()),
                title=record.title or "Unknown",
                synopsis=record.synopsis,
                cover_image=record.cover_image,
                detail_page=record.detail_page,
            )
            for record in records
        ]

    async def browse_popular(self) -> list[Manga]:
        return await self.search("")

    async def get_chapters(self, manga: Manga) -> list[Chapter]:
        endpoint = self._config.content.chapters
        if endpoint is None:
            return []

        variables = {"mangaId": manga.id, "id": manga.id}
        try:
            records = await self._fetch_records(endpoint, variables, endpoint.results_path)
        except Exception as e:
            return self._degrade("get_chapters", e, {"manga_id": manga.id})

        chapters = []
        for counter, record in enumerate(records, start=1):
            number = _parse_number(record.number, counter)
            label = _format_number(number)
            chapters.append(Chapter(
                id=record.id or f"{manga.id}{CHAPTER_MARKER}{label}",
                title=record.title or f"Chapter {label}",
                number=number,
                page_url=record.detail_page or record.page,
            ))
        return sorted(chapters, key=lambda chapter: chapter.number)

    async def get_pages(self, chapter: Chapter) -> list[ChapterPage]:
        endpoint = self._config.media.pages
        if endpoint is None:
            return []

        parsed = split_child_id(chapter.id, CHAPTER_MARKER)
        manga_id, chapter_string = parsed or (chapter.id, _format_number(chapter.number))
        variables = {
            "mangaId": manga_id,
            "chapterId": chapter.id,
            "chapterString": chapter_string,
            "translationType": TRANSLATION_TYPE,
        }
        try:
            records = await self._fetch_records(endpoint, variables, endpoint.results_path)
        except Exception as e:
            return self._degrade("get_pages", e, {"chapter_id": chapter.id})

        pages = []
        for counter, record in enumerate(records, start=1):
            if not record.url:
                continue
            url = _absolute_url(record.url, endpoint.image_base_url)
            if url is None:
                self._log_debug("Dropping unresolvable page URL", {"url": record.url})
                continue
            pages.append(ChapterPage(
                page_number=int(_parse_number(record.number or record.page, counter)),
                image_url=url,
                referrer=self._config.hosts.referer,
            ))
        return sorted(pages, key=lambda page: page.page_number)
