"""
Provider templates and the template library.

Each template scores how well it fits a (SiteProfile, ContentSchema) pair
and can materialize a complete DynamicProviderConfig from it. Discovered
schema data always wins over a template's defaults; defaults only fill
the gaps, so every produced config is directly executable.

The library iterates templates in a fixed order:
graphql-anime, graphql-manga, rest-anime, rest-manga, generic.
On equal scores the first registered template wins. The generic template
always scores 10, so the library always has a candidate.
"""

from abc import abstractmethod
from typing import Optional, Protocol, runtime_checkable

from .audit_logger import AuditLogger, ComponentLogging
from .enums import ApiType, ContentCategory, ProviderType, SearchMethod, TransformType
from .models import ContentListPattern, ContentSchema, MediaPattern, SiteProfile
from .provider_config import (
    ContentConfig,
    DynamicProviderConfig,
    EndpointConfig,
    FieldMapping,
    HostConfig,
    MediaConfig,
    PageConfig,
    SearchConfig,
    StreamConfig,
    TransformRule,
    normalize_slug,
)

GENERIC_NOTES = "This is a generic configuration that may require manual adjustment."


@runtime_checkable
class ProviderTemplate(Protocol):
    """Protocol implemented by every provider template."""

    id: str
    display_name: str
    description: str
    supported_types: ProviderType

    @abstractmethod
    def score(self, profile: SiteProfile, schema: ContentSchema) -> int:
        """
        Score how well this template fits a site.

        Returns:
            A non-negative score; 0 means the template does not apply
        """
        ...

    @abstractmethod
    def apply(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: str,
    ) -> DynamicProviderConfig:
        """Build a complete provider configuration for the site."""
        ...


def _host_config(profile: SiteProfile, api_base: str) -> HostConfig:
    return HostConfig(
        base_host=profile.host,
        api_base=api_base,
        referer=f"{profile.base_url}/",
        custom_headers=profile.headers,
    )


def _first_endpoint_path(schema: ContentSchema, api_type: Optional[ApiType] = None) -> Optional[str]:
    for endpoint in schema.endpoints:
        if api_type is None or endpoint.type == api_type:
            return endpoint.path_and_query
    return None


def _first_endpoint_origin(schema: ContentSchema, api_type: ApiType) -> Optional[str]:
    for endpoint in schema.endpoints:
        if endpoint.type == api_type:
            return endpoint.origin
    return None


def _is_anime_site(profile: SiteProfile) -> bool:
    return profile.category in (ContentCategory.ANIME, ContentCategory.BOTH)


def _is_manga_site(profile: SiteProfile) -> bool:
    return profile.category in (ContentCategory.MANGA, ContentCategory.BOTH)


def _decoder_transforms(media: Optional[MediaPattern]) -> list[TransformRule]:
    if media is None or not media.custom_decoder:
        return []
    return [TransformRule(name=media.custom_decoder, type=TransformType.CUSTOM)]


def _list_endpoint(
    pattern: Optional[ContentListPattern],
    method: SearchMethod,
    endpoint: str,
    query_template: str,
    mappings: list[FieldMapping],
    results_path: Optional[str] = None,
) -> EndpointConfig:
    """Endpoint config from a discovered list pattern, filling gaps with defaults."""
    if pattern is None:
        return EndpointConfig(
            method=method,
            endpoint=endpoint,
            query_template=query_template,
            result_mapping=mappings,
            results_path=results_path,
        )
    return EndpointConfig(
        method=method,
        endpoint=pattern.endpoint or endpoint,
        query_template=pattern.query_template or query_template,
        result_mapping=list(pattern.field_mappings) or mappings,
        results_path=pattern.list_path or results_path,
    )


class GraphQLAnimeTemplate:
    """GraphQL anime sites with a shows / episodes structure."""

    id = "graphql-anime"
    display_name = "GraphQL Anime"
    description = "GraphQL-based anime streaming sites with shows/episodes structure"
    supported_types = ProviderType.ANIME

    SEARCH_QUERY = (
        "query($search: SearchInput, $limit: Int) "
        "{ shows(search: $search, limit: $limit) { edges { _id name thumbnail } } }"
    )
    EPISODES_QUERY = "query($showId: String!) { show(_id: $showId) { _id availableEpisodesDetail } }"
    STREAMS_QUERY = (
        "query($showId: String!, $translationType: VaildTranslationTypeEnumType!, "
        "$episodeString: String!) { episode(showId: $showId, translationType: $translationType, "
        "episodeString: $episodeString) { sourceUrls } }"
    )

    def score(self, profile: SiteProfile, schema: ContentSchema) -> int:
        if not profile.has_graphql:
            return 0

        score = 0
        if _is_anime_site(profile):
            score += 30
        if any(e.type == ApiType.GRAPHQL for e in schema.endpoints):
            score += 30
        if schema.search_pattern is not None and schema.search_pattern.method == SearchMethod.GRAPHQL:
            score += 20
        if schema.episode_pattern is not None:
            score += 20
        return score

    def apply(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: str,
    ) -> DynamicProviderConfig:
        endpoint = _first_endpoint_path(schema, ApiType.GRAPHQL) or "/api"
        search = schema.search_pattern
        if search is not None and search.method != SearchMethod.GRAPHQL:
            search = None
        media = schema.media_pattern

        return DynamicProviderConfig(
            name=provider_name,
            slug=normalize_slug(provider_name),
            type=ProviderType.ANIME,
            hosts=_host_config(profile, f"{profile.scheme}://{profile.host}"),
            search=SearchConfig(
                method=SearchMethod.GRAPHQL,
                endpoint=(search.endpoint if search and search.endpoint else endpoint),
                query_template=(search.query_template if search and search.query_template else self.SEARCH_QUERY),
                result_mapping=(list(search.field_mappings) if search and search.field_mappings else [
                    FieldMapping("$._id", "Id"),
                    FieldMapping("$.name", "Title"),
                    FieldMapping("$.thumbnail", "CoverImage"),
                    FieldMapping("$.description", "Synopsis"),
                ]),
                page_size=20,
                results_path=(search.results_path if search and search.results_path else "$.data.shows.edges"),
            ),
            content=ContentConfig(
                episodes=_list_endpoint(
                    schema.episode_pattern,
                    SearchMethod.GRAPHQL,
                    endpoint,
                    self.EPISODES_QUERY,
                    [FieldMapping("$", "Number")],
                    "$.data.show.availableEpisodesDetail.sub",
                ),
            ),
            media=MediaConfig(
                streams=StreamConfig(
                    method=SearchMethod.GRAPHQL,
                    endpoint=(media.endpoint if media and media.endpoint else endpoint),
                    query_template=(media.query_template if media and media.query_template else self.STREAMS_QUERY),
                    result_mapping=(list(media.field_mappings) if media and media.field_mappings else [
                        FieldMapping("$.sourceUrl", "Url"),
                        FieldMapping("$.sourceName", "Provider"),
                    ]),
                    results_path=(media.media_path if media and media.media_path else "$.data.episode.sourceUrls"),
                    custom_decoder=media.custom_decoder if media else None,
                ),
            ),
            transforms=_decoder_transforms(media),
        )


class GraphQLMangaTemplate:
    """GraphQL manga sites with a mangas / chapters structure."""

    id = "graphql-manga"
    display_name = "GraphQL Manga"
    description = "GraphQL-based manga reading sites with mangas/chapters structure"
    supported_types = ProviderType.MANGA

    SEARCH_QUERY = (
        "query($search: SearchInput, $limit: Int) "
        "{ mangas(search: $search, limit: $limit) { edges { _id name englishName thumbnail } } }"
    )
    CHAPTERS_QUERY = "query($mangaId: String!) { manga(_id: $mangaId) { _id availableChaptersDetail } }"
    PAGES_QUERY = (
        "query($mangaId: String!, $translationType: VaildTranslationTypeMangaEnumType!, "
        "$chapterString: String!) { chapterPages(mangaId: $mangaId, translationType: $translationType, "
        "chapterString: $chapterString) { edges { pictureUrls pictureUrlHead } } }"
    )

    def score(self, profile: SiteProfile, schema: ContentSchema) -> int:
        if not profile.has_graphql:
            return 0

        score = 0
        if _is_manga_site(profile):
            score += 30
        if any(e.type == ApiType.GRAPHQL for e in schema.endpoints):
            score += 30
        if schema.search_pattern is not None and schema.search_pattern.method == SearchMethod.GRAPHQL:
            score += 20
        if schema.chapter_pattern is not None:
            score += 20
        return score

    def apply(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: str,
    ) -> DynamicProviderConfig:
        endpoint = _first_endpoint_path(schema, ApiType.GRAPHQL) or "/api"
        search = schema.search_pattern
        if search is not None and search.method != SearchMethod.GRAPHQL:
            search = None
        media = schema.media_pattern

        return DynamicProviderConfig(
            name=provider_name,
            slug=normalize_slug(provider_name),
            type=ProviderType.MANGA,
            hosts=_host_config(profile, f"{profile.scheme}://{profile.host}"),
            search=SearchConfig(
                method=SearchMethod.GRAPHQL,
                endpoint=(search.endpoint if search and search.endpoint else endpoint),
                query_template=(search.query_template if search and search.query_template else self.SEARCH_QUERY),
                result_mapping=(list(search.field_mappings) if search and search.field_mappings else [
                    FieldMapping("$._id", "Id"),
                    FieldMapping("$.name", "Title"),
                    FieldMapping("$.thumbnail", "CoverImage"),
                    FieldMapping("$.description", "Synopsis"),
                ]),
                page_size=20,
                results_path=(search.results_path if search and search.results_path else "$.data.mangas.edges"),
            ),
            content=ContentConfig(
                chapters=_list_endpoint(
                    schema.chapter_pattern,
                    SearchMethod.GRAPHQL,
                    endpoint,
                    self.CHAPTERS_QUERY,
                    [FieldMapping("$", "Number")],
                    "$.data.manga.availableChaptersDetail.sub",
                ),
            ),
            media=MediaConfig(
                pages=PageConfig(
                    method=SearchMethod.GRAPHQL,
                    endpoint=(media.endpoint if media and media.endpoint else endpoint),
                    query_template=(media.query_template if media and media.query_template else self.PAGES_QUERY),
                    result_mapping=(list(media.field_mappings) if media and media.field_mappings else [
                        FieldMapping("$.url", "Url"),
                        FieldMapping("$.num", "Number"),
                    ]),
                    results_path=(media.media_path if media and media.media_path else "$.data.chapterPages.edges[0].pictureUrls"),
                ),
            ),
            transforms=_decoder_transforms(media),
        )


class RestAnimeTemplate:
    """REST anime APIs with search / info / watch endpoints."""

    id = "rest-anime"
    display_name = "REST Anime"
    description = "REST API-based anime streaming sites with standard endpoints"
    supported_types = ProviderType.ANIME

    def score(self, profile: SiteProfile, schema: ContentSchema) -> int:
        score = 0
        if profile.has_graphql:
            score -= 20
        if _is_anime_site(profile):
            score += 30
        if any(e.type == ApiType.REST for e in schema.endpoints):
            score += 40
        if schema.search_pattern is not None and schema.search_pattern.method == SearchMethod.REST:
            score += 20
        if any("/api/" in e for e in profile.detected_api_endpoints):
            score += 10
        return max(0, score)

    def apply(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: str,
    ) -> DynamicProviderConfig:
        api_base = _first_endpoint_origin(schema, ApiType.REST) or f"{profile.scheme}://{profile.host}"
        search = schema.search_pattern
        if search is not None and search.method != SearchMethod.REST:
            search = None
        media = schema.media_pattern

        return DynamicProviderConfig(
            name=provider_name,
            slug=normalize_slug(provider_name),
            type=ProviderType.ANIME,
            hosts=_host_config(profile, api_base),
            search=SearchConfig(
                method=SearchMethod.REST,
                endpoint=(search.endpoint if search and search.endpoint else "/search"),
                query_template=(search.query_template if search and search.query_template else "?q=${query}"),
                result_mapping=(list(search.field_mappings) if search and search.field_mappings else [
                    FieldMapping("$.id", "Id"),
                    FieldMapping("$.title", "Title"),
                    FieldMapping("$.image", "CoverImage"),
                    FieldMapping("$.description", "Synopsis"),
                ]),
                page_size=20,
                results_path=search.results_path if search else None,
            ),
            content=ContentConfig(
                episodes=_list_endpoint(
                    schema.episode_pattern,
                    SearchMethod.REST,
                    "/info",
                    "/${id}",
                    [
                        FieldMapping("$.id", "Id"),
                        FieldMapping("$.number", "Number"),
                        FieldMapping("$.title", "Title"),
                    ],
                ),
            ),
            media=MediaConfig(
                streams=StreamConfig(
                    method=SearchMethod.REST,
                    endpoint=(media.endpoint if media and media.endpoint else "/watch"),
                    query_template=(media.query_template if media and media.query_template else "/${episodeId}"),
                    result_mapping=(list(media.field_mappings) if media and media.field_mappings else [
                        FieldMapping("$.url", "Url"),
                        FieldMapping("$.quality", "Quality"),
                    ]),
                    results_path=media.media_path if media else None,
                    custom_decoder=media.custom_decoder if media else None,
                ),
            ),
            transforms=_decoder_transforms(media),
        )


class RestMangaTemplate:
    """REST manga APIs with search / info / read endpoints."""

    id = "rest-manga"
    display_name = "REST Manga"
    description = "REST API-based manga reading sites with standard endpoints"
    supported_types = ProviderType.MANGA

    def score(self, profile: SiteProfile, schema: ContentSchema) -> int:
        score = 0
        if profile.has_graphql:
            score -= 20
        if _is_manga_site(profile):
            score += 30
        if any(e.type == ApiType.REST for e in schema.endpoints):
            score += 40
        if schema.search_pattern is not None and schema.search_pattern.method == SearchMethod.REST:
            score += 20
        if any("/api/" in e for e in profile.detected_api_endpoints):
            score += 10
        return max(0, score)

    def apply(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: str,
    ) -> DynamicProviderConfig:
        api_base = _first_endpoint_origin(schema, ApiType.REST) or f"{profile.scheme}://{profile.host}"
        search = schema.search_pattern
        if search is not None and search.method != SearchMethod.REST:
            search = None
        media = schema.media_pattern

        return DynamicProviderConfig(
            name=provider_name,
            slug=normalize_slug(provider_name),
            type=ProviderType.MANGA,
            hosts=_host_config(profile, api_base),
            search=SearchConfig(
                method=SearchMethod.REST,
                endpoint=(search.endpoint if search and search.endpoint else "/search"),
                query_template=(search.query_template if search and search.query_template else "?q=${query}"),
                result_mapping=(list(search.field_mappings) if search and search.field_mappings else [
                    FieldMapping("$.id", "Id"),
                    FieldMapping("$.title", "Title"),
                    FieldMapping("$.image", "CoverImage"),
                    FieldMapping("$.description", "Synopsis"),
                ]),
                page_size=20,
                results_path=search.results_path if search else None,
            ),
            content=ContentConfig(
                chapters=_list_endpoint(
                    schema.chapter_pattern,
                    SearchMethod.REST,
                    "/info",
                    "/${id}",
                    [
                        FieldMapping("$.id", "Id"),
                        FieldMapping("$.number", "Number"),
                        FieldMapping("$.title", "Title"),
                    ],
                ),
            ),
            media=MediaConfig(
                pages=PageConfig(
                    method=SearchMethod.REST,
                    endpoint=(media.endpoint if media and media.endpoint else "/read"),
                    query_template=(media.query_template if media and media.query_template else "/${chapterId}"),
                    result_mapping=(list(media.field_mappings) if media and media.field_mappings else [
                        FieldMapping("$.img", "Url"),
                        FieldMapping("$.page", "Number"),
                    ]),
                    results_path=media.media_path if media else None,
                ),
            ),
            transforms=_decoder_transforms(media),
        )


class GenericTemplate:
    """Fallback that applies to every site with a constant low score."""

    id = "generic"
    display_name = "Generic"
    description = "Generic fallback configuration for any site"
    supported_types = ProviderType.BOTH

    SCORE = 10

    def score(self, profile: SiteProfile, schema: ContentSchema) -> int:
        return self.SCORE

    def apply(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        provider_name: str,
    ) -> DynamicProviderConfig:
        if profile.category == ContentCategory.MANGA:
            provider_type = ProviderType.MANGA
        elif profile.category == ContentCategory.BOTH:
            provider_type = ProviderType.BOTH
        else:
            provider_type = ProviderType.ANIME

        method = SearchMethod.GRAPHQL if profile.has_graphql else SearchMethod.REST
        endpoint = _first_endpoint_path(schema) or "/api"
        search = schema.search_pattern

        def child(path_template: str) -> EndpointConfig:
            return EndpointConfig(method=method, endpoint=endpoint, query_template=path_template)

        content = ContentConfig()
        media = MediaConfig()
        if provider_type != ProviderType.MANGA:
            content.episodes = child("/${id}")
            media.streams = StreamConfig(method=method, endpoint=endpoint, query_template="/${id}")
        if provider_type != ProviderType.ANIME:
            content.chapters = child("/${id}")
            media.pages = PageConfig(method=method, endpoint=endpoint, query_template="/${id}")

        return DynamicProviderConfig(
            name=provider_name,
            slug=normalize_slug(provider_name),
            type=provider_type,
            hosts=_host_config(profile, f"{profile.scheme}://{profile.host}"),
            search=SearchConfig(
                method=search.method if search else method,
                endpoint=(search.endpoint if search and search.endpoint else endpoint),
                query_template=(search.query_template if search and search.query_template else "?q=${query}"),
                result_mapping=(list(search.field_mappings) if search and search.field_mappings else [
                    FieldMapping("$.id", "Id"),
                    FieldMapping("$.title", "Title"),
                    FieldMapping("$.name", "Title"),
                ]),
                page_size=20,
                results_path=search.results_path if search else None,
            ),
            content=content,
            media=media,
            notes=GENERIC_NOTES,
        )


def default_templates() -> list[ProviderTemplate]:
    """The built-in templates in tie-break order."""
    return [
        GraphQLAnimeTemplate(),
        GraphQLMangaTemplate(),
        RestAnimeTemplate(),
        RestMangaTemplate(),
        GenericTemplate(),
    ]


class TemplateLibrary(ComponentLogging):
    """Ordered registry of provider templates."""

    COMPONENT = "TemplateLibrary"

    def __init__(
        self,
        templates: Optional[list[ProviderTemplate]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._templates = list(templates) if templates is not None else default_templates()
        self._logger = logger

    def get_all(self) -> list[ProviderTemplate]:
        return list(self._templates)

    def get_by_id(self, template_id: str) -> Optional[ProviderTemplate]:
        lowered = template_id.lower()
        for template in self._templates:
            if template.id.lower() == lowered:
                return template
        return None

    def score_all(self, profile: SiteProfile, schema: ContentSchema) -> list[tuple[ProviderTemplate, int]]:
        """Score every template, in registration order."""
        return [(template, template.score(profile, schema)) for template in self._templates]

    def find_best_match(self, profile: SiteProfile, schema: ContentSchema) -> Optional[ProviderTemplate]:
        """
        Pick the highest-scoring template.

        Templates scoring 0 are excluded. On equal scores the template
        registered first wins.

        Returns:
            The best template, or None if every template scored 0
        """
        best: Optional[ProviderTemplate] = None
        best_score = 0
        for template, score in self.score_all(profile, schema):
            self._log_debug(
                "Template scored",
                {"template": template.id, "score": score, "site": profile.host},
            )
            if score > best_score:
                best, best_score = template, score

        if best is None:
            self._log_warn("No matching template", {"site": profile.host})
            return None

        self._log_info(
            "Best matching template",
            {"template": best.id, "score": best_score, "site": profile.host},
        )
        return best
