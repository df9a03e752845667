"""
Aggregate catalogs over built-in and dynamic providers.

Search and browse fan out concurrently to every built-in catalog and to the
active dynamic catalog, then merge: built-in results first, dynamic results
after. Items from a dynamic provider get ids of the form
``<slug>:<original id>`` so follow-up calls can be routed back to it.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Generic, Mapping, Optional, TypeVar

import httpx

from .audit_logger import AuditLogger, ComponentLogging
from .catalog import (
    Anime,
    AnimeCatalog,
    Chapter,
    ChapterPage,
    Episode,
    Manga,
    MangaCatalog,
    StreamLink,
)
from .dynamic_catalog import DynamicAnimeCatalog, DynamicCatalogBase, DynamicMangaCatalog
from .enums import ProviderType
from .provider_config import DynamicProviderConfig
from .provider_store import ProviderStore
from .rate_limiter import RateLimiter
from .retry_manager import RetryManager
from .transform_engine import TransformEngine

C = TypeVar("C")
T = TypeVar("T")


def slug_prefix(identifier: str) -> Optional[str]:
    """
    Return the provider slug embedded in an item id, if any.

    The slug is the text before the first ``:``. A purely numeric prefix is
    not a slug, so built-in ids such as ``"42:ep-1"`` are left alone.
    """
    index = identifier.find(":")
    if index <= 0:
        return None
    prefix = identifier[:index]
    if prefix.isdigit():
        return None
    return prefix.lower()


def add_prefix(identifier: str, slug: str) -> str:
    if identifier.lower().startswith(f"{slug.lower()}:"):
        return identifier
    return f"{slug}:{identifier}"


def strip_prefix(identifier: str, slug: str) -> str:
    if identifier.lower().startswith(f"{slug.lower()}:"):
        return identifier[len(slug) + 1:]
    return identifier


@dataclass
class CatalogRoute(Generic[C]):
    """Where a follow-up call for one item id should go."""

    catalog: C
    local_id: str
    dynamic_slug: Optional[str] = None


class AggregateCatalogBase(ComponentLogging, Generic[C]):
    """Routing and fan-out shared by the anime and manga aggregators."""

    COMPONENT = "AggregateCatalog"
    CONTENT_TYPE = ProviderType.ANIME

    def __init__(
        self,
        store: ProviderStore,
        builtin_catalogs: Optional[Mapping[str, C]] = None,
        catalog_factory: Optional[Callable[[DynamicProviderConfig], DynamicCatalogBase]] = None,
        transform_engine: Optional[TransformEngine] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_manager: Optional[RetryManager] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the aggregator.

        Args:
            store: Provider store used to find the active and slug-addressed providers
            builtin_catalogs: Built-in catalogs keyed by slug, in priority order
            catalog_factory: Builds a dynamic catalog from a config (default: the dynamic runtime)
            transform_engine: Shared extraction engine for dynamic catalogs
            http_client: Shared HTTP client for dynamic catalogs
            retry_manager: Shared retry loop for dynamic catalogs
            rate_limiter: Shared rate limiter for dynamic catalogs
            logger: Optional audit logger
        """
        self._store = store
        self._builtins: dict[str, C] = {
            slug.lower(): catalog for slug, catalog in (builtin_catalogs or {}).items()
        }
        self._catalog_factory = catalog_factory
        self._engine = transform_engine or TransformEngine(logger=logger)
        self._http_client = http_client
        self._retry = retry_manager
        self._rate_limiter = rate_limiter or RateLimiter()
        self._logger = logger
        self._dynamic: dict[str, DynamicCatalogBase] = {}
        # Replaced catalogs may still have requests in flight; closed with the aggregator
        self._retired: list[DynamicCatalogBase] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Close every dynamic catalog created by this aggregator, including replaced ones."""
        catalogs = self._retired + list(self._dynamic.values())
        self._retired = []
        self._dynamic.clear()
        for catalog in catalogs:
            await catalog.close()

    def _create_dynamic(self, config: DynamicProviderConfig) -> DynamicCatalogBase:
        raise NotImplementedError

    def _is_compatible(self, config: DynamicProviderConfig) -> bool:
        return config.type in (self.CONTENT_TYPE, ProviderType.BOTH)

    def _dynamic_catalog(self, config: DynamicProviderConfig) -> DynamicCatalogBase:
        cached = self._dynamic.get(config.slug)
        if cached is not None and cached.config == config:
            return cached
        if self._catalog_factory is not None:
            catalog = self._catalog_factory(config)
        else:
            catalog = self._create_dynamic(config)
        if cached is not None:
            self._log_debug("Provider config changed, replacing catalog", {"slug": config.slug})
            self._retired.append(cached)
        self._dynamic[config.slug] = catalog
        return catalog

    async def _active_dynamic(self) -> Optional[DynamicCatalogBase]:
        config = await self._store.get_active(self.CONTENT_TYPE)
        if config is None or not self._is_compatible(config):
            return None
        return self._dynamic_catalog(config)

    async def _safe(self, branch: str, operation: Awaitable[list[T]]) -> list[T]:
        try:
            return await operation
        except Exception as e:
            self._log_warn(
                f"Catalog branch '{branch}' failed, continuing without it",
                {"branch": branch, "error": str(e)},
            )
            return []

    async def _fan_out(self, call: Callable[[Any], Awaitable[list[T]]]) -> list[T]:
        """
        Run ``call`` against every built-in catalog and the active dynamic one.

        Returns:
            Built-in results (in registration order) followed by prefixed dynamic results
        """

        async def dynamic_branch() -> list[T]:
            catalog = await self._active_dynamic()
            if catalog is None:
                return []
            items = await call(catalog)
            return [
                replace(item, id=add_prefix(item.id, catalog.provider_slug))
                for item in items
            ]

        branches = [
            self._safe(slug, call(catalog)) for slug, catalog in self._builtins.items()
        ]
        branches.append(self._safe("dynamic", dynamic_branch()))

        results = await asyncio.gather(*branches)
        merged: list[T] = []
        for items in results:
            merged.extend(items)
        return merged

    async def _route(self, identifier: str) -> Optional[CatalogRoute]:
        """
        Pick the catalog responsible for an item id.

        Order: built-in catalog named by the prefix, stored dynamic provider
        named by the prefix, first built-in catalog, active dynamic catalog.
        """
        slug = slug_prefix(identifier)
        if slug is not None:
            if slug in self._builtins:
                return CatalogRoute(self._builtins[slug], strip_prefix(identifier, slug))

            config = await self._store.get(slug)
            if config is not None and self._is_compatible(config):
                return CatalogRoute(
                    self._dynamic_catalog(config),
                    strip_prefix(identifier, slug),
                    dynamic_slug=config.slug,
                )

        if self._builtins:
            return CatalogRoute(next(iter(self._builtins.values())), identifier)

        active = await self._active_dynamic()
        if active is not None:
            return CatalogRoute(active, identifier)
        return None

    async def _routed(
        self,
        identifier: str,
        item: T,
        call: Callable[[Any, T], Awaitable[list[Any]]],
    ) -> list[Any]:
        try:
            route = await self._route(identifier)
        except Exception as e:
            self._log_warn("Routing failed", {"id": identifier, "error": str(e)})
            return []
        if route is None:
            self._log_warn("No catalog available for item", {"id": identifier})
            return []

        local_item = replace(item, id=route.local_id)
        results = await self._safe(route.dynamic_slug or "builtin", call(route.catalog, local_item))
        if route.dynamic_slug is None:
            return results
        return [
            replace(result, id=add_prefix(result.id, route.dynamic_slug))
            if hasattr(result, "id") else result
            for result in results
        ]


class AggregateAnimeCatalog(AggregateCatalogBase[AnimeCatalog]):
    """Anime catalog merging built-in catalogs and the active dynamic provider."""

    COMPONENT = "AggregateAnimeCatalog"
    CONTENT_TYPE = ProviderType.ANIME

    def _create_dynamic(self, config: DynamicProviderConfig) -> DynamicCatalogBase:
        return DynamicAnimeCatalog(
            config,
            transform_engine=self._engine,
            http_client=self._http_client,
            retry_manager=self._retry,
            rate_limiter=self._rate_limiter,
            logger=self._logger,
        )

    async def search(self, query: str) -> list[Anime]:
        return await self._fan_out(lambda catalog: catalog.search(query))

    async def browse_popular(self) -> list[Anime]:
        return await self._fan_out(lambda catalog: catalog.browse_popular())

    async def get_episodes(self, anime: Anime) -> list[Episode]:
        return await self._routed(
            anime.id, anime, lambda catalog, item: catalog.get_episodes(item)
        )

    async def get_streams(self, episode: Episode) -> list[StreamLink]:
        return await self._routed(
            episode.id, episode, lambda catalog, item: catalog.get_streams(item)
        )


class AggregateMangaCatalog(AggregateCatalogBase[MangaCatalog]):
    """Manga catalog merging built-in catalogs and the active dynamic provider."""

    COMPONENT = "AggregateMangaCatalog"
    CONTENT_TYPE = ProviderType.MANGA

    def _create_dynamic(self, config: DynamicProviderConfig) -> DynamicCatalogBase:
        return DynamicMangaCatalog(
            config,
            transform_engine=self._engine,
            http_client=self._http_client,
            retry_manager=self._retry,
            rate_limiter=self._rate_limiter,
            logger=self._logger,
        )

    async def search(self, query: str) -> list[Manga]:
        return await self._fan_out(lambda catalog: catalog.search(query))

    async def browse_popular(self) -> list[Manga]:
        return await self._fan_out(lambda catalog: catalog.browse_popular())

    async def get_chapters(self, manga: Manga) -> list[Chapter]:
        return await self._routed(
            manga.id, manga, lambda catalog, item: catalog.get_chapters(item)
        )

    async def get_pages(self, chapter: Chapter) -> list[ChapterPage]:
        return await self._routed(
            chapter.id, chapter, lambda catalog, item: catalog.get_pages(item)
        )
