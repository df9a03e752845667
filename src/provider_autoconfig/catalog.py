"""
Catalog capability and the domain items it returns.

Every catalog, whether a hardcoded built-in scraper supplied by the caller,
a DynamicAnimeCatalog / DynamicMangaCatalog driven by a provider config, or
an aggregator over several of them, exposes the same shape:
search, browse_popular, list children, resolve media.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class Episode:
    id: str
    title: str
    number: int
    page_url: Optional[str] = None


@dataclass(frozen=True)
class Anime:
    id: str
    title: str
    synopsis: Optional[str] = None
    cover_image: Optional[str] = None
    detail_page: Optional[str] = None
    episodes: tuple[Episode, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StreamLink:
    url: str
    quality: str = "auto"
    provider: Optional[str] = None
    referrer: Optional[str] = None


@dataclass(frozen=True)
class Chapter:
    id: str
    title: str
    number: float
    page_url: Optional[str] = None


@dataclass(frozen=True)
class Manga:
    id: str
    title: str
    synopsis: Optional[str] = None
    cover_image: Optional[str] = None
    detail_page: Optional[str] = None
    chapters: tuple[Chapter, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ChapterPage:
    page_number: int
    image_url: str
    referrer: Optional[str] = None


@runtime_checkable
class AnimeCatalog(Protocol):
    """Catalog capability for anime providers."""

    async def search(self, query: str) -> list[Anime]:
        ...

    async def browse_popular(self) -> list[Anime]:
        ...

    async def get_episodes(self, anime: Anime) -> list[Episode]:
        ...

    async def get_streams(self, episode: Episode) -> list[StreamLink]:
        ...


@runtime_checkable
class MangaCatalog(Protocol):
    """Catalog capability for manga providers."""

    async def search(self, query: str) -> list[Manga]:
        ...

    async def browse_popular(self) -> list[Manga]:
        ...

    async def get_chapters(self, manga: Manga) -> list[Chapter]:
        ...

    async def get_pages(self, chapter: Chapter) -> list[ChapterPage]:
        ...
