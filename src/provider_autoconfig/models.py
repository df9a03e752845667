"""
Data models for the analysis pipeline.

This module defines the transient structures produced while analysing a
site (profile, discovered endpoints, content schema), the validation and
orchestration results, and the read models exposed by the provider store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    ApiType,
    ContentCategory,
    EndpointPurpose,
    ProviderType,
    SearchMethod,
    SiteType,
)
from .provider_config import DynamicProviderConfig, FieldMapping


@dataclass(frozen=True)
class SiteKnowledge:
    """Prior knowledge about a well-known site."""

    name: str
    category: ContentCategory
    api_patterns: tuple[str, ...] = ()
    notes: Optional[str] = None


@dataclass(frozen=True)
class SiteProfile:
    """Immutable snapshot of one probed site."""

    base_url: str  # scheme://host
    type: SiteType = SiteType.UNKNOWN
    category: ContentCategory = ContentCategory.UNKNOWN
    requires_javascript: bool = False
    has_cloudflare_protection: bool = False
    has_graphql: bool = False
    server_software: Optional[str] = None
    js_framework: Optional[str] = None
    detected_api_endpoints: tuple[str, ...] = ()
    detected_cdn_hosts: tuple[str, ...] = ()
    required_headers: tuple[tuple[str, str], ...] = ()
    site_title: Optional[str] = None
    site_description: Optional[str] = None
    robots_txt: Optional[str] = None
    errors: tuple[str, ...] = ()
    known_site_info: Optional[SiteKnowledge] = None

    @property
    def host(self) -> str:
        return self.base_url.split("://", 1)[-1].split("/", 1)[0]

    @property
    def scheme(self) -> str:
        return self.base_url.split("://", 1)[0] if "://" in self.base_url else "https"

    @property
    def headers(self) -> dict[str, str]:
        return dict(self.required_headers)


@dataclass(frozen=True)
class ApiEndpoint:
    """One discovered network endpoint."""

    url: str
    type: ApiType
    method: str = "GET"
    purpose: EndpointPurpose = EndpointPurpose.UNKNOWN
    sample_query: Optional[str] = None
    sample_response: Optional[str] = None
    confidence: int = 50
    notes: Optional[str] = None
    results_path: Optional[str] = None
    field_mappings: tuple[FieldMapping, ...] = ()

    @property
    def path_and_query(self) -> str:
        """The URL without scheme and host, e.g. ``/api/search?q=x``."""
        rest = self.url.split("://", 1)[-1]
        index = rest.find("/")
        return rest[index:] if index >= 0 else "/"

    @property
    def origin(self) -> str:
        scheme, _, rest = self.url.partition("://")
        return f"{scheme}://{rest.split('/', 1)[0]}"


@dataclass
class SearchPattern:
    method: SearchMethod
    endpoint: Optional[str] = None
    query_template: Optional[str] = None
    results_path: Optional[str] = None
    field_mappings: list[FieldMapping] = field(default_factory=list)


@dataclass
class ContentListPattern:
    """Pattern for listing episodes or chapters of an item."""

    method: SearchMethod
    endpoint: Optional[str] = None
    query_template: Optional[str] = None
    list_path: Optional[str] = None
    field_mappings: list[FieldMapping] = field(default_factory=list)


@dataclass
class MediaPattern:
    method: SearchMethod
    endpoint: Optional[str] = None
    query_template: Optional[str] = None
    media_path: Optional[str] = None
    requires_decoding: bool = False
    custom_decoder: Optional[str] = None
    field_mappings: list[FieldMapping] = field(default_factory=list)


@dataclass
class ContentIdentifierPattern:
    url_pattern: Optional[str] = None
    json_path: Optional[str] = None
    example: Optional[str] = None


@dataclass
class ContentSchema:
    """Content structure inferred from discovery output."""

    search_pattern: Optional[SearchPattern] = None
    id_pattern: Optional[ContentIdentifierPattern] = None
    episode_pattern: Optional[ContentListPattern] = None
    chapter_pattern: Optional[ContentListPattern] = None
    media_pattern: Optional[MediaPattern] = None
    endpoints: list[ApiEndpoint] = field(default_factory=list)


@dataclass
class ValidationCheck:
    """Outcome of one named validation step."""

    name: str
    passed: bool
    description: Optional[str] = None
    error_message: Optional[str] = None
    sample_data: Optional[str] = None
    duration: float = 0.0

    @classmethod
    def success(
        cls,
        name: str,
        description: Optional[str] = None,
        sample_data: Optional[str] = None,
        duration: float = 0.0,
    ) -> "ValidationCheck":
        return cls(
            name=name,
            passed=True,
            description=description,
            sample_data=sample_data,
            duration=duration,
        )

    @classmethod
    def failure(
        cls,
        name: str,
        error: str,
        description: Optional[str] = None,
        duration: float = 0.0,
    ) -> "ValidationCheck":
        return cls(
            name=name,
            passed=False,
            description=description,
            error_message=error,
            duration=duration,
        )


@dataclass
class ValidationResult:
    """Result of validating a provider configuration against the live site."""

    is_valid: bool
    checks: list[ValidationCheck] = field(default_factory=list)
    suggested_fixes: Optional[DynamicProviderConfig] = None
    error_message: Optional[str] = None
    duration: float = 0.0

    @property
    def failed_checks(self) -> list[ValidationCheck]:
        return [check for check in self.checks if not check.passed]


@dataclass
class AnalysisPhase:
    name: str
    succeeded: bool
    message: Optional[str] = None
    duration: float = 0.0
    steps: list[str] = field(default_factory=list)


@dataclass
class AutoconfigProgress:
    """Progress event emitted by the orchestrator."""

    phase: str
    step: str
    percentage: int = 0
    succeeded: Optional[bool] = None
    message: Optional[str] = None


@dataclass
class AutoconfigResult:
    """Outcome of a complete autoconfig run."""

    success: bool
    config: Optional[DynamicProviderConfig] = None
    profile: Optional[SiteProfile] = None
    schema: Optional[ContentSchema] = None
    validation: Optional[ValidationResult] = None
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    phases: list[AnalysisPhase] = field(default_factory=list)
    duration: float = 0.0

    @classmethod
    def failure(
        cls,
        error: str,
        profile: Optional[SiteProfile],
        phases: list[AnalysisPhase],
        duration: float,
        warnings: Optional[list[str]] = None,
    ) -> "AutoconfigResult":
        return cls(
            success=False,
            profile=profile,
            error=error,
            phases=phases,
            duration=duration,
            warnings=warnings or [],
        )


@dataclass
class ProviderInfo:
    """Summary of a stored provider for listings."""

    slug: str
    name: str
    type: ProviderType
    base_host: str
    is_built_in: bool = False
    is_active: bool = False
    last_validated_at: Optional[datetime] = None
    version: str = "1.0.0"

    @classmethod
    def from_config(cls, config: DynamicProviderConfig, is_active: bool = False) -> "ProviderInfo":
        return cls(
            slug=config.slug,
            name=config.name,
            type=config.type,
            base_host=config.hosts.base_host,
            is_built_in=config.is_built_in,
            is_active=is_active,
            last_validated_at=config.last_validated_at,
            version=config.version,
        )


@dataclass
class ActiveProviders:
    """Pointer from content type to the active provider slug."""

    anime_provider: Optional[str] = None
    manga_provider: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "animeProvider": self.anime_provider,
            "mangaProvider": self.manga_provider,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ActiveProviders":
        anime = data.get("animeProvider")
        manga = data.get("mangaProvider")
        return cls(
            anime_provider=anime if isinstance(anime, str) and anime else None,
            manga_provider=manga if isinstance(manga, str) and manga else None,
        )
