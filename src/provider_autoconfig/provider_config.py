"""
Persisted provider configuration model.

A DynamicProviderConfig is the portable unit written to the provider store:
hosts, optional auth, request templates for search / content / media, field
mappings, named transform rules and an optional rate limit. Serialization
uses camelCase keys, omits null fields, writes enums as their string tokens
and never writes the process-local ``is_built_in`` flag.
"""

import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional, Type, TypeVar

from .config import DEFAULT_USER_AGENT
from .enums import AuthType, ProviderType, SearchMethod, TransformType
from .exceptions import ConfigurationError

E = TypeVar("E")


def normalize_slug(value: str) -> str:
    """
    Normalize a provider name or slug to its storage/routing key.

    Lowercase, dots and colons are dropped (a colon would break identifier
    prefix routing) and every other run of characters outside ``[a-z0-9]``
    becomes a single hyphen, so a slug is always a plain file name.
    """
    slug = value.strip().lower()
    slug = slug.replace(".", "").replace(":", "")
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")


def _parse_enum(enum_cls: Type[E], value: Any, default: E) -> E:
    """Parse an enum token case-insensitively, falling back to ``default``."""
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    token = str(value).lower()
    for member in enum_cls:  # type: ignore[attr-defined]
        if member.value.lower() == token or member.name.lower() == token:
            return member
    return default


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _drop_none(data: dict) -> dict:
    return {key: value for key, value in data.items() if value is not None}


@dataclass
class FieldMapping:
    """Extraction rule: source path -> target field, with an optional transform."""

    source_path: str
    target_field: str
    transform: TransformType = TransformType.NONE
    transform_params: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "sourcePath": self.source_path,
            "targetField": self.target_field,
            "transform": self.transform.value,
            "transformParams": self.transform_params,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "FieldMapping":
        return cls(
            source_path=data.get("sourcePath", "$"),
            target_field=data.get("targetField", ""),
            transform=_parse_enum(TransformType, data.get("transform"), TransformType.NONE),
            transform_params=data.get("transformParams"),
        )


def _mappings_to_list(mappings: list[FieldMapping]) -> list[dict]:
    return [mapping.to_dict() for mapping in mappings]


def _mappings_from_list(items: Any) -> list[FieldMapping]:
    if not isinstance(items, list):
        return []
    return [FieldMapping.from_dict(item) for item in items if isinstance(item, dict)]


@dataclass
class HostConfig:
    """Hosts and headers used for every request to a provider."""

    base_host: str
    api_base: Optional[str] = None
    referer: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    custom_headers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _drop_none({
            "baseHost": self.base_host,
            "apiBase": self.api_base,
            "referer": self.referer,
            "userAgent": self.user_agent,
            "customHeaders": dict(self.custom_headers),
        })

    @classmethod
    def from_dict(cls, data: dict) -> "HostConfig":
        return cls(
            base_host=data.get("baseHost", ""),
            api_base=data.get("apiBase"),
            referer=data.get("referer"),
            user_agent=data.get("userAgent", DEFAULT_USER_AGENT),
            custom_headers=dict(data.get("customHeaders") or {}),
        )


@dataclass
class AuthConfig:
    """Pre-supplied authentication material (no auth flows are performed)."""

    type: AuthType = AuthType.NONE
    header_name: Optional[str] = None
    header_value: Optional[str] = None
    required_cookies: list[str] = field(default_factory=list)
    cookies: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return _drop_none({
            "type": self.type.value,
            "headerName": self.header_name,
            "headerValue": self.header_value,
            "requiredCookies": list(self.required_cookies),
            "cookies": dict(self.cookies),
        })

    @classmethod
    def from_dict(cls, data: dict) -> "AuthConfig":
        return cls(
            type=_parse_enum(AuthType, data.get("type"), AuthType.NONE),
            header_name=data.get("headerName"),
            header_value=data.get("headerValue"),
            required_cookies=list(data.get("requiredCookies") or []),
            cookies=dict(data.get("cookies") or {}),
        )


@dataclass
class SearchConfig:
    """How to issue a search and map its results."""

    method: SearchMethod = SearchMethod.REST
    endpoint: str = ""
    query_template: str = ""
    result_mapping: list[FieldMapping] = field(default_factory=list)
    page_size: int = 20
    results_path: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "method": self.method.value,
            "endpoint": self.endpoint,
            "queryTemplate": self.query_template,
            "resultMapping": _mappings_to_list(self.result_mapping),
            "pageSize": self.page_size,
            "resultsPath": self.results_path,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "SearchConfig":
        return cls(
            method=_parse_enum(SearchMethod, data.get("method"), SearchMethod.REST),
            endpoint=data.get("endpoint", ""),
            query_template=data.get("queryTemplate", ""),
            result_mapping=_mappings_from_list(data.get("resultMapping")),
            page_size=int(data.get("pageSize", 20)),
            results_path=data.get("resultsPath"),
        )


@dataclass
class EndpointConfig:
    """Request template for a content or media endpoint."""

    method: SearchMethod = SearchMethod.REST
    endpoint: str = ""
    query_template: str = ""
    result_mapping: list[FieldMapping] = field(default_factory=list)
    results_path: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "method": self.method.value,
            "endpoint": self.endpoint,
            "queryTemplate": self.query_template,
            "resultMapping": _mappings_to_list(self.result_mapping),
            "resultsPath": self.results_path,
        })

    @classmethod
    def _base_kwargs(cls, data: dict) -> dict:
        return {
            "method": _parse_enum(SearchMethod, data.get("method"), SearchMethod.REST),
            "endpoint": data.get("endpoint", ""),
            "query_template": data.get("queryTemplate", ""),
            "result_mapping": _mappings_from_list(data.get("resultMapping")),
            "results_path": data.get("resultsPath"),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EndpointConfig":
        return cls(**cls._base_kwargs(data))


@dataclass
class StreamConfig(EndpointConfig):
    """Stream resolution endpoint, optionally naming a custom URL decoder."""

    custom_decoder: Optional[str] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.custom_decoder is not None:
            data["customDecoder"] = self.custom_decoder
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StreamConfig":
        return cls(custom_decoder=data.get("customDecoder"), **cls._base_kwargs(data))


@dataclass
class PageConfig(EndpointConfig):
    """Page resolution endpoint, optionally naming a base for relative image URLs."""

    image_base_url: Optional[str] = None

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.image_base_url is not None:
            data["imageBaseUrl"] = self.image_base_url
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PageConfig":
        return cls(image_base_url=data.get("imageBaseUrl"), **cls._base_kwargs(data))


def _optional(cls, data: Any):
    return cls.from_dict(data) if isinstance(data, dict) else None


@dataclass
class ContentConfig:
    episodes: Optional[EndpointConfig] = None
    chapters: Optional[EndpointConfig] = None
    details: Optional[EndpointConfig] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "episodes": self.episodes.to_dict() if self.episodes else None,
            "chapters": self.chapters.to_dict() if self.chapters else None,
            "details": self.details.to_dict() if self.details else None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "ContentConfig":
        return cls(
            episodes=_optional(EndpointConfig, data.get("episodes")),
            chapters=_optional(EndpointConfig, data.get("chapters")),
            details=_optional(EndpointConfig, data.get("details")),
        )


@dataclass
class MediaConfig:
    streams: Optional[StreamConfig] = None
    pages: Optional[PageConfig] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "streams": self.streams.to_dict() if self.streams else None,
            "pages": self.pages.to_dict() if self.pages else None,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "MediaConfig":
        return cls(
            streams=_optional(StreamConfig, data.get("streams")),
            pages=_optional(PageConfig, data.get("pages")),
        )


@dataclass
class TransformRule:
    """A named transform, usually referencing a custom decoder."""

    name: str
    type: TransformType = TransformType.CUSTOM
    pattern: Optional[str] = None
    replacement: Optional[str] = None
    decoder_class: Optional[str] = None

    def to_dict(self) -> dict:
        return _drop_none({
            "name": self.name,
            "type": self.type.value,
            "pattern": self.pattern,
            "replacement": self.replacement,
            "decoderClass": self.decoder_class,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "TransformRule":
        return cls(
            name=data.get("name", ""),
            type=_parse_enum(TransformType, data.get("type"), TransformType.CUSTOM),
            pattern=data.get("pattern"),
            replacement=data.get("replacement"),
            decoder_class=data.get("decoderClass"),
        )


@dataclass
class RateLimitConfig:
    requests_per_minute: int = 60
    retry_after_default_seconds: float = 5.0
    use_exponential_backoff: bool = True

    def to_dict(self) -> dict:
        return {
            "requestsPerMinute": self.requests_per_minute,
            "retryAfterDefaultSeconds": self.retry_after_default_seconds,
            "useExponentialBackoff": self.use_exponential_backoff,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RateLimitConfig":
        return cls(
            requests_per_minute=int(data.get("requestsPerMinute", 60)),
            retry_after_default_seconds=float(data.get("retryAfterDefaultSeconds", 5.0)),
            use_exponential_backoff=bool(data.get("useExponentialBackoff", True)),
        )


@dataclass
class DynamicProviderConfig:
    """
    Complete declarative description of one provider.

    ``slug`` is the storage key and the routing prefix embedded in item ids;
    it must not change once the config is persisted.
    """

    name: str
    slug: str
    type: ProviderType
    hosts: HostConfig
    search: SearchConfig
    version: str = "1.0.0"
    generated_at: Optional[datetime] = None
    last_validated_at: Optional[datetime] = None
    auth: Optional[AuthConfig] = None
    content: ContentConfig = field(default_factory=ContentConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    transforms: list[TransformRule] = field(default_factory=list)
    rate_limit: Optional[RateLimitConfig] = None
    notes: Optional[str] = None
    is_built_in: bool = False  # process-local, never serialized

    def find_transform(self, name: str) -> Optional[TransformRule]:
        """Find a transform rule by name (case-insensitive)."""
        lowered = name.lower()
        for rule in self.transforms:
            if rule.name.lower() == lowered:
                return rule
        return None

    def with_changes(self, **changes: Any) -> "DynamicProviderConfig":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return _drop_none({
            "name": self.name,
            "slug": self.slug,
            "type": self.type.value,
            "version": self.version,
            "generatedAt": self.generated_at.isoformat() if self.generated_at else None,
            "lastValidatedAt": (
                self.last_validated_at.isoformat() if self.last_validated_at else None
            ),
            "hosts": self.hosts.to_dict(),
            "auth": self.auth.to_dict() if self.auth else None,
            "search": self.search.to_dict(),
            "content": self.content.to_dict(),
            "media": self.media.to_dict(),
            "transforms": [rule.to_dict() for rule in self.transforms],
            "rateLimit": self.rate_limit.to_dict() if self.rate_limit else None,
            "notes": self.notes,
        })

    @classmethod
    def from_dict(cls, data: dict) -> "DynamicProviderConfig":
        """
        Build a config from its serialized dictionary form.

        Raises:
            ConfigurationError: If required fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise ConfigurationError(
                code="invalid_config",
                message="Provider configuration must be a JSON object",
            )

        name = data.get("name")
        slug = data.get("slug")
        hosts = data.get("hosts")
        if not name or not slug or not isinstance(hosts, dict):
            raise ConfigurationError(
                code="invalid_config",
                message="Provider configuration requires name, slug and hosts",
                details={"keys": sorted(data.keys())},
            )

        try:
            return cls(
                name=name,
                slug=slug,
                type=_parse_enum(ProviderType, data.get("type"), ProviderType.ANIME),
                version=data.get("version", "1.0.0"),
                generated_at=_parse_datetime(data.get("generatedAt")),
                last_validated_at=_parse_datetime(data.get("lastValidatedAt")),
                hosts=HostConfig.from_dict(hosts),
                auth=_optional(AuthConfig, data.get("auth")),
                search=SearchConfig.from_dict(data.get("search") or {}),
                content=ContentConfig.from_dict(data.get("content") or {}),
                media=MediaConfig.from_dict(data.get("media") or {}),
                transforms=[
                    TransformRule.from_dict(item)
                    for item in data.get("transforms") or []
                    if isinstance(item, dict)
                ],
                rate_limit=_optional(RateLimitConfig, data.get("rateLimit")),
                notes=data.get("notes"),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(
                code="invalid_config",
                message=f"Malformed provider configuration: {e}",
                details={"slug": slug},
            ) from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)

    @classmethod
    def from_json(cls, text: str) -> "DynamicProviderConfig":
        """
        Parse a config from JSON text.

        Raises:
            ConfigurationError: If the text is not valid JSON or not a valid config
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                code="invalid_config",
                message=f"Provider configuration is not valid JSON: {e}",
            ) from e
        return cls.from_dict(data)
