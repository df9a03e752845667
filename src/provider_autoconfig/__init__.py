"""
Provider Autoconfig - declarative content provider generation and runtime.

This package analyses an unfamiliar content site, generates a declarative
provider configuration for it, stores it, and executes any such
configuration through a generic runtime that can be aggregated with
built-in catalogs.
"""

__version__ = "0.1.0"
__author__ = "Provider Autoconfig Team"

from provider_autoconfig.exceptions import (
    AutoconfigError,
    NetworkError,
    ProtocolError,
    TemplateError,
    PersistenceError,
    ConfigurationError,
    AnalysisTimeoutError,
)
from provider_autoconfig.enums import (
    LogLevel,
    ErrorCode,
    ProviderType,
    SiteType,
    ContentCategory,
    ApiType,
    EndpointPurpose,
    SearchMethod,
    TransformType,
    AuthType,
)
from provider_autoconfig.config import (
    HttpConfig,
    RetryConfig,
    StorageConfig,
    LoggingConfig,
    AnalysisConfig,
    AutoconfigSettings,
    AutoconfigOptions,
    create_default_settings,
    load_settings_from_file,
    save_settings_to_file,
    load_settings_from_env,
)
from provider_autoconfig.provider_config import (
    FieldMapping,
    HostConfig,
    AuthConfig,
    SearchConfig,
    EndpointConfig,
    StreamConfig,
    PageConfig,
    ContentConfig,
    MediaConfig,
    TransformRule,
    RateLimitConfig,
    DynamicProviderConfig,
    normalize_slug,
)
from provider_autoconfig.models import (
    SiteKnowledge,
    SiteProfile,
    ApiEndpoint,
    SearchPattern,
    ContentListPattern,
    MediaPattern,
    ContentIdentifierPattern,
    ContentSchema,
    ValidationCheck,
    ValidationResult,
    AnalysisPhase,
    AutoconfigProgress,
    AutoconfigResult,
    ProviderInfo,
    ActiveProviders,
)
from provider_autoconfig.catalog import (
    Anime,
    Episode,
    StreamLink,
    Manga,
    Chapter,
    ChapterPage,
    AnimeCatalog,
    MangaCatalog,
)
from provider_autoconfig.audit_logger import AuditLogger, LogEntry
from provider_autoconfig.retry_manager import RetryManager
from provider_autoconfig.rate_limiter import RateLimiter, RateLimitStatus
from provider_autoconfig.transform_engine import TransformEngine, ExtractedRecord
from provider_autoconfig.decoders import decode_dash_hex, default_decoders
from provider_autoconfig.site_prober import SiteProber, normalize_base_url
from provider_autoconfig.api_discovery import ApiDiscoveryEngine
from provider_autoconfig.content_matcher import ContentPatternMatcher
from provider_autoconfig.templates import (
    ProviderTemplate,
    GraphQLAnimeTemplate,
    GraphQLMangaTemplate,
    RestAnimeTemplate,
    RestMangaTemplate,
    GenericTemplate,
    TemplateLibrary,
)
from provider_autoconfig.schema_generator import SchemaGenerator, derive_provider_name
from provider_autoconfig.config_validator import ConfigValidator
from provider_autoconfig.provider_store import ProviderStore
from provider_autoconfig.dynamic_catalog import DynamicAnimeCatalog, DynamicMangaCatalog
from provider_autoconfig.aggregate_catalog import AggregateAnimeCatalog, AggregateMangaCatalog
from provider_autoconfig.orchestrator import AutoconfigOrchestrator
from provider_autoconfig.cli import main as cli_main, create_parser

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "AutoconfigError",
    "NetworkError",
    "ProtocolError",
    "TemplateError",
    "PersistenceError",
    "ConfigurationError",
    "AnalysisTimeoutError",
    # Enums
    "LogLevel",
    "ErrorCode",
    "ProviderType",
    "SiteType",
    "ContentCategory",
    "ApiType",
    "EndpointPurpose",
    "SearchMethod",
    "TransformType",
    "AuthType",
    # Settings
    "HttpConfig",
    "RetryConfig",
    "StorageConfig",
    "LoggingConfig",
    "AnalysisConfig",
    "AutoconfigSettings",
    "AutoconfigOptions",
    "create_default_settings",
    "load_settings_from_file",
    "save_settings_to_file",
    "load_settings_from_env",
    # Provider configuration
    "FieldMapping",
    "HostConfig",
    "AuthConfig",
    "SearchConfig",
    "EndpointConfig",
    "StreamConfig",
    "PageConfig",
    "ContentConfig",
    "MediaConfig",
    "TransformRule",
    "RateLimitConfig",
    "DynamicProviderConfig",
    "normalize_slug",
    # Analysis models
    "SiteKnowledge",
    "SiteProfile",
    "ApiEndpoint",
    "SearchPattern",
    "ContentListPattern",
    "MediaPattern",
    "ContentIdentifierPattern",
    "ContentSchema",
    "ValidationCheck",
    "ValidationResult",
    "AnalysisPhase",
    "AutoconfigProgress",
    "AutoconfigResult",
    "ProviderInfo",
    "ActiveProviders",
    # Catalog domain
    "Anime",
    "Episode",
    "StreamLink",
    "Manga",
    "Chapter",
    "ChapterPage",
    "AnimeCatalog",
    "MangaCatalog",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Retry / Rate limiting
    "RetryManager",
    "RateLimiter",
    "RateLimitStatus",
    # Extraction
    "TransformEngine",
    "ExtractedRecord",
    "decode_dash_hex",
    "default_decoders",
    # Analysis pipeline
    "SiteProber",
    "normalize_base_url",
    "ApiDiscoveryEngine",
    "ContentPatternMatcher",
    "ProviderTemplate",
    "GraphQLAnimeTemplate",
    "GraphQLMangaTemplate",
    "RestAnimeTemplate",
    "RestMangaTemplate",
    "GenericTemplate",
    "TemplateLibrary",
    "SchemaGenerator",
    "derive_provider_name",
    "ConfigValidator",
    # Storage
    "ProviderStore",
    # Runtime
    "DynamicAnimeCatalog",
    "DynamicMangaCatalog",
    "AggregateAnimeCatalog",
    "AggregateMangaCatalog",
    # Orchestrator
    "AutoconfigOrchestrator",
    # CLI
    "cli_main",
    "create_parser",
]
