"""
Enumeration types for the provider autoconfig system.

Enum values are the exact string tokens written to persisted provider
configuration files, so they must stay stable.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ErrorCode(Enum):
    """Error codes carried by AutoconfigError subclasses."""

    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    PARSE_ERROR = "parse_error"
    NOT_FOUND = "not_found"
    IO_ERROR = "io_error"
    INVALID_CONFIG = "invalid_config"
    NO_TEMPLATE = "no_template"


class ProviderType(Enum):
    """Content type served by a provider."""

    ANIME = "anime"
    MANGA = "manga"
    BOTH = "both"


class SiteType(Enum):
    """Detected site architecture."""

    STATIC = "static"
    SPA = "spa"
    HYBRID = "hybrid"
    UNKNOWN = "unknown"


class ContentCategory(Enum):
    """Detected content category of a site."""

    ANIME = "anime"
    MANGA = "manga"
    BOTH = "both"
    UNKNOWN = "unknown"


class ApiType(Enum):
    """Kind of a discovered API endpoint."""

    GRAPHQL = "graphql"
    REST = "rest"
    CUSTOM = "custom"
    HTML_SCRAPE = "htmlScrape"


class EndpointPurpose(Enum):
    """Inferred purpose of a discovered API endpoint."""

    SEARCH = "search"
    DETAILS = "details"
    EPISODES = "episodes"
    STREAMS = "streams"
    CHAPTERS = "chapters"
    PAGES = "pages"
    UNKNOWN = "unknown"


class SearchMethod(Enum):
    """How requests for a provider endpoint are issued."""

    GRAPHQL = "graphql"
    REST = "rest"
    HTML_SCRAPE = "htmlScrape"


class TransformType(Enum):
    """Value transforms applied after field extraction."""

    NONE = "none"
    DECODE_BASE64 = "decodeBase64"
    DECODE_HEX = "decodeHex"
    PARSE_JSON = "parseJson"
    REGEX_EXTRACT = "regexExtract"
    URL_DECODE = "urlDecode"
    PREPEND_HOST = "prependHost"
    CUSTOM = "custom"


class AuthType(Enum):
    """Authentication material a provider expects to be pre-supplied."""

    NONE = "none"
    API_KEY = "apiKey"
    COOKIE = "cookie"
    CLOUDFLARE = "cloudflare"
