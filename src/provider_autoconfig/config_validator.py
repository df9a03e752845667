"""
Live validation of provider configurations.

The validator drives the dynamic runtime through a fixed sequence of
checks (connectivity, search, child listing, media resolution) and records
every step, so a partially working configuration is visible as such.
"""

import time
from typing import Optional

import httpx

from .audit_logger import AuditLogger, ComponentLogging
from .catalog import Chapter, Manga
from .config import DEFAULT_TEST_QUERIES, HttpConfig
from .dynamic_catalog import DynamicAnimeCatalog, DynamicCatalogBase, DynamicMangaCatalog
from .enums import ProviderType
from .models import ValidationCheck, ValidationResult
from .provider_config import DynamicProviderConfig
from .retry_manager import RetryManager
from .transform_engine import TransformEngine

SAMPLE_LENGTH = 200


def _sample(value: str) -> str:
    return value[:SAMPLE_LENGTH]


def _elapsed(started: float) -> float:
    return time.monotonic() - started


class ConfigValidator(ComponentLogging):
    """Validates provider configurations by exercising them against the live site."""

    COMPONENT = "ConfigValidator"

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        transform_engine: Optional[TransformEngine] = None,
        retry_manager: Optional[RetryManager] = None,
        http_config: Optional[HttpConfig] = None,
        test_queries: Optional[list[str]] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the validator.

        Args:
            http_client: Shared HTTP client; one is created and owned if omitted
            transform_engine: Extraction engine handed to the dynamic catalogs
            retry_manager: Retry loop handed to the dynamic catalogs
            http_config: HTTP settings used when the client is created here
            test_queries: Titles tried in order when searching
            logger: Optional audit logger
        """
        self._client = http_client
        self._owns_client = http_client is None
        self._engine = transform_engine or TransformEngine(logger=logger)
        self._retry = retry_manager
        self._http_config = http_config or HttpConfig()
        self._test_queries = list(test_queries or DEFAULT_TEST_QUERIES)
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

    def _catalog(self, config: DynamicProviderConfig) -> DynamicCatalogBase:
        catalog_cls = DynamicMangaCatalog if config.type == ProviderType.MANGA else DynamicAnimeCatalog
        return catalog_cls(
            config,
            transform_engine=self._engine,
            http_client=self._get_client(),
            retry_manager=self._retry,
            http_config=self._http_config,
            logger=self._logger,
        )

    async def validate(
        self,
        config: DynamicProviderConfig,
        test_query: Optional[str] = None,
    ) -> ValidationResult:
        """
        Validate a configuration.

        Connectivity failure ends validation early. Later steps are always
        recorded: a step whose predecessor produced nothing is recorded as
        a failed "Skipped" check.

        Args:
            config: Configuration to validate
            test_query: Title searched first (default: the first test query)

        Returns:
            ValidationResult; ``is_valid`` only when every check passed
        """
        started = time.monotonic()
        query = test_query or self._test_queries[0]
        self._log_info("Validating provider", {"provider": config.name, "query": query})

        checks: list[ValidationCheck] = []
        connectivity = await self._check_connectivity(config)
        checks.append(connectivity)
        if not connectivity.passed:
            self._log_warn(
                "Connectivity check failed",
                {"provider": config.name, "error": connectivity.error_message},
            )
            return ValidationResult(
                is_valid=False,
                checks=checks,
                error_message=f"Connectivity check failed: {connectivity.error_message}",
                duration=_elapsed(started),
            )

        catalog = self._catalog(config)
        is_manga = config.type == ProviderType.MANGA
        children_name = "Chapters" if is_manga else "Episodes"
        media_name = "Pages" if is_manga else "Streams"

        search, first_item = await self._check_search(catalog, query)
        if not search.passed:
            for alternative in self._test_queries:
                if alternative == query:
                    continue
                alternative_check, alternative_item = await self._check_search(catalog, alternative)
                if alternative_check.passed:
                    search, first_item = alternative_check, alternative_item
                    break
        checks.append(search)

        first_child = None
        if first_item is None:
            checks.append(ValidationCheck.failure(children_name, "Skipped: search returned no results"))
        else:
            children, first_child = await self._check_children(catalog, first_item, children_name)
            checks.append(children)

        if first_child is None:
            checks.append(ValidationCheck.failure(media_name, f"Skipped: no {children_name.lower()} available"))
        else:
            checks.append(await self._check_media(catalog, first_child, media_name))

        failed = [check.name for check in checks if not check.passed]
        result = ValidationResult(
            is_valid=not failed,
            checks=checks,
            error_message=f"Validation failed: {', '.join(failed)}" if failed else None,
            duration=_elapsed(started),
        )
        if result.is_valid:
            self._log_info("Validation successful", {"provider": config.name})
        else:
            self._log_warn("Validation failed", {"provider": config.name, "failed_checks": failed})
        return result

    async def _check_connectivity(self, config: DynamicProviderConfig) -> ValidationCheck:
        started = time.monotonic()
        base_url = f"https://{config.hosts.base_host}"
        description = f"Connection to {config.hosts.base_host}"
        try:
            response = await self._get_client().head(
                base_url, headers={"User-Agent": config.hosts.user_agent}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return ValidationCheck.failure(
                "Connectivity", f"Connection failed: {e}", description, _elapsed(started)
            )

        if response.is_success or response.status_code == 405:
            return ValidationCheck.success(
                "Connectivity",
                f"Successfully connected to {config.hosts.base_host}",
                f"Status: {response.status_code}",
                _elapsed(started),
            )
        return ValidationCheck.failure(
            "Connectivity", f"Server returned {response.status_code}", description, _elapsed(started)
        )

    async def _check_search(self, catalog: DynamicCatalogBase, query: str):
        started = time.monotonic()
        results = await catalog.search(query)
        if not results:
            return (
                ValidationCheck.failure(
                    "Search", f"No results found for '{query}'", f"Search query: {query}", _elapsed(started)
                ),
                None,
            )

        first = results[0]
        return (
            ValidationCheck.success(
                "Search",
                f"Found {len(results)} results for '{query}'",
                _sample(first.id),
                _elapsed(started),
            ),
            first,
        )

    async def _check_children(self, catalog: DynamicCatalogBase, item, name: str):
        started = time.monotonic()
        if isinstance(item, Manga):
            children = await catalog.get_chapters(item)
        else:
            children = await catalog.get_episodes(item)

        if not children:
            return ValidationCheck.failure(name, f"No {name.lower()} found", duration=_elapsed(started)), None

        first = children[0]
        return (
            ValidationCheck.success(
                name, f"Found {len(children)} {name.lower()}", _sample(first.id), _elapsed(started)
            ),
            first,
        )

    async def _check_media(self, catalog: DynamicCatalogBase, child, name: str) -> ValidationCheck:
        started = time.monotonic()
        if isinstance(child, Chapter):
            pages = await catalog.get_pages(child)
            sample = pages[0].image_url if pages else None
            count = len(pages)
        else:
            streams = await catalog.get_streams(child)
            sample = streams[0].url if streams else None
            count = len(streams)

        if sample is None:
            return ValidationCheck.failure(name, f"No {name.lower()} found", duration=_elapsed(started))
        return ValidationCheck.success(name, f"Found {count} {name.lower()}", _sample(sample), _elapsed(started))
