"""
Autoconfig Orchestrator for the provider autoconfig system.

This module coordinates the full pipeline that turns a site URL into a
stored, working provider configuration:
- Site probing (fatal on failure)
- API discovery (non-fatal, recorded as a warning)
- Content pattern matching (fatal)
- Schema generation from the best matching template (fatal)
- Live validation (optional, non-fatal)
- Storage in the provider store (skipped on dry run)

The whole analysis runs under one deadline. When it expires an
AnalysisTimeoutError is raised and nothing is stored.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from .api_discovery import ApiDiscoveryEngine
from .audit_logger import AuditLogger, ComponentLogging
from .config import AutoconfigOptions, AutoconfigSettings
from .config_validator import ConfigValidator
from .content_matcher import ContentPatternMatcher
from .enums import ErrorCode
from .exceptions import AnalysisTimeoutError
from .models import (
    AnalysisPhase,
    ApiEndpoint,
    AutoconfigProgress,
    AutoconfigResult,
    ContentSchema,
    SiteProfile,
    ValidationResult,
)
from .provider_config import DynamicProviderConfig
from .provider_store import ProviderStore
from .retry_manager import RetryManager
from .schema_generator import SchemaGenerator
from .site_prober import SiteProber
from .transform_engine import TransformEngine

ProgressCallback = Callable[[AutoconfigProgress], None]


class _PhaseFailed(Exception):
    """Internal signal that a fatal phase failed and the run is over."""

    def __init__(self, result: AutoconfigResult) -> None:
        super().__init__(result.error)
        self.result = result


class _Run:
    """Mutable state of one autoconfig run."""

    def __init__(self, progress: Optional[ProgressCallback]) -> None:
        self.started = time.monotonic()
        self.phases: list[AnalysisPhase] = []
        self.warnings: list[str] = []
        self.progress = progress
        self.profile: Optional[SiteProfile] = None
        self.schema: Optional[ContentSchema] = None
        self.config: Optional[DynamicProviderConfig] = None
        self.validation: Optional[ValidationResult] = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def report(
        self,
        phase: str,
        step: str,
        percentage: int,
        succeeded: Optional[bool] = None,
        message: Optional[str] = None,
    ) -> None:
        if self.progress is not None:
            self.progress(AutoconfigProgress(phase, step, percentage, succeeded, message))

    def fail(self, error: str) -> _PhaseFailed:
        return _PhaseFailed(
            AutoconfigResult.failure(
                error, self.profile, self.phases, self.elapsed, warnings=self.warnings
            )
        )


class AutoconfigOrchestrator(ComponentLogging):
    """
    Main orchestrator for provider autoconfiguration.

    Components are built from the settings unless supplied explicitly, which
    is how tests replace the network-facing parts.
    """

    COMPONENT = "AutoconfigOrchestrator"

    def __init__(
        self,
        settings: AutoconfigSettings,
        store: Optional[ProviderStore] = None,
        prober: Optional[SiteProber] = None,
        discovery: Optional[ApiDiscoveryEngine] = None,
        matcher: Optional[ContentPatternMatcher] = None,
        generator: Optional[SchemaGenerator] = None,
        validator: Optional[ConfigValidator] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            settings: Settings used to build any component not supplied
            store: Provider store receiving the generated configuration
            prober: Site prober
            discovery: API discovery engine
            matcher: Content pattern matcher
            generator: Schema generator
            validator: Config validator
            http_client: HTTP client shared by the built components
            logger: Optional audit logger
        """
        self._settings = settings
        self._logger = logger
        self._client = http_client
        self._owns_client = http_client is None
        http = settings.http

        if self._client is None and None in (prober, discovery, matcher, validator):
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(http.timeout_seconds),
                follow_redirects=http.follow_redirects,
            )

        self._store = store or ProviderStore(settings.storage.root_dir, logger=logger)
        self._prober = prober or SiteProber(self._client, http, logger=logger)
        self._discovery = discovery or ApiDiscoveryEngine(self._client, http, logger=logger)
        self._matcher = matcher or ContentPatternMatcher(self._client, http, logger=logger)
        self._generator = generator or SchemaGenerator(logger=logger)
        self._validator = validator or ConfigValidator(
            self._client,
            transform_engine=TransformEngine(logger=logger),
            retry_manager=RetryManager(settings.retry, logger=logger),
            http_config=http,
            test_queries=settings.analysis.test_queries,
            logger=logger,
        )

    async def __aenter__(self) -> "AutoconfigOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def store(self) -> ProviderStore:
        return self._store

    async def analyze_and_configure(
        self,
        url: str,
        options: Optional[AutoconfigOptions] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> AutoconfigResult:
        """
        Analyze a site and produce (and normally store) a provider configuration.

        Args:
            url: Any URL on the target site
            options: Per-run options (name, forced type, test query, dry run, timeout)
            progress: Optional callback receiving progress events

        Returns:
            AutoconfigResult; phase failures are reported in it, not raised

        Raises:
            AnalysisTimeoutError: If the analysis exceeds ``options.timeout_seconds``
        """
        options = options or AutoconfigOptions()
        run = _Run(progress)
        self._log_info("Starting autoconfig", {"url": url, "dry_run": options.dry_run})

        try:
            await asyncio.wait_for(self._analyze(url, options, run), timeout=options.timeout_seconds)
        except _PhaseFailed as failed:
            self._log_warn("Autoconfig failed", {"url": url, "error": failed.result.error})
            return failed.result
        except asyncio.TimeoutError:
            self._log_warn("Autoconfig timed out", {"url": url, "timeout_seconds": options.timeout_seconds})
            raise AnalysisTimeoutError(
                code=ErrorCode.TIMEOUT.value,
                message=f"Analysis of {url} exceeded {options.timeout_seconds}s",
                details={"url": url, "timeout_seconds": options.timeout_seconds},
            )

        config = run.config
        if not options.dry_run:
            await self._store_config(config, run)

        run.report("Complete", "Autoconfig finished", 100, True, f"Provider '{config.name}' created")
        self._log_info("Autoconfig finished", {"url": url, "provider": config.slug})
        return AutoconfigResult(
            success=True,
            config=config,
            profile=run.profile,
            schema=run.schema,
            validation=run.validation,
            warnings=run.warnings,
            phases=run.phases,
            duration=run.elapsed,
        )

    async def _analyze(self, url: str, options: AutoconfigOptions, run: _Run) -> None:
        run.profile = await self._probe(url, run)
        endpoints = await self._discover(run.profile, run)
        run.schema = await self._match(run.profile, endpoints, run)
        run.config = self._generate(run.profile, run.schema, options, run)
        if not options.skip_validation:
            await self._validate(options, run)

    async def _probe(self, url: str, run: _Run) -> SiteProfile:
        phase = "Site Probing"
        run.report(phase, "Analyzing website structure", 10)
        started = time.monotonic()
        try:
            profile = await self._prober.probe(url)
        except Exception as e:
            self._log_error("Site probing failed", e, request_url=url)
            run.phases.append(AnalysisPhase(phase, False, str(e), time.monotonic() - started))
            raise run.fail(f"Site probing failed: {e}")

        run.warnings.extend(profile.errors)
        run.phases.append(AnalysisPhase(
            phase,
            True,
            f"Detected {profile.category.value} site with {len(profile.detected_api_endpoints)} API endpoints",
            time.monotonic() - started,
            [
                f"Site type: {profile.type.value}",
                f"Content category: {profile.category.value}",
                "GraphQL API detected" if profile.has_graphql else "REST/HTML site",
                "Cloudflare protection detected" if profile.has_cloudflare_protection else "No Cloudflare",
            ],
        ))
        run.report(
            phase, "Completed", 20, True,
            f"Found {len(profile.detected_api_endpoints)} potential API endpoints",
        )
        return profile

    async def _discover(self, profile: SiteProfile, run: _Run) -> list[ApiEndpoint]:
        phase = "API Discovery"
        run.report("Content Analysis", "Discovering API endpoints", 30)
        started = time.monotonic()
        try:
            endpoints = await self._discovery.discover(profile)
        except Exception as e:
            self._log_warn("API discovery failed, continuing with limited info", {"error": str(e)})
            run.warnings.append(f"API discovery failed: {e}")
            run.phases.append(AnalysisPhase(phase, False, str(e), time.monotonic() - started))
            return []

        run.phases.append(AnalysisPhase(
            phase,
            bool(endpoints),
            f"Discovered {len(endpoints)} API endpoints",
            time.monotonic() - started,
            [f"{e.purpose.value}: {e.type.value} at {e.path_and_query}" for e in endpoints],
        ))
        run.report(
            "Content Analysis", "API discovery completed", 40, bool(endpoints),
            f"Found {len(endpoints)} endpoints",
        )
        if not endpoints:
            run.warnings.append("No API endpoints discovered - configuration may be incomplete")
        return endpoints

    async def _match(self, profile: SiteProfile, endpoints: list[ApiEndpoint], run: _Run) -> ContentSchema:
        phase = "Pattern Matching"
        run.report("Content Analysis", "Analyzing content patterns", 50)
        started = time.monotonic()
        try:
            schema = await self._matcher.analyze(profile, endpoints)
        except Exception as e:
            self._log_error("Pattern matching failed", e, request_url=profile.base_url)
            run.phases.append(AnalysisPhase(phase, False, str(e), time.monotonic() - started))
            raise run.fail(f"Pattern matching failed: {e}")

        steps = []
        if schema.search_pattern is not None:
            steps.append(f"Search: {schema.search_pattern.method.value}")
        if schema.episode_pattern is not None:
            steps.append("Episode pattern detected")
        if schema.chapter_pattern is not None:
            steps.append("Chapter pattern detected")
        if schema.media_pattern is not None:
            kind = "encoded URLs" if schema.media_pattern.requires_decoding else "direct URLs"
            steps.append(f"Media pattern: {kind}")

        run.phases.append(AnalysisPhase(
            phase, True, "Analyzed content structure", time.monotonic() - started, steps
        ))
        run.report("Content Analysis", "Pattern analysis completed", 60, True)
        return schema

    def _generate(
        self,
        profile: SiteProfile,
        schema: ContentSchema,
        options: AutoconfigOptions,
        run: _Run,
    ) -> DynamicProviderConfig:
        phase = "Schema Generation"
        run.report(phase, "Generating provider configuration", 70)
        started = time.monotonic()
        try:
            config = self._generator.generate(profile, schema, options.provider_name)
        except Exception as e:
            self._log_error("Configuration generation failed", e, request_url=profile.base_url)
            run.phases.append(AnalysisPhase(phase, False, str(e), time.monotonic() - started))
            raise run.fail(f"Configuration generation failed: {e}")

        if options.force_type is not None:
            config = config.with_changes(type=options.force_type)

        run.phases.append(AnalysisPhase(
            phase,
            True,
            f"Generated '{config.name}' provider config",
            time.monotonic() - started,
            [f"Provider: {config.name}", f"Type: {config.type.value}", f"Slug: {config.slug}"],
        ))
        run.report(phase, "Configuration generated", 80, True, f"Provider: {config.name}")
        return config

    async def _validate(self, options: AutoconfigOptions, run: _Run) -> None:
        phase = "Validation"
        run.report(phase, "Testing configuration", 85)
        started = time.monotonic()
        try:
            result = await self._validator.validate(run.config, options.test_query)
        except Exception as e:
            self._log_warn("Validation failed", {"error": str(e)})
            run.warnings.append(f"Validation failed: {e}")
            run.phases.append(AnalysisPhase(phase, False, str(e), time.monotonic() - started))
            return

        run.validation = result
        run.phases.append(AnalysisPhase(
            phase,
            result.is_valid,
            "All checks passed" if result.is_valid else result.error_message,
            time.monotonic() - started,
            [
                f"{check.name}: {'passed' if check.passed else 'failed'} {check.error_message or ''}".rstrip()
                for check in result.checks
            ],
        ))
        if result.is_valid:
            run.config = run.config.with_changes(last_validated_at=datetime.now(timezone.utc))

        run.report(
            phase,
            "Validation passed" if result.is_valid else "Validation failed",
            95,
            result.is_valid,
            f"All {len(result.checks)} checks passed" if result.is_valid else result.error_message,
        )

    async def _store_config(self, config: DynamicProviderConfig, run: _Run) -> None:
        phase = "Storage"
        run.report(phase, "Saving provider configuration", 98)
        started = time.monotonic()
        try:
            await self._store.save(config)
        except Exception as e:
            self._log_error("Failed to save provider", e, data={"provider": config.slug})
            run.warnings.append(f"Failed to save: {e}")
            run.phases.append(AnalysisPhase(phase, False, str(e), time.monotonic() - started))
            return

        run.phases.append(AnalysisPhase(
            phase,
            True,
            f"Saved provider '{config.slug}'",
            time.monotonic() - started,
            [f"Slug: {config.slug}"],
        ))
        self._log_info("Provider saved", {"provider": config.slug})
