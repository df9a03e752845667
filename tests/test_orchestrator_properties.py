"""
Property-based tests for the Autoconfig Orchestrator module.

The network-facing components are replaced with in-memory fakes so each
pipeline phase can succeed, fail or stall on demand.
"""

import asyncio
import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from provider_autoconfig.config import AutoconfigOptions, create_default_settings
from provider_autoconfig.enums import (
    ApiType,
    ContentCategory,
    EndpointPurpose,
    ProviderType,
    SearchMethod,
    SiteType,
)
from provider_autoconfig.exceptions import AnalysisTimeoutError, NetworkError, PersistenceError
from provider_autoconfig.models import (
    ApiEndpoint,
    ContentListPattern,
    ContentSchema,
    SearchPattern,
    SiteProfile,
    ValidationCheck,
    ValidationResult,
)
from provider_autoconfig.orchestrator import AutoconfigOrchestrator
from provider_autoconfig.provider_store import ProviderStore


PROFILE = SiteProfile(
    base_url="https://allanime.to",
    type=SiteType.SPA,
    category=ContentCategory.ANIME,
    has_graphql=True,
    detected_api_endpoints=("https://api.allanime.day/api",),
    site_title="AllAnime - Watch Anime Online",
    errors=("robots.txt unavailable",),
)

ENDPOINT = ApiEndpoint(
    url="https://api.allanime.day/api",
    type=ApiType.GRAPHQL,
    purpose=EndpointPurpose.SEARCH,
)


class FakeProber:
    def __init__(self, delay: float = 0.0, fail: bool = False) -> None:
        self.delay = delay
        self.fail = fail

    async def probe(self, url: str) -> SiteProfile:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise NetworkError(code="network_error", message="connection refused")
        return PROFILE


class FakeDiscovery:
    def __init__(self, fail: bool = False, endpoints=(ENDPOINT,)) -> None:
        self.fail = fail
        self.endpoints = list(endpoints)

    async def discover(self, profile: SiteProfile) -> list[ApiEndpoint]:
        if self.fail:
            raise RuntimeError("discovery crashed")
        return self.endpoints


class FakeMatcher:
    async def analyze(self, profile: SiteProfile, endpoints: list[ApiEndpoint]) -> ContentSchema:
        return ContentSchema(
            search_pattern=SearchPattern(method=SearchMethod.GRAPHQL, endpoint="/api"),
            episode_pattern=ContentListPattern(method=SearchMethod.GRAPHQL),
            endpoints=list(endpoints),
        )


class FakeValidator:
    def __init__(self, valid: bool = True) -> None:
        self.valid = valid
        self.calls = []

    async def validate(self, config, test_query=None) -> ValidationResult:
        self.calls.append((config.slug, test_query))
        if self.valid:
            return ValidationResult(is_valid=True, checks=[ValidationCheck.success("Connectivity")])
        return ValidationResult(
            is_valid=False,
            checks=[ValidationCheck.failure("Search", "No results found")],
            error_message="Validation failed: Search",
        )


class BrokenStore(ProviderStore):
    async def save(self, config):
        raise PersistenceError(code="io_error", message="disk full")


def build(root: Path, prober=None, discovery=None, validator=None, store=None):
    settings_ = create_default_settings(root)
    validator = validator or FakeValidator()
    orchestrator = AutoconfigOrchestrator(
        settings_,
        store=store or ProviderStore(root),
        prober=prober or FakeProber(),
        discovery=discovery or FakeDiscovery(),
        matcher=FakeMatcher(),
        validator=validator,
    )
    return orchestrator, validator


class TestPipelineProperty:
    """A successful run stores a validated config and reports progress in order."""

    def test_successful_run(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, validator = build(root)
            events = []

            async def run():
                async with orchestrator:
                    return await orchestrator.analyze_and_configure(
                        "https://allanime.to/anime/123",
                        AutoconfigOptions(test_query="one piece"),
                        progress=events.append,
                    )

            result = asyncio.run(run())

            assert result.success
            assert result.config.slug == "allanime"
            assert result.config.last_validated_at is not None
            assert result.validation.is_valid
            assert "robots.txt unavailable" in result.warnings
            assert [p.name for p in result.phases] == [
                "Site Probing", "API Discovery", "Pattern Matching",
                "Schema Generation", "Validation", "Storage",
            ]
            assert validator.calls == [("allanime", "one piece")]
            assert (root / "providers" / "custom" / "allanime.json").exists()

            percentages = [e.percentage for e in events]
            assert percentages == sorted(percentages)
            assert percentages[-1] == 100

    @given(provider_name=st.one_of(st.none(), st.sampled_from(["My Provider", "Other"])),
           force_type=st.one_of(st.none(), st.sampled_from(list(ProviderType))),
           skip_validation=st.booleans())
    @settings(max_examples=20, deadline=None)
    def test_options_are_honored(self, provider_name, force_type, skip_validation) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, validator = build(root)
            options = AutoconfigOptions(
                provider_name=provider_name,
                force_type=force_type,
                skip_validation=skip_validation,
                dry_run=True,
            )

            result = asyncio.run(orchestrator.analyze_and_configure("https://allanime.to", options))

            assert result.success
            assert result.config.name == (provider_name or "AllAnime")
            assert result.config.type == (force_type or ProviderType.ANIME)
            assert (validator.calls == []) == skip_validation
            assert (result.validation is None) == skip_validation

    def test_failed_validation_still_stores(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, _ = build(root, validator=FakeValidator(valid=False))

            result = asyncio.run(orchestrator.analyze_and_configure("https://allanime.to"))

            assert result.success
            assert not result.validation.is_valid
            assert result.config.last_validated_at is None
            assert (root / "providers" / "custom" / "allanime.json").exists()


class TestDryRunProperty:
    """Dry runs never write to the store."""

    def test_dry_run_writes_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, _ = build(root)

            result = asyncio.run(orchestrator.analyze_and_configure(
                "https://allanime.to", AutoconfigOptions(dry_run=True)
            ))

            assert result.success
            assert result.config is not None
            assert list((root / "providers" / "custom").glob("*.json")) == []
            assert "Storage" not in [p.name for p in result.phases]


class TestFailureProperty:
    """Fatal phases end the run with a failed result; others become warnings."""

    def test_probe_failure_is_fatal(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, validator = build(root, prober=FakeProber(fail=True))

            result = asyncio.run(orchestrator.analyze_and_configure("https://down.example"))

            assert not result.success
            assert result.error.startswith("Site probing failed")
            assert result.config is None
            assert validator.calls == []
            assert list((root / "providers" / "custom").glob("*.json")) == []

    def test_discovery_failure_is_a_warning(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            orchestrator, _ = build(Path(tmpdir), discovery=FakeDiscovery(fail=True))

            result = asyncio.run(orchestrator.analyze_and_configure(
                "https://allanime.to", AutoconfigOptions(dry_run=True)
            ))

            assert result.success
            assert any("API discovery failed" in w for w in result.warnings)
            discovery_phase = next(p for p in result.phases if p.name == "API Discovery")
            assert not discovery_phase.succeeded

    def test_no_endpoints_is_a_warning(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            orchestrator, _ = build(Path(tmpdir), discovery=FakeDiscovery(endpoints=()))

            result = asyncio.run(orchestrator.analyze_and_configure(
                "https://allanime.to", AutoconfigOptions(dry_run=True)
            ))

            assert result.success
            assert any("No API endpoints discovered" in w for w in result.warnings)

    def test_storage_failure_is_a_warning(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, _ = build(root, store=BrokenStore(root))

            result = asyncio.run(orchestrator.analyze_and_configure("https://allanime.to"))

            assert result.success
            assert any("Failed to save" in w for w in result.warnings)
            storage_phase = next(p for p in result.phases if p.name == "Storage")
            assert not storage_phase.succeeded


class TestTimeoutProperty:
    """Exceeding the deadline raises and stores nothing."""

    def test_timeout_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            orchestrator, validator = build(root, prober=FakeProber(delay=5.0))

            try:
                asyncio.run(orchestrator.analyze_and_configure(
                    "https://slow.example", AutoconfigOptions(timeout_seconds=0.05)
                ))
            except AnalysisTimeoutError as e:
                assert e.code == "timeout"
                assert e.details["url"] == "https://slow.example"
            else:
                assert False, "Expected AnalysisTimeoutError"

            assert validator.calls == []
            assert list((root / "providers" / "custom").glob("*.json")) == []
