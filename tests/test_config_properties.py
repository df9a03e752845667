"""
Property-based tests for configuration module.

Covers the JSON settings file round trip, default fallbacks, environment
overrides (including .env files read through python-dotenv) and run
option validation.
"""

import json
import os
import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from provider_autoconfig.config import (
    AnalysisConfig,
    AutoconfigOptions,
    AutoconfigSettings,
    DEFAULT_TEST_QUERIES,
    HttpConfig,
    LoggingConfig,
    RetryConfig,
    StorageConfig,
    create_default_settings,
    load_settings_from_env,
    load_settings_from_file,
    save_settings_to_file,
)
from provider_autoconfig.exceptions import ConfigurationError


ENV_VARS = [
    "AUTOCONFIG_STORAGE_ROOT",
    "AUTOCONFIG_LOG_LEVEL",
    "AUTOCONFIG_LOG_FORMAT",
    "AUTOCONFIG_HTTP_TIMEOUT",
    "AUTOCONFIG_ANALYSIS_TIMEOUT",
    "AUTOCONFIG_USER_AGENT",
]


# Strategies for generating valid configuration objects

@st.composite
def settings_strategy(draw) -> AutoconfigSettings:
    """Generate valid AutoconfigSettings objects."""
    name = draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=12))
    return AutoconfigSettings(
        http=HttpConfig(
            timeout_seconds=draw(st.floats(min_value=0.5, max_value=120.0)),
            user_agent=draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz/. 0123456789", min_size=1, max_size=40)),
            follow_redirects=draw(st.booleans()),
        ),
        retry=RetryConfig(
            max_attempts=draw(st.integers(min_value=1, max_value=10)),
            base_delay_seconds=draw(st.floats(min_value=0.0, max_value=5.0)),
            per_attempt_timeout_seconds=draw(st.floats(min_value=0.5, max_value=30.0)),
        ),
        storage=StorageConfig(root_dir=Path("/tmp") / name),
        logging=LoggingConfig(
            level=draw(st.sampled_from(["debug", "info", "warn", "error"])),
            output_format=draw(st.sampled_from(["json", "text", "both"])),
        ),
        analysis=AnalysisConfig(
            timeout_seconds=draw(st.floats(min_value=1.0, max_value=600.0)),
            test_queries=draw(st.lists(st.text(min_size=1, max_size=20), min_size=1, max_size=4)),
        ),
    )


class TestSettingsFileRoundTripProperty:
    """Saving and loading settings preserves every value."""

    @given(original=settings_strategy())
    @settings(max_examples=100)
    def test_round_trip(self, original: AutoconfigSettings) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "nested" / "settings.json"

            assert save_settings_to_file(original, path)
            loaded = load_settings_from_file(path)

            assert loaded is not None
            assert loaded == original, "Settings changed across save/load"


class TestSettingsDefaultsProperty:
    """Missing keys fall back to defaults; unusable files load as None."""

    def test_missing_sections_use_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            path.write_text(json.dumps({"http": {"timeout_seconds": 3}}), encoding="utf-8")

            loaded = load_settings_from_file(path)

            assert loaded is not None
            assert loaded.http.timeout_seconds == 3.0
            assert loaded.retry == RetryConfig()
            assert loaded.analysis.test_queries == DEFAULT_TEST_QUERIES
            assert loaded.logging == LoggingConfig()

    @given(content=st.sampled_from(["", "{not json", "[1, 2]", '"text"', '{"http": {"timeout_seconds": "fast"}}']))
    @settings(max_examples=10)
    def test_invalid_files_load_as_none(self, content: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            path.write_text(content, encoding="utf-8")
            assert load_settings_from_file(path) is None

    def test_missing_file_loads_as_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            assert load_settings_from_file(Path(tmpdir) / "absent.json") is None

    def test_default_settings(self) -> None:
        defaults = create_default_settings()
        assert defaults.http.timeout_seconds == 15.0
        assert defaults.retry.max_attempts == 3
        assert defaults.retry.base_delay_seconds == 0.2
        assert defaults.analysis.timeout_seconds == 60.0
        assert "Firefox/121.0" in defaults.http.user_agent

        with tempfile.TemporaryDirectory() as tmpdir:
            custom = create_default_settings(Path(tmpdir))
            assert custom.storage.root_dir == Path(tmpdir)


class TestEnvironmentOverrides:
    """Environment variables (and .env files) override settings."""

    def _clear(self, monkeypatch) -> None:
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_env_file_values_are_applied(self, monkeypatch) -> None:
        self._clear(monkeypatch)
        with tempfile.TemporaryDirectory() as tmpdir:
            env_file = Path(tmpdir) / ".env"
            env_file.write_text(
                f"AUTOCONFIG_STORAGE_ROOT={tmpdir}/store\n"
                "AUTOCONFIG_LOG_LEVEL=DEBUG\n"
                "AUTOCONFIG_HTTP_TIMEOUT=7.5\n"
                "AUTOCONFIG_ANALYSIS_TIMEOUT=90\n",
                encoding="utf-8",
            )
            try:
                loaded = load_settings_from_env(env_file)
            finally:
                for name in ENV_VARS:
                    os.environ.pop(name, None)

            assert loaded.storage.root_dir == Path(tmpdir) / "store"
            assert loaded.logging.level == "debug"
            assert loaded.http.timeout_seconds == 7.5
            assert loaded.analysis.timeout_seconds == 90.0

    def test_process_environment_overrides_base(self, monkeypatch) -> None:
        self._clear(monkeypatch)
        monkeypatch.setenv("AUTOCONFIG_USER_AGENT", "custom-agent/1.0")
        monkeypatch.setenv("AUTOCONFIG_LOG_FORMAT", "JSON")

        with tempfile.TemporaryDirectory() as tmpdir:
            empty_env = Path(tmpdir) / ".env"
            empty_env.write_text("", encoding="utf-8")
            base = create_default_settings()
            base.retry.max_attempts = 5

            loaded = load_settings_from_env(empty_env, base=base)

        assert loaded.http.user_agent == "custom-agent/1.0"
        assert loaded.logging.output_format == "json"
        assert loaded.retry.max_attempts == 5

    def test_invalid_number_raises(self, monkeypatch) -> None:
        self._clear(monkeypatch)
        monkeypatch.setenv("AUTOCONFIG_HTTP_TIMEOUT", "soon")

        with tempfile.TemporaryDirectory() as tmpdir:
            empty_env = Path(tmpdir) / ".env"
            empty_env.write_text("", encoding="utf-8")
            try:
                load_settings_from_env(empty_env)
            except ConfigurationError as e:
                assert e.code == "invalid_config"
                return
        assert False, "Expected ConfigurationError for a non-numeric timeout"


class TestAutoconfigOptionsProperty:
    """Run options reject non-positive timeouts."""

    @given(timeout=st.floats(max_value=0.0, allow_nan=False))
    @settings(max_examples=50)
    def test_non_positive_timeout_is_rejected(self, timeout: float) -> None:
        try:
            AutoconfigOptions(timeout_seconds=timeout)
        except ConfigurationError as e:
            assert e.code == "invalid_config"
            return
        assert False, f"Expected ConfigurationError for timeout {timeout}"

    @given(timeout=st.floats(min_value=0.001, max_value=3600.0))
    @settings(max_examples=50)
    def test_positive_timeout_is_accepted(self, timeout: float) -> None:
        options = AutoconfigOptions(timeout_seconds=timeout)
        assert options.timeout_seconds == timeout
        assert options.dry_run is False
        assert options.skip_validation is False
