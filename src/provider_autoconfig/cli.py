"""
Command-line interface for the provider autoconfig system.

This module provides the CLI entry point with commands for:
- analyze: Analyze a site and generate a provider configuration
- list / show: Inspect stored providers
- use: Mark a provider as active for anime, manga or both
- remove: Delete a custom provider
- export / import: Move provider configurations between machines
- test: Validate a stored provider against its live site
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    AutoconfigOptions,
    AutoconfigSettings,
    load_settings_from_env,
    load_settings_from_file,
)
from .config_validator import ConfigValidator
from .enums import ProviderType
from .exceptions import AutoconfigError
from .models import AutoconfigProgress, ValidationResult
from .orchestrator import AutoconfigOrchestrator
from .provider_store import ProviderStore
from .retry_manager import RetryManager


def load_settings(args: argparse.Namespace) -> Optional[AutoconfigSettings]:
    """
    Load settings from ``--config`` if given, then apply environment overrides.

    Returns:
        The settings, or None if the config file could not be loaded
    """
    base = None
    if getattr(args, "config", None):
        base = load_settings_from_file(Path(args.config))
        if base is None:
            print(f"Error: Could not load config from {args.config}", file=sys.stderr)
            return None
    return load_settings_from_env(base=base)


def create_logger(settings: AutoconfigSettings, verbose: bool) -> Optional[AuditLogger]:
    if not verbose:
        return None
    return AuditLogger.from_level_name(
        settings.logging.level,
        output_format=settings.logging.output_format,
    )


def print_progress(progress: AutoconfigProgress) -> None:
    marker = ""
    if progress.succeeded is True:
        marker = " [ok]"
    elif progress.succeeded is False:
        marker = " [failed]"
    line = f"[{progress.percentage:3d}%] {progress.phase}: {progress.step}{marker}"
    if progress.message:
        line += f" - {progress.message}"
    print(line)


def print_validation(result: ValidationResult) -> None:
    for check in result.checks:
        status = "PASS" if check.passed else "FAIL"
        detail = check.error_message if not check.passed else (check.description or "")
        print(f"  {status} {check.name}: {detail}")
    if result.is_valid:
        print("Validation passed")
    else:
        print(f"Validation failed: {result.error_message}")


async def run_analyze(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    logger = create_logger(settings, args.verbose)
    options = AutoconfigOptions(
        provider_name=args.name,
        force_type=ProviderType(args.type) if args.type else None,
        test_query=args.test_query,
        skip_validation=args.skip_validation,
        dry_run=args.dry_run,
        timeout_seconds=args.timeout or settings.analysis.timeout_seconds,
    )

    async with AutoconfigOrchestrator(settings, logger=logger) as orchestrator:
        result = await orchestrator.analyze_and_configure(args.url, options, print_progress)

    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)

    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return 1

    config = result.config
    print(f"\nProvider: {config.name} ({config.slug})")
    print(f"  Type: {config.type.value}")
    print(f"  Host: {config.hosts.base_host}")
    if result.validation is not None:
        print_validation(result.validation)
    if args.dry_run:
        print("\nDry run - configuration not saved:")
        print(config.to_json())
    return 0


async def run_list(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    store = ProviderStore(settings.storage.root_dir)
    providers = await store.list()
    if not providers:
        print("No providers configured.")
        return 0

    for info in providers:
        flags = []
        if info.is_active:
            flags.append("active")
        if info.is_built_in:
            flags.append("built-in")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"{info.slug:<24} {info.name:<24} {info.type.value:<6} {info.base_host}{suffix}")
    return 0


async def run_show(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    store = ProviderStore(settings.storage.root_dir)
    config = await store.get(args.slug)
    if config is None:
        print(f"Error: Provider '{args.slug}' not found", file=sys.stderr)
        return 1
    print(config.to_json())
    return 0


async def run_use(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    store = ProviderStore(settings.storage.root_dir)
    config = await store.get(args.slug)
    if config is None:
        print(f"Error: Provider '{args.slug}' not found", file=sys.stderr)
        return 1

    provider_type = ProviderType(args.type) if args.type else config.type
    await store.set_active(config.slug, provider_type)
    print(f"Active {provider_type.value} provider: {config.slug}")
    return 0


async def run_remove(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    store = ProviderStore(settings.storage.root_dir)
    if not await store.delete(args.slug):
        print(f"Error: Provider '{args.slug}' not found or built-in", file=sys.stderr)
        return 1
    print(f"Removed provider: {args.slug}")
    return 0


async def run_export(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    store = ProviderStore(settings.storage.root_dir)
    text = await store.export(args.slug)
    if not args.output:
        print(text)
        return 0

    output = Path(args.output)
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(text, encoding="utf-8")
    except OSError as e:
        print(f"Error writing {output}: {e}", file=sys.stderr)
        return 1
    print(f"Exported '{args.slug}' to: {output}")
    return 0


async def run_import(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    try:
        text = Path(args.file).read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error reading {args.file}: {e}", file=sys.stderr)
        return 1

    store = ProviderStore(settings.storage.root_dir)
    config = await store.import_config(text)
    await store.save(config)
    print(f"Imported provider: {config.name} ({config.slug})")
    return 0


async def run_test(args: argparse.Namespace, settings: AutoconfigSettings) -> int:
    logger = create_logger(settings, args.verbose)
    store = ProviderStore(settings.storage.root_dir, logger=logger)
    config = await store.get(args.slug)
    if config is None:
        print(f"Error: Provider '{args.slug}' not found", file=sys.stderr)
        return 1

    async with ConfigValidator(
        retry_manager=RetryManager(settings.retry, logger=logger),
        http_config=settings.http,
        test_queries=settings.analysis.test_queries,
        logger=logger,
    ) as validator:
        result = await validator.validate(config, args.query)

    print(f"Testing provider: {config.name}")
    print_validation(result)
    return 0 if result.is_valid else 1


COMMANDS = {
    "analyze": run_analyze,
    "list": run_list,
    "show": run_show,
    "use": run_use,
    "remove": run_remove,
    "export": run_export,
    "import": run_import,
    "test": run_test,
}


def run_command(args: argparse.Namespace) -> int:
    """Load settings and run the selected command, reporting errors."""
    settings = load_settings(args)
    if settings is None:
        return 1

    handler = COMMANDS[args.command]
    try:
        return asyncio.run(handler(args, settings))
    except AutoconfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="provider-autoconfig",
        description="Generate and manage declarative content provider configurations",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to settings file (JSON)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    type_choices = [t.value for t in ProviderType]

    # 'analyze' command
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Analyze a site and generate a provider configuration",
    )
    analyze_parser.add_argument(
        "url",
        help="Site URL (e.g., https://example.com)",
    )
    analyze_parser.add_argument(
        "--name", "-n",
        help="Provider display name (default: derived from the site)",
    )
    analyze_parser.add_argument(
        "--type", "-t",
        choices=type_choices,
        help="Force the provider content type",
    )
    analyze_parser.add_argument(
        "--test-query", "-q",
        help="Title used to validate search",
    )
    analyze_parser.add_argument(
        "--skip-validation",
        action="store_true",
        help="Do not test the generated configuration",
    )
    analyze_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the configuration instead of saving it",
    )
    analyze_parser.add_argument(
        "--timeout",
        type=float,
        help="Overall analysis timeout in seconds",
    )
    analyze_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )

    # 'list' command
    subparsers.add_parser(
        "list",
        help="List stored providers",
    )

    # 'show' command
    show_parser = subparsers.add_parser(
        "show",
        help="Print a provider configuration",
    )
    show_parser.add_argument("slug", help="Provider slug")

    # 'use' command
    use_parser = subparsers.add_parser(
        "use",
        help="Set the active provider",
    )
    use_parser.add_argument("slug", help="Provider slug")
    use_parser.add_argument(
        "--type", "-t",
        choices=type_choices,
        help="Content type to activate for (default: the provider's type)",
    )

    # 'remove' command
    remove_parser = subparsers.add_parser(
        "remove",
        help="Delete a custom provider",
    )
    remove_parser.add_argument("slug", help="Provider slug")

    # 'export' command
    export_parser = subparsers.add_parser(
        "export",
        help="Export a provider configuration as JSON",
    )
    export_parser.add_argument("slug", help="Provider slug")
    export_parser.add_argument(
        "--output", "-o",
        help="File to write (default: stdout)",
    )

    # 'import' command
    import_parser = subparsers.add_parser(
        "import",
        help="Import a provider configuration from a JSON file",
    )
    import_parser.add_argument("file", help="Path to the JSON file")

    # 'test' command
    test_parser = subparsers.add_parser(
        "test",
        help="Validate a stored provider against its live site",
    )
    test_parser.add_argument("slug", help="Provider slug")
    test_parser.add_argument(
        "--query", "-q",
        help="Title used to test search",
    )
    test_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output",
    )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return run_command(args)


if __name__ == "__main__":
    sys.exit(main())
