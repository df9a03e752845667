"""
Tests for the command-line interface.

Store-backed commands run against a temporary store selected through
AUTOCONFIG_STORAGE_ROOT.
"""

import json
from pathlib import Path

import pytest

from provider_autoconfig.cli import COMMANDS, create_parser, main
from provider_autoconfig.enums import ProviderType, SearchMethod
from provider_autoconfig.provider_config import (
    DynamicProviderConfig,
    FieldMapping,
    HostConfig,
    SearchConfig,
)


def sample_config(slug: str = "mysite", provider_type: ProviderType = ProviderType.MANGA) -> DynamicProviderConfig:
    return DynamicProviderConfig(
        name="My Site",
        slug=slug,
        type=provider_type,
        hosts=HostConfig(base_host="mysite.example"),
        search=SearchConfig(
            method=SearchMethod.REST,
            endpoint="/search",
            query_template="?q=${query}",
            result_mapping=[FieldMapping("$.id", "Id"), FieldMapping("$.title", "Title")],
            results_path="$.results",
        ),
    )


@pytest.fixture
def store_root(tmp_path, monkeypatch) -> Path:
    root = tmp_path / "store"
    monkeypatch.setenv("AUTOCONFIG_STORAGE_ROOT", str(root))
    return root


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "mysite.json"
    path.write_text(sample_config().to_json(), encoding="utf-8")
    return path


class TestParser:
    """Argument parsing for every command."""

    def test_every_command_has_a_handler(self) -> None:
        parser = create_parser()
        subparsers = next(a for a in parser._actions if a.dest == "command")
        assert set(subparsers.choices) == set(COMMANDS)

    def test_analyze_arguments(self) -> None:
        args = create_parser().parse_args([
            "analyze", "https://site.example",
            "--name", "Site", "--type", "manga", "-q", "berserk",
            "--skip-validation", "--dry-run", "--timeout", "30",
        ])
        assert args.command == "analyze"
        assert args.url == "https://site.example"
        assert args.name == "Site"
        assert args.type == "manga"
        assert args.test_query == "berserk"
        assert args.skip_validation and args.dry_run
        assert args.timeout == 30.0
        assert not args.verbose

    def test_invalid_type_is_rejected(self) -> None:
        with pytest.raises(SystemExit):
            create_parser().parse_args(["use", "mysite", "--type", "music"])

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()


class TestStoreCommands:
    """list, show, use, export, import and remove against a real store."""

    def test_empty_list(self, store_root, capsys) -> None:
        assert main(["list"]) == 0
        assert "No providers configured." in capsys.readouterr().out

    def test_import_show_use_list(self, store_root, config_file, capsys) -> None:
        assert main(["import", str(config_file)]) == 0
        assert "Imported provider: My Site (mysite)" in capsys.readouterr().out
        assert (store_root / "providers" / "custom" / "mysite.json").exists()

        assert main(["show", "mysite"]) == 0
        shown = json.loads(capsys.readouterr().out)
        assert shown["slug"] == "mysite"
        assert shown["type"] == "manga"

        assert main(["use", "mysite"]) == 0
        assert "Active manga provider: mysite" in capsys.readouterr().out

        assert main(["list"]) == 0
        listing = capsys.readouterr().out
        assert "mysite" in listing
        assert "[active]" in listing

    def test_use_with_explicit_type(self, store_root, config_file, capsys) -> None:
        main(["import", str(config_file)])
        capsys.readouterr()

        assert main(["use", "mysite", "--type", "both"]) == 0
        assert "Active both provider: mysite" in capsys.readouterr().out
        active = json.loads((store_root / "active-providers.json").read_text(encoding="utf-8"))
        assert "mysite" in active.values()

    def test_export_to_file(self, store_root, config_file, tmp_path, capsys) -> None:
        main(["import", str(config_file)])
        output = tmp_path / "out" / "exported.json"

        assert main(["export", "mysite", "--output", str(output)]) == 0
        assert "Exported 'mysite'" in capsys.readouterr().out
        exported = DynamicProviderConfig.from_json(output.read_text(encoding="utf-8"))
        assert exported.slug == "mysite"
        assert exported.search.results_path == "$.results"

    def test_remove(self, store_root, config_file, capsys) -> None:
        main(["import", str(config_file)])

        assert main(["remove", "mysite"]) == 0
        assert not (store_root / "providers" / "custom" / "mysite.json").exists()
        assert main(["remove", "mysite"]) == 1
        assert "not found or built-in" in capsys.readouterr().err

    @pytest.mark.parametrize("command", [["show", "ghost"], ["use", "ghost"], ["export", "ghost"]])
    def test_unknown_provider_fails(self, store_root, capsys, command) -> None:
        assert main(command) == 1
        assert "Error" in capsys.readouterr().err

    def test_import_rejects_malformed_file(self, store_root, tmp_path, capsys) -> None:
        bad = tmp_path / "bad.json"
        bad.write_text('{"name": "x"', encoding="utf-8")

        assert main(["import", str(bad)]) == 1
        assert "Error" in capsys.readouterr().err
        assert list((store_root / "providers" / "custom").glob("*.json")) == []

    def test_import_missing_file(self, store_root, tmp_path, capsys) -> None:
        assert main(["import", str(tmp_path / "missing.json")]) == 1
        assert "Error reading" in capsys.readouterr().err

    def test_bad_settings_file(self, tmp_path, capsys) -> None:
        assert main(["--config", str(tmp_path / "nope.json"), "list"]) == 1
        assert "Could not load config" in capsys.readouterr().err
