"""
Property-based tests for the Provider Store module.

Covers the save/get round trip, custom-over-builtin shadowing, active
provider pointers (including a corrupt pointer file), deletion rules and
JSON export/import.
"""

import asyncio
import json
import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from provider_autoconfig.enums import ProviderType, SearchMethod
from provider_autoconfig.exceptions import ConfigurationError, PersistenceError
from provider_autoconfig.provider_config import (
    DynamicProviderConfig,
    FieldMapping,
    HostConfig,
    SearchConfig,
)
from provider_autoconfig.provider_store import ProviderStore


# Strategies for generating valid test data

@st.composite
def slug_strategy(draw) -> str:
    head = draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=1))
    tail = draw(st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789", max_size=15))
    return head + tail


@st.composite
def config_strategy(draw, slug=None) -> DynamicProviderConfig:
    slug = slug or draw(slug_strategy())
    return DynamicProviderConfig(
        name=draw(st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=20)),
        slug=slug,
        type=draw(st.sampled_from(list(ProviderType))),
        hosts=HostConfig(base_host=f"{slug}.example"),
        search=SearchConfig(
            method=draw(st.sampled_from([SearchMethod.REST, SearchMethod.GRAPHQL])),
            endpoint="/api",
            query_template="?q=${query}",
            result_mapping=[FieldMapping("$.id", "Id")],
        ),
        notes=draw(st.one_of(st.none(), st.text(max_size=40))),
    )


def make_config(slug: str, name: str = None, provider_type: ProviderType = ProviderType.ANIME) -> DynamicProviderConfig:
    return DynamicProviderConfig(
        name=name or slug.title(),
        slug=slug,
        type=provider_type,
        hosts=HostConfig(base_host=f"{slug}.example"),
        search=SearchConfig(endpoint="/search"),
    )


def write_builtin(store: ProviderStore, config: DynamicProviderConfig) -> None:
    (store.builtin_dir / f"{config.slug}.json").write_text(config.to_json(), encoding="utf-8")


class TestStoreRoundTripProperty:
    """A saved config is returned unchanged by get."""

    @given(config=config_strategy())
    @settings(max_examples=50, deadline=None)
    def test_save_then_get(self, config: DynamicProviderConfig) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                path = await store.save(config)
                return path, await store.get(config.slug), await store.exists(config.slug)

            path, loaded, exists = asyncio.run(run())

            assert path == store.custom_dir / f"{config.slug}.json"
            assert path.exists()
            assert exists
            assert loaded == config
            assert loaded.is_built_in is False

    def test_get_missing_returns_none(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            assert asyncio.run(store.get("missing")) is None
            assert asyncio.run(store.exists("missing")) is False

    def test_corrupt_provider_file_is_skipped(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            (store.custom_dir / "broken.json").write_text("{not json", encoding="utf-8")

            async def run():
                await store.save(make_config("good"))
                return await store.get("broken"), await store.list()

            broken, listing = asyncio.run(run())

            assert broken is None
            assert [info.slug for info in listing] == ["good"]


class TestShadowingProperty:
    """Custom configs shadow built-in configs with the same slug."""

    def test_custom_shadows_builtin(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            write_builtin(store, make_config("allanime", name="Builtin AllAnime"))
            write_builtin(store, make_config("zeta", name="Zeta"))

            async def run():
                before = await store.get("allanime")
                await store.save(make_config("allanime", name="Custom AllAnime"))
                after = await store.get("allanime")
                return before, after, await store.list()

            before, after, listing = asyncio.run(run())

            assert before.name == "Builtin AllAnime" and before.is_built_in
            assert after.name == "Custom AllAnime" and not after.is_built_in
            assert [(i.slug, i.name, i.is_built_in) for i in listing] == [
                ("allanime", "Custom AllAnime", False),
                ("zeta", "Zeta", True),
            ]

    @given(names=st.lists(
        st.text(alphabet="abcdefghijklmnopqrstuvwxyz", min_size=1, max_size=10),
        min_size=1, max_size=6, unique=True,
    ))
    @settings(max_examples=30, deadline=None)
    def test_list_is_sorted_by_name(self, names: list[str]) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                for name in names:
                    await store.save(make_config(name, name=name.upper()))
                return await store.list()

            listing = asyncio.run(run())

            assert [info.name for info in listing] == sorted(n.upper() for n in names)


class TestDeletionProperty:
    """Only custom providers can be deleted; active pointers are cleared."""

    def test_delete_builtin_is_refused(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            write_builtin(store, make_config("builtin"))

            deleted = asyncio.run(store.delete("builtin"))

            assert deleted is False
            assert (store.builtin_dir / "builtin.json").exists()

    def test_delete_missing_returns_false(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            assert asyncio.run(store.delete("nothing")) is False

    def test_delete_clears_active_pointer(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                await store.save(make_config("mysite", provider_type=ProviderType.BOTH))
                await store.set_active("mysite", ProviderType.BOTH)
                deleted = await store.delete("mysite")
                return deleted, await store.get_active_pointers(), await store.get("mysite")

            deleted, pointers, config = asyncio.run(run())

            assert deleted
            assert pointers.anime_provider is None
            assert pointers.manga_provider is None
            assert config is None
            on_disk = json.loads((Path(tmpdir) / "active-providers.json").read_text(encoding="utf-8"))
            assert on_disk == {"animeProvider": None, "mangaProvider": None}

    def test_custom_delete_reveals_builtin(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            write_builtin(store, make_config("allanime", name="Builtin"))

            async def run():
                await store.save(make_config("allanime", name="Custom"))
                await store.delete("allanime")
                return await store.get("allanime")

            assert asyncio.run(run()).name == "Builtin"


class TestActiveProviderProperty:
    """Active pointers persist per content type."""

    @given(provider_type=st.sampled_from(list(ProviderType)))
    @settings(max_examples=10, deadline=None)
    def test_set_and_get_active(self, provider_type: ProviderType) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                await store.save(make_config("mysite", provider_type=provider_type))
                await store.set_active("MySite", provider_type)
                return (
                    await store.get_active(ProviderType.ANIME),
                    await store.get_active(ProviderType.MANGA),
                )

            anime, manga = asyncio.run(run())

            assert (anime is not None) == (provider_type in (ProviderType.ANIME, ProviderType.BOTH))
            assert (manga is not None) == (provider_type in (ProviderType.MANGA, ProviderType.BOTH))

            # A fresh store instance reads the persisted pointers
            reopened = ProviderStore(Path(tmpdir))
            pointers = asyncio.run(reopened.get_active_pointers())
            if provider_type != ProviderType.MANGA:
                assert pointers.anime_provider == "mysite"
            if provider_type != ProviderType.ANIME:
                assert pointers.manga_provider == "mysite"

    def test_set_active_unknown_slug_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            try:
                asyncio.run(store.set_active("ghost", ProviderType.ANIME))
            except PersistenceError as e:
                assert e.code == "not_found"
                return
            assert False, "Expected PersistenceError for an unknown provider"

    @given(content=st.sampled_from(["", "{broken", "[]", '"text"', '{"animeProvider": 5}']))
    @settings(max_examples=10, deadline=None)
    def test_corrupt_active_file_means_no_active(self, content: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "active-providers.json").write_text(content, encoding="utf-8")
            store = ProviderStore(Path(tmpdir))

            async def run():
                await store.save(make_config("mysite"))
                before = await store.get_active(ProviderType.ANIME)
                await store.set_active("mysite", ProviderType.ANIME)
                after = await store.get_active(ProviderType.ANIME)
                return before, after

            before, after = asyncio.run(run())

            assert before is None
            assert after is not None and after.slug == "mysite"

    def test_both_prefers_anime_pointer(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                await store.save(make_config("anime-site"))
                await store.save(make_config("manga-site", provider_type=ProviderType.MANGA))
                await store.set_active("manga-site", ProviderType.MANGA)
                only_manga = await store.get_active(ProviderType.BOTH)
                await store.set_active("anime-site", ProviderType.ANIME)
                both = await store.get_active(ProviderType.BOTH)
                return only_manga, both

            only_manga, both = asyncio.run(run())

            assert only_manga.slug == "manga-site"
            assert both.slug == "anime-site"

    def test_list_marks_active(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                await store.save(make_config("one"))
                await store.save(make_config("two"))
                await store.set_active("two", ProviderType.ANIME)
                return await store.list()

            listing = asyncio.run(run())

            assert {info.slug: info.is_active for info in listing} == {"one": False, "two": True}


class TestExportImportProperty:
    """Export then import yields an equal config with a normalized slug."""

    @given(config=config_strategy())
    @settings(max_examples=30, deadline=None)
    def test_export_import_round_trip(self, config: DynamicProviderConfig) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))

            async def run():
                await store.save(config)
                text = await store.export(config.slug)
                return await store.import_config(text)

            imported = asyncio.run(run())

            assert imported == config

    def test_import_normalizes_slug(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            text = make_config("My Site").to_json()

            imported = asyncio.run(store.import_config(text))

            assert imported.slug == "my-site"
            assert asyncio.run(store.get("my-site")) is None, "Import does not save"

    @given(slug=st.sampled_from(["/tmp/x", "../../escape", "..\\..\\escape", "a/../../b", "AC/DC Anime"]))
    @settings(max_examples=10, deadline=None)
    def test_imported_slug_saves_inside_custom_dir(self, slug: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            text = make_config("placeholder").with_changes(slug=slug).to_json()

            async def run():
                imported = await store.import_config(text)
                return imported, await store.save(imported)

            imported, path = asyncio.run(run())

            assert "/" not in imported.slug and "\\" not in imported.slug
            assert path.resolve().parent == store.custom_dir.resolve()
            assert [p.name for p in store.custom_dir.iterdir()] == [path.name]
            assert asyncio.run(store.get(imported.slug)) is not None

    def test_slash_in_name_becomes_hyphen(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            path = asyncio.run(store.save(make_config("AC/DC Anime")))

            assert path == store.custom_dir / "ac-dc-anime.json"
            saved = asyncio.run(store.get("ac-dc-anime"))
            assert saved.slug == "ac-dc-anime"

    def test_save_rejects_slug_without_usable_characters(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            try:
                asyncio.run(store.save(make_config("placeholder").with_changes(slug="../..")))
            except PersistenceError as e:
                assert e.code == "invalid_config"
                assert list(store.custom_dir.iterdir()) == []
                return
            assert False, "Expected PersistenceError for an empty slug"

    def test_import_rejects_slug_without_usable_characters(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            text = make_config("placeholder").with_changes(slug="///").to_json()
            try:
                asyncio.run(store.import_config(text))
            except ConfigurationError as e:
                assert e.code == "invalid_config"
                return
            assert False, "Expected ConfigurationError for an empty slug"

    def test_reads_never_leave_the_store(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir) / "store"
            store = ProviderStore(root)
            outside = Path(tmpdir) / "outside.json"
            outside.write_text(make_config("outside").to_json(), encoding="utf-8")

            async def run():
                return (
                    await store.get("../../../outside"),
                    await store.exists("../../../outside"),
                    await store.delete("../../../outside"),
                    await store.get(""),
                )

            assert asyncio.run(run()) == (None, False, False, None)
            assert outside.exists()

    def test_export_missing_raises(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            try:
                asyncio.run(store.export("ghost"))
            except PersistenceError as e:
                assert e.code == "not_found"
                return
            assert False, "Expected PersistenceError for an unknown provider"

    @given(text=st.sampled_from(["", "{}", "[1]", '{"name": "x"}']))
    @settings(max_examples=10, deadline=None)
    def test_import_invalid_raises(self, text: str) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            store = ProviderStore(Path(tmpdir))
            try:
                asyncio.run(store.import_config(text))
            except ConfigurationError as e:
                assert e.code == "invalid_config"
                return
            assert False, f"Expected ConfigurationError for {text!r}"
