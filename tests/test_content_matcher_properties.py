"""
Property-based tests for the Content Pattern Matcher module.

Uses Hypothesis for the field-path helpers and httpx.MockTransport for the
search probe.
"""

import asyncio
import json

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from provider_autoconfig.content_matcher import (
    MAX_DEPTH,
    ContentPatternMatcher,
    determine_list_path,
    determine_results_path,
    extract_field_paths,
    infer_field_mappings,
)
from provider_autoconfig.decoders import ALLANIME_SOURCE_DECODER
from provider_autoconfig.enums import ApiType, EndpointPurpose, SearchMethod
from provider_autoconfig.models import ApiEndpoint, SiteProfile
from provider_autoconfig.transform_engine import TransformEngine


PROFILE = SiteProfile(base_url="https://site.example")


def pairs(mappings) -> list[tuple[str, str]]:
    return [(m.source_path, m.target_field) for m in mappings]


def analyze_with(handler, endpoints):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await ContentPatternMatcher(client).analyze(PROFILE, endpoints)

    return asyncio.run(run())


def no_requests(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"Unexpected request to {request.url}")


json_scalars = st.one_of(
    st.text(max_size=5),
    st.integers(min_value=-1000, max_value=1000),
)
json_documents = st.recursive(
    json_scalars,
    lambda children: st.one_of(
        st.lists(children, max_size=3),
        st.dictionaries(st.text(alphabet="abcxyz", min_size=1, max_size=4), children, max_size=3),
    ),
    max_leaves=15,
)


class TestFieldPathProperty:
    """Every extracted field path resolves to a scalar in the document."""

    @given(document=json_documents)
    @settings(max_examples=100)
    def test_paths_resolve_to_scalars(self, document) -> None:
        engine = TransformEngine()
        text = json.dumps(document)
        for path, name in extract_field_paths(document):
            assert path.endswith(name)
            value = engine.extract_value(text, path)
            assert value is not None

    def test_nesting_is_bounded(self) -> None:
        document = {"id": "x"}
        for _ in range(MAX_DEPTH + 3):
            document = {"nested": document}
        assert extract_field_paths(document) == []

    def test_shallowest_match_wins(self) -> None:
        record = {"extra": {"title": "Deep"}, "_id": "a1", "name": "Naruto", "thumbnail": "t.jpg"}
        assert pairs(infer_field_mappings(record)) == [
            ("$._id", "Id"),
            ("$.name", "Title"),
            ("$.thumbnail", "CoverImage"),
        ]

    def test_unrecognised_fields_are_ignored(self) -> None:
        assert infer_field_mappings({"foo": 1, "bar": {"baz": "x"}}) == []


class TestLayoutDetectionProperty:
    """Results and list paths are located from response shapes."""

    @given(case=st.sampled_from([
        ([{"id": 1}], "$"),
        ({"data": {"shows": {"edges": []}}}, "$.data.shows.edges"),
        ({"data": {"mangas": [1, 2]}}, "$.data.mangas"),
        ({"data": [1]}, "$.data"),
        ({"results": []}, "$.results"),
        ({"items": []}, "$.items"),
        ({"other": []}, None),
        ("text", None),
    ]))
    @settings(max_examples=20)
    def test_results_path(self, case) -> None:
        document, expected = case
        assert determine_results_path(document) == expected

    def test_episode_list_in_translation_map(self) -> None:
        document = {"data": {"show": {"_id": "a1", "availableEpisodesDetail": {"sub": ["2", "1"], "dub": []}}}}
        assert determine_list_path(document, "episodes") == "$.data.show.availableEpisodesDetail.sub"

    def test_chapter_list(self) -> None:
        document = {"data": {"manga": {"chapters": [{"number": 1}]}}}
        assert determine_list_path(document, "chapters") == "$.data.manga.chapters"
        assert determine_list_path(document, "episodes") is None


class TestAnalyzeProperty:
    """Endpoints are turned into search, list and media patterns."""

    def test_graphql_anime_site(self) -> None:
        encoded = "--" + "a1" * 12
        endpoints = [
            ApiEndpoint(
                url="https://api.site.example/api",
                type=ApiType.GRAPHQL,
                purpose=EndpointPurpose.SEARCH,
                sample_response=json.dumps(
                    {"data": {"shows": {"edges": [{"_id": "abc", "name": "Naruto", "thumbnail": "t.jpg"}]}}}
                ),
                confidence=90,
            ),
            ApiEndpoint(
                url="https://api.site.example/api",
                type=ApiType.GRAPHQL,
                purpose=EndpointPurpose.EPISODES,
                sample_response=json.dumps(
                    {"data": {"show": {"_id": "abc", "availableEpisodesDetail": {"sub": ["2", "1"]}}}}
                ),
            ),
            ApiEndpoint(
                url="https://api.site.example/api",
                type=ApiType.GRAPHQL,
                purpose=EndpointPurpose.STREAMS,
                sample_response=json.dumps(
                    {"data": {"episode": {"sourceUrls": [{"sourceUrl": encoded, "sourceName": "Default"}]}}}
                ),
            ),
        ]

        schema = analyze_with(no_requests, endpoints)

        search = schema.search_pattern
        assert search.method == SearchMethod.GRAPHQL
        assert search.endpoint == "/api"
        assert search.results_path == "$.data.shows.edges"
        assert pairs(search.field_mappings) == [
            ("$._id", "Id"), ("$.name", "Title"), ("$.thumbnail", "CoverImage"),
        ]

        episodes = schema.episode_pattern
        assert episodes.list_path == "$.data.show.availableEpisodesDetail.sub"
        assert pairs(episodes.field_mappings) == [("$", "Number")]
        assert schema.chapter_pattern is None

        media = schema.media_pattern
        assert media.requires_decoding
        assert media.custom_decoder == ALLANIME_SOURCE_DECODER
        assert media.media_path == "$.data.episode.sourceUrls"

        assert schema.id_pattern.example == "abc"
        assert len(schema.endpoints) == 3

    def test_rest_search_is_probed(self) -> None:
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, json={"results": [{"id": "1", "title": "Naruto", "image": "i.jpg"}]})

        endpoint = ApiEndpoint(
            url="https://site.example/api/search",
            type=ApiType.REST,
            purpose=EndpointPurpose.SEARCH,
        )
        schema = analyze_with(handler, [endpoint])

        assert requested == ["https://site.example/api/search?q=naruto"]
        search = schema.search_pattern
        assert search.method == SearchMethod.REST
        assert search.query_template == "?q=${query}"
        assert search.results_path == "$.results"
        assert pairs(search.field_mappings) == [("$.id", "Id"), ("$.title", "Title"), ("$.image", "CoverImage")]
        assert schema.media_pattern is None

    @given(status=st.sampled_from([400, 403, 404, 500, 503]))
    @settings(max_examples=5, deadline=None)
    def test_failed_probe_leaves_search_empty(self, status: int) -> None:
        endpoint = ApiEndpoint(
            url="https://site.example/api/search",
            type=ApiType.REST,
            purpose=EndpointPurpose.SEARCH,
        )
        schema = analyze_with(lambda request: httpx.Response(status), [endpoint])
        assert schema.search_pattern is None

    def test_highest_confidence_endpoint_is_used(self) -> None:
        low = ApiEndpoint(
            url="https://site.example/low",
            type=ApiType.REST,
            purpose=EndpointPurpose.SEARCH,
            sample_response='{"results": [{"id": "1"}]}',
            confidence=40,
        )
        high = ApiEndpoint(
            url="https://site.example/high",
            type=ApiType.REST,
            purpose=EndpointPurpose.SEARCH,
            sample_response='{"items": [{"id": "1"}]}',
            confidence=95,
        )
        schema = analyze_with(no_requests, [low, high])

        assert schema.search_pattern.endpoint == "/high"
        assert schema.search_pattern.results_path == "$.items"

    def test_page_endpoint_uses_page_mappings(self) -> None:
        endpoint = ApiEndpoint(
            url="https://site.example/api/images",
            type=ApiType.REST,
            purpose=EndpointPurpose.PAGES,
            sample_response='{"data": {"chapter": {"pictureUrls": [{"url": "/p1.jpg", "num": 1}]}}}',
        )
        schema = analyze_with(no_requests, [endpoint])

        media = schema.media_pattern
        assert not media.requires_decoding
        assert media.media_path == "$.data.chapter.pictureUrls"
        assert pairs(media.field_mappings) == [("$.url", "Url"), ("$.num", "Number")]

    def test_no_endpoints(self) -> None:
        schema = analyze_with(no_requests, [])
        assert schema.search_pattern is None
        assert schema.episode_pattern is None
        assert schema.media_pattern is None
        assert schema.id_pattern is None
