"""
Model Tests

Covers persisted settings parsing and query normalisation.
"""

import json

import pytest
from pydantic import ValidationError

from dbsearch.models import IndexRecord, PluginConfig, SearchQuery


class TestPluginConfig:

    def test_defaults_for_empty_record(self):
        config = PluginConfig.from_record({})

        assert config.post_limit == 500
        assert config.topic_limit == 500
        assert config.index_language == "en"
        assert config.exclude_container_ids == []

    def test_parses_persisted_record(self):
        config = PluginConfig.from_record({
            "postLimit": "25",
            "topicLimit": "10",
            "indexLanguage": "de",
            "excludeContainerIds": "[3, \"7\"]",
        })

        assert config.post_limit == 25
        assert config.topic_limit == 10
        assert config.index_language == "de"
        assert config.exclude_container_ids == ["3", "7"]

    def test_corrupt_exclusion_list_falls_back_to_empty(self):
        config = PluginConfig.from_record({"excludeContainerIds": "{not json"})
        assert config.exclude_container_ids == []

    def test_non_list_exclusion_falls_back_to_empty(self):
        config = PluginConfig.from_record({"excludeContainerIds": "{\"a\": 1}"})
        assert config.exclude_container_ids == []

    def test_invalid_limits_use_defaults(self):
        config = PluginConfig.from_record({"postLimit": "abc", "topicLimit": "0"})
        assert config.post_limit == 500
        assert config.topic_limit == 500

    def test_to_record_uses_camel_case_and_json_list(self):
        record = PluginConfig(exclude_container_ids=["4"]).to_record()

        assert set(record) == {"postLimit", "topicLimit", "indexLanguage", "excludeContainerIds"}
        assert json.loads(record["excludeContainerIds"]) == ["4"]

    def test_limit_for_kind(self):
        config = PluginConfig(post_limit=5, topic_limit=9)

        assert config.limit_for("topic") == 9
        assert config.limit_for("post") == 5
        assert config.limit_for("chat") == 5

    def test_validates_broadcast_payload_by_alias(self):
        config = PluginConfig.model_validate({"postLimit": 3, "excludeContainerIds": [1, 2]})
        assert config.post_limit == 3
        assert config.is_excluded(2)
        assert not config.is_excluded(None)


class TestSearchQuery:

    def test_drops_empty_and_zero_ids(self):
        query = SearchQuery(kind="post", owner_ids=[0, "", "0", None, 5], container_ids=[])

        assert query.owner_ids == ["5"]
        assert query.container_ids is None

    def test_blank_content_is_not_a_filter(self):
        query = SearchQuery(kind="topic", content="   ")

        assert query.content is None
        assert not query.has_filters

    def test_timestamp_alone_is_not_a_filter(self):
        query = SearchQuery(kind="topic", timestamp_from=1)
        assert not query.has_filters

    def test_rejects_unknown_kind(self):
        with pytest.raises(ValidationError):
            SearchQuery(kind="user", content="x")


class TestIndexRecord:

    def test_fields_omits_missing_values(self):
        record = IndexRecord(content="hello", owner_id="3")

        assert record.fields() == {"content": "hello", "owner_id": "3"}
        assert not record.is_empty()
        assert IndexRecord().is_empty()
