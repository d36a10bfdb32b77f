"""
Indexing Orchestrator Tests

Drives the incremental handlers with partial event payloads against the
in-memory backend and host fakes.
"""

from unittest.mock import AsyncMock

import pytest

from dbsearch.indexer import SearchIndexer
from dbsearch.models import PluginConfig, SearchQuery
from dbsearch.pubsub import LANGUAGE_CHANNEL, SETTINGS_CHANNEL


@pytest.fixture
async def indexer(memory_backend, content, objects, pubsub):
    indexer = SearchIndexer(memory_backend, content, objects, pubsub, batch_size=2)
    await indexer.start()
    return indexer


def counter(objects, field):
    return int(objects.data.get("dbsearch", {}).get(field, 0))


class TestStart:

    async def test_loads_persisted_config_and_provisions(self, memory_backend, content, objects, pubsub):
        objects.data["dbsearch"] = {"postLimit": "7", "excludeContainerIds": "[\"4\"]"}
        indexer = SearchIndexer(memory_backend, content, objects, pubsub)

        await indexer.start()

        assert indexer.config.post_limit == 7
        assert indexer.config.exclude_container_ids == ["4"]
        assert memory_backend.provision_calls == 1

    async def test_follows_broadcast_settings(self, indexer, pubsub):
        await pubsub.publish(SETTINGS_CHANNEL, PluginConfig(topic_limit=3).model_dump(by_alias=True))
        assert indexer.config.topic_limit == 3

    async def test_follows_broadcast_language(self, indexer, pubsub, memory_backend):
        await pubsub.publish(LANGUAGE_CHANNEL, "de")

        assert indexer.config.index_language == "de"
        assert memory_backend.language == "de"


class TestTopicHandlers:

    async def test_save_with_partial_payload(self, indexer, content, memory_backend, objects):
        content.add_topic(1, "Stored title", cid=2, uid=5)

        await indexer.on_topic_save({"topic": {"tid": 1, "title": "New title"}})

        assert memory_backend.tables["topic"]["1"] == {
            "content": "New title",
            "owner_id": "5",
            "container_id": "2",
            "timestamp": 1000,
        }
        assert counter(objects, "topicsIndexed") == 1

    async def test_edit_into_excluded_category_removes(self, indexer, content, memory_backend, objects):
        content.add_topic(1, "Title", cid=2)
        await indexer.on_topic_save({"topic": {"tid": 1}})

        indexer.config = PluginConfig(exclude_container_ids=["3"])
        await indexer.on_topic_edit({"topic": {"tid": 1, "cid": 3}})

        assert "1" not in memory_backend.tables["topic"]
        assert counter(objects, "topicsIndexed") == 0

    async def test_re_inclusion_after_exclusion_lifted(self, indexer, content, memory_backend):
        content.add_topic(1, "Title", cid=3)
        indexer.config = PluginConfig(exclude_container_ids=["3"])
        await indexer.on_topic_save({"topic": {"tid": 1}})
        assert "1" not in memory_backend.tables["topic"]

        indexer.config = PluginConfig()
        await indexer.on_topic_save({"topic": {"tid": 1}})
        assert "1" in memory_backend.tables["topic"]

    async def test_delete_removes_topic_and_all_posts(self, indexer, content, memory_backend, objects):
        content.add_topic(1, "Title", main_pid=10)
        content.add_post(10, 1, "main post", main=True)
        for pid in (11, 12, 13):
            content.add_post(pid, 1, f"reply {pid}")
        await indexer.reindex_topics([1])
        assert set(memory_backend.tables["post"]) == {"10", "11", "12", "13"}

        await indexer.on_topic_delete({"topic": {"tid": 1}})

        assert memory_backend.tables["topic"] == {}
        assert memory_backend.tables["post"] == {}
        assert counter(objects, "topicsIndexed") == 0
        assert counter(objects, "postsIndexed") == 0

    async def test_delete_decrements_only_removed_records(self, indexer, content, objects):
        content.add_topic(1, "Title", main_pid=10)
        content.add_post(10, 1, "main post", main=True)
        objects.data["dbsearch"] = {"topicsIndexed": "5", "postsIndexed": "5"}

        await indexer.on_topic_purge({"topic": {"tid": 1}})

        assert counter(objects, "topicsIndexed") == 5
        assert counter(objects, "postsIndexed") == 5

    async def test_restore_reindexes_posts(self, indexer, content, memory_backend):
        content.add_topic(1, "Title", cid=4, main_pid=10)
        content.add_post(10, 1, "main post", main=True)
        content.add_post(11, 1, "reply")

        await indexer.on_topic_restore({"topic": {"tid": 1}})

        assert set(memory_backend.tables["post"]) == {"10", "11"}
        assert memory_backend.tables["post"]["11"]["container_id"] == "4"

    async def test_move_updates_post_categories(self, indexer, content, memory_backend):
        content.add_topic(1, "Title", cid=4)
        content.add_post(11, 1, "reply")
        await indexer.reindex_topics([1])

        content.objects["topic:1"]["cid"] = "8"
        await indexer.on_topic_move({"tid": 1, "toCid": 8})

        assert memory_backend.tables["topic"]["1"]["container_id"] == "8"
        assert memory_backend.tables["post"]["11"]["container_id"] == "8"

    async def test_change_owner(self, indexer, content, memory_backend):
        content.add_topic(1, "One", uid=1)
        content.add_topic(2, "Two", uid=1)

        await indexer.on_topic_change_owner({"tids": [1, 2], "toUid": 9})

        assert memory_backend.tables["topic"]["1"]["owner_id"] == "9"
        assert memory_backend.tables["topic"]["2"]["owner_id"] == "9"

    async def test_handler_failures_are_swallowed(self, indexer, content, memory_backend, caplog):
        content.add_topic(1, "Title")
        memory_backend._index = AsyncMock(side_effect=RuntimeError("engine down"))

        await indexer.on_topic_save({"topic": {"tid": 1}})

        assert "on_topic_save failed" in caplog.text

    async def test_invalid_id_is_ignored(self, indexer, memory_backend):
        await indexer.on_topic_save({"topic": {"tid": 0, "title": "x"}})
        assert memory_backend.tables["topic"] == {}


class TestPostHandlers:

    async def test_save_inherits_topic_category(self, indexer, content, memory_backend):
        content.add_topic(1, "Title", cid=6)
        content.add_post(11, 1, "hello", uid=3)

        await indexer.on_post_save({"post": {"pid": 11}})

        assert memory_backend.tables["post"]["11"]["container_id"] == "6"
        assert memory_backend.tables["post"]["11"]["owner_id"] == "3"

    async def test_posts_in_deleted_topics_are_skipped(self, indexer, content, memory_backend):
        content.add_topic(1, "Title", deleted=1)
        content.add_post(11, 1, "hello")

        await indexer.on_post_save({"post": {"pid": 11, "tid": 1, "content": "hello"}})

        assert memory_backend.tables["post"] == {}

    async def test_deleted_post_is_removed(self, indexer, content, memory_backend, objects):
        content.add_topic(1, "Title")
        content.add_post(11, 1, "hello")
        await indexer.on_post_save({"post": {"pid": 11}})

        await indexer.on_post_delete({"post": {"pid": 11}})

        assert memory_backend.tables["post"] == {}
        assert counter(objects, "postsIndexed") == 0

    async def test_edit_to_empty_content_removes(self, indexer, content, memory_backend):
        content.add_topic(1, "Title")
        content.add_post(11, 1, "hello")
        await indexer.on_post_save({"post": {"pid": 11}})

        content.objects["post:11"]["content"] = ""
        await indexer.on_post_edit({"post": {"pid": 11, "content": ""}})

        assert memory_backend.tables["post"] == {}

    async def test_move_to_other_topic(self, indexer, content, memory_backend):
        content.add_topic(1, "Old", cid=1)
        content.add_topic(2, "New", cid=9)
        content.add_post(11, 1, "hello")
        await indexer.on_post_save({"post": {"pid": 11}})

        await indexer.on_post_move({"post": {"pid": 11, "tid": 2}})

        assert memory_backend.tables["post"]["11"]["container_id"] == "9"

    async def test_change_owner_skips_deleted_topics(self, indexer, content, memory_backend):
        content.add_topic(1, "Live")
        content.add_topic(2, "Gone", deleted=1)
        content.add_post(11, 1, "a")
        content.add_post(12, 2, "b")

        await indexer.on_post_change_owner({"pids": [11, 12], "toUid": 4})

        assert set(memory_backend.tables["post"]) == {"11"}
        assert memory_backend.tables["post"]["11"]["owner_id"] == "4"


class TestMessageHandlers:

    async def test_save_and_delete(self, indexer, content, memory_backend, objects):
        content.add_message(5, room_id=2, content="hi there", uid=7)

        await indexer.on_message_save({"message": {"mid": 5}})
        assert memory_backend.tables["chat"]["5"]["container_id"] == "2"
        assert counter(objects, "messagesIndexed") == 1

        await indexer.on_message_delete({"message": {"mid": 5}})
        assert memory_backend.tables["chat"] == {}
        assert counter(objects, "messagesIndexed") == 0

    async def test_change_owner(self, indexer, content, memory_backend):
        content.add_message(5, room_id=2, content="hi", uid=7)

        await indexer.on_message_change_owner({"mids": [5], "toUid": 8})

        assert memory_backend.tables["chat"]["5"]["owner_id"] == "8"


class TestSearch:

    async def test_applies_kind_limit(self, indexer, content):
        for tid in range(1, 6):
            content.add_topic(tid, "common words")
        await indexer.reindex_topics(range(1, 6))
        indexer.config = PluginConfig(topic_limit=2, post_limit=4)

        assert await indexer.search(SearchQuery(kind="topic", content="common")) == ["1", "2"]

    async def test_query_without_filters_never_reaches_backend(self, indexer, memory_backend):
        memory_backend.search = AsyncMock()

        assert await indexer.search({"kind": "post", "match_words": "any"}) == []
        assert await indexer.search({"kind": "post"}) == []
        memory_backend.search.assert_not_called()

    async def test_malformed_query_returns_empty(self, indexer):
        assert await indexer.search({"kind": "nope", "content": "x"}) == []

    async def test_backend_failure_returns_empty(self, indexer, memory_backend):
        memory_backend._search = AsyncMock(side_effect=RuntimeError("down"))
        assert await indexer.search(SearchQuery(kind="post", content="x")) == []

    async def test_search_in_topic(self, indexer, content):
        content.add_topic(1, "First", cid=2)
        content.add_topic(2, "Second", cid=2)
        content.add_post(11, 1, "needle here")
        content.add_post(12, 2, "needle there")
        await indexer.reindex_topics([1, 2])

        assert await indexer.search_in_topic(1, "needle") == ["11"]
        assert await indexer.search_in_topic(1, "") == []
        assert await indexer.search_in_topic(0, "needle") == []


class TestIndexFilters:

    async def test_filter_rewrites_batch(self, indexer, content, memory_backend, objects):
        content.add_topic(1, "keep me")
        content.add_topic(2, "drop me")
        seen = []

        async def only_kept(kind, ids, records):
            seen.append((kind, ids))
            pairs = [(i, r.model_copy(update={"content": r.content.upper()}))
                     for i, r in zip(ids, records) if "keep" in r.content]
            return [i for i, _ in pairs], [r for _, r in pairs]

        indexer.add_index_filter(only_kept)
        await indexer.reindex_topics([1, 2])

        assert seen == [("topic", ["1", "2"])]
        assert memory_backend.tables["topic"]["1"]["content"] == "KEEP ME"
        assert "2" not in memory_backend.tables["topic"]
        assert counter(objects, "topicsIndexed") == 1

    async def test_filter_returning_nothing_skips_backend(self, indexer, content, memory_backend):
        content.add_topic(1, "anything")
        memory_backend.index = AsyncMock()

        async def drop_all(kind, ids, records):
            return [], []

        indexer.add_index_filter(drop_all)
        await indexer.on_topic_save({"topic": {"tid": 1}})

        memory_backend.index.assert_not_called()
