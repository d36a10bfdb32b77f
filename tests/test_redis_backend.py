"""
Redis Backend Tests

Runs the inverted-index adapter against an in-process fakeredis server.
"""

import fakeredis
import pytest

from dbsearch.backends.redis import RedisBackend
from dbsearch.models import IndexRecord, SearchQuery


def q(**kwargs):
    kwargs.setdefault("kind", "post")
    return SearchQuery(**kwargs)


@pytest.fixture
async def backend():
    backend = RedisBackend(fakeredis.FakeAsyncRedis(decode_responses=True))
    await backend.create_indices("en")
    yield backend
    await backend.close()


async def seed(backend):
    await backend.index(
        "post",
        [
            IndexRecord(content="apple banana", owner_id="1", container_id="10", timestamp=100),
            IndexRecord(content="apple cherry", owner_id="2", container_id="10", timestamp=200),
            IndexRecord(content="cherry and apple", owner_id="2", container_id="20", timestamp=300),
            IndexRecord(content="cherry", owner_id="3", container_id="20", timestamp=400),
        ],
        ["1", "2", "3", "10"],
    )


class TestRedisBackend:

    async def test_all_words(self, backend):
        await seed(backend)
        assert await backend.search("post", q(content="apple cherry"), 10) == ["2", "3"]

    async def test_any_word_ranks_by_term_frequency(self, backend):
        await seed(backend)
        assert await backend.search(
            "post", q(content="apple cherry", match_words="any"), 10
        ) == ["2", "3", "1", "10"]

    async def test_phrase(self, backend):
        await seed(backend)
        assert await backend.search("post", q(content='"apple cherry"'), 10) == ["2"]

    async def test_owner_and_container_filters(self, backend):
        await seed(backend)

        assert await backend.search("post", q(content="apple", owner_ids=["2"]), 10) == ["2", "3"]
        assert await backend.search("post", q(container_ids=["20"]), 10) == ["3", "10"]

    async def test_time_range(self, backend):
        await seed(backend)
        query = q(container_ids=["10", "20"], timestamp_from=150, timestamp_to=300)
        assert await backend.search("post", query, 10) == ["2", "3"]

    async def test_limit(self, backend):
        await seed(backend)
        assert await backend.search("post", q(container_ids=["10", "20"]), 2) == ["1", "2"]

    async def test_upsert_is_additive(self, backend):
        await backend.index("topic", [IndexRecord(content="kiwi")], ["7"])
        await backend.index("topic", [IndexRecord(owner_id="5")], ["7"])

        assert await backend.search("topic", q(kind="topic", content="kiwi", owner_ids=["5"]), 10) == ["7"]

    async def test_new_content_replaces_old_words(self, backend):
        await seed(backend)

        await backend.index("post", [IndexRecord(content="durian")], ["1"])

        assert await backend.search("post", q(content="banana"), 10) == []
        assert await backend.search("post", q(content="durian"), 10) == ["1"]
        assert await backend.search("post", q(owner_ids=["1"]), 10) == ["1"]

    async def test_remove_counts_only_existing_ids(self, backend):
        await seed(backend)

        assert await backend.remove("post", ["1", "99"]) == 1
        assert await backend.remove("post", ["1"]) == 0
        assert await backend.search("post", q(content="banana"), 10) == []
        assert await backend.search("post", q(owner_ids=["1"]), 10) == []

    async def test_kinds_are_separate(self, backend):
        await seed(backend)
        assert await backend.search("chat", q(kind="chat", content="apple"), 10) == []
