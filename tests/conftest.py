import sqlite3
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest

from dbsearch.backends.base import SearchBackend
from dbsearch.db import SqlObjectStore, create_engine
from dbsearch.pubsub import LocalPubSub


def _fts5_available() -> bool:
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE VIRTUAL TABLE probe USING fts5(content)")
        return True
    except sqlite3.OperationalError:
        return False
    finally:
        conn.close()


requires_fts5 = pytest.mark.skipif(not _fts5_available(), reason="SQLite built without FTS5")


# ---------------------------------------------------------------------
# Host fakes
# ---------------------------------------------------------------------

class FakeContentStore:
    """In-memory stand-in for the forum's content store."""

    def __init__(self):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.sorted_sets: Dict[str, List[str]] = defaultdict(list)
        self.failing_prefixes: set = set()
        self.failing_keys: set = set()

    def add_topic(self, tid, title, cid=1, uid=1, deleted=0, main_pid=None, timestamp=1000):
        self.objects[f"topic:{tid}"] = {
            "tid": str(tid),
            "title": title,
            "cid": str(cid),
            "uid": str(uid),
            "deleted": str(deleted),
            "timestamp": str(timestamp),
            "mainPid": str(main_pid) if main_pid else None,
        }
        self.sorted_sets["topics:tid"].append(str(tid))

    def add_post(self, pid, tid, content, uid=1, deleted=0, main=False, timestamp=1000):
        self.objects[f"post:{pid}"] = {
            "pid": str(pid),
            "tid": str(tid),
            "content": content,
            "uid": str(uid),
            "deleted": str(deleted),
            "timestamp": str(timestamp),
        }
        self.sorted_sets["posts:pid"].append(str(pid))
        if not main:
            self.sorted_sets[f"tid:{tid}:posts"].append(str(pid))

    def add_message(self, mid, room_id, content, uid=1, deleted=0, timestamp=1000):
        self.objects[f"message:{mid}"] = {
            "mid": str(mid),
            "roomId": str(room_id),
            "content": content,
            "uid": str(uid),
            "deleted": str(deleted),
            "timestamp": str(timestamp),
        }
        self.sorted_sets["messages:mid"].append(str(mid))

    def _check(self, keys):
        for key in keys:
            if key in self.failing_keys or key.split(":", 1)[0] in self.failing_prefixes:
                raise ConnectionError(f"store unavailable for {key}")

    async def get_object_field(self, key: str, field: str) -> Any:
        self._check([key])
        return self.objects.get(key, {}).get(field)

    async def get_objects_fields(self, keys, fields) -> List[Optional[Dict[str, Any]]]:
        self._check(keys)
        result = []
        for key in keys:
            obj = self.objects.get(key)
            result.append({f: obj.get(f) for f in fields} if obj else None)
        return result

    async def get_sorted_set_range(self, set_name: str, start: int, stop: int) -> List[str]:
        members = sorted(self.sorted_sets.get(set_name, []), key=int)
        return members[start:] if stop == -1 else members[start:stop + 1]

    async def get_global_counts(self) -> Dict[str, int]:
        return {
            "topicCount": len(self.sorted_sets["topics:tid"]),
            "postCount": len(self.sorted_sets["posts:pid"]),
            "messageCount": len(self.sorted_sets["messages:mid"]),
        }


class FakeObjectStore:
    def __init__(self, data: Optional[Dict[str, Dict[str, Any]]] = None):
        self.data = data or {}

    async def get_object(self, key):
        return dict(self.data.get(key, {}))

    async def set_object(self, key, data):
        self.data.setdefault(key, {}).update(
            {k: str(v) for k, v in data.items() if v is not None}
        )

    async def incr_object_field_by(self, key, field, value):
        record = self.data.setdefault(key, {})
        record[field] = str(int(record.get(field) or 0) + value)
        return int(record[field])


class FakeEvents:
    def __init__(self):
        self.handlers = defaultdict(list)

    def on(self, event, handler):
        self.handlers[event].append(handler)

    async def emit(self, event, data):
        for handler in self.handlers[event]:
            await handler(data)


class MemoryBackend(SearchBackend):
    """Dictionary-backed search backend for orchestrator tests."""

    name = "memory"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {
            kind: {} for kind in ("topic", "post", "chat")
        }
        self.provision_calls = 0

    async def _create_schema(self):
        self.provision_calls += 1

    async def _index(self, kind, ids, rows):
        for doc_id, row in zip(ids, rows):
            self.tables[kind].setdefault(doc_id, {}).update(
                {k: v for k, v in row.items() if v is not None}
            )

    async def _search(self, kind, query, limit):
        found = []
        for doc_id, record in self.tables[kind].items():
            if query.owner_ids and record.get("owner_id") not in query.owner_ids:
                continue
            if query.container_ids and record.get("container_id") not in query.container_ids:
                continue
            if query.content:
                text = (record.get("content") or "").lower()
                hits = [word.strip('"') in text for word in query.content.lower().split()]
                if not (any(hits) if query.match_words == "any" else all(hits)):
                    continue
            found.append(doc_id)
        return sorted(found, key=int)[:limit]

    async def _remove(self, kind, ids):
        return sum(1 for doc_id in ids if self.tables[kind].pop(doc_id, None) is not None)


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def content():
    return FakeContentStore()


@pytest.fixture
def objects():
    return FakeObjectStore()


@pytest.fixture
def events():
    return FakeEvents()


@pytest.fixture
def pubsub():
    return LocalPubSub()


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
async def sqlite_engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'search.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_objects(sqlite_engine):
    store = SqlObjectStore(sqlite_engine)
    await store.create_schema()
    return store
