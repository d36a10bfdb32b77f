"""
Plugin Control Surface Tests
"""

import pytest

from dbsearch.core.errors import ConfigurationError
from dbsearch.plugin import DbSearchPlugin
from dbsearch.pubsub import LANGUAGE_CHANNEL, SETTINGS_CHANNEL


@pytest.fixture
async def plugin(memory_backend, content, objects, pubsub, events):
    plugin = DbSearchPlugin(memory_backend, content, objects, pubsub, events, batch_size=2)
    await plugin.start()
    yield plugin
    await plugin.close()


async def test_reindex_runs_in_background(plugin, content, memory_backend):
    content.add_topic(1, "background")

    task = plugin.reindex()
    assert not task.done()
    await plugin.wait_idle()

    assert "1" in memory_backend.tables["topic"]
    progress = await plugin.check_progress()
    assert progress.topics_indexed == 1
    assert progress.topics_percent == 100.0


async def test_clear_index_in_background(plugin, content, memory_backend):
    content.add_topic(1, "background")
    plugin.reindex()
    await plugin.wait_idle()

    plugin.clear_index()
    await plugin.wait_idle()

    assert memory_backend.tables["topic"] == {}
    assert (await plugin.check_progress()).topics_indexed == 0


async def test_save_settings_persists_and_broadcasts(plugin, objects, pubsub):
    received = []

    async def listener(data):
        received.append(data)

    pubsub.subscribe(SETTINGS_CHANNEL, listener)

    config = await plugin.save_settings({"postLimit": 50, "excludeContainerIds": [3]})

    assert config.post_limit == 50
    assert config.topic_limit == 500
    assert plugin.config.exclude_container_ids == ["3"]
    assert objects.data["dbsearch"]["excludeContainerIds"] == '["3"]'
    assert received[0]["postLimit"] == 50


async def test_change_language(plugin, objects, pubsub):
    received = []

    async def listener(data):
        received.append(data)

    pubsub.subscribe(LANGUAGE_CHANNEL, listener)

    await plugin.change_language("fr")

    assert objects.data["dbsearch"]["indexLanguage"] == "fr"
    assert plugin.config.index_language == "fr"
    assert received == ["fr"]


async def test_change_language_rejects_unknown(plugin):
    with pytest.raises(ConfigurationError):
        await plugin.change_language("klingon")


async def test_reset_working(plugin, objects):
    objects.data.setdefault("dbsearch", {})["working"] = "1"

    await plugin.reset_working()

    assert (await plugin.check_progress()).working is False


async def test_events_are_wired_on_start(plugin, events, content, memory_backend):
    content.add_message(3, room_id=1, content="wired")

    await events.emit("action:message.save", {"message": {"mid": 3}})

    assert "3" in memory_backend.tables["chat"]
