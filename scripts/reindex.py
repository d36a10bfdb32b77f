"""
Operator CLI for the search index.

    python scripts/reindex.py reindex      rebuild the whole index
    python scripts/reindex.py clear        remove every indexed record
    python scripts/reindex.py progress     print indexing progress
    python scripts/reindex.py reset        clear a stuck working flag

Reads the forum content from the Redis store at DBSEARCH_REDIS_URL.
"""

import argparse
import asyncio
import json
import os
import sys

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from dbsearch.config import settings
from dbsearch.db import RedisContentStore
from dbsearch.logging_config import configure_logging
from dbsearch.plugin import DbSearchPlugin


async def main(command: str) -> int:
    content = RedisContentStore.from_url(settings.redis_url)
    plugin = DbSearchPlugin.from_settings(content)
    try:
        await plugin.start()

        if command == "reindex":
            counts = await plugin.pipeline.reindex()
            print(f"Indexed: {json.dumps(counts)}")
        elif command == "clear":
            counts = await plugin.pipeline.clear_index()
            print(f"Removed: {json.dumps(counts)}")
        elif command == "reset":
            await plugin.reset_working()
            print("Working flag cleared.")

        progress = await plugin.check_progress()
        print(json.dumps(progress.model_dump(by_alias=True), indent=2))
    finally:
        await plugin.close()
        await content.close()
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Manage the dbsearch index.")
    parser.add_argument("command", choices=["reindex", "clear", "progress", "reset"])
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    configure_logging(args.log_level)
    sys.exit(asyncio.run(main(args.command)))
