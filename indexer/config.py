"""Configuration settings for the indexer service."""

import os

from common.constants import INDEXER_PORT as DEFAULT_INDEXER_PORT
from common.constants import NODE_CLEANUP_INTERVAL_SECONDS, NODE_STALE_THRESHOLD_SECONDS


INDEXER_HOST = os.environ.get("SHARDLINE_INDEXER_HOST", "0.0.0.0")

INDEXER_PORT = int(os.environ.get("SHARDLINE_INDEXER_PORT", str(DEFAULT_INDEXER_PORT)))

# Comma-separated node URLs classified as trusted; every other node is discovered
TRUSTED_NODE_URLS = [
    url.strip() for url in os.environ.get("SHARDLINE_INDEXER_TRUSTED_NODES", "").split(",") if url.strip()
]

NODE_STALE_THRESHOLD = int(os.environ.get("SHARDLINE_INDEXER_STALE_THRESHOLD", str(NODE_STALE_THRESHOLD_SECONDS)))

CLEANUP_INTERVAL = int(os.environ.get("SHARDLINE_INDEXER_CLEANUP_INTERVAL", str(NODE_CLEANUP_INTERVAL_SECONDS)))
