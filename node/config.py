"""Storage node configuration from environment variables."""

import os
import socket

from common.constants import (
    DEFAULT_NODE_STORAGE_PATH,
    HEARTBEAT_INTERVAL_SECONDS,
    INDEXER_PORT,
    STORAGE_NODE_PORT,
)


def get_local_ip() -> str:
    """
    Get this host's outbound IP address.

    Uses the routing table (a UDP connect sends nothing) and falls back to
    resolving the hostname.
    """
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(('8.8.8.8', 80))
        ip = s.getsockname()[0]
    except OSError:
        ip = socket.gethostbyname(socket.gethostname())
    finally:
        s.close()
    return ip


NODE_PORT = int(os.getenv("SHARDLINE_NODE_PORT", str(STORAGE_NODE_PORT)))
NODE_STORAGE_PATH = os.getenv("SHARDLINE_NODE_STORAGE_PATH", DEFAULT_NODE_STORAGE_PATH)
NODE_ADVERTISE_URL = os.getenv("SHARDLINE_NODE_ADVERTISE_URL") or f"grpc://{get_local_ip()}:{NODE_PORT}"

NODE_NUM_SHARDS = int(os.getenv("SHARDLINE_NODE_NUM_SHARDS", "1"))
NODE_SHARD_ID = int(os.getenv("SHARDLINE_NODE_SHARD_ID", "0"))

# Seconds between a commit and its finality, simulating network confirmation
NODE_FINALITY_DELAY = float(os.getenv("SHARDLINE_NODE_FINALITY_DELAY", "0"))
NODE_LATENCY_HINT_MS = float(os.getenv("SHARDLINE_NODE_LATENCY_MS", "0"))

INDEXER_URL = os.getenv("SHARDLINE_INDEXER_URL", f"http://localhost:{INDEXER_PORT}")
HEARTBEAT_INTERVAL = int(os.getenv("SHARDLINE_NODE_HEARTBEAT_INTERVAL", str(HEARTBEAT_INTERVAL_SECONDS)))
