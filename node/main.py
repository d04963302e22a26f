"""Entry point for the storage node service.
Starts the gRPC server and the heartbeat to the indexer.
"""

import asyncio
import signal
import sys
from pathlib import Path

from common.logging_config import setup_logging
from common.types import ShardConfig
from node.config import (
    HEARTBEAT_INTERVAL,
    INDEXER_URL,
    NODE_ADVERTISE_URL,
    NODE_FINALITY_DELAY,
    NODE_LATENCY_HINT_MS,
    NODE_NUM_SHARDS,
    NODE_PORT,
    NODE_SHARD_ID,
    NODE_STORAGE_PATH,
)
from node.fragment_storage import FragmentStorage
from node.grpc_server import StorageNodeServicer, create_server
from node.heartbeat_service import HeartbeatService

logger = setup_logging('node')


async def serve(storage: FragmentStorage) -> None:
    """
    Start and run gRPC server.

    Args:
        storage: Initialized FragmentStorage instance
    """
    heartbeat_service = HeartbeatService(
        advertise_url=NODE_ADVERTISE_URL,
        indexer_url=INDEXER_URL,
        interval=HEARTBEAT_INTERVAL,
        storage=storage,
        shard_config=ShardConfig(num_shards=NODE_NUM_SHARDS, shard_id=NODE_SHARD_ID),
        latency_ms=NODE_LATENCY_HINT_MS,
    )
    servicer = StorageNodeServicer(
        storage,
        finality_delay=NODE_FINALITY_DELAY,
        on_commit=heartbeat_service.announce,
    )
    server = create_server(servicer)
    listen_addr = f'[::]:{NODE_PORT}'
    server.add_insecure_port(listen_addr)

    logger.info(f"Starting storage node on {listen_addr} (finality delay {NODE_FINALITY_DELAY}s)")
    await server.start()

    await heartbeat_service.start()

    async def shutdown(sig=None):
        if sig:
            logger.info(f"Received signal {sig}, shutting down...")
        else:
            logger.info("Shutting down...")
        await heartbeat_service.stop()
        await server.stop(5)
        logger.info("Storage node stopped")

    if sys.platform != 'win32':
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(shutdown(s)))

    try:
        await server.wait_for_termination()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
        await shutdown()


def main() -> None:
    """Bootstrap storage node service."""
    storage = FragmentStorage(Path(NODE_STORAGE_PATH))
    storage.ensure_directories()
    logger.info(f"Serving {len(storage.list_roots())} stored fragment(s) from {storage.base_dir}")

    try:
        asyncio.run(serve(storage))
    except KeyboardInterrupt:
        logger.info("Storage node shutdown complete")


if __name__ == "__main__":
    main()
