"""Heartbeat service for storage node registration with the indexer."""

import asyncio
from typing import Any, Dict, Optional

import aiohttp

from common.logging_config import get_logger
from common.types import ShardConfig
from node.fragment_storage import FragmentStorage

logger = get_logger(__name__)


class HeartbeatService:
    """
    Sends periodic heartbeats to the indexer.

    Each heartbeat carries the node's advertised URL, shard config, latency
    hint and the roots it stores, which is what the indexer uses for node
    selection and root location.
    """

    def __init__(
        self,
        advertise_url: str,
        indexer_url: str,
        interval: int,
        storage: FragmentStorage,
        shard_config: ShardConfig,
        latency_ms: float = 0.0,
    ):
        self.advertise_url = advertise_url
        self.indexer_url = indexer_url.rstrip('/')
        self.interval = interval
        self.storage = storage
        self.shard_config = shard_config
        self.latency_ms = latency_ms
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start heartbeat background task"""
        self.running = True
        self._task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Heartbeat service started - url={self.advertise_url}, indexer={self.indexer_url}")

    async def stop(self):
        """Stop heartbeat background task"""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Heartbeat service stopped")

    async def _heartbeat_loop(self):
        """Send periodic heartbeat to the indexer"""
        while self.running:
            await self.send_heartbeat()
            await asyncio.sleep(self.interval)

    async def announce(self, root: str) -> None:
        """Send an immediate heartbeat so the indexer can locate a newly committed root."""
        logger.debug(f"Announcing {root} to {self.indexer_url}")
        if not await self.send_heartbeat():
            logger.warning(f"Indexer was not told about {root}, the next periodic heartbeat will carry it")

    def build_payload(self) -> Dict[str, Any]:
        return {
            "url": self.advertise_url,
            "shard_config": {
                "num_shards": self.shard_config.num_shards,
                "shard_id": self.shard_config.shard_id,
            },
            "latency_ms": self.latency_ms,
            "roots": self.storage.list_roots(),
        }

    async def send_heartbeat(self) -> bool:
        """
        Send one heartbeat.

        Returns:
            True on success, False on failure
        """
        payload = self.build_payload()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self.indexer_url}/nodes/heartbeat",
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=3)
                ) as resp:
                    if resp.status == 200:
                        logger.debug(f"Heartbeat to {self.indexer_url} succeeded ({len(payload['roots'])} roots)")
                        return True
                    logger.warning(f"Heartbeat to {self.indexer_url} returned {resp.status}")
                    return False

        except asyncio.TimeoutError:
            logger.warning(f"Heartbeat to {self.indexer_url} timed out")
            return False
        except aiohttp.ClientError as e:
            logger.warning(f"Heartbeat to {self.indexer_url} failed: {e}")
            return False
