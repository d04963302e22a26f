"""Registry tracking storage nodes, their shards and the roots they serve."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from common.logging_config import get_logger
from common.merkle import normalize_root
from common.types import (
    NodeDescriptor,
    NodeSelection,
    SelectionMode,
    ShardConfig,
    TrustFilter,
    TrustTier,
)

logger = get_logger(__name__)


@dataclass
class NodeRecord:
    """Last heartbeat received from one node."""
    url: str
    shard_config: ShardConfig
    latency_ms: float
    last_heartbeat: float
    roots: Set[str] = field(default_factory=set)


class NodeRegistry:
    """
    In-memory registry of storage nodes fed by heartbeats.

    Nodes whose last heartbeat is older than stale_threshold are ignored by
    selection and lookup, and removed by cleanup_stale_nodes().
    """

    def __init__(
        self,
        trusted_urls: Iterable[str] = (),
        stale_threshold: float = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.lock = asyncio.Lock()
        self.trusted_urls = set(trusted_urls)
        self.stale_threshold = stale_threshold
        self.clock = clock
        self._nodes: Dict[str, NodeRecord] = {}
        self._rotation = 0

    def trust_tier(self, url: str) -> TrustTier:
        return TrustTier.TRUSTED if url in self.trusted_urls else TrustTier.DISCOVERED

    def _descriptor(self, record: NodeRecord) -> NodeDescriptor:
        return NodeDescriptor(
            url=record.url,
            shard_config=record.shard_config,
            latency_ms=record.latency_ms,
            trust_tier=self.trust_tier(record.url),
        )

    def _fresh(self) -> List[NodeRecord]:
        cutoff = self.clock() - self.stale_threshold
        return [record for record in self._nodes.values() if record.last_heartbeat >= cutoff]

    async def update_node(
        self,
        url: str,
        shard_config: ShardConfig,
        latency_ms: float,
        roots: Iterable[str],
    ) -> NodeRecord:
        """
        Record a heartbeat.

        Raises:
            ValueError: If a reported root is malformed
        """
        normalized = {normalize_root(root) for root in roots}
        async with self.lock:
            is_new = url not in self._nodes
            record = NodeRecord(
                url=url,
                shard_config=shard_config,
                latency_ms=latency_ms,
                last_heartbeat=self.clock(),
                roots=normalized,
            )
            self._nodes[url] = record
        if is_new:
            logger.info(
                f"Registered node {url} [{self.trust_tier(url).value}, "
                f"shard {shard_config.shard_id}/{shard_config.num_shards}, {len(normalized)} roots]"
            )
        return record

    async def select(self, replica_count: int, trust_filter: TrustFilter, mode: SelectionMode) -> NodeSelection:
        """
        Rank live nodes for an upload.

        Every live node is returned (not just replica_count) so the client
        has alternates for failover and shard filtering.

        Args:
            replica_count: Replicas the client needs
            trust_filter: Whether discovered nodes may be returned
            mode: MIN_LATENCY sorts by latency hint; ROUND_ROBIN rotates the order per call

        Returns:
            NodeSelection split by trust tier

        Raises:
            ValueError: If replica_count is not positive
        """
        if replica_count < 1:
            raise ValueError(f"replicas must be at least 1, got {replica_count}")

        async with self.lock:
            records = sorted(self._fresh(), key=lambda r: r.url)
            if mode == SelectionMode.ROUND_ROBIN:
                offset = self._rotation
                self._rotation += 1
                if records:
                    offset %= len(records)
                    records = records[offset:] + records[:offset]
            else:
                records.sort(key=lambda r: r.latency_ms)

        trusted = [self._descriptor(r) for r in records if r.url in self.trusted_urls]
        discovered = []
        if trust_filter == TrustFilter.ALLOW_DISCOVERED:
            discovered = [self._descriptor(r) for r in records if r.url not in self.trusted_urls]

        if len(trusted) + len(discovered) < replica_count:
            logger.warning(
                f"Only {len(trusted) + len(discovered)} node(s) available for {replica_count} replica(s) "
                f"[{trust_filter.value}]"
            )
        return NodeSelection(trusted=tuple(trusted), discovered=tuple(discovered))

    async def locate(self, root: str) -> List[NodeDescriptor]:
        """
        Find live nodes serving a root, trusted first then by latency.

        Raises:
            ValueError: If root is malformed
        """
        root = normalize_root(root)
        async with self.lock:
            records = [r for r in self._fresh() if root in r.roots]
        records.sort(key=lambda r: (r.url not in self.trusted_urls, r.latency_ms, r.url))
        return [self._descriptor(r) for r in records]

    async def get(self, url: str) -> Optional[NodeRecord]:
        async with self.lock:
            return self._nodes.get(url)

    async def get_all(self) -> List[NodeDescriptor]:
        """Get all registered nodes (including stale ones)."""
        async with self.lock:
            records = sorted(self._nodes.values(), key=lambda r: r.url)
        return [self._descriptor(r) for r in records]

    async def cleanup_stale_nodes(self) -> int:
        """
        Remove nodes that haven't sent a heartbeat within the threshold.

        Returns:
            Number of nodes removed
        """
        async with self.lock:
            cutoff = self.clock() - self.stale_threshold
            stale = [url for url, r in self._nodes.items() if r.last_heartbeat < cutoff]
            for url in stale:
                del self._nodes[url]
        if stale:
            logger.info(f"Cleaned up {len(stale)} stale node(s): {', '.join(stale)}")
        return len(stale)
