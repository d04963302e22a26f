"""Shared pytest fixtures for all tests."""

import asyncio
from typing import Dict, List, Set

import pytest

from cli.config import Config
from client.config import TransferConfig
from client.storage_client import CommitAck
from common.exceptions import NotFoundError, TransportFailureError
from common.merkle import compute_root
from common.types import (
    FinalityRequirement,
    NodeDescriptor,
    NodeSelection,
    ReplicationPolicy,
    ShardConfig,
    TrustFilter,
    TrustTier,
)


class FakeNode:
    """In-memory storage node with switchable failure modes."""

    def __init__(self, url: str, trust_tier: TrustTier, shard_config: ShardConfig, latency_ms: float):
        self.descriptor = NodeDescriptor(
            url=url, shard_config=shard_config, latency_ms=latency_ms, trust_tier=trust_tier
        )
        self.staged: Dict[str, bytearray] = {}
        self.fragments: Dict[str, bytes] = {}
        self.fail_uploads = False
        self.finalize = True
        self.corrupt = False
        self.upload_delay = 0.0
        self.segments_received = 0
        self.fetch_calls = 0

    @property
    def url(self) -> str:
        return self.descriptor.url


class FakeNetwork:
    """
    Stands in for both the indexer and the storage transport.

    Implements select_nodes/locate (node selector and locator) and the
    StorageNodeClient methods used by the uploader and verifier.
    """

    def __init__(self):
        self.nodes: Dict[str, FakeNode] = {}
        self.fail_roots: Set[str] = set()
        self.selection_calls: List[tuple] = []
        self.closed = False

    def add_node(
        self,
        url: str,
        trusted: bool = True,
        shard_config: ShardConfig = ShardConfig(),
        latency_ms: float = 0.0,
    ) -> FakeNode:
        tier = TrustTier.TRUSTED if trusted else TrustTier.DISCOVERED
        node = FakeNode(url, tier, shard_config, latency_ms)
        self.nodes[url] = node
        return node

    async def select_nodes(self, replica_count, trust_filter, mode) -> NodeSelection:
        self.selection_calls.append((replica_count, trust_filter, mode))
        trusted = tuple(n.descriptor for n in self.nodes.values() if n.descriptor.trust_tier == TrustTier.TRUSTED)
        discovered = ()
        if trust_filter == TrustFilter.ALLOW_DISCOVERED:
            discovered = tuple(
                n.descriptor for n in self.nodes.values() if n.descriptor.trust_tier == TrustTier.DISCOVERED
            )
        return NodeSelection(trusted=trusted, discovered=discovered)

    async def locate(self, root: str) -> List[NodeDescriptor]:
        return [n.descriptor for n in self.nodes.values() if root in n.fragments]

    async def upload_segment(self, url, root, fragment_size, task_index, offset, data) -> None:
        node = self.nodes[url]
        if node.upload_delay:
            await asyncio.sleep(node.upload_delay)
        if node.fail_uploads or root in self.fail_roots:
            raise TransportFailureError(f"Node {url} failed: UNAVAILABLE", root=root, node_errors={url: "UNAVAILABLE"})
        buffer = node.staged.setdefault(root, bytearray(fragment_size))
        buffer[offset:offset + len(data)] = data
        node.segments_received += 1

    async def commit_fragment(self, url, root, fragment_size, task_count) -> CommitAck:
        node = self.nodes[url]
        data = bytes(node.staged.pop(root, b""))
        actual = compute_root(data)
        if actual == root:
            node.fragments[root] = data
        return CommitAck(root=actual, commit_handle=f"{url}#{root[2:10]}", finalized=node.finalize)

    async def commit_status(self, url, root, commit_handle) -> bool:
        return self.nodes[url].finalize

    async def fetch_fragment(self, url, root) -> bytes:
        node = self.nodes[url]
        node.fetch_calls += 1
        if root not in node.fragments:
            raise NotFoundError(f"Node {url} does not hold fragment", root=root)
        data = node.fragments[root]
        if node.corrupt:
            return bytes([data[0] ^ 0xFF]) + data[1:]
        return data

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def network():
    """Empty fake network; tests add nodes as needed."""
    return FakeNetwork()


@pytest.fixture
def transfer_config():
    """
    Small-sized transfer configuration for fast tests.

    300-byte fragments split into 128-byte upload tasks; finality waits
    time out after a fraction of a second.
    """
    return TransferConfig(
        indexer_url="http://indexer.test",
        fragment_size=300,
        upload_task_size=128,
        max_inflight_tasks=4,
        max_parallel_fragments=2,
        request_timeout=1.0,
        finality_timeout=0.2,
        finality_poll_interval=0.01,
        max_retries=0,
        retry_backoff_multiplier=1.0,
    )


@pytest.fixture
def policy():
    """Two confirmed replicas on trusted nodes."""
    return ReplicationPolicy(replica_count=2, finality=FinalityRequirement.NETWORK_CONFIRMED)


@pytest.fixture
def temp_config_dir(tmp_path):
    """
    Create temporary config directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary .shardline directory
    """
    config_dir = tmp_path / '.shardline'
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def temp_config(temp_config_dir):
    """
    Create temporary config instance.

    Args:
        temp_config_dir: Temporary config directory fixture

    Returns:
        Config instance with temp config file
    """
    return Config(temp_config_dir / 'config.json')
