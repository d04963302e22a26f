"""Routes for node registration, node selection and root lookup."""

from fastapi import APIRouter, Depends, Query

from common.logging_config import get_logger
from common.merkle import normalize_root
from common.types import NodeDescriptor, SelectionMode, ShardConfig, TrustFilter
from indexer.exceptions import RootNotFoundError
from indexer.node_registry import NodeRegistry
from indexer.schemas import (
    HeartbeatRequest,
    HeartbeatResponse,
    LocationResponse,
    NodeModel,
    NodeSelectionResponse,
)

logger = get_logger(__name__)

router = APIRouter()

_node_registry: NodeRegistry = None


def set_node_registry(registry: NodeRegistry):
    """Set the global node registry instance"""
    global _node_registry
    _node_registry = registry


def get_node_registry() -> NodeRegistry:
    """Dependency to get node registry"""
    return _node_registry


def _node_model(node: NodeDescriptor) -> NodeModel:
    return NodeModel(**node.to_dict())


@router.post("/nodes/heartbeat", response_model=HeartbeatResponse)
async def node_heartbeat(
    payload: HeartbeatRequest,
    registry: NodeRegistry = Depends(get_node_registry)
):
    """
    Receive a heartbeat from a storage node.
    Registers the node or refreshes its shard config, latency and roots.
    """
    shard_config = ShardConfig(
        num_shards=payload.shard_config.num_shards,
        shard_id=payload.shard_config.shard_id,
    )
    await registry.update_node(payload.url, shard_config, payload.latency_ms, payload.roots)
    logger.debug(f"Heartbeat from {payload.url} ({len(payload.roots)} roots)")
    return HeartbeatResponse(status="ok", trust_tier=registry.trust_tier(payload.url).value)


@router.get("/nodes", response_model=NodeSelectionResponse)
async def select_nodes(
    replicas: int = Query(1, ge=1),
    trust: TrustFilter = Query(TrustFilter.TRUSTED_ONLY),
    mode: SelectionMode = Query(SelectionMode.MIN_LATENCY),
    registry: NodeRegistry = Depends(get_node_registry)
):
    """
    Return live nodes ranked for an upload, split by trust tier.
    """
    selection = await registry.select(replicas, trust, mode)
    return NodeSelectionResponse(
        trusted=[_node_model(n) for n in selection.trusted],
        discovered=[_node_model(n) for n in selection.discovered],
    )


@router.get("/nodes/all")
async def list_nodes(registry: NodeRegistry = Depends(get_node_registry)):
    """List every registered node, including stale ones."""
    return {"nodes": [_node_model(n) for n in await registry.get_all()]}


@router.get("/locations/{root}", response_model=LocationResponse)
async def locate_root(root: str, registry: NodeRegistry = Depends(get_node_registry)):
    """
    Return live nodes serving a root.

    Raises:
        RootNotFoundError: If no live node reports the root
        ValueError: If root is malformed
    """
    root = normalize_root(root)
    nodes = await registry.locate(root)
    if not nodes:
        raise RootNotFoundError(f"No node serves {root}")
    return LocationResponse(root=root, nodes=[_node_model(n) for n in nodes])
