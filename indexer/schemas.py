"""Pydantic schemas for indexer requests and responses."""

from typing import List

from pydantic import BaseModel, Field


class ShardConfigModel(BaseModel):
    """Shard ownership reported by a node."""
    num_shards: int = Field(1, ge=1)
    shard_id: int = Field(0, ge=0)


class HeartbeatRequest(BaseModel):
    """Request model for node heartbeats."""
    url: str = Field(..., min_length=1)
    shard_config: ShardConfigModel = ShardConfigModel()
    latency_ms: float = Field(0.0, ge=0)
    roots: List[str] = []


class HeartbeatResponse(BaseModel):
    """Response model for node heartbeats."""
    status: str
    trust_tier: str


class NodeModel(BaseModel):
    """A storage node as returned to clients."""
    url: str
    shard_config: ShardConfigModel
    latency_ms: float
    trust_tier: str


class NodeSelectionResponse(BaseModel):
    """Response model for node selection."""
    trusted: List[NodeModel]
    discovered: List[NodeModel]


class LocationResponse(BaseModel):
    """Response model for root lookup."""
    root: str
    nodes: List[NodeModel]


class ErrorResponse(BaseModel):
    """Response model for errors."""
    detail: str
    code: str
