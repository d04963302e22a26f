"""Shared data type definitions (Fragment, UploadRecord, TransferSession, NodeDescriptor, etc.)."""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from common.exceptions import ConfigurationError, TransferError


class TrustTier(str, Enum):
    """Classification of a storage node."""

    TRUSTED = "trusted"
    DISCOVERED = "discovered"


class TrustFilter(str, Enum):
    """Which trust tiers a fragment may be written to."""

    TRUSTED_ONLY = "trusted-only"
    ALLOW_DISCOVERED = "allow-discovered"


class SelectionMode(str, Enum):
    """Node ordering requested from the indexer."""

    MIN_LATENCY = "min-latency"
    ROUND_ROBIN = "round-robin"


class FinalityRequirement(str, Enum):
    """When a replica write counts as done."""

    ON_SUBMISSION = "on-submission"
    NETWORK_CONFIRMED = "network-confirmed"


class SessionStatus(str, Enum):
    """Lifecycle states of a TransferSession."""

    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ShardConfig:
    """
    Shard ownership of a storage node.

    A node owns the roots whose integer value modulo num_shards equals shard_id.
    """
    num_shards: int = 1
    shard_id: int = 0

    def __post_init__(self):
        if self.num_shards < 1 or not 0 <= self.shard_id < self.num_shards:
            raise ValueError(f"Invalid shard config: {self.shard_id}/{self.num_shards}")

    def owns(self, root: str) -> bool:
        """Return True if this shard is responsible for the given root."""
        return int(root, 16) % self.num_shards == self.shard_id


@dataclass(frozen=True)
class NodeDescriptor:
    """
    Read-only snapshot of a storage node supplied by the indexer.
    """
    url: str
    shard_config: ShardConfig = field(default_factory=ShardConfig)
    latency_ms: float = 0.0
    trust_tier: TrustTier = TrustTier.DISCOVERED

    @classmethod
    def from_dict(cls, data: dict, trust_tier: Optional[TrustTier] = None) -> "NodeDescriptor":
        shard = data.get("shard_config") or {}
        return cls(
            url=data["url"],
            shard_config=ShardConfig(
                num_shards=int(shard.get("num_shards", 1)),
                shard_id=int(shard.get("shard_id", 0)),
            ),
            latency_ms=float(data.get("latency_ms", 0.0)),
            trust_tier=trust_tier or TrustTier(data.get("trust_tier", TrustTier.DISCOVERED.value)),
        )

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "shard_config": {
                "num_shards": self.shard_config.num_shards,
                "shard_id": self.shard_config.shard_id,
            },
            "latency_ms": self.latency_ms,
            "trust_tier": self.trust_tier.value,
        }


@dataclass(frozen=True)
class NodeSelection:
    """
    Result of a node selection request, split by trust tier.
    """
    trusted: Tuple[NodeDescriptor, ...] = ()
    discovered: Tuple[NodeDescriptor, ...] = ()

    def candidates(self, trust_filter: TrustFilter) -> List[NodeDescriptor]:
        """
        Flatten the selection into an ordered candidate list.

        Trusted nodes come first; discovered nodes are appended only when
        the filter allows them. Duplicate URLs are dropped.
        """
        ordered = list(self.trusted)
        if trust_filter == TrustFilter.ALLOW_DISCOVERED:
            ordered.extend(self.discovered)

        seen = set()
        unique = []
        for node in ordered:
            if node.url not in seen:
                seen.add(node.url)
                unique.append(node)
        return unique


@dataclass(frozen=True)
class ReplicationPolicy:
    """
    Caller-supplied replication and finality contract for a fragment upload.
    """
    replica_count: int
    finality: FinalityRequirement
    selection_mode: SelectionMode = SelectionMode.MIN_LATENCY
    trust_filter: TrustFilter = TrustFilter.TRUSTED_ONLY

    def __post_init__(self):
        if not isinstance(self.replica_count, int) or self.replica_count < 1:
            raise ConfigurationError(
                f"Replication count must be a positive integer, got {self.replica_count!r}"
            )


@dataclass(frozen=True)
class Fragment:
    """
    A contiguous slice of the source payload.
    """
    index: int
    offset: int
    payload: bytes

    @property
    def length(self) -> int:
        return len(self.payload)

    @property
    def byte_range(self) -> Tuple[int, int]:
        """Half-open [start, end) range in the source."""
        return (self.offset, self.offset + len(self.payload))


@dataclass(frozen=True)
class UploadReceipt:
    """
    Structured result of a single fragment upload.
    """
    root: str
    commit_handle: str
    replication_achieved: int
    nodes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UploadRecord:
    """
    Immutable record of one successfully uploaded fragment.
    """
    fragment_index: int
    root: str
    commit_handle: str
    replication_achieved: int
    size: int = 0


@dataclass
class TransferSession:
    """
    Ordered upload records plus overall status for one transfer.

    Exclusively owned by the orchestration call that created it. Records
    are only ever appended in strictly increasing index order.
    """
    fragment_size: int
    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    records: List[UploadRecord] = field(default_factory=list)
    status: SessionStatus = SessionStatus.IN_PROGRESS
    failed_index: Optional[int] = None
    error: Optional[TransferError] = None

    @property
    def roots(self) -> List[str]:
        return [record.root for record in self.records]

    @property
    def total_size(self) -> int:
        return sum(record.size for record in self.records)

    @property
    def is_terminal(self) -> bool:
        return self.status != SessionStatus.IN_PROGRESS

    def append(self, record: UploadRecord) -> None:
        """
        Append the next record.

        Raises:
            ValueError: If the session is terminal or the index is not next in order
        """
        if self.is_terminal:
            raise ValueError(f"Session {self.session_id} is {self.status.value}")
        expected = len(self.records)
        if record.fragment_index != expected:
            raise ValueError(
                f"Out-of-order record: expected fragment {expected}, got {record.fragment_index}"
            )
        self.records.append(record)

    def mark_completed(self) -> None:
        self._finish(SessionStatus.COMPLETED)

    def mark_failed(self, index: int, error: TransferError) -> None:
        self._finish(SessionStatus.FAILED, index, error)

    def mark_cancelled(self, index: int, error: TransferError) -> None:
        self._finish(SessionStatus.CANCELLED, index, error)

    def _finish(
        self,
        status: SessionStatus,
        index: Optional[int] = None,
        error: Optional[TransferError] = None,
    ) -> None:
        if self.is_terminal:
            raise ValueError(f"Session {self.session_id} is already {self.status.value}")
        self.status = status
        self.failed_index = index
        self.error = error

    def raise_for_status(self) -> None:
        """Re-raise the stored error if the session did not complete."""
        if self.error is not None and self.status != SessionStatus.COMPLETED:
            raise self.error

    def to_manifest(self) -> dict:
        """
        Serializable report of the session.

        Returns:
            Dict with fragment size, total size, status and ordered roots
        """
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "fragment_size": self.fragment_size,
            "total_size": self.total_size,
            "roots": self.roots,
            "fragments": [
                {
                    "index": record.fragment_index,
                    "root": record.root,
                    "size": record.size,
                    "commit_handle": record.commit_handle,
                    "replication_achieved": record.replication_achieved,
                }
                for record in self.records
            ],
        }
