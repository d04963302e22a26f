"""Storage-node RPC message definitions (JSON serialization over gRPC)."""

from dataclasses import dataclass, asdict
from typing import Optional
import json
import base64


def _encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def _decode_bytes(text: str) -> bytes:
    return base64.b64decode(text)


@dataclass
class UploadSegmentRequest:
    """One upload task: a bounded slice of a fragment at a known offset."""
    root: str
    fragment_size: int
    task_index: int
    offset: int
    data: bytes

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps({
            'root': self.root,
            'fragment_size': self.fragment_size,
            'task_index': self.task_index,
            'offset': self.offset,
            'data': _encode_bytes(self.data),
        }).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'UploadSegmentRequest':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(
            root=obj['root'],
            fragment_size=obj['fragment_size'],
            task_index=obj['task_index'],
            offset=obj['offset'],
            data=_decode_bytes(obj['data']),
        )


@dataclass
class UploadSegmentResponse:
    """Acknowledgement of a single upload task."""
    success: bool
    bytes_received: int = 0
    error_message: Optional[str] = None

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(asdict(self)).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'UploadSegmentResponse':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(
            success=obj['success'],
            bytes_received=obj.get('bytes_received', 0),
            error_message=obj.get('error_message'),
        )


@dataclass
class CommitFragmentRequest:
    """Seal the staged segments of a fragment under its root."""
    root: str
    fragment_size: int
    task_count: int

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(asdict(self)).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'CommitFragmentRequest':
        """Deserialize from JSON bytes."""
        return cls(**json.loads(data))


@dataclass
class CommitFragmentResponse:
    """
    Result of a commit.

    root is the value the node computed from the bytes it holds, so the
    client can confirm it independently of what it asked for.
    """
    success: bool
    root: Optional[str] = None
    commit_handle: Optional[str] = None
    finalized: bool = False
    error_message: Optional[str] = None

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(asdict(self)).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'CommitFragmentResponse':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(
            success=obj['success'],
            root=obj.get('root'),
            commit_handle=obj.get('commit_handle'),
            finalized=obj.get('finalized', False),
            error_message=obj.get('error_message'),
        )


@dataclass
class CommitStatusRequest:
    """Query finality of a previous commit."""
    root: str
    commit_handle: str

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(asdict(self)).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'CommitStatusRequest':
        """Deserialize from JSON bytes."""
        return cls(**json.loads(data))


@dataclass
class CommitStatusResponse:
    """Finality state of a commit."""
    known: bool
    finalized: bool = False

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(asdict(self)).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'CommitStatusResponse':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(known=obj['known'], finalized=obj.get('finalized', False))


@dataclass
class FetchFragmentRequest:
    """Request message for FetchFragment RPC."""
    root: str

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps({'root': self.root}).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'FetchFragmentRequest':
        """Deserialize from JSON bytes."""
        return cls(root=json.loads(data)['root'])


@dataclass
class FetchFragmentResponse:
    """
    Response message for FetchFragment RPC (streaming).

    The first message carries total_size; every message may carry data.
    """
    total_size: Optional[int] = None
    data: Optional[bytes] = None

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        obj = {}
        if self.total_size is not None:
            obj['total_size'] = self.total_size
        if self.data is not None:
            obj['data'] = _encode_bytes(self.data)
        return json.dumps(obj).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'FetchFragmentResponse':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(
            total_size=obj.get('total_size'),
            data=_decode_bytes(obj['data']) if 'data' in obj else None,
        )


@dataclass
class PingRequest:
    """Request message for Ping RPC."""

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return b'{}'

    @classmethod
    def from_json(cls, data: bytes) -> 'PingRequest':
        """Deserialize from JSON bytes."""
        return cls()


@dataclass
class PingResponse:
    """Response message for Ping RPC."""
    available: bool
    fragment_count: int = 0

    def to_json(self) -> bytes:
        """Serialize to JSON bytes."""
        return json.dumps(asdict(self)).encode('utf-8')

    @classmethod
    def from_json(cls, data: bytes) -> 'PingResponse':
        """Deserialize from JSON bytes."""
        obj = json.loads(data)
        return cls(available=obj['available'], fragment_count=obj.get('fragment_count', 0))
