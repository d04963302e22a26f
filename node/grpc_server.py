"""gRPC server implementation for the storage node."""

import asyncio
import errno
import logging
import time
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

import grpc
from grpc import aio

from common.constants import GRPC_MAX_MESSAGE_BYTES, STORAGE_NODE_SERVICE, STREAM_PIECE_SIZE_BYTES
from common.merkle import normalize_root
from common.protocol import (
    UploadSegmentRequest,
    UploadSegmentResponse,
    CommitFragmentRequest,
    CommitFragmentResponse,
    CommitStatusRequest,
    CommitStatusResponse,
    FetchFragmentRequest,
    FetchFragmentResponse,
    PingResponse,
)
from node.fragment_storage import FragmentStorage, StagingError

logger = logging.getLogger(__name__)


@dataclass
class CommitEntry:
    root: str
    committed_at: float


class StorageNodeServicer:
    """
    gRPC service implementation for storage node operations.
    """

    def __init__(
        self,
        storage: FragmentStorage,
        finality_delay: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
        on_commit: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        """
        Initialize servicer.

        Args:
            storage: FragmentStorage holding staged and committed fragments
            finality_delay: Seconds after a commit before it reports finalized
            clock: Monotonic time source
            on_commit: Awaited with the root after each successful commit,
                before the commit is acknowledged
        """
        self.storage = storage
        self.finality_delay = finality_delay
        self.clock = clock
        self.on_commit = on_commit
        self.commits: Dict[str, CommitEntry] = {}

    async def _root(self, value: str, context: grpc.aio.ServicerContext) -> str:
        """Normalize a request root, aborting with INVALID_ARGUMENT if malformed."""
        try:
            return normalize_root(value)
        except ValueError as e:
            await context.abort(grpc.StatusCode.INVALID_ARGUMENT, str(e))
            raise

    def _is_finalized(self, entry: CommitEntry) -> bool:
        return self.clock() - entry.committed_at >= self.finality_delay

    async def UploadSegment(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """
        Handle UploadSegment RPC (unary).
        Writes one upload task into the staging file at its offset.

        Args:
            request_bytes: Serialized UploadSegmentRequest
            context: gRPC context

        Returns:
            Serialized UploadSegmentResponse
        """
        request = UploadSegmentRequest.from_json(request_bytes)
        root = await self._root(request.root, context)
        try:
            written = self.storage.write_segment(
                root,
                request.fragment_size,
                request.task_index,
                request.offset,
                request.data,
            )
        except StagingError as e:
            logger.error(f"Rejected segment for {root}: {e}")
            return UploadSegmentResponse(success=False, error_message=str(e)).to_json()
        except OSError as os_error:
            if os_error.errno == errno.ENOSPC:
                error_msg = f"Disk full: cannot stage segment {request.task_index} of {root}"
                logger.error(error_msg)
                return UploadSegmentResponse(success=False, error_message=error_msg).to_json()
            raise

        logger.debug(f"Staged segment {request.task_index} of {root} at offset {request.offset}")
        return UploadSegmentResponse(success=True, bytes_received=written).to_json()

    async def CommitFragment(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """
        Handle CommitFragment RPC (unary).
        Re-hashes the staged bytes; stores them only if the root matches.

        Args:
            request_bytes: Serialized CommitFragmentRequest
            context: gRPC context

        Returns:
            Serialized CommitFragmentResponse carrying the computed root
        """
        request = CommitFragmentRequest.from_json(request_bytes)
        root = await self._root(request.root, context)
        try:
            computed = await asyncio.to_thread(
                self.storage.commit, root, request.fragment_size, request.task_count
            )
        except StagingError as e:
            logger.error(f"Commit of {root} rejected: {e}")
            return CommitFragmentResponse(success=False, error_message=str(e)).to_json()

        if computed != root:
            error_msg = f"Root mismatch: expected {root}, computed {computed}"
            return CommitFragmentResponse(success=False, root=computed, error_message=error_msg).to_json()

        handle = str(uuid.uuid4())
        entry = CommitEntry(root=computed, committed_at=self.clock())
        self.commits[handle] = entry
        finalized = self._is_finalized(entry)
        if self.on_commit is not None:
            await self.on_commit(computed)

        logger.info(f"Committed fragment {computed} [handle={handle}, finalized={finalized}]")
        return CommitFragmentResponse(
            success=True,
            root=computed,
            commit_handle=handle,
            finalized=finalized,
        ).to_json()

    async def CommitStatus(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """
        Handle CommitStatus RPC (unary).

        Args:
            request_bytes: Serialized CommitStatusRequest
            context: gRPC context

        Returns:
            Serialized CommitStatusResponse
        """
        request = CommitStatusRequest.from_json(request_bytes)
        root = await self._root(request.root, context)
        entry = self.commits.get(request.commit_handle)
        if entry is None or entry.root != root:
            return CommitStatusResponse(known=False).to_json()
        return CommitStatusResponse(known=True, finalized=self._is_finalized(entry)).to_json()

    async def FetchFragment(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> AsyncIterator[bytes]:
        """
        Handle FetchFragment RPC (server streaming).
        Sends the total size followed by data pieces.

        Args:
            request_bytes: Serialized FetchFragmentRequest
            context: gRPC context

        Yields:
            Serialized FetchFragmentResponse messages
        """
        request = FetchFragmentRequest.from_json(request_bytes)
        root = await self._root(request.root, context)

        size = self.storage.size(root)
        if size is None:
            logger.info(f"Fragment {root} not found")
            await context.abort(grpc.StatusCode.NOT_FOUND, f"Fragment {root} not found")
            return

        yield FetchFragmentResponse(total_size=size).to_json()
        for piece in self.storage.read_streaming(root, STREAM_PIECE_SIZE_BYTES):
            yield FetchFragmentResponse(data=piece).to_json()

        logger.info(f"Streamed fragment {root} ({size} bytes)")

    async def Ping(
        self,
        request_bytes: bytes,
        context: grpc.aio.ServicerContext
    ) -> bytes:
        """Health check."""
        return PingResponse(available=True, fragment_count=len(self.storage.list_roots())).to_json()


def create_server(servicer: StorageNodeServicer) -> aio.Server:
    """
    Create and configure gRPC server.

    Args:
        servicer: StorageNodeServicer instance

    Returns:
        Configured gRPC server
    """
    server = aio.server(options=[
        ('grpc.max_send_message_length', GRPC_MAX_MESSAGE_BYTES),
        ('grpc.max_receive_message_length', GRPC_MAX_MESSAGE_BYTES),
    ])

    def unary(handler):
        return grpc.unary_unary_rpc_method_handler(
            handler,
            request_deserializer=lambda x: x,
            response_serializer=lambda x: x,
        )

    server.add_generic_rpc_handlers((
        grpc.method_handlers_generic_handler(
            STORAGE_NODE_SERVICE,
            {
                'UploadSegment': unary(servicer.UploadSegment),
                'CommitFragment': unary(servicer.CommitFragment),
                'CommitStatus': unary(servicer.CommitStatus),
                'FetchFragment': grpc.unary_stream_rpc_method_handler(
                    servicer.FetchFragment,
                    request_deserializer=lambda x: x,
                    response_serializer=lambda x: x,
                ),
                'Ping': unary(servicer.Ping),
            }
        ),
    ))

    return server
