"""gRPC client for storage-node requests (store segments, commit, fetch)."""

import asyncio
from dataclasses import dataclass
from typing import Dict, Optional

import grpc

from client.config import TransferConfig
from common.constants import (
    STORAGE_NODE_SERVICE,
    GRPC_KEEPALIVE_TIME_MS,
    GRPC_KEEPALIVE_TIMEOUT_MS,
    GRPC_MAX_MESSAGE_BYTES,
)
from common.exceptions import IntegrityMismatchError, NotFoundError, TransportFailureError
from common.logging_config import get_logger
from common.protocol import (
    UploadSegmentRequest,
    UploadSegmentResponse,
    CommitFragmentRequest,
    CommitFragmentResponse,
    CommitStatusRequest,
    CommitStatusResponse,
    FetchFragmentRequest,
    FetchFragmentResponse,
    PingRequest,
    PingResponse,
)

logger = get_logger(__name__)

TRANSIENT_CODES = (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED)


@dataclass(frozen=True)
class CommitAck:
    """Node acknowledgement of a fragment commit."""
    root: str
    commit_handle: str
    finalized: bool


def channel_target(url: str) -> str:
    """Strip a scheme from a node URL to get a gRPC target."""
    return url.split("://", 1)[1] if "://" in url else url


def _identity(x):
    return x


class StorageNodeClient:
    """
    gRPC client for storage nodes.

    Keeps one lazily created channel per node. Transient failures
    (UNAVAILABLE, DEADLINE_EXCEEDED) are retried with exponential backoff;
    anything left over is raised as TransportFailureError.
    """

    def __init__(self, config: TransferConfig):
        self.config = config
        self._channels: Dict[str, grpc.aio.Channel] = {}

    def _channel(self, url: str) -> grpc.aio.Channel:
        """Get or create the channel for a node."""
        target = channel_target(url)
        channel = self._channels.get(target)
        if channel is None:
            options = [
                ('grpc.keepalive_time_ms', GRPC_KEEPALIVE_TIME_MS),
                ('grpc.keepalive_timeout_ms', GRPC_KEEPALIVE_TIMEOUT_MS),
                ('grpc.keepalive_permit_without_calls', 1),
                ('grpc.max_send_message_length', GRPC_MAX_MESSAGE_BYTES),
                ('grpc.max_receive_message_length', GRPC_MAX_MESSAGE_BYTES),
            ]
            channel = grpc.aio.insecure_channel(target, options=options)
            self._channels[target] = channel
            logger.info(f"Established gRPC channel to {target}")
        return channel

    def _unary(self, url: str, method: str):
        return self._channel(url).unary_unary(
            f'/{STORAGE_NODE_SERVICE}/{method}',
            request_serializer=_identity,
            response_deserializer=_identity,
        )

    async def close(self) -> None:
        """Close all gRPC channels."""
        channels = list(self._channels.values())
        self._channels.clear()
        for channel in channels:
            await channel.close()

    async def _retry_with_backoff(self, url: str, operation, *args):
        """
        Retry an RPC with exponential backoff for transient failures.

        Args:
            url: Node URL (for error context)
            operation: Async callable performing one attempt
            *args: Arguments for the operation

        Returns:
            Result from the successful attempt

        Raises:
            TransportFailureError: If retries are exhausted or the error is not transient
        """
        max_retries = self.config.max_retries
        backoff = self.config.retry_backoff_multiplier

        for attempt in range(max_retries + 1):
            try:
                return await operation(*args)
            except grpc.RpcError as e:
                if e.code() in TRANSIENT_CODES and attempt < max_retries:
                    delay = backoff ** attempt
                    logger.warning(
                        f"Transient failure on {url}, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries + 1}): {e.code().name}"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise TransportFailureError(
                    f"Node {url} failed: {e.code().name} {e.details()}",
                    node_errors={url: e.code().name},
                ) from e

    async def upload_segment(
        self,
        url: str,
        root: str,
        fragment_size: int,
        task_index: int,
        offset: int,
        data: bytes,
    ) -> None:
        """
        Send one upload task to a node.

        Raises:
            TransportFailureError: If the node is unreachable or rejects the task
        """
        request = UploadSegmentRequest(
            root=root,
            fragment_size=fragment_size,
            task_index=task_index,
            offset=offset,
            data=data,
        )

        async def attempt():
            return await self._unary(url, 'UploadSegment')(
                request.to_json(), timeout=self.config.request_timeout
            )

        response = UploadSegmentResponse.from_json(await self._retry_with_backoff(url, attempt))
        if not response.success:
            raise TransportFailureError(
                f"Node {url} rejected task {task_index}: {response.error_message}",
                root=root,
                node_errors={url: response.error_message},
            )

    async def commit_fragment(self, url: str, root: str, fragment_size: int, task_count: int) -> CommitAck:
        """
        Ask a node to seal a staged fragment.

        Returns:
            CommitAck with the root the node computed and its commit handle

        Raises:
            IntegrityMismatchError: If the node reports a root mismatch
            TransportFailureError: On any other failure
        """
        request = CommitFragmentRequest(root=root, fragment_size=fragment_size, task_count=task_count)

        async def attempt():
            return await self._unary(url, 'CommitFragment')(
                request.to_json(), timeout=self.config.request_timeout
            )

        response = CommitFragmentResponse.from_json(await self._retry_with_backoff(url, attempt))
        if not response.success:
            message = response.error_message or "unknown error"
            if response.root and response.root != root:
                raise IntegrityMismatchError(
                    f"Node {url} computed a different root: {message}",
                    root=root,
                    actual_root=response.root,
                    node_url=url,
                )
            raise TransportFailureError(
                f"Node {url} failed to commit: {message}",
                root=root,
                node_errors={url: message},
            )

        logger.debug(f"Committed {root} on {url} [handle={response.commit_handle}, finalized={response.finalized}]")
        return CommitAck(
            root=response.root or "",
            commit_handle=response.commit_handle or "",
            finalized=response.finalized,
        )

    async def commit_status(self, url: str, root: str, commit_handle: str) -> bool:
        """
        Check whether a commit is finalized.

        Raises:
            TransportFailureError: If the node is unreachable or has forgotten the commit
        """
        request = CommitStatusRequest(root=root, commit_handle=commit_handle)

        async def attempt():
            return await self._unary(url, 'CommitStatus')(
                request.to_json(), timeout=self.config.request_timeout
            )

        response = CommitStatusResponse.from_json(await self._retry_with_backoff(url, attempt))
        if not response.known:
            raise TransportFailureError(
                f"Node {url} does not know commit {commit_handle}",
                root=root,
                node_errors={url: "unknown commit"},
            )
        return response.finalized

    async def fetch_fragment(self, url: str, root: str) -> bytes:
        """
        Download a fragment's bytes from a node.

        The stream has no overall deadline; instead each message must arrive
        within request_timeout, so large fragments over slow links still
        complete while a stalled node is abandoned. Streaming cannot resume
        part-way, so a transient failure restarts the whole stream (within
        the retry budget).

        Raises:
            NotFoundError: If the node does not hold the root
            TransportFailureError: On any other failure
        """
        request = FetchFragmentRequest(root=root)

        async def attempt():
            call = self._channel(url).unary_stream(
                f'/{STORAGE_NODE_SERVICE}/FetchFragment',
                request_serializer=_identity,
                response_deserializer=_identity,
            )(request.to_json())

            total_size = None
            buffer = bytearray()
            while True:
                try:
                    response_bytes = await asyncio.wait_for(call.read(), self.config.request_timeout)
                except asyncio.TimeoutError:
                    call.cancel()
                    raise TransportFailureError(
                        f"Node {url} sent nothing for {self.config.request_timeout}s while streaming {root}",
                        root=root,
                        node_errors={url: "stalled"},
                    )
                if response_bytes is grpc.aio.EOF:
                    break
                response = FetchFragmentResponse.from_json(response_bytes)
                if response.total_size is not None:
                    total_size = response.total_size
                if response.data:
                    buffer.extend(response.data)

            if total_size is not None and total_size != len(buffer):
                raise TransportFailureError(
                    f"Node {url} sent {len(buffer)} of {total_size} bytes",
                    root=root,
                    node_errors={url: "short read"},
                )
            return bytes(buffer)

        try:
            return await self._retry_with_backoff(url, attempt)
        except TransportFailureError as e:
            if e.node_errors.get(url) == grpc.StatusCode.NOT_FOUND.name:
                raise NotFoundError(f"Node {url} does not hold fragment", root=root) from e
            raise

    async def ping(self, url: str) -> bool:
        """
        Check if a node is available.

        Returns:
            True if the node responds, False otherwise
        """
        try:
            response_bytes = await self._unary(url, 'Ping')(PingRequest().to_json(), timeout=5)
            return PingResponse.from_json(response_bytes).available
        except grpc.RpcError as e:
            logger.warning(f"Ping to {url} failed: {e.code().name}")
            return False
