"""Downloads fragments by root and verifies them before handing them out."""

import asyncio
from collections import deque
from typing import BinaryIO, Deque, Dict, Iterable, List, Sequence

from client.config import TransferConfig
from client.tasks import cancel_and_wait
from common.exceptions import (
    ConfigurationError,
    IntegrityMismatchError,
    NotFoundError,
    TransferError,
    TransportFailureError,
)
from common.logging_config import get_logger
from common.merkle import compute_root, normalize_root

logger = get_logger(__name__)


class RetrievalVerifier:
    """
    Content-addressed retrieval.

    Nodes are located by root alone, so retrieval works without any upload
    session state. Every downloaded fragment is re-hashed; bytes whose root
    differs from the requested one are never returned.
    """

    def __init__(self, locator, storage_client, config: TransferConfig):
        """
        Initialize verifier.

        Args:
            locator: Object with async locate(root) -> list of NodeDescriptor
            storage_client: Storage transport (StorageNodeClient or compatible)
            config: Transfer configuration
        """
        self.locator = locator
        self.storage_client = storage_client
        self.config = config.validate()

    async def retrieve(self, root: str, exclude: Iterable[str] = ()) -> bytes:
        """
        Fetch and verify one fragment.

        Args:
            root: Root identifier of the fragment
            exclude: Node URLs not to fetch from (e.g. a node that served corrupt data)

        Returns:
            Fragment bytes whose recomputed root equals root

        Raises:
            NotFoundError: If no node serves the root
            IntegrityMismatchError: If a node returned bytes hashing to another root
            TransportFailureError: If every located node failed at the network level
        """
        try:
            root = normalize_root(root)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        excluded = set(exclude)
        nodes = [node for node in await self.locator.locate(root) if node.url not in excluded]
        if not nodes:
            raise NotFoundError("No node serves the requested root", root=root)

        node_errors: Dict[str, str] = {}
        for node in nodes:
            try:
                data = await self.storage_client.fetch_fragment(node.url, root)
            except NotFoundError:
                logger.info(f"Node {node.url} does not hold {root}")
                node_errors[node.url] = "not found"
                continue
            except TransportFailureError as e:
                logger.warning(f"Fetch of {root} from {node.url} failed: {e}")
                node_errors[node.url] = str(e)
                continue

            actual = await asyncio.to_thread(compute_root, data)
            if actual != root:
                logger.error(
                    f"Integrity mismatch from {node.url}: requested {root}, data hashes to {actual}"
                )
                raise IntegrityMismatchError(
                    f"Data served by {node.url} does not match the requested root",
                    root=root,
                    actual_root=actual,
                    node_url=node.url,
                )

            logger.info(f"Retrieved and verified {root} ({len(data)} bytes) from {node.url}")
            return data

        if all(reason == "not found" for reason in node_errors.values()):
            raise NotFoundError(f"None of {len(nodes)} located node(s) holds the root", root=root)
        raise TransportFailureError(
            f"Every located node failed for {root}",
            root=root,
            node_errors=node_errors,
        )

    async def retrieve_all(self, roots: Sequence[str]) -> bytes:
        """
        Fetch several fragments and concatenate them in index order.

        Args:
            roots: Ordered root identifiers

        Returns:
            Concatenated, verified fragment bytes
        """
        parts: List[bytes] = []
        await self._retrieve_ordered(roots, parts.append)
        return b"".join(parts)

    async def retrieve_to(self, roots: Sequence[str], sink: BinaryIO) -> int:
        """
        Fetch fragments and write them sequentially to a sink.

        Args:
            roots: Ordered root identifiers
            sink: Writable byte sink

        Returns:
            Total bytes written
        """
        written = 0

        def write(data: bytes) -> None:
            nonlocal written
            sink.write(data)
            written += len(data)

        await self._retrieve_ordered(roots, write)
        return written

    async def _retrieve_ordered(self, roots: Sequence[str], emit) -> None:
        """
        Fetch with a bounded prefetch window, emitting results strictly in order.

        At most max_parallel_fragments fragments are held in memory.
        """
        window: Deque[asyncio.Task] = deque()
        pending = iter(enumerate(roots))

        def fill() -> None:
            while len(window) < self.config.max_parallel_fragments:
                item = next(pending, None)
                if item is None:
                    return
                index, root = item
                window.append(asyncio.ensure_future(self._retrieve_indexed(index, root)))

        try:
            fill()
            while window:
                data = await window.popleft()
                emit(data)
                fill()
        except BaseException:
            await cancel_and_wait(window)
            raise

    async def _retrieve_indexed(self, index: int, root: str) -> bytes:
        try:
            return await self.retrieve(root)
        except TransferError as e:
            raise e.with_context(fragment_index=index)
