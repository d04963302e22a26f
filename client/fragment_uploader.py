"""Uploads one fragment to storage nodes under a replication/finality policy."""

import asyncio
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from client.config import TransferConfig
from client.tasks import gather_or_cancel
from common.exceptions import (
    ConfigurationError,
    FinalityTimeoutError,
    IntegrityMismatchError,
    SelectionExhaustedError,
    TransportFailureError,
)
from common.logging_config import get_logger
from common.merkle import compute_root
from common.types import FinalityRequirement, NodeDescriptor, ReplicationPolicy, UploadReceipt

logger = get_logger(__name__)


class FragmentUploader:
    """
    Pushes a fragment's bytes to the nodes chosen by the node selector.

    Each replica slot streams the fragment as bounded upload tasks and then
    commits it. A slot whose node fails moves on to the next unused
    candidate. Success is reported only when replica_count nodes have
    acknowledged (and, for NETWORK_CONFIRMED, finalized) the fragment.
    """

    def __init__(self, node_selector, storage_client, config: TransferConfig):
        """
        Initialize uploader.

        Args:
            node_selector: Object with async select_nodes(replica_count, trust_filter, mode)
            storage_client: Storage transport (StorageNodeClient or compatible)
            config: Validated transfer configuration
        """
        self.node_selector = node_selector
        self.storage_client = storage_client
        self.config = config.validate()
        self._task_slots: Optional[asyncio.Semaphore] = None
        self._task_slots_loop = None

    def _inflight_limit(self) -> asyncio.Semaphore:
        """Semaphore bounding upload tasks in flight across all fragments of this uploader."""
        loop = asyncio.get_running_loop()
        if self._task_slots is None or self._task_slots_loop is not loop:
            self._task_slots = asyncio.Semaphore(self.config.max_inflight_tasks)
            self._task_slots_loop = loop
        return self._task_slots

    async def upload(
        self,
        data: bytes,
        policy: ReplicationPolicy,
        fragment_index: Optional[int] = None,
        root: Optional[str] = None,
    ) -> UploadReceipt:
        """
        Upload one fragment.

        Args:
            data: Fragment bytes (non-empty, at most fragment_size)
            policy: Replication and finality requirements
            fragment_index: Position in the source, for error context
            root: Precomputed root; computed here when omitted

        Returns:
            UploadReceipt with the locally computed root and commit handle

        Raises:
            ConfigurationError: If the fragment is empty or oversized
            SelectionExhaustedError: If too few eligible nodes exist
            FinalityTimeoutError: If a replica was not confirmed in time
            TransportFailureError: If too few nodes accepted the fragment
        """
        if not data:
            raise ConfigurationError("Fragment must not be empty", fragment_index=fragment_index)
        if len(data) > self.config.fragment_size:
            raise ConfigurationError(
                f"Fragment of {len(data)} bytes exceeds fragment size {self.config.fragment_size}",
                fragment_index=fragment_index,
            )

        if root is None:
            root = await asyncio.to_thread(compute_root, data)

        selection = await self.node_selector.select_nodes(
            policy.replica_count, policy.trust_filter, policy.selection_mode
        )
        candidates = [
            node for node in selection.candidates(policy.trust_filter)
            if node.shard_config.owns(root)
        ]
        if len(candidates) < policy.replica_count:
            raise SelectionExhaustedError(
                f"Need {policy.replica_count} eligible node(s) ({policy.trust_filter.value}), "
                f"indexer offered {len(candidates)}",
                fragment_index=fragment_index,
                root=root,
            )

        logger.info(
            f"Uploading fragment {fragment_index} ({len(data)} bytes) root={root} "
            f"to {policy.replica_count} of {len(candidates)} candidate node(s)"
        )

        alternates: Deque[NodeDescriptor] = deque(candidates[policy.replica_count:])
        node_errors: Dict[str, str] = {}
        timed_out: List[str] = []

        results = await gather_or_cancel(
            self._replicate(candidates[slot], alternates, data, root, policy, fragment_index, node_errors, timed_out)
            for slot in range(policy.replica_count)
        )
        stored = [result for result in results if result is not None]

        if len(stored) < policy.replica_count:
            summary = f"{len(stored)}/{policy.replica_count} replica(s) confirmed"
            if timed_out:
                raise FinalityTimeoutError(
                    f"Finality not reached on {', '.join(timed_out)}: {summary}",
                    fragment_index=fragment_index,
                    root=root,
                )
            raise TransportFailureError(
                f"Upload failed on every attempted node: {summary}",
                fragment_index=fragment_index,
                root=root,
                node_errors=node_errors,
            )

        logger.info(f"Fragment {fragment_index} stored on {', '.join(url for url, _ in stored)}")
        return UploadReceipt(
            root=root,
            commit_handle=stored[0][1],
            replication_achieved=len(stored),
            nodes=tuple(url for url, _ in stored),
        )

    async def _replicate(
        self,
        node: NodeDescriptor,
        alternates: Deque[NodeDescriptor],
        data: bytes,
        root: str,
        policy: ReplicationPolicy,
        fragment_index: Optional[int],
        node_errors: Dict[str, str],
        timed_out: List[str],
    ) -> Optional[Tuple[str, str]]:
        """
        Fill one replica slot, failing over to alternates.

        Returns:
            (node_url, commit_handle) on success, None if the slot could not be filled
        """
        current: Optional[NodeDescriptor] = node
        while current is not None:
            url = current.url
            try:
                ack = await self._store_on_node(url, data, root)
                if ack.root != root:
                    raise IntegrityMismatchError(
                        f"Node {url} acknowledged root {ack.root}",
                        root=root,
                        actual_root=ack.root,
                        node_url=url,
                    )
                if policy.finality == FinalityRequirement.NETWORK_CONFIRMED and not ack.finalized:
                    await self._await_finality(url, root, ack.commit_handle)
                return url, ack.commit_handle
            except FinalityTimeoutError as e:
                logger.error(f"Fragment {fragment_index}: {e}")
                node_errors[url] = str(e)
                timed_out.append(url)
                return None
            except (TransportFailureError, IntegrityMismatchError) as e:
                logger.warning(f"Fragment {fragment_index}: node {url} failed: {e}")
                node_errors[url] = str(e)
                current = alternates.popleft() if alternates else None
                if current is not None:
                    logger.info(f"Fragment {fragment_index}: retrying on alternate node {current.url}")
        return None

    async def _store_on_node(self, url: str, data: bytes, root: str):
        """Stream all upload tasks of a fragment to one node, then commit."""
        task_size = self.config.upload_task_size
        offsets = range(0, len(data), task_size)
        limit = self._inflight_limit()

        async def send_task(task_index: int, offset: int) -> None:
            async with limit:
                await self.storage_client.upload_segment(
                    url,
                    root,
                    len(data),
                    task_index,
                    offset,
                    data[offset:offset + task_size],
                )

        await gather_or_cancel(send_task(i, offset) for i, offset in enumerate(offsets))
        logger.debug(f"Sent {len(offsets)} upload task(s) for {root} to {url}")
        return await self.storage_client.commit_fragment(url, root, len(data), len(offsets))

    async def _await_finality(self, url: str, root: str, commit_handle: str) -> None:
        """
        Poll a node until it reports the commit finalized.

        Raises:
            FinalityTimeoutError: If finality_timeout elapses first
        """
        async def poll() -> None:
            while not await self.storage_client.commit_status(url, root, commit_handle):
                await asyncio.sleep(self.config.finality_poll_interval)

        try:
            await asyncio.wait_for(poll(), timeout=self.config.finality_timeout)
        except asyncio.TimeoutError:
            raise FinalityTimeoutError(
                f"Node {url} did not finalize commit {commit_handle} within {self.config.finality_timeout}s",
                root=root,
            )
