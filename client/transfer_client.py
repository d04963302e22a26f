"""Wires the indexer, storage transport, uploader, orchestrator and verifier together."""

import json
from pathlib import Path
from typing import List, Optional

from client.config import TransferConfig
from client.fragment_uploader import FragmentUploader
from client.indexer_client import IndexerClient
from client.retrieval_verifier import RetrievalVerifier
from client.storage_client import StorageNodeClient
from client.transfer_orchestrator import ProgressCallback, TransferOrchestrator
from common.logging_config import get_logger
from common.merkle import normalize_root
from common.types import ReplicationPolicy, SessionStatus, TransferSession

logger = get_logger(__name__)

MANIFEST_SUFFIX = ".manifest.json"


class TransferClient:
    """
    One configured client for uploading and downloading files.

    Usage:
        async with TransferClient(config, policy) as client:
            session = await client.upload_file(path)
            await client.download(session.roots, output_path)
    """

    def __init__(
        self,
        config: TransferConfig,
        policy: Optional[ReplicationPolicy] = None,
        indexer: Optional[IndexerClient] = None,
        storage: Optional[StorageNodeClient] = None,
    ):
        self.config = config.validate()
        self.indexer = indexer or IndexerClient(config)
        self.storage = storage or StorageNodeClient(config)
        self.uploader = FragmentUploader(self.indexer, self.storage, config)
        self.orchestrator = TransferOrchestrator(self.uploader, config, policy)
        self.verifier = RetrievalVerifier(self.indexer, self.storage, config)

    async def __aenter__(self) -> "TransferClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.indexer.close()
        await self.storage.close()

    async def upload_file(
        self,
        path: Path,
        policy: Optional[ReplicationPolicy] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event=None,
    ) -> TransferSession:
        """
        Upload a file and write its manifest next to it when complete.

        Returns:
            The finished TransferSession (any terminal status)
        """
        with open(path, 'rb') as source:
            session = await self.orchestrator.transfer(
                source,
                policy=policy,
                progress_callback=progress_callback,
                cancel_event=cancel_event,
            )
        if session.status == SessionStatus.COMPLETED:
            manifest_path = manifest_path_for(path)
            write_manifest(manifest_path, session)
            logger.info(f"Wrote manifest {manifest_path}")
        return session

    async def download(self, roots: List[str], output_path: Path) -> int:
        """
        Download fragments in order into output_path.

        Bytes go to a .part sibling that is renamed only after every
        fragment verified.

        Returns:
            Bytes written
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        partial = output_path.with_name(output_path.name + ".part")
        try:
            with open(partial, 'wb') as sink:
                written = await self.verifier.retrieve_to(roots, sink)
            partial.replace(output_path)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        logger.info(f"Downloaded {len(roots)} fragment(s), {written} bytes to {output_path}")
        return written


def manifest_path_for(path: Path) -> Path:
    return path.with_name(path.name + MANIFEST_SUFFIX)


def write_manifest(path: Path, session: TransferSession) -> None:
    with open(path, 'w') as f:
        json.dump(session.to_manifest(), f, indent=2)


def read_manifest(path: Path) -> dict:
    """
    Load and validate a manifest.

    Raises:
        ValueError: If the manifest is malformed
    """
    with open(path, 'r') as f:
        data = json.load(f)
    if not isinstance(data, dict) or not isinstance(data.get('roots'), list):
        raise ValueError(f"Manifest {path} has no root list")
    data['roots'] = [normalize_root(root) for root in data['roots']]
    return data
