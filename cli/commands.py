"""Command handler functions for CLI operations."""

import asyncio
from pathlib import Path
from typing import Callable, List, Optional

from cli.config import Config
from cli.models import (
    DownloadCommand,
    GenerateCommand,
    RootsCommand,
    UploadCommand,
    VerifyCommand,
)
from cli.utils import UploadProgress, format_file_size, generate_sparse_file
from client.transfer_client import TransferClient, manifest_path_for, read_manifest
from client.transfer_orchestrator import split_fragments
from common.exceptions import TransferError
from common.logging_config import get_logger
from common.merkle import compute_root
from common.types import SessionStatus

logger = get_logger(__name__)

ClientFactory = Callable[..., TransferClient]

_config: Optional[Config] = None


def get_config() -> Config:
    """
    Get or create the global Config instance.

    Returns:
        Config loaded from ~/.shardline/config.json
    """
    global _config
    if _config is None:
        logger.debug("Loading CLI configuration")
        _config = Config()
    return _config


def _fragment_roots(path: Path, fragment_size: int) -> List[tuple]:
    """Compute (index, size, root) for every fragment of a local file."""
    with open(path, 'rb') as source:
        return [
            (fragment.index, fragment.length, compute_root(fragment.payload))
            for fragment in split_fragments(source, fragment_size)
        ]


def handle_generate(cmd: GenerateCommand) -> str:
    """
    Handle 'generate' command.

    Args:
        cmd: GenerateCommand with path and size

    Returns:
        Success or error message
    """
    path = Path(cmd.path)
    try:
        generate_sparse_file(path, cmd.size)
    except OSError as e:
        return f"Error: Could not create {path}: {e}"
    logger.info(f"Generated sparse file {path} ({cmd.size} bytes)")
    return f"Generated {path} ({format_file_size(cmd.size)})"


def handle_roots(cmd: RootsCommand, config: Optional[Config] = None) -> str:
    """
    Handle 'roots' command.

    Args:
        cmd: RootsCommand with path and optional fragment size
        config: Optional Config for dependency injection (testing)

    Returns:
        One line per fragment, or an error message
    """
    if config is None:
        config = get_config()
    fragment_size = cmd.fragment_size or int(config.data['fragment_size'])

    try:
        fragments = _fragment_roots(Path(cmd.path), fragment_size)
    except OSError as e:
        return f"Error: Could not read {cmd.path}: {e}"

    if not fragments:
        return f"{cmd.path} is empty: no fragments"

    lines = [f"{cmd.path}: {len(fragments)} fragment(s) of up to {format_file_size(fragment_size)}"]
    for index, size, root in fragments:
        lines.append(f"  [{index}] {root}  {format_file_size(size)}")
    return "\n".join(lines)


def handle_upload(
    cmd: UploadCommand,
    config: Optional[Config] = None,
    client_factory: ClientFactory = TransferClient,
) -> str:
    """
    Handle 'upload' command.

    Args:
        cmd: UploadCommand with path and policy overrides
        config: Optional Config for dependency injection (testing)
        client_factory: Callable building a TransferClient from (config, policy)

    Returns:
        Root hashes and manifest location, or an error message
    """
    if config is None:
        config = get_config()
    path = Path(cmd.path)
    if not path.is_file():
        return f"Error: File not found: {path}"

    try:
        transfer_config = config.transfer_config(cmd.fragment_size)
        policy = config.replication_policy(cmd.replicas, cmd.finality, cmd.trust, cmd.mode)
    except TransferError as e:
        return f"Error: {e}"

    logger.info(
        f"Executing upload command: {path} [fragment_size={transfer_config.fragment_size}, "
        f"replicas={policy.replica_count}, finality={policy.finality.value}, trust={policy.trust_filter.value}]"
    )
    progress = UploadProgress(path.name, path.stat().st_size)

    async def run():
        async with client_factory(transfer_config, policy) as client:
            return await client.upload_file(path, progress_callback=progress)

    try:
        session = asyncio.run(run())
    except TransferError as e:
        return f"Error: {e}"
    finally:
        progress.finish()

    if session.status != SessionStatus.COMPLETED:
        return f"Error: Upload {session.status.value} at fragment {session.failed_index}: {session.error}"

    lines = [
        f"Uploaded {path} ({format_file_size(session.total_size)}) "
        f"in {len(session.records)} fragment(s)"
    ]
    for record in session.records:
        lines.append(f"  [{record.fragment_index}] {record.root}  replicas={record.replication_achieved}")
    if len(session.roots) == 1:
        lines.append(f"Root hash: {session.roots[0]}")
    lines.append(f"Manifest: {manifest_path_for(path)}")
    return "\n".join(lines)


def handle_download(
    cmd: DownloadCommand,
    config: Optional[Config] = None,
    client_factory: ClientFactory = TransferClient,
) -> str:
    """
    Handle 'download' command.

    Args:
        cmd: DownloadCommand with a manifest path or roots, and an output path
        config: Optional Config for dependency injection (testing)
        client_factory: Callable building a TransferClient from (config, policy)

    Returns:
        Success or error message
    """
    if config is None:
        config = get_config()

    roots = list(cmd.roots)
    if cmd.manifest_path:
        try:
            roots = read_manifest(Path(cmd.manifest_path))['roots']
        except (OSError, ValueError) as e:
            return f"Error: Invalid manifest {cmd.manifest_path}: {e}"
    if not roots:
        return "Error: Nothing to download"

    try:
        transfer_config = config.transfer_config()
    except TransferError as e:
        return f"Error: {e}"

    output_path = Path(cmd.output_path)
    logger.info(f"Executing download command: {len(roots)} fragment(s) to {output_path}")

    async def run():
        async with client_factory(transfer_config) as client:
            return await client.download(roots, output_path)

    try:
        written = asyncio.run(run())
    except TransferError as e:
        return f"Error: {e}"
    except OSError as e:
        return f"Error: Could not write {output_path}: {e}"

    return f"Downloaded {len(roots)} fragment(s), {format_file_size(written)} to {output_path}"


def handle_verify(cmd: VerifyCommand) -> str:
    """
    Handle 'verify' command.

    Args:
        cmd: VerifyCommand with a local path and a manifest path

    Returns:
        Verification result
    """
    try:
        manifest = read_manifest(Path(cmd.manifest_path))
    except (OSError, ValueError) as e:
        return f"Error: Invalid manifest {cmd.manifest_path}: {e}"

    fragment_size = manifest.get('fragment_size')
    if not isinstance(fragment_size, int) or fragment_size <= 0:
        return f"Error: Manifest {cmd.manifest_path} has no fragment size"

    try:
        fragments = _fragment_roots(Path(cmd.path), fragment_size)
    except OSError as e:
        return f"Error: Could not read {cmd.path}: {e}"

    expected = manifest['roots']
    if len(fragments) != len(expected):
        return f"Error: {cmd.path} has {len(fragments)} fragment(s), manifest lists {len(expected)}"
    for (index, _, root), wanted in zip(fragments, expected):
        if root != wanted:
            return f"Error: Fragment {index} mismatch: file hashes to {root}, manifest has {wanted}"
    return f"OK: {cmd.path} matches {len(expected)} fragment root(s)"
