"""Upload and download through real storage nodes and a real indexer."""

import asyncio
import dataclasses
import os
import socket
from contextlib import asynccontextmanager

import pytest
import uvicorn

from client.transfer_client import TransferClient
from common.types import FinalityRequirement, ReplicationPolicy, SessionStatus, ShardConfig
from indexer.main import app
from indexer.node_registry import NodeRegistry
from indexer.routes import get_node_registry
from node.fragment_storage import FragmentStorage
from node.grpc_server import StorageNodeServicer, create_server
from node.heartbeat_service import HeartbeatService


def _unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@asynccontextmanager
async def running_indexer(registry):
    """Serve the indexer app over HTTP on a free port and yield its URL."""
    app.dependency_overrides[get_node_registry] = lambda: registry
    port = _unused_port()
    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning", lifespan="off"))
    task = asyncio.ensure_future(server.serve())
    try:
        while not server.started:
            if task.done():
                task.result()
                raise RuntimeError("indexer exited before it started")
            await asyncio.sleep(0.01)
        yield f"http://127.0.0.1:{port}"
    finally:
        server.should_exit = True
        await task
        app.dependency_overrides.clear()


@asynccontextmanager
async def running_node(base_dir, indexer_url):
    """
    Start a storage node that announces its commits to the indexer.

    Yields:
        Tuple of (node URL, FragmentStorage)
    """
    storage = FragmentStorage(base_dir)
    storage.ensure_directories()
    servicer = StorageNodeServicer(storage)
    server = create_server(servicer)
    port = server.add_insecure_port("127.0.0.1:0")
    url = f"grpc://127.0.0.1:{port}"
    heartbeat = HeartbeatService(url, indexer_url, interval=3600, storage=storage, shard_config=ShardConfig())
    servicer.on_commit = heartbeat.announce
    await server.start()
    try:
        assert await heartbeat.send_heartbeat()
        yield url, storage
    finally:
        await server.stop(None)


@pytest.mark.asyncio
async def test_download_immediately_after_upload(tmp_path, transfer_config):
    source = tmp_path / "data.bin"
    data = os.urandom(1000)
    source.write_bytes(data)
    output = tmp_path / "copy.bin"
    registry = NodeRegistry(stale_threshold=60)
    policy = ReplicationPolicy(replica_count=2, finality=FinalityRequirement.NETWORK_CONFIRMED)

    async with running_indexer(registry) as indexer_url:
        async with running_node(tmp_path / "a", indexer_url) as (url_a, storage_a), \
                running_node(tmp_path / "b", indexer_url) as (url_b, storage_b):
            registry.trusted_urls.update({url_a, url_b})
            config = dataclasses.replace(transfer_config, indexer_url=indexer_url)

            async with TransferClient(config, policy) as client:
                session = await client.upload_file(source)
                written = await client.download(session.roots, output)

    assert session.status == SessionStatus.COMPLETED
    assert len(session.roots) == 4
    assert written == 1000
    assert output.read_bytes() == data
    assert storage_a.list_roots() == storage_b.list_roots() == sorted(session.roots)
