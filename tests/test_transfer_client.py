"""Tests for the wired transfer client and manifest files."""

import asyncio
import json
import os

import pytest

from client.transfer_client import TransferClient, manifest_path_for, read_manifest
from common.exceptions import IntegrityMismatchError
from common.merkle import compute_root
from common.types import SessionStatus


@pytest.fixture
def make_client(network, transfer_config, policy):
    def factory():
        return TransferClient(transfer_config, policy, indexer=network, storage=network)
    return factory


@pytest.mark.asyncio
async def test_upload_then_download(tmp_path, network, make_client):
    network.add_node('grpc://a:1')
    network.add_node('grpc://b:1')
    source = tmp_path / 'data.bin'
    data = os.urandom(1000)
    source.write_bytes(data)
    output = tmp_path / 'copy.bin'

    async with make_client() as client:
        session = await client.upload_file(source)
        written = await client.download(session.roots, output)

    assert session.status == SessionStatus.COMPLETED
    assert written == 1000
    assert output.read_bytes() == data
    assert network.closed

    manifest = read_manifest(manifest_path_for(source))
    assert manifest['roots'] == session.roots
    assert manifest['fragment_size'] == 300
    assert manifest['total_size'] == 1000


@pytest.mark.asyncio
async def test_cancelled_upload_writes_no_manifest(tmp_path, network, make_client):
    network.add_node('grpc://a:1')
    network.add_node('grpc://b:1')
    source = tmp_path / 'data.bin'
    source.write_bytes(os.urandom(900))
    cancel_event = asyncio.Event()
    cancel_event.set()

    async with make_client() as client:
        session = await client.upload_file(source, cancel_event=cancel_event)

    assert session.status == SessionStatus.CANCELLED
    assert not manifest_path_for(source).exists()


@pytest.mark.asyncio
async def test_corrupt_download_removes_partial_file(tmp_path, network, make_client):
    node = network.add_node('grpc://bad:1')
    node.corrupt = True
    data = b"bytes that will be flipped"
    root = compute_root(data)
    node.fragments[root] = data
    output = tmp_path / 'out.bin'

    async with make_client() as client:
        with pytest.raises(IntegrityMismatchError):
            await client.download([root], output)

    assert not output.exists()
    assert list(tmp_path.iterdir()) == []


def test_read_manifest_normalizes_roots(tmp_path):
    root = compute_root(b"x")
    path = tmp_path / 'f.manifest.json'
    path.write_text(json.dumps({'fragment_size': 10, 'roots': [root[2:].upper()]}))

    assert read_manifest(path)['roots'] == [root]


@pytest.mark.parametrize('content', [[], {'roots': 'nope'}, {'roots': ['0xzz']}])
def test_read_manifest_rejects_malformed(tmp_path, content):
    path = tmp_path / 'bad.manifest.json'
    path.write_text(json.dumps(content))

    with pytest.raises(ValueError):
        read_manifest(path)
