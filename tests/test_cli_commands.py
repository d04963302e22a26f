"""Tests for CLI command handlers."""

import json
import os

import pytest

from cli.commands import handle_download, handle_generate, handle_roots, handle_upload, handle_verify
from cli.models import DownloadCommand, GenerateCommand, RootsCommand, UploadCommand, VerifyCommand
from client.transfer_client import TransferClient
from common.merkle import compute_root


@pytest.fixture
def small_config(temp_config):
    """Config with small fragments and no retries."""
    temp_config.data.update({
        'indexer_url': 'http://indexer.test',
        'fragment_size': 300,
        'upload_task_size': 128,
        'max_retries': 0,
        'timeout': 1.0,
        'finality_timeout': 0.2,
    })
    return temp_config


@pytest.fixture
def client_factory(network):
    """Build TransferClients backed by the fake network."""
    def factory(transfer_config, policy=None):
        return TransferClient(transfer_config, policy, indexer=network, storage=network)
    return factory


def test_handle_generate_creates_sparse_file(tmp_path):
    path = tmp_path / 'out' / 'big.bin'

    result = handle_generate(GenerateCommand(path=str(path), size=5 * 1024 * 1024))

    assert 'Generated' in result
    assert '5.00 MiB' in result
    assert path.stat().st_size == 5 * 1024 * 1024


def test_handle_roots_lists_fragments(tmp_path, small_config):
    path = tmp_path / 'data.bin'
    data = os.urandom(700)
    path.write_bytes(data)

    result = handle_roots(RootsCommand(path=str(path)), config=small_config)

    assert '3 fragment(s)' in result
    assert compute_root(data[:300]) in result
    assert compute_root(data[600:]) in result


def test_handle_roots_empty_file(tmp_path, small_config):
    path = tmp_path / 'empty.bin'
    path.write_bytes(b"")

    assert 'no fragments' in handle_roots(RootsCommand(path=str(path)), config=small_config)


def test_handle_upload_writes_manifest(tmp_path, small_config, network, client_factory):
    network.add_node('grpc://a:1')
    network.add_node('grpc://b:1')
    path = tmp_path / 'data.bin'
    data = os.urandom(650)
    path.write_bytes(data)

    result = handle_upload(UploadCommand(path=str(path)), config=small_config, client_factory=client_factory)

    assert 'in 3 fragment(s)' in result
    assert 'replicas=2' in result
    manifest_path = tmp_path / 'data.bin.manifest.json'
    assert f'Manifest: {manifest_path}' in result
    manifest = json.loads(manifest_path.read_text())
    assert manifest['roots'] == [compute_root(data[:300]), compute_root(data[300:600]), compute_root(data[600:])]


def test_handle_upload_single_fragment_prints_root(tmp_path, small_config, network, client_factory):
    network.add_node('grpc://a:1')
    path = tmp_path / 'small.bin'
    path.write_bytes(b"hello shardline")

    result = handle_upload(
        UploadCommand(path=str(path), replicas=1), config=small_config, client_factory=client_factory
    )

    assert f'Root hash: {compute_root(b"hello shardline")}' in result


def test_handle_upload_reports_failed_fragment(tmp_path, small_config, network, client_factory):
    network.add_node('grpc://a:1')
    path = tmp_path / 'data.bin'
    data = os.urandom(650)
    path.write_bytes(data)
    network.fail_roots.add(compute_root(data[300:600]))

    result = handle_upload(
        UploadCommand(path=str(path), replicas=1), config=small_config, client_factory=client_factory
    )

    assert result.startswith('Error: Upload failed at fragment 1')
    assert not (tmp_path / 'data.bin.manifest.json').exists()


def test_handle_upload_missing_file(tmp_path, small_config):
    result = handle_upload(UploadCommand(path=str(tmp_path / 'nope')), config=small_config)
    assert result.startswith('Error: File not found')


def test_handle_upload_bad_policy(tmp_path, small_config):
    path = tmp_path / 'data.bin'
    path.write_bytes(b"x")

    result = handle_upload(UploadCommand(path=str(path), finality='eventually'), config=small_config)

    assert result.startswith('Error:')


def test_handle_download_from_manifest(tmp_path, small_config, network, client_factory):
    network.add_node('grpc://a:1')
    network.add_node('grpc://b:1')
    path = tmp_path / 'data.bin'
    data = os.urandom(650)
    path.write_bytes(data)
    handle_upload(UploadCommand(path=str(path)), config=small_config, client_factory=client_factory)
    output = tmp_path / 'restored' / 'data.bin'

    result = handle_download(
        DownloadCommand(output_path=str(output), manifest_path=str(tmp_path / 'data.bin.manifest.json')),
        config=small_config,
        client_factory=client_factory,
    )

    assert result.startswith('Downloaded 3 fragment(s)')
    assert output.read_bytes() == data


def test_handle_download_unknown_root_leaves_no_file(tmp_path, small_config, network, client_factory):
    network.add_node('grpc://a:1')
    output = tmp_path / 'out.bin'

    result = handle_download(
        DownloadCommand(output_path=str(output), roots=(compute_root(b"never uploaded"),)),
        config=small_config,
        client_factory=client_factory,
    )

    assert result.startswith('Error:')
    assert not output.exists()
    assert not (tmp_path / 'out.bin.part').exists()


def test_handle_download_invalid_manifest(tmp_path, small_config):
    manifest = tmp_path / 'bad.manifest.json'
    manifest.write_text(json.dumps({'roots': ['0x1234']}))

    result = handle_download(
        DownloadCommand(output_path=str(tmp_path / 'out'), manifest_path=str(manifest)), config=small_config
    )

    assert result.startswith('Error: Invalid manifest')


def test_handle_verify_match_and_mismatch(tmp_path):
    path = tmp_path / 'data.bin'
    data = os.urandom(500)
    path.write_bytes(data)
    manifest = tmp_path / 'data.bin.manifest.json'
    manifest.write_text(json.dumps({
        'fragment_size': 300,
        'roots': [compute_root(data[:300]), compute_root(data[300:])],
    }))

    assert handle_verify(VerifyCommand(path=str(path), manifest_path=str(manifest))).startswith('OK')

    path.write_bytes(data[:300] + b"\0" * 200)
    result = handle_verify(VerifyCommand(path=str(path), manifest_path=str(manifest)))
    assert result.startswith('Error: Fragment 1 mismatch')
