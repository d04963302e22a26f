"""Tests for the storage node gRPC servicer, called without a network."""

import os

import grpc
import pytest

from common.merkle import compute_root
from common.protocol import (
    CommitFragmentRequest,
    CommitFragmentResponse,
    CommitStatusRequest,
    CommitStatusResponse,
    FetchFragmentRequest,
    FetchFragmentResponse,
    PingRequest,
    PingResponse,
    UploadSegmentRequest,
    UploadSegmentResponse,
)
from node.fragment_storage import FragmentStorage
from node.grpc_server import StorageNodeServicer


class AbortError(Exception):
    pass


class FakeContext:
    """Minimal stand-in for grpc.aio.ServicerContext."""

    def __init__(self):
        self.code = None
        self.details = None

    async def abort(self, code, details):
        self.code = code
        self.details = details
        raise AbortError(details)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def servicer(tmp_path, clock):
    return StorageNodeServicer(FragmentStorage(tmp_path / 'node'), finality_delay=5.0, clock=clock)


async def _upload(servicer, data, task_size=128, root=None):
    root = root or compute_root(data)
    context = FakeContext()
    task_count = 0
    for task_index, offset in enumerate(range(0, len(data), task_size)):
        request = UploadSegmentRequest(
            root=root,
            fragment_size=len(data),
            task_index=task_index,
            offset=offset,
            data=data[offset:offset + task_size],
        )
        response = UploadSegmentResponse.from_json(await servicer.UploadSegment(request.to_json(), context))
        assert response.success
        task_count += 1
    commit = CommitFragmentRequest(root=root, fragment_size=len(data), task_count=task_count)
    return CommitFragmentResponse.from_json(await servicer.CommitFragment(commit.to_json(), context))


@pytest.mark.asyncio
async def test_commit_returns_computed_root_and_handle(servicer):
    data = os.urandom(400)

    response = await _upload(servicer, data)

    assert response.success
    assert response.root == compute_root(data)
    assert response.commit_handle
    assert response.finalized is False


@pytest.mark.asyncio
async def test_commit_status_finalizes_after_delay(servicer, clock):
    data = os.urandom(100)
    commit = await _upload(servicer, data)
    request = CommitStatusRequest(root=commit.root, commit_handle=commit.commit_handle)

    pending = CommitStatusResponse.from_json(await servicer.CommitStatus(request.to_json(), FakeContext()))
    clock.now += 5.0
    final = CommitStatusResponse.from_json(await servicer.CommitStatus(request.to_json(), FakeContext()))

    assert pending.known and not pending.finalized
    assert final.known and final.finalized


@pytest.mark.asyncio
async def test_unknown_commit_handle(servicer):
    request = CommitStatusRequest(root=compute_root(b"x"), commit_handle="nope")
    response = CommitStatusResponse.from_json(await servicer.CommitStatus(request.to_json(), FakeContext()))
    assert response.known is False


@pytest.mark.asyncio
async def test_root_mismatch_is_rejected(servicer):
    data = os.urandom(200)
    claimed = compute_root(b"a different payload")

    response = await _upload(servicer, data, root=claimed)

    assert response.success is False
    assert response.root == compute_root(data)
    assert response.commit_handle is None


@pytest.mark.asyncio
async def test_fetch_streams_size_then_data(servicer):
    data = os.urandom(1000)
    commit = await _upload(servicer, data)
    request = FetchFragmentRequest(root=commit.root)

    messages = [
        FetchFragmentResponse.from_json(raw)
        async for raw in servicer.FetchFragment(request.to_json(), FakeContext())
    ]

    assert messages[0].total_size == 1000
    assert b"".join(m.data for m in messages[1:]) == data


@pytest.mark.asyncio
async def test_fetch_unknown_root_aborts_not_found(servicer):
    context = FakeContext()
    request = FetchFragmentRequest(root=compute_root(b"missing"))

    with pytest.raises(AbortError):
        async for _ in servicer.FetchFragment(request.to_json(), context):
            pass

    assert context.code == grpc.StatusCode.NOT_FOUND


@pytest.mark.asyncio
async def test_ping_reports_fragment_count(servicer):
    await _upload(servicer, b"one")
    await _upload(servicer, b"two")

    response = PingResponse.from_json(await servicer.Ping(PingRequest().to_json(), FakeContext()))

    assert response.available
    assert response.fragment_count == 2


@pytest.mark.asyncio
@pytest.mark.parametrize('root', ['../../escaped', 'not-a-root', '0x1234'])
async def test_upload_with_malformed_root_aborts_invalid_argument(servicer, tmp_path, root):
    context = FakeContext()
    request = UploadSegmentRequest(root=root, fragment_size=4, task_index=0, offset=0, data=b'data')

    with pytest.raises(AbortError):
        await servicer.UploadSegment(request.to_json(), context)

    assert context.code == grpc.StatusCode.INVALID_ARGUMENT
    assert list(tmp_path.rglob('*escaped*')) == []


@pytest.mark.asyncio
async def test_fetch_with_malformed_root_aborts_invalid_argument(servicer):
    context = FakeContext()
    request = FetchFragmentRequest(root='../fragments/x')

    with pytest.raises(AbortError):
        async for _ in servicer.FetchFragment(request.to_json(), context):
            pass

    assert context.code == grpc.StatusCode.INVALID_ARGUMENT


@pytest.mark.asyncio
async def test_uppercase_root_is_normalized(servicer):
    data = os.urandom(300)
    root = compute_root(data)

    response = await _upload(servicer, data, root='0X' + root[2:].upper())

    assert response.success
    assert response.root == root
    assert servicer.storage.list_roots() == [root]


@pytest.mark.asyncio
async def test_commit_is_announced_before_it_is_acknowledged(tmp_path):
    announced = []

    async def on_commit(root):
        announced.append(root)

    servicer = StorageNodeServicer(FragmentStorage(tmp_path / 'node'), on_commit=on_commit)
    data = os.urandom(200)

    response = await _upload(servicer, data)

    assert response.success
    assert announced == [compute_root(data)]


@pytest.mark.asyncio
async def test_rejected_commit_is_not_announced(tmp_path):
    announced = []

    async def on_commit(root):
        announced.append(root)

    servicer = StorageNodeServicer(FragmentStorage(tmp_path / 'node'), on_commit=on_commit)

    response = await _upload(servicer, os.urandom(200), root=compute_root(b'other'))

    assert response.success is False
    assert announced == []
