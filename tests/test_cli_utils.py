"""Tests for CLI utility functions."""

import pytest

from cli.utils import UploadProgress, format_file_size, generate_sparse_file, parse_size
from common.types import UploadRecord


@pytest.mark.parametrize('text, expected', [
    ('4096', 4096),
    ('1K', 1024),
    ('400MiB', 400 * 1024 ** 2),
    ('400MB', 400 * 1024 ** 2),
    ('1.5G', int(1.5 * 1024 ** 3)),
    ('2 tb', 2 * 1024 ** 4),
])
def test_parse_size(text, expected):
    assert parse_size(text) == expected


@pytest.mark.parametrize('text', ['', 'big', '10 parsecs', '-1K'])
def test_parse_size_rejects_garbage(text):
    with pytest.raises(ValueError):
        parse_size(text)


def test_format_file_size():
    assert format_file_size(512) == '512 B'
    assert format_file_size(1536) == '1.50 KiB'
    assert format_file_size(400 * 1024 ** 2) == '400.00 MiB'
    assert format_file_size(1024 ** 3) == '1.00 GiB'


def test_generate_sparse_file(tmp_path):
    path = tmp_path / 'nested' / 'sparse.bin'

    generate_sparse_file(path, 10 * 1024 ** 2)

    assert path.stat().st_size == 10 * 1024 ** 2
    with open(path, 'rb') as f:
        assert f.read(16) == b'\0' * 16


def test_generate_empty_file(tmp_path):
    path = tmp_path / 'empty.bin'
    generate_sparse_file(path, 0)
    assert path.stat().st_size == 0


def test_upload_progress_prints_fragments(capsys):
    progress = UploadProgress('data.bin', 2048)

    progress(UploadRecord(fragment_index=0, root='0x' + '0' * 64, commit_handle='h', replication_achieved=2, size=1024))
    progress.finish()

    out = capsys.readouterr().out
    assert 'data.bin' in out
    assert '50.0%' in out
    assert 'fragment 0 x2' in out
