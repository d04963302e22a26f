"""Tests for ShardlineCompleter."""

import pytest
from prompt_toolkit.document import Document

from cli.completer import ShardlineCompleter
from cli.constants import COMMANDS


@pytest.fixture
def completer():
    """Create a ShardlineCompleter instance."""
    return ShardlineCompleter()


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """
    Create a working directory with a few files and switch into it.

    Returns:
        Path to the working directory
    """
    (tmp_path / "data").mkdir()
    (tmp_path / "data" / "big.bin").write_bytes(b"x")
    (tmp_path / "data" / "big.bin.manifest.json").write_text("{}")
    (tmp_path / "notes.txt").write_text("content")
    (tmp_path / ".hidden").write_text("content")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def get_completions_list(completer, text):
    """Helper to get list of completion texts from completer."""
    doc = Document(text, len(text))
    return [c.text for c in completer.get_completions(doc, None)]


class TestCommandCompletion:
    """Tests for command name completion."""

    def test_empty_input_shows_all_commands(self, completer):
        completions = get_completions_list(completer, "")
        for cmd in COMMANDS:
            assert cmd in completions

    def test_partial_command_filters(self, completer):
        completions = get_completions_list(completer, "up")
        assert completions == ["upload"]

    def test_command_completion_case_insensitive(self, completer):
        assert "download" in get_completions_list(completer, "DOWN")

    def test_unknown_command_has_no_argument_completion(self, completer, workdir):
        assert get_completions_list(completer, "help ") == []


class TestOptionCompletion:
    """Tests for upload option names and values."""

    def test_upload_options(self, completer):
        completions = get_completions_list(completer, "upload f.bin --")
        assert "--replicas" in completions
        assert "--finality" in completions

    def test_used_option_is_not_suggested_again(self, completer):
        completions = get_completions_list(completer, "upload f.bin --replicas 2 --")
        assert "--replicas" not in completions
        assert "--trust" in completions

    def test_roots_only_offers_fragment_size(self, completer):
        assert get_completions_list(completer, "roots f.bin --") == ["--fragment-size"]

    def test_finality_values(self, completer):
        completions = get_completions_list(completer, "upload f.bin --finality ")
        assert completions == ["on-submission", "network-confirmed"]

    def test_trust_values_filtered(self, completer):
        assert get_completions_list(completer, "upload f.bin --trust allow") == ["allow-discovered"]


class TestPathCompletion:
    """Tests for file path completion."""

    def test_lists_working_directory(self, completer, workdir):
        completions = get_completions_list(completer, "upload ")
        assert "data/" in completions
        assert "notes.txt" in completions
        assert ".hidden" not in completions

    def test_hidden_files_when_dot_typed(self, completer, workdir):
        assert get_completions_list(completer, "upload .h") == [".hidden"]

    def test_completes_inside_directory(self, completer, workdir):
        completions = get_completions_list(completer, "download data/big.bin.")
        assert completions == ["data/big.bin.manifest.json"]

    def test_missing_directory_yields_nothing(self, completer, workdir):
        assert get_completions_list(completer, "verify nowhere/x") == []
