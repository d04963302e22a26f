"""Custom completer for Shardline CLI with path and option autocompletion."""

from pathlib import Path
from typing import Iterable, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS
from common.types import FinalityRequirement, SelectionMode, TrustFilter

PATH_COMMANDS = ("generate", "roots", "upload", "download", "verify")

OPTIONS = {
    "roots": ["--fragment-size"],
    "upload": ["--fragment-size", "--replicas", "--finality", "--trust", "--mode"],
}

OPTION_CHOICES = {
    "--finality": [member.value for member in FinalityRequirement],
    "--trust": [member.value for member in TrustFilter],
    "--mode": [member.value for member in SelectionMode],
}


class ShardlineCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Option names and their allowed values for 'roots' and 'upload'
    - Local file path completion for command arguments
    """

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        """
        Generate completions based on cursor position and context.

        For the first token, completes command names. After an option that
        takes a fixed set of values, completes those values. Otherwise
        completes option names (when the word starts with '-') or paths.
        """
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        if command not in PATH_COMMANDS:
            return

        current_word = "" if is_typing_new_token else tokens[-1]
        previous = tokens[-1] if is_typing_new_token else (tokens[-2] if len(tokens) > 1 else "")

        if previous in OPTION_CHOICES:
            yield from self._complete_from(OPTION_CHOICES[previous], current_word)
            return

        if current_word.startswith("-"):
            used = set(tokens[1:-1])
            available = [opt for opt in OPTIONS.get(command, []) if opt not in used]
            yield from self._complete_from(available, current_word)
            return

        yield from self._complete_paths(current_word)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    @staticmethod
    def _complete_from(candidates: List[str], partial: str) -> Iterable[Completion]:
        for candidate in candidates:
            if candidate.startswith(partial):
                yield Completion(candidate, start_position=-len(partial))

    def _complete_paths(self, partial: str) -> Iterable[Completion]:
        """
        Complete file and directory paths relative to the working directory.

        Directories are suggested with a trailing slash; hidden entries are
        only suggested once the user has typed the leading dot.
        """
        directory_part, _, name_part = partial.rpartition("/")
        if partial.startswith("/"):
            base = Path(directory_part or "/")
        else:
            base = Path.cwd() / directory_part if directory_part else Path.cwd()

        if not base.is_dir():
            return

        prefix = f"{directory_part}/" if directory_part or partial.startswith("/") else ""
        for item in sorted(base.iterdir()):
            if item.name.startswith(".") and not name_part.startswith("."):
                continue
            if not item.name.startswith(name_part):
                continue
            suffix = "/" if item.is_dir() else ""
            yield Completion(f"{prefix}{item.name}{suffix}", start_position=-len(partial))
