"""Manages fragment files on disk: staged segment writes, commit, streaming reads."""

import os
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from common.constants import STREAM_PIECE_SIZE_BYTES
from common.logging_config import get_logger
from common.merkle import ROOT_PATTERN, IncrementalRootCalculator

logger = get_logger(__name__)

FRAGMENT_SUFFIX = ".frag"
STAGING_SUFFIX = ".part"


class StagingError(Exception):
    """Raised when staged segments are inconsistent with the commit request."""


def _checked(root: str) -> str:
    """
    Reject anything but a canonical root before it becomes part of a path.

    Raises:
        ValueError: If root is not "0x" followed by 64 lowercase hex digits
    """
    if not ROOT_PATTERN.fullmatch(root):
        raise ValueError(f"Invalid root identifier: {root!r}")
    return root


class FragmentStorage:
    """
    Content-addressed fragment files under one base directory.

    Segments are written into staging/<root>.part at their offsets; a commit
    re-hashes the staged file and, on a match, moves it to
    fragments/<root>.frag. Committed fragments are immutable.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.fragments_dir = self.base_dir / "fragments"
        self.staging_dir = self.base_dir / "staging"
        self._received: Dict[str, Set[int]] = {}

    def ensure_directories(self) -> None:
        """Ensure storage directories exist."""
        self.fragments_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def fragment_path(self, root: str) -> Path:
        return self.fragments_dir / f"{_checked(root)}{FRAGMENT_SUFFIX}"

    def staging_path(self, root: str) -> Path:
        return self.staging_dir / f"{_checked(root)}{STAGING_SUFFIX}"

    def exists(self, root: str) -> bool:
        return self.fragment_path(root).exists()

    def size(self, root: str) -> Optional[int]:
        """
        Get size of a committed fragment in bytes.

        Returns:
            Size in bytes, or None if the fragment is not stored
        """
        path = self.fragment_path(root)
        if path.exists():
            return path.stat().st_size
        return None

    def write_segment(self, root: str, fragment_size: int, task_index: int, offset: int, data: bytes) -> int:
        """
        Write one segment into the staging file for root.

        Segments may arrive in any order and may be resent; a resend
        overwrites the same byte range.

        Args:
            root: Root the fragment will be committed under
            fragment_size: Declared total fragment size
            task_index: Index of the upload task
            offset: Byte offset of the segment in the fragment
            data: Segment bytes

        Returns:
            Number of bytes written

        Raises:
            StagingError: If the segment falls outside the declared size
            ValueError: If root is not a canonical root identifier
            OSError: If the write fails
        """
        if offset < 0 or offset + len(data) > fragment_size:
            raise StagingError(
                f"Segment {task_index} [{offset}, {offset + len(data)}) outside fragment of {fragment_size} bytes"
            )

        self.ensure_directories()
        path = self.staging_path(root)
        mode = 'r+b' if path.exists() else 'w+b'
        with open(path, mode) as f:
            f.seek(offset)
            f.write(data)

        self._received.setdefault(root, set()).add(task_index)
        return len(data)

    def commit(self, root: str, fragment_size: int, task_count: int) -> str:
        """
        Verify the staged file and move it into place.

        Args:
            root: Root the client expects
            fragment_size: Declared total fragment size
            task_count: Number of upload tasks the client sent

        Returns:
            Root computed from the staged bytes. The fragment is stored only
            when it equals root; on a mismatch the staged file is discarded.

        Raises:
            StagingError: If segments are missing or the size is wrong
        """
        if self.exists(root):
            self.discard(root)
            logger.info(f"Fragment {root} already stored, commit is a no-op")
            return root

        path = self.staging_path(root)
        received = self._received.get(root, set())
        if not path.exists() or len(received) != task_count:
            raise StagingError(f"Received {len(received)} of {task_count} segment(s) for {root}")

        actual_size = path.stat().st_size
        if actual_size != fragment_size:
            self.discard(root)
            raise StagingError(f"Staged {actual_size} bytes for {root}, expected {fragment_size}")

        calculator = IncrementalRootCalculator()
        for piece in self._read_pieces(path, STREAM_PIECE_SIZE_BYTES):
            calculator.update(piece)
        computed = calculator.finalize()

        if computed != root:
            logger.error(f"Staged bytes for {root} hash to {computed}, discarding")
            self.discard(root)
            return computed

        os.replace(path, self.fragment_path(root))
        self._received.pop(root, None)
        logger.info(f"Stored fragment {root} ({fragment_size} bytes)")
        return computed

    def discard(self, root: str) -> None:
        """Remove any staged state for root."""
        self._received.pop(root, None)
        self.staging_path(root).unlink(missing_ok=True)

    def read_streaming(self, root: str, piece_size: int = STREAM_PIECE_SIZE_BYTES) -> Iterator[bytes]:
        """
        Stream a committed fragment in pieces.

        Raises:
            FileNotFoundError: If the fragment is not stored
        """
        return self._read_pieces(self.fragment_path(root), piece_size)

    def list_roots(self) -> List[str]:
        """List roots of all committed fragments."""
        if not self.fragments_dir.exists():
            return []
        return sorted(path.name[:-len(FRAGMENT_SUFFIX)] for path in self.fragments_dir.glob(f"*{FRAGMENT_SUFFIX}"))

    @staticmethod
    def _read_pieces(path: Path, piece_size: int) -> Iterator[bytes]:
        with open(path, 'rb') as f:
            while True:
                piece = f.read(piece_size)
                if not piece:
                    break
                yield piece
