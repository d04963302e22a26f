"""Utility functions for CLI operations."""

import re
import sys
from pathlib import Path

from cli.constants import GREEN, RESET
from common.types import UploadRecord

SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "kib": 1024,
    "m": 1024 ** 2,
    "mb": 1024 ** 2,
    "mib": 1024 ** 2,
    "g": 1024 ** 3,
    "gb": 1024 ** 3,
    "gib": 1024 ** 3,
    "t": 1024 ** 4,
    "tb": 1024 ** 4,
    "tib": 1024 ** 4,
}

SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")


class UploadProgress:
    """Progress callback that prints one line per appended fragment."""

    def __init__(self, filename: str, file_size: int):
        """
        Initialize the progress display.

        Args:
            filename: Display name for the file
            file_size: Total size of the file in bytes
        """
        self.filename = filename
        self.file_size = file_size
        self._uploaded = 0

    def __call__(self, record: UploadRecord) -> None:
        self._uploaded += record.size
        progress = (self._uploaded / self.file_size) * 100 if self.file_size else 100.0
        sys.stdout.write(
            f"\rUploading {self.filename}: {format_file_size(self._uploaded)} / "
            f"{format_file_size(self.file_size)} ({GREEN}{progress:.1f}%{RESET}) "
            f"fragment {record.fragment_index} x{record.replication_achieved}"
        )
        sys.stdout.flush()

    def finish(self) -> None:
        """Finalize progress display with newline."""
        if self._uploaded:
            sys.stdout.write('\n')
            sys.stdout.flush()


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in bytes to human-readable format with appropriate unit.

    Uses binary units (1024-based) and automatically selects the most
    appropriate unit (B, KiB, MiB, GiB, TiB).

    Args:
        size_bytes: File size in bytes

    Returns:
        Formatted string with size and unit (e.g., "1.50 MiB", "512 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"

    units = ['KiB', 'MiB', 'GiB', 'TiB']
    size = size_bytes / 1024.0

    for unit in units:
        if size < 1024.0:
            return f"{size:.2f} {unit}"
        size /= 1024.0

    return f"{size:.2f} PiB"


def parse_size(text: str) -> int:
    """
    Parse a human-readable size into bytes.

    Units are binary whatever the spelling: "1G", "1GB" and "1GiB" are all
    1073741824 bytes. A bare number is bytes.

    Args:
        text: Size such as "4096", "400MiB" or "1.5G"

    Returns:
        Size in bytes

    Raises:
        ValueError: If the text is not a size
    """
    match = SIZE_PATTERN.match(text)
    if not match:
        raise ValueError(f"not a size: {text!r}")
    number, unit = match.groups()
    multiplier = SIZE_UNITS.get(unit.lower())
    if multiplier is None:
        raise ValueError(f"unknown size unit: {unit!r}")
    return int(float(number) * multiplier)


def generate_sparse_file(path: Path, size: int) -> None:
    """
    Create a file of the given size without writing its contents.

    Seeks to the last byte and writes a single zero, so on filesystems with
    sparse file support no data blocks are allocated.

    Args:
        path: File to create (parent directories are created)
        size: File size in bytes
    """
    if size < 0:
        raise ValueError("size must not be negative")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'wb') as f:
        if size > 0:
            f.seek(size - 1)
            f.write(b'\0')
