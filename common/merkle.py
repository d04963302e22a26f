"""Merkle root computation for fragment payloads (content addressing).

Leaves are fixed-size slices of the payload. Leaf hashes and interior hashes
use distinct one-byte prefixes, and the tree is split at the largest power of
two below the leaf count, as in RFC 6962. The empty payload hashes to
SHA-256 of the empty string.
"""

import hashlib
import re
from typing import List, Tuple

from common.constants import MERKLE_LEAF_SIZE_BYTES

LEAF_PREFIX = b"\x00"
NODE_PREFIX = b"\x01"

ROOT_PATTERN = re.compile(r"^0x[0-9a-f]{64}$")

EMPTY_ROOT = "0x" + hashlib.sha256(b"").hexdigest()


def format_root(digest: bytes) -> str:
    """
    Render a 32-byte digest as a root identifier.

    Args:
        digest: Raw SHA-256 digest

    Returns:
        "0x"-prefixed lowercase hex string
    """
    return "0x" + digest.hex()


def normalize_root(value: str) -> str:
    """
    Validate and canonicalize a root identifier.

    Accepts upper- or lower-case hex with or without the 0x prefix.

    Raises:
        ValueError: If the value is not a 32-byte hex identifier
    """
    candidate = value.strip().lower()
    if not candidate.startswith("0x"):
        candidate = "0x" + candidate
    if not ROOT_PATTERN.match(candidate):
        raise ValueError(f"Invalid root identifier: {value!r}")
    return candidate


def _hash_leaf(leaf: bytes) -> bytes:
    return hashlib.sha256(LEAF_PREFIX + leaf).digest()


def _hash_node(left: bytes, right: bytes) -> bytes:
    return hashlib.sha256(NODE_PREFIX + left + right).digest()


class IncrementalRootCalculator:
    """
    Compute a Merkle root incrementally for streaming data.

    Keeps one pending partial leaf and a stack of completed perfect
    subtrees, so memory stays logarithmic in the payload size.

    Usage:
        calculator = IncrementalRootCalculator()
        calculator.update(piece1)
        calculator.update(piece2)
        root = calculator.finalize()
    """

    def __init__(self, leaf_size: int = MERKLE_LEAF_SIZE_BYTES):
        if leaf_size <= 0:
            raise ValueError("leaf_size must be positive")
        self._leaf_size = leaf_size
        self._pending = bytearray()
        self._stack: List[Tuple[int, bytes]] = []
        self._length = 0
        self._finalized = False

    @property
    def length(self) -> int:
        """Number of payload bytes consumed so far."""
        return self._length

    def update(self, data: bytes) -> None:
        """
        Feed more payload bytes.

        Args:
            data: Next piece of the payload, any size
        """
        if self._finalized:
            raise ValueError("Cannot update after finalization")
        if not data:
            return

        self._length += len(data)
        view = memoryview(data)
        offset = 0

        if self._pending:
            needed = self._leaf_size - len(self._pending)
            self._pending.extend(view[:needed])
            offset = needed
            if len(self._pending) < self._leaf_size:
                return
            self._push_leaf(bytes(self._pending))
            self._pending.clear()

        while len(view) - offset >= self._leaf_size:
            self._push_leaf(bytes(view[offset:offset + self._leaf_size]))
            offset += self._leaf_size

        self._pending.extend(view[offset:])

    def _push_leaf(self, leaf: bytes) -> None:
        self._stack.append((0, _hash_leaf(leaf)))
        while len(self._stack) >= 2 and self._stack[-1][0] == self._stack[-2][0]:
            height, right = self._stack.pop()
            _, left = self._stack.pop()
            self._stack.append((height + 1, _hash_node(left, right)))

    def finalize(self) -> str:
        """
        Finish the computation.

        Returns:
            Root identifier of everything fed to update()
        """
        if self._finalized:
            raise ValueError("Root already finalized")
        self._finalized = True

        if self._pending:
            self._push_leaf(bytes(self._pending))
            self._pending.clear()

        if not self._stack:
            return EMPTY_ROOT

        digest = self._stack[-1][1]
        for _, left in reversed(self._stack[:-1]):
            digest = _hash_node(left, digest)
        return format_root(digest)


def compute_root(data: bytes, leaf_size: int = MERKLE_LEAF_SIZE_BYTES) -> str:
    """
    Compute the root identifier for a complete payload.

    Args:
        data: Payload bytes (may be empty)
        leaf_size: Leaf width in bytes

    Returns:
        "0x"-prefixed hex root identifier
    """
    calculator = IncrementalRootCalculator(leaf_size)
    calculator.update(data)
    return calculator.finalize()


def verify_root(data: bytes, expected: str) -> bool:
    """
    Check that data hashes to the expected root.

    Args:
        data: Payload bytes
        expected: Root identifier, any accepted spelling

    Returns:
        True if the recomputed root matches
    """
    return compute_root(data) == normalize_root(expected)
