"""Exception taxonomy for fragment transfer and retrieval."""

from typing import Optional


class TransferError(Exception):
    """
    Base exception class for all transfer-related errors.

    Carries enough context (fragment index, root) for a caller to retry
    a single fragment instead of the whole file.
    """

    def __init__(
        self,
        message: str,
        fragment_index: Optional[int] = None,
        root: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.fragment_index = fragment_index
        self.root = root

    def with_context(self, fragment_index: Optional[int] = None, root: Optional[str] = None) -> "TransferError":
        """Fill in missing fragment context and return self."""
        if self.fragment_index is None:
            self.fragment_index = fragment_index
        if self.root is None:
            self.root = root
        return self

    def __str__(self) -> str:
        context = []
        if self.fragment_index is not None:
            context.append(f"fragment={self.fragment_index}")
        if self.root is not None:
            context.append(f"root={self.root}")
        if not context:
            return self.message
        return f"{self.message} [{', '.join(context)}]"


class ConfigurationError(TransferError):
    """
    Raised for invalid sizes or policies, before any network activity.
    """
    pass


class SelectionExhaustedError(TransferError):
    """
    Raised when no eligible node set meets the trust/replication constraints.
    """
    pass


class FinalityTimeoutError(TransferError):
    """
    Raised when the network does not confirm a write within the policy bound.
    """
    pass


class TransportFailureError(TransferError):
    """
    Raised when every attempted node failed at the network level.
    """

    def __init__(
        self,
        message: str,
        fragment_index: Optional[int] = None,
        root: Optional[str] = None,
        node_errors: Optional[dict] = None,
    ):
        super().__init__(message, fragment_index=fragment_index, root=root)
        self.node_errors = dict(node_errors or {})


class IntegrityMismatchError(TransferError):
    """
    Raised when bytes hash to a root other than the requested one.

    The offending data must be treated as untrustworthy.
    """

    def __init__(
        self,
        message: str,
        fragment_index: Optional[int] = None,
        root: Optional[str] = None,
        actual_root: Optional[str] = None,
        node_url: Optional[str] = None,
    ):
        super().__init__(message, fragment_index=fragment_index, root=root)
        self.actual_root = actual_root
        self.node_url = node_url


class NotFoundError(TransferError):
    """
    Raised when no node serves the requested root.
    """
    pass


class TransferCancelledError(TransferError):
    """
    Raised (or stored on the session) when the caller cancels a transfer.
    """
    pass
