"""Custom exception classes for the indexer."""


class IndexerError(Exception):
    """
    Base exception class for indexer errors.
    """
    pass


class RootNotFoundError(IndexerError):
    """
    Raised when no live node serves a requested root.
    """
    pass
