"""Explicit configuration for a transfer client."""

from dataclasses import dataclass
from typing import Optional

from common.constants import (
    FRAGMENT_SIZE_BYTES,
    UPLOAD_TASK_SIZE_BYTES,
    MAX_INFLIGHT_TASKS,
    MAX_PARALLEL_FRAGMENTS,
    REQUEST_TIMEOUT_SECONDS,
    FINALITY_TIMEOUT_SECONDS,
    FINALITY_POLL_INTERVAL_SECONDS,
    MAX_UPLOAD_TASK_SIZE_BYTES,
    MAX_RETRIES,
    RETRY_BACKOFF_MULTIPLIER,
)
from common.exceptions import ConfigurationError


@dataclass(frozen=True)
class TransferConfig:
    """
    Settings passed into the uploader, orchestrator and verifier at construction.

    Attributes:
        indexer_url: Base URL of the node-selecting indexer
        api_token: Optional bearer token sent to the indexer
        fragment_size: Bytes per fragment (the unit of addressing)
        upload_task_size: Bytes per upload task within a fragment
        max_inflight_tasks: Upload tasks in flight at once across all nodes
        max_parallel_fragments: Fragments uploaded or fetched concurrently
        request_timeout: Seconds per node/indexer request
        finality_timeout: Seconds to wait for network confirmation
        finality_poll_interval: Seconds between commit status polls
        max_retries: Retries of a transient transport error per request
        retry_backoff_multiplier: Base of the exponential backoff
        fragment_retries: Whole-fragment retries after a transient failure
    """
    indexer_url: str = "http://localhost:8080"
    api_token: Optional[str] = None
    fragment_size: int = FRAGMENT_SIZE_BYTES
    upload_task_size: int = UPLOAD_TASK_SIZE_BYTES
    max_inflight_tasks: int = MAX_INFLIGHT_TASKS
    max_parallel_fragments: int = MAX_PARALLEL_FRAGMENTS
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    finality_timeout: float = FINALITY_TIMEOUT_SECONDS
    finality_poll_interval: float = FINALITY_POLL_INTERVAL_SECONDS
    max_retries: int = MAX_RETRIES
    retry_backoff_multiplier: float = RETRY_BACKOFF_MULTIPLIER
    fragment_retries: int = 0

    def validate(self) -> "TransferConfig":
        """
        Reject unusable settings before any network activity.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: On the first invalid setting
        """
        _require_positive("fragment_size", self.fragment_size)
        _require_positive("upload_task_size", self.upload_task_size)
        if self.upload_task_size > MAX_UPLOAD_TASK_SIZE_BYTES:
            raise ConfigurationError(
                f"upload_task_size must be at most {MAX_UPLOAD_TASK_SIZE_BYTES} bytes "
                f"to fit one storage-node message, got {self.upload_task_size}"
            )
        _require_positive("max_inflight_tasks", self.max_inflight_tasks)
        _require_positive("max_parallel_fragments", self.max_parallel_fragments)
        _require_positive("request_timeout", self.request_timeout)
        _require_positive("finality_timeout", self.finality_timeout)
        _require_positive("finality_poll_interval", self.finality_poll_interval)
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.fragment_retries < 0:
            raise ConfigurationError(f"fragment_retries must be >= 0, got {self.fragment_retries}")
        if self.retry_backoff_multiplier < 1:
            raise ConfigurationError(
                f"retry_backoff_multiplier must be >= 1, got {self.retry_backoff_multiplier}"
            )
        if not self.indexer_url:
            raise ConfigurationError("indexer_url is required")
        return self


def _require_positive(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
