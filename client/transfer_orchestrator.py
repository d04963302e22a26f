"""Splits a source stream into fragments and drives their upload in order."""

import asyncio
from typing import BinaryIO, Callable, Dict, Iterator, Optional

from client.config import TransferConfig
from client.tasks import cancel_and_wait
from common.exceptions import (
    ConfigurationError,
    FinalityTimeoutError,
    TransferCancelledError,
    TransferError,
    TransportFailureError,
)
from common.logging_config import get_logger, set_session_id
from common.merkle import compute_root
from common.types import Fragment, ReplicationPolicy, TransferSession, UploadRecord

logger = get_logger(__name__)

ProgressCallback = Callable[[UploadRecord], None]


def read_window(source: BinaryIO, size: int) -> bytes:
    """
    Read up to size bytes, refilling short reads until the stream is exhausted.

    Pipes and sockets may return fewer bytes than requested before EOF;
    refilling keeps every fragment but the last at full size.
    """
    parts = []
    remaining = size
    while remaining > 0:
        piece = source.read(remaining)
        if not piece:
            break
        parts.append(piece)
        remaining -= len(piece)
    return b"".join(parts)


def split_fragments(source: BinaryIO, fragment_size: int) -> Iterator[Fragment]:
    """
    Yield contiguous fragments of a stream in index order.

    Args:
        source: Readable byte stream, consumed sequentially and never rewound
        fragment_size: Bytes per fragment

    Yields:
        Fragments; only the final one may be shorter than fragment_size
    """
    if fragment_size <= 0:
        raise ConfigurationError(f"Fragment size must be positive, got {fragment_size}")

    index = 0
    offset = 0
    while True:
        payload = read_window(source, fragment_size)
        if not payload:
            return
        yield Fragment(index=index, offset=offset, payload=payload)
        index += 1
        offset += len(payload)
        if len(payload) < fragment_size:
            return


class _TransferRun:
    """Mutable bookkeeping for one transfer() call."""

    def __init__(self, session: TransferSession, policy: ReplicationPolicy, progress_callback):
        self.session = session
        self.policy = policy
        self.progress_callback = progress_callback
        self.completed: Dict[int, UploadRecord] = {}
        self.failures: Dict[int, TransferError] = {}
        self.active: Dict[int, asyncio.Task] = {}
        self.stopped = False
        self.cancelled = False

    def complete(self, record: UploadRecord) -> None:
        """Buffer a finished record and append every record now in order."""
        self.completed[record.fragment_index] = record
        next_index = len(self.session.records)
        while next_index in self.completed:
            ready = self.completed.pop(next_index)
            self.session.append(ready)
            if self.progress_callback is not None:
                self.progress_callback(ready)
            next_index += 1

    def fail(self, index: int, error: TransferError) -> None:
        """Record a fragment failure and stop everything after it."""
        self.failures[index] = error
        self.stopped = True
        for other, task in list(self.active.items()):
            if other > index:
                task.cancel()

    def cancel(self) -> None:
        self.cancelled = True
        self.stopped = True
        for task in list(self.active.values()):
            task.cancel()


class TransferOrchestrator:
    """
    Uploads a stream as an ordered sequence of fragments.

    Fragments are uploaded by a pool of workers; records are appended to
    the session by a single in-order merge, so a Completed session always
    holds one record per fragment in strictly increasing index order.
    """

    def __init__(
        self,
        uploader,
        config: TransferConfig,
        policy: Optional[ReplicationPolicy] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            uploader: FragmentUploader (or compatible) used for every fragment
            config: Transfer configuration
            policy: Default replication policy when transfer() is given none
        """
        self.uploader = uploader
        self.config = config.validate()
        self.policy = policy

    async def transfer(
        self,
        source: BinaryIO,
        fragment_size: Optional[int] = None,
        policy: Optional[ReplicationPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> TransferSession:
        """
        Upload a stream fragment by fragment.

        Args:
            source: Readable byte stream
            fragment_size: Bytes per fragment (defaults to config.fragment_size)
            policy: Replication policy (defaults to the constructor policy)
            cancel_event: Setting this event cancels the transfer
            progress_callback: Called with each record as it is appended

        Returns:
            TransferSession in COMPLETED, FAILED or CANCELLED state

        Raises:
            ConfigurationError: Invalid fragment size or missing policy (no network activity)
            asyncio.CancelledError: If the calling task is cancelled (session marked CANCELLED first)
            Exception: Any error reading the source, after in-flight uploads are cancelled
                and the session is marked FAILED
        """
        if fragment_size is None:
            fragment_size = self.config.fragment_size
        if isinstance(fragment_size, bool) or not isinstance(fragment_size, int) or fragment_size <= 0:
            raise ConfigurationError(f"Fragment size must be a positive integer, got {fragment_size!r}")
        if fragment_size > self.config.fragment_size:
            raise ConfigurationError(
                f"Fragment size {fragment_size} exceeds configured maximum {self.config.fragment_size}"
            )
        policy = policy or self.policy
        if policy is None:
            raise ConfigurationError("A replication policy is required")

        session = TransferSession(fragment_size=fragment_size)
        run = _TransferRun(session, policy, progress_callback)
        logger.info(
            f"Starting transfer session {session.session_id} "
            f"[fragment_size={fragment_size}, replicas={policy.replica_count}, finality={policy.finality.value}]"
        )

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.max_parallel_fragments)
        workers = [
            asyncio.ensure_future(self._work(queue, run))
            for _ in range(self.config.max_parallel_fragments)
        ]
        watcher = asyncio.ensure_future(self._watch_cancel(cancel_event, run)) if cancel_event else None

        set_session_id(session.session_id)
        try:
            for fragment in split_fragments(source, fragment_size):
                if run.stopped:
                    break
                await queue.put(fragment)
            await queue.join()
        except BaseException as e:
            run.cancel()
            await cancel_and_wait([*run.active.values(), *workers])
            if isinstance(e, asyncio.CancelledError):
                self._finish(run)
            else:
                self._abort(run, e)
            raise
        finally:
            await cancel_and_wait([*workers, *([watcher] if watcher else [])])
            set_session_id(None)

        self._finish(run)
        return session

    def _finish(self, run: _TransferRun) -> None:
        """Move the session to its terminal state."""
        session = run.session
        if session.is_terminal:
            return

        next_index = len(session.records)
        if run.cancelled:
            error = TransferCancelledError("Transfer cancelled", fragment_index=next_index)
            session.mark_cancelled(next_index, error)
            logger.warning(f"Transfer session {session.session_id} cancelled at fragment {next_index}")
        elif run.failures:
            failed_index = min(run.failures)
            error = run.failures[failed_index]
            session.mark_failed(failed_index, error)
            logger.error(
                f"Transfer session {session.session_id} failed at fragment {failed_index}: {error}"
            )
        else:
            session.mark_completed()
            logger.info(
                f"Transfer session {session.session_id} completed: "
                f"{len(session.records)} fragment(s), {session.total_size} bytes"
            )

    def _abort(self, run: _TransferRun, error: BaseException) -> None:
        """Mark the session FAILED after an error outside the fragment uploads."""
        session = run.session
        if session.is_terminal:
            return

        next_index = len(session.records)
        if isinstance(error, TransferError):
            failure = error.with_context(next_index)
        else:
            failure = TransferError(f"Transfer aborted: {error}", fragment_index=next_index)
            failure.__cause__ = error
        session.mark_failed(next_index, failure)
        logger.error(f"Transfer session {session.session_id} aborted at fragment {next_index}: {error}")

    async def _watch_cancel(self, cancel_event: asyncio.Event, run: _TransferRun) -> None:
        await cancel_event.wait()
        logger.info(f"Cancellation requested for session {run.session.session_id}")
        run.cancel()

    async def _work(self, queue: asyncio.Queue, run: _TransferRun) -> None:
        """Worker loop: upload fragments from the queue until cancelled."""
        while True:
            fragment: Fragment = await queue.get()
            try:
                if run.stopped:
                    continue

                task = asyncio.ensure_future(self._upload_fragment(fragment, run.policy))
                run.active[fragment.index] = task
                try:
                    await asyncio.wait({task})
                finally:
                    run.active.pop(fragment.index, None)

                if task.cancelled():
                    logger.debug(f"Fragment {fragment.index} upload cancelled")
                    continue

                error = task.exception()
                if error is None:
                    run.complete(task.result())
                elif isinstance(error, TransferError):
                    run.fail(fragment.index, error.with_context(fragment.index))
                else:
                    logger.error(f"Unexpected error uploading fragment {fragment.index}: {error}", exc_info=error)
                    wrapped = TransferError(f"Unexpected error: {error}", fragment_index=fragment.index)
                    wrapped.__cause__ = error
                    run.fail(fragment.index, wrapped)
            finally:
                queue.task_done()

    async def _upload_fragment(self, fragment: Fragment, policy: ReplicationPolicy) -> UploadRecord:
        """
        Compute a fragment's root and upload it, retrying transient failures.

        Returns:
            UploadRecord for the fragment
        """
        root = await asyncio.to_thread(compute_root, fragment.payload)
        logger.debug(f"Fragment {fragment.index} range={fragment.byte_range} root={root}")

        attempts = self.config.fragment_retries + 1
        for attempt in range(attempts):
            try:
                receipt = await self.uploader.upload(
                    fragment.payload, policy, fragment_index=fragment.index, root=root
                )
                break
            except (TransportFailureError, FinalityTimeoutError) as e:
                if attempt + 1 >= attempts:
                    raise e.with_context(fragment.index, root)
                delay = self.config.retry_backoff_multiplier ** attempt
                logger.warning(
                    f"Fragment {fragment.index} failed (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)

        if receipt.root != root:
            raise TransferError(
                f"Uploader confirmed root {receipt.root}, expected {root}",
                fragment_index=fragment.index,
                root=root,
            )

        return UploadRecord(
            fragment_index=fragment.index,
            root=root,
            commit_handle=receipt.commit_handle,
            replication_achieved=receipt.replication_achieved,
            size=fragment.length,
        )
