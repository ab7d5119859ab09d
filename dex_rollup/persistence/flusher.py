"""Atomic per-block commits with bounded retry.

Each block's changes are committed as one :class:`CommitBatch`. Transient
failures are retried via tenacity with exponential backoff + jitter, bounded
both by an attempt count and by a wall-clock deadline, so a slow database
can delay the next block but never stall ingestion indefinitely. Batches
carry full running totals, so retrying a half-failed commit is idempotent.

Corruption errors are not retried and propagate to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential_jitter,
)

from dex_rollup.core.records import CommitBatch
from dex_rollup.core.utils.logging_config import get_logger
from dex_rollup.persistence.ports import SnapshotRepository, TransientPersistenceError

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class FlushOutcome:
    """Result of one flush: committed or still pending after retries."""

    block_number: int
    success: bool
    attempts: int = 0
    elapsed_seconds: float = 0.0
    error: Optional[str] = None


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "persistence_retry",
        attempt=retry_state.attempt_number,
        next_sleep=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc) if exc else None,
    )


class SnapshotFlusher:
    """Commits batches through a :class:`SnapshotRepository` with retry.

    Args:
        repository: Target persistence adapter.
        max_attempts: Attempts per flush, first try included.
        deadline_seconds: Wall-clock budget per flush.
        backoff_initial / backoff_max / backoff_jitter: Wait parameters for
            ``wait_exponential_jitter``.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        repository: SnapshotRepository,
        max_attempts: int = 5,
        deadline_seconds: float = 30.0,
        backoff_initial: float = 0.5,
        backoff_max: float = 10.0,
        backoff_jitter: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.repository = repository
        self.max_attempts = max_attempts
        self.deadline_seconds = deadline_seconds
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.backoff_jitter = backoff_jitter
        self._sleep = sleep
        self.committed_block: Optional[int] = None

    def load_committed_block(self) -> Optional[int]:
        """Read the durable block height from the repository."""
        self.committed_block = self.read(self.repository.get_last_committed_block)
        return self.committed_block

    def _retrying(self, deadline_seconds: Optional[float] = None, blocking: bool = False) -> Retrying:
        deadline = self.deadline_seconds if deadline_seconds is None else deadline_seconds
        stop = stop_after_delay(deadline)
        if not blocking:
            stop = stop | stop_after_attempt(self.max_attempts)
        return Retrying(
            retry=retry_if_exception_type(TransientPersistenceError),
            stop=stop,
            wait=wait_exponential_jitter(
                initial=self.backoff_initial,
                max=self.backoff_max,
                jitter=self.backoff_jitter,
            ),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

    def read(self, fn: Callable[..., T], *args: Any) -> T:
        """Call a repository read with the same retry policy as commits.

        Raises:
            TransientPersistenceError: When retries are exhausted.
        """
        return self._retrying()(fn, *args)

    def flush(
        self,
        batch: CommitBatch,
        deadline_seconds: Optional[float] = None,
        blocking: bool = False,
    ) -> FlushOutcome:
        """Commit *batch*, retrying transient failures.

        Args:
            batch: Everything to persist for ``batch.block_number``.
            deadline_seconds: Override of the per-flush deadline.
            blocking: Retry until the deadline with no attempt cap (backlog
                drain and shutdown).

        Returns:
            FlushOutcome with ``success=False`` when retries were exhausted.

        Raises:
            PersistenceCorruptionError: Propagated unretried.
        """
        started = time.monotonic()
        attempts = 0

        try:
            for attempt in self._retrying(deadline_seconds, blocking):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self.repository.commit(batch)
        except TransientPersistenceError as exc:
            elapsed = time.monotonic() - started
            logger.error(
                "flush_failed",
                block_number=batch.block_number,
                attempts=attempts,
                elapsed_seconds=round(elapsed, 3),
                error=str(exc),
            )
            return FlushOutcome(
                block_number=batch.block_number,
                success=False,
                attempts=attempts,
                elapsed_seconds=elapsed,
                error=str(exc),
            )

        elapsed = time.monotonic() - started
        if self.committed_block is None or batch.block_number > self.committed_block:
            self.committed_block = batch.block_number
        logger.info(
            "flush_committed",
            block_number=batch.block_number,
            volume_snapshots=len(batch.volume_snapshots),
            price_snapshots=len(batch.price_snapshots),
            transactions=len(batch.transactions),
            attempts=attempts,
            elapsed_seconds=round(elapsed, 3),
        )
        return FlushOutcome(
            block_number=batch.block_number,
            success=True,
            attempts=attempts,
            elapsed_seconds=elapsed,
        )
