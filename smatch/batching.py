"""Chunking and wave-based fan-out of oracle calls."""
from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from .errors import OracleFailure

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def chunk(records: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split records into ceil(N/batch_size) contiguous, ordered chunks."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    return [list(records[i:i + batch_size]) for i in range(0, len(records), batch_size)]


def plan_waves(chunk_count: int, concurrency_limit: int) -> List[List[int]]:
    """Chunk indices grouped into sequential waves of at most concurrency_limit."""
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
    return [
        list(range(start, min(start + concurrency_limit, chunk_count)))
        for start in range(0, chunk_count, concurrency_limit)
    ]


@dataclass
class BatchRun(Generic[R]):
    """Per-chunk results in chunk order, appended wave by wave."""

    chunk_count: int
    wave_count: int
    completed: List[R] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return len(self.completed) == self.chunk_count


def _row_span(items: Sequence[object]) -> tuple[Optional[int], Optional[int]]:
    rows = [int(getattr(it, "row")) for it in items if hasattr(it, "row")]
    if not rows:
        return None, None
    return min(rows), max(rows)


def _as_oracle_failure(exc: Exception, index: int, items: Sequence[object]) -> OracleFailure:
    if isinstance(exc, OracleFailure) and exc.chunk_index is not None:
        return exc
    first, last = _row_span(items)
    failure = OracleFailure(str(exc), chunk_index=index, first_row=first, last_row=last)
    failure.__cause__ = exc
    return failure


def run_in_waves(
    chunks: Sequence[Sequence[T]],
    worker: Callable[[int, Sequence[T]], R],
    concurrency_limit: int,
    on_chunk: Optional[Callable[[int, R], None]] = None,
) -> BatchRun[R]:
    """Run ``worker(index, chunk)`` over all chunks in sequential waves.

    Each wave runs at most ``concurrency_limit`` workers concurrently and the
    next wave starts only after every call of the current one has returned.
    The first failing chunk aborts the remaining waves; its siblings in the
    same wave run to completion and their results are dropped.
    """
    waves = plan_waves(len(chunks), concurrency_limit)
    run: BatchRun[R] = BatchRun(chunk_count=len(chunks), wave_count=len(waves))
    if not chunks:
        return run
    LOGGER.info(
        "Processing %d batches in %d waves (concurrency %d)",
        len(chunks), len(waves), concurrency_limit,
    )
    with ThreadPoolExecutor(max_workers=concurrency_limit) as pool:
        for wave_no, wave in enumerate(waves, start=1):
            futures = [(i, pool.submit(worker, i, chunks[i])) for i in wave]
            wave_results: List[R] = []
            failure: Optional[OracleFailure] = None
            for i, fut in futures:
                try:
                    result = fut.result()
                except Exception as exc:
                    if failure is None:
                        failure = _as_oracle_failure(exc, i, chunks[i])
                    continue
                wave_results.append(result)
            if failure is not None:
                LOGGER.error("Wave %d/%d failed: %s", wave_no, len(waves), failure)
                raise failure
            for i, result in zip(wave, wave_results):
                if on_chunk is not None:
                    on_chunk(i, result)
                run.completed.append(result)
            LOGGER.info(
                "Processed batches %d to %d of %d",
                wave[0] + 1, wave[-1] + 1, len(chunks),
            )
    return run
