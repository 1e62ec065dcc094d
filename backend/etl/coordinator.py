"""
Concurrent Extraction Coordinator
=================================
Dispatches chunks to the extraction backend under a bounded worker pool.
Every chunk is settled (success or failure) before the batch result is
built; one chunk failing never aborts the others.
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from models import Chunk, ChunkMetadata, ChunkResult, ExtractionOutput
from .config import CoordinatorSettings
from .exceptions import MissingVitalFieldError
from .ports import ExtractionBackend

logger = logging.getLogger(__name__)


class BackpressureGate:
    """Shared cooldown deadline; workers may extend it but never shorten it."""

    def __init__(self, max_wait_step: float = 2.0):
        self.max_wait_step = max_wait_step
        self._deadline = 0.0
        self._lock = asyncio.Lock()

    @property
    def deadline(self) -> float:
        return self._deadline

    async def extend(self, delay: float) -> float:
        async with self._lock:
            candidate = time.monotonic() + delay
            if candidate > self._deadline:
                self._deadline = candidate
            return self._deadline

    async def wait(self, worker_id: str = "") -> float:
        """Blocks until the deadline passes; returns seconds waited."""
        started = time.monotonic()
        logged = False
        while True:
            async with self._lock:
                remaining = self._deadline - time.monotonic()
            if remaining <= 0:
                return time.monotonic() - started
            if not logged:
                logger.info(f"{worker_id or 'worker'} waiting {remaining:.1f}s for rate-limit cooldown")
                logged = True
            await asyncio.sleep(min(remaining, self.max_wait_step))


@dataclass
class ChunkSuccess:
    chunk_id: str
    output: ExtractionOutput
    duration: float
    worker_id: str


@dataclass
class ChunkFailure:
    chunk_id: str
    error: str
    duration: float
    worker_id: str


@dataclass
class ProcessingMetrics:
    total_duration: float = 0.0
    chunks_processed: int = 0
    success_rate: float = 100.0
    top_comments_count: int = 0
    average_chunk_time: float = 0.0
    fastest_chunk: float = 0.0
    slowest_chunk: float = 0.0


@dataclass
class ProcessingResult:
    successes: List[ChunkSuccess] = field(default_factory=list)
    failures: List[ChunkFailure] = field(default_factory=list)
    metrics: ProcessingMetrics = field(default_factory=ProcessingMetrics)

    @property
    def outputs(self) -> List[ExtractionOutput]:
        return [s.output for s in self.successes]


def validate_output(chunk_id: str, output: ExtractionOutput) -> None:
    """Raises when a mention lacks a vital field; warns on soft gaps."""
    missing: List[str] = []
    for mention in output.mentions:
        for name in mention.missing_vital_fields():
            if name not in missing:
                missing.append(name)
        if mention.food and mention.is_menu_item is None:
            logger.warning(f"Chunk {chunk_id}: food mention '{mention.food}' has no is_menu_item flag")
    if missing:
        raise MissingVitalFieldError(chunk_id, missing)


class ConcurrentExtractionCoordinator:
    """Runs the extraction backend over chunks with a bounded pool."""

    def __init__(self, settings: Optional[CoordinatorSettings] = None):
        self.settings = settings or CoordinatorSettings()
        self._active = 0
        self._pending = 0

    def worker_id_for(self, index: int) -> str:
        return f"worker-{index % self.settings.worker_id_space}"

    def queue_status(self) -> Dict[str, int]:
        return {"active": self._active, "pending": self._pending, "limit": self.settings.concurrency}

    async def _run_chunk(
        self,
        index: int,
        chunk: Chunk,
        backend: ExtractionBackend,
        gate: BackpressureGate,
        semaphore: asyncio.Semaphore,
    ):
        worker_id = self.worker_id_for(index)
        async with semaphore:
            self._pending -= 1
            self._active += 1
            started = time.monotonic()
            try:
                await gate.wait(worker_id)
                delay = backend.throttle_delay()
                if delay and delay > 0:
                    await gate.extend(delay)
                    await gate.wait(worker_id)

                output = await backend.extract(chunk, worker_id)
                validate_output(chunk.chunk_id, output)
                duration = time.monotonic() - started
                logger.debug(f"{worker_id} finished {chunk.chunk_id} in {duration:.2f}s")
                return ChunkSuccess(chunk.chunk_id, output, duration, worker_id)
            except Exception as e:
                duration = time.monotonic() - started
                logger.error(f"{worker_id} failed {chunk.chunk_id}: {e}")
                return ChunkFailure(chunk.chunk_id, str(e), duration, worker_id)
            finally:
                self._active -= 1

    def _metrics(
        self,
        successes: List[ChunkSuccess],
        failures: List[ChunkFailure],
        metadata_by_id: Dict[str, ChunkMetadata],
        total_duration: float,
    ) -> ProcessingMetrics:
        processed = len(successes) + len(failures)
        durations = [s.duration for s in successes]
        engaged = sum(
            1
            for s in successes
            if s.chunk_id in metadata_by_id
            and metadata_by_id[s.chunk_id].root_comment_score > self.settings.engaged_score_threshold
        )
        return ProcessingMetrics(
            total_duration=total_duration,
            chunks_processed=processed,
            success_rate=(len(successes) / processed * 100) if processed else 100.0,
            top_comments_count=engaged,
            average_chunk_time=sum(durations) / len(durations) if durations else 0.0,
            fastest_chunk=min(durations) if durations else 0.0,
            slowest_chunk=max(durations) if durations else 0.0,
        )

    async def process_concurrent(self, chunk_result: ChunkResult, backend: ExtractionBackend) -> ProcessingResult:
        """Extracts every chunk and aggregates successes, failures and timings."""
        started = time.monotonic()
        chunks = chunk_result.chunks
        metadata_by_id = {m.chunk_id: m for m in chunk_result.metadata}
        if not chunks:
            return ProcessingResult()

        gate = BackpressureGate(self.settings.max_wait_step)
        semaphore = asyncio.Semaphore(self.settings.concurrency)
        self._pending = len(chunks)
        logger.info(f"Dispatching {len(chunks)} chunks across {self.settings.concurrency} workers")

        settled = await asyncio.gather(
            *(self._run_chunk(i, chunk, backend, gate, semaphore) for i, chunk in enumerate(chunks)),
            return_exceptions=True,
        )

        successes: List[ChunkSuccess] = []
        failures: List[ChunkFailure] = []
        for chunk, outcome in zip(chunks, settled):
            if isinstance(outcome, ChunkSuccess):
                successes.append(outcome)
            elif isinstance(outcome, ChunkFailure):
                failures.append(outcome)
            else:
                failures.append(ChunkFailure(chunk.chunk_id, repr(outcome), 0.0, ""))

        metrics = self._metrics(successes, failures, metadata_by_id, time.monotonic() - started)
        logger.info(
            f"Extraction settled: {len(successes)} ok, {len(failures)} failed "
            f"({metrics.success_rate:.0f}% in {metrics.total_duration:.1f}s)"
        )
        return ProcessingResult(successes=successes, failures=failures, metrics=metrics)
