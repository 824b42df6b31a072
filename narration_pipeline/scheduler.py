"""Bounded-concurrency synthesis of text chunks.

A fixed pool of worker threads claims chunks from a shared cursor, sends each one to
the TTS engine and stores the decoded result under the chunk's index. The first
failure aborts the whole batch. Results are always returned in ascending index order,
whatever order the service answered in.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .errors import (
    ERROR_KIND_TIMEOUT,
    ERROR_KIND_UNKNOWN,
    IncompleteResultsError,
    InputValidationError,
    NoContentError,
    RunCancelledError,
    SynthesisError,
)
from .split_text import TextChunk
from .tts_engine import SynthesizedAudio, TtsEngine, VoiceParams, decode_audio

logger = logging.getLogger(__name__)

__all__ = [
    "DEFAULT_CONCURRENCY",
    "JobState",
    "SynthesisJob",
    "SynthesisResult",
    "Progress",
    "SynthesisScheduler",
]

DEFAULT_CONCURRENCY = 3


class JobState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


_ALLOWED_TRANSITIONS = {
    JobState.PENDING: {JobState.IN_FLIGHT, JobState.SKIPPED},
    JobState.IN_FLIGHT: {JobState.DONE, JobState.FAILED},
}


@dataclass
class SynthesisJob:
    chunk: TextChunk
    state: JobState = JobState.PENDING
    started_at: Optional[float] = None

    @property
    def index(self) -> int:
        return self.chunk.index

    def transition(self, new_state: JobState) -> None:
        if new_state not in _ALLOWED_TRANSITIONS.get(self.state, set()):
            raise RuntimeError(
                f"Illegal job transition for chunk {self.index}: {self.state.value} -> {new_state.value}"
            )
        self.state = new_state
        if new_state is JobState.IN_FLIGHT:
            self.started_at = time.monotonic()


@dataclass(frozen=True)
class SynthesisResult:
    index: int
    audio_bytes: bytes
    content_type: str
    sample_rate: int
    channels: int
    sample_width: int
    duration_seconds: float

    @classmethod
    def from_audio(cls, index: int, audio: SynthesizedAudio, *, default_rate: int) -> "SynthesisResult":
        segment = decode_audio(audio.audio_bytes, audio.content_type, default_rate=default_rate)
        return cls(
            index=index,
            audio_bytes=audio.audio_bytes,
            content_type=audio.content_type,
            sample_rate=segment.frame_rate,
            channels=segment.channels,
            sample_width=segment.sample_width,
            duration_seconds=segment.duration_seconds,
        )


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int
    chunk_index: int

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(1.0, self.completed / self.total)


ProgressCallback = Callable[[Progress], None]


class SynthesisScheduler:
    """
    Dispatches chunks to a ``TtsEngine`` with at most ``concurrency`` requests in flight.

    The engine is injected so tests can substitute a deterministic stub. Each call to
    ``run`` is independent; no state is kept between runs.
    """

    def __init__(
        self,
        engine: TtsEngine,
        voice: Optional[VoiceParams] = None,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        request_timeout: Optional[float] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        poll_interval: float = 0.05,
    ) -> None:
        if concurrency < 1:
            raise InputValidationError(f"concurrency must be at least 1, got {concurrency}.")
        if request_timeout is not None and request_timeout <= 0:
            raise InputValidationError(f"request_timeout must be positive, got {request_timeout}.")
        self.engine = engine
        self.voice = voice or VoiceParams()
        self.concurrency = concurrency
        self.request_timeout = request_timeout
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval

    def run(self, chunks: Sequence[TextChunk]) -> List[SynthesisResult]:
        self._validate(chunks)
        batch = _Batch(self, chunks)
        return batch.execute()

    def _validate(self, chunks: Sequence[TextChunk]) -> None:
        if not chunks or all(chunk.is_blank for chunk in chunks):
            raise NoContentError("No non-empty chunks to synthesize.")

        seen = set()
        for chunk in chunks:
            if chunk.index in seen:
                raise InputValidationError(f"Duplicate chunk index {chunk.index}.")
            seen.add(chunk.index)
            if len(chunk.text) > self.engine.max_input_chars:
                raise InputValidationError(
                    f"Chunk {chunk.index} has {len(chunk.text)} characters; "
                    f"the limit is {self.engine.max_input_chars}.",
                    kind="oversized_input",
                )


class _Batch:
    """
    Bookkeeping for a single scheduler run: jobs, the shared cursor and the results.
    """

    def __init__(self, scheduler: SynthesisScheduler, chunks: Sequence[TextChunk]) -> None:
        self.scheduler = scheduler
        self.jobs = [SynthesisJob(chunk) for chunk in chunks]
        self.total = len(self.jobs)
        self.cursor = 0
        self.completed = 0
        self.results: Dict[int, SynthesisResult] = {}
        self.error: Optional[BaseException] = None
        self.lock = threading.Lock()
        self.abort = threading.Event()

    def execute(self) -> List[SynthesisResult]:
        scheduler = self.scheduler
        worker_count = min(scheduler.concurrency, self.total)
        logger.info(
            "Synthesizing %d chunks with %d workers (engine=%s).",
            self.total,
            worker_count,
            scheduler.engine.descriptor(),
        )
        started = time.monotonic()

        executor = ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="synth")
        clean_exit = False
        try:
            pending = {executor.submit(self._worker) for _ in range(worker_count)}
            while pending:
                done, pending = wait(
                    pending,
                    timeout=scheduler.poll_interval,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    future.result()
                if self.error is not None:
                    break
                if self._cancelled():
                    self.abort.set()
                    raise RunCancelledError()
                self._check_request_timeouts()
            clean_exit = self.error is None
        finally:
            self.abort.set()
            # In-flight calls of an aborted batch are not awaited; their results are discarded.
            executor.shutdown(wait=clean_exit, cancel_futures=True)

        if self.error is not None:
            logger.error("Synthesis aborted: %s", self.error)
            raise self.error

        expected = {job.index for job in self.jobs if job.state is not JobState.SKIPPED}
        missing = expected - set(self.results)
        if missing and self._cancelled():
            raise RunCancelledError()
        if missing:
            raise IncompleteResultsError(missing)

        logger.info(
            "Synthesized %d chunks in %.2fs.",
            len(self.results),
            time.monotonic() - started,
        )
        return [self.results[index] for index in sorted(self.results)]

    def _worker(self) -> None:
        scheduler = self.scheduler
        while True:
            job = self._claim()
            if job is None:
                return
            if job.chunk.is_blank:
                self._skip(job)
                continue

            logger.debug("Chunk %d: requesting %d chars.", job.index, len(job.chunk.text))
            try:
                audio = scheduler.engine.synthesize(
                    job.chunk.text,
                    scheduler.voice,
                    timeout=scheduler.request_timeout,
                )
                result = SynthesisResult.from_audio(
                    job.index, audio, default_rate=scheduler.voice.sample_rate
                )
            except Exception as exc:
                self._fail(job, exc)
                return
            self._complete(job, result)

    def _claim(self) -> Optional[SynthesisJob]:
        with self.lock:
            if self.abort.is_set() or self._cancelled() or self.cursor >= self.total:
                return None
            job = self.jobs[self.cursor]
            self.cursor += 1
            if job.chunk.is_blank:
                return job
            job.transition(JobState.IN_FLIGHT)
            return job

    def _skip(self, job: SynthesisJob) -> None:
        logger.debug("Chunk %d is blank; skipping.", job.index)
        with self.lock:
            job.transition(JobState.SKIPPED)
            self.completed += 1
            self._report(job.index)

    def _complete(self, job: SynthesisJob, result: SynthesisResult) -> None:
        with self.lock:
            job.transition(JobState.DONE)
            if self.abort.is_set():
                return
            self.results[job.index] = result
            self.completed += 1
            logger.debug(
                "Chunk %d done (%.2fs audio, %d/%d).",
                job.index,
                result.duration_seconds,
                self.completed,
                self.total,
            )
            self._report(job.index)

    def _fail(self, job: SynthesisJob, exc: Exception) -> None:
        with self.lock:
            job.transition(JobState.FAILED)
            if self.error is None:
                self.error = _as_synthesis_error(exc, job.index)
            self.abort.set()

    def _report(self, chunk_index: int) -> None:
        callback = self.scheduler.progress_callback
        if callback is not None:
            callback(Progress(completed=self.completed, total=self.total, chunk_index=chunk_index))

    def _cancelled(self) -> bool:
        event = self.scheduler.cancel_event
        return event is not None and event.is_set()

    def _check_request_timeouts(self) -> None:
        limit = self.scheduler.request_timeout
        if limit is None:
            return
        now = time.monotonic()
        with self.lock:
            for job in self.jobs:
                if job.state is not JobState.IN_FLIGHT or job.started_at is None:
                    continue
                if now - job.started_at > limit and self.error is None:
                    self.error = SynthesisError(
                        f"No response within {limit:.1f}s",
                        kind=ERROR_KIND_TIMEOUT,
                        chunk_index=job.index,
                    )
                    self.abort.set()


def _as_synthesis_error(exc: Exception, index: int) -> SynthesisError:
    if isinstance(exc, SynthesisError):
        if exc.chunk_index is None:
            exc.chunk_index = index
        return exc
    error = SynthesisError(
        f"{type(exc).__name__}: {exc}",
        kind=ERROR_KIND_UNKNOWN,
        chunk_index=index,
    )
    error.__cause__ = exc
    return error
