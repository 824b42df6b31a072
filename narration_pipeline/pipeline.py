from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .duration import (
    WORDS_PER_MINUTE,
    TextStats,
    describe_text,
    estimate_duration_seconds,
)
from .errors import InputValidationError, NoContentError
from .merger import AudioArtifact, concatenate_results
from .scheduler import DEFAULT_CONCURRENCY, ProgressCallback, SynthesisResult, SynthesisScheduler
from .split_text import MAX_CHUNK_CHARS, TextChunk, segment_text
from .tts_engine import TtsEngine, VoiceParams

logger = logging.getLogger(__name__)

__all__ = ["NarrationConfig", "RunState", "NarrationRun", "NarrationPipeline"]


@dataclass
class NarrationConfig:
    """
    Settings for one narration pipeline. A config can be shared between runs; nothing
    in it is mutated by the pipeline.
    """

    voice: VoiceParams = field(default_factory=VoiceParams)
    max_chunk_chars: int = MAX_CHUNK_CHARS
    concurrency: int = DEFAULT_CONCURRENCY
    request_timeout: Optional[float] = None
    max_text_chars: int = 2_000_000
    silence_gap_ms: int = 0
    output_format: str = "wav"
    staging_dir: Optional[Path] = None
    keep_staged: bool = False
    words_per_minute: int = WORDS_PER_MINUTE


class RunState(str, Enum):
    IDLE = "idle"
    SEGMENTING = "segmenting"
    SYNTHESIZING = "synthesizing"
    CONCATENATING = "concatenating"
    COMPLETE = "complete"
    FAILED = "failed"


_RUN_TRANSITIONS = {
    RunState.IDLE: {RunState.SEGMENTING, RunState.SYNTHESIZING, RunState.FAILED},
    RunState.SEGMENTING: {RunState.SYNTHESIZING, RunState.FAILED},
    RunState.SYNTHESIZING: {RunState.CONCATENATING, RunState.FAILED},
    RunState.CONCATENATING: {RunState.COMPLETE, RunState.FAILED},
}

StateCallback = Callable[[RunState], None]


@dataclass
class NarrationRun:
    state: RunState = RunState.IDLE
    history: List[RunState] = field(default_factory=lambda: [RunState.IDLE])
    state_callback: Optional[StateCallback] = None
    error: Optional[BaseException] = None

    def advance(self, new_state: RunState) -> None:
        if new_state not in _RUN_TRANSITIONS.get(self.state, set()):
            raise RuntimeError(f"Illegal run transition: {self.state.value} -> {new_state.value}")
        logger.debug("Run state %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)
        if self.state_callback is not None:
            self.state_callback(new_state)

    def fail(self, exc: BaseException) -> None:
        self.error = exc
        if self.state not in (RunState.COMPLETE, RunState.FAILED):
            self.advance(RunState.FAILED)


class NarrationPipeline:
    """
    Text in, one narrated WAV artifact out.

    Segments the text, synthesizes the chunks through the injected engine with bounded
    concurrency, then splices the ordered results. Any synthesis failure aborts the run
    and no artifact is produced.
    """

    def __init__(self, engine: TtsEngine, config: Optional[NarrationConfig] = None) -> None:
        self.engine = engine
        self.config = config or NarrationConfig()

    def segment(self, text: str) -> List[TextChunk]:
        return segment_text(text, self.config.max_chunk_chars)

    def estimate(self, text: str) -> TextStats:
        return describe_text(text, self.segment(text), self.config.words_per_minute)

    def run(
        self,
        text: str,
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        state_callback: Optional[StateCallback] = None,
    ) -> AudioArtifact:
        run = NarrationRun(state_callback=state_callback)
        try:
            self._validate_text(text)
            run.advance(RunState.SEGMENTING)
            chunks = self.segment(text)
            if not chunks:
                raise NoContentError()
            logger.info("Segmented %d characters into %d chunks.", len(text), len(chunks))
            return self._narrate(run, chunks, text, progress_callback, cancel_event)
        except BaseException as exc:
            run.fail(exc)
            raise

    def run_chunks(
        self,
        chunks: Sequence[TextChunk],
        *,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        state_callback: Optional[StateCallback] = None,
    ) -> AudioArtifact:
        run = NarrationRun(state_callback=state_callback)
        try:
            if not chunks:
                raise NoContentError()
            text = "\n\n".join(chunk.text for chunk in chunks)
            return self._narrate(run, chunks, text, progress_callback, cancel_event)
        except BaseException as exc:
            run.fail(exc)
            raise

    def preview(
        self, text: str, *, cancel_event: Optional[threading.Event] = None
    ) -> AudioArtifact:
        """
        Narrate only the first chunk, for a quick listen before the full run.
        """
        self._validate_text(text)
        chunks = self.segment(text)
        if not chunks:
            raise NoContentError()
        first = chunks[0]
        logger.info("Generating preview from chunk 0 of %d.", len(chunks))
        results = self._scheduler(None, cancel_event).run([first])
        return concatenate_results(
            results,
            output_format=self.config.output_format,
            fallback_duration=estimate_duration_seconds(first.text, self.config.words_per_minute),
        )

    def _narrate(
        self,
        run: NarrationRun,
        chunks: Sequence[TextChunk],
        text: str,
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> AudioArtifact:
        run.advance(RunState.SYNTHESIZING)
        results = self._scheduler(progress_callback, cancel_event).run(chunks)

        run.advance(RunState.CONCATENATING)
        artifact = self._concatenate(results, text)

        run.advance(RunState.COMPLETE)
        return artifact

    def _scheduler(
        self,
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> SynthesisScheduler:
        config = self.config
        return SynthesisScheduler(
            self.engine,
            config.voice,
            concurrency=config.concurrency,
            request_timeout=config.request_timeout,
            progress_callback=progress_callback,
            cancel_event=cancel_event,
        )

    def _concatenate(self, results: Sequence[SynthesisResult], text: str) -> AudioArtifact:
        config = self.config
        return concatenate_results(
            results,
            output_format=config.output_format,
            silence_gap_ms=config.silence_gap_ms,
            staging_dir=config.staging_dir,
            keep_staged=config.keep_staged,
            fallback_duration=estimate_duration_seconds(text, config.words_per_minute),
        )

    def _validate_text(self, text: str) -> None:
        if text is None:
            raise NoContentError()
        if len(text) > self.config.max_text_chars:
            raise InputValidationError(
                f"Text has {len(text)} characters; the limit is {self.config.max_text_chars}.",
                kind="oversized_input",
            )
