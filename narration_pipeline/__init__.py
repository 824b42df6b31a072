"""
Text-to-audiobook narration utilities.

This package exposes the building blocks used by the CLI entry point:

- Text segmentation into synthesis-sized chunks (`split_text`).
- Engine abstractions and concrete implementations (`tts_engine`).
- Bounded-concurrency synthesis of chunks (`scheduler`).
- Audio concatenation into a single artifact (`merger`).
- Duration estimates and probes (`duration`).
- End-to-end orchestration (`pipeline`) and run metadata (`metadata`).
"""

from .errors import (
    ConcatenationError,
    DurationProbeError,
    FormatMismatchError,
    IncompleteResultsError,
    InputValidationError,
    NarrationError,
    NoContentError,
    RunCancelledError,
    SynthesisError,
)
from .split_text import (
    MAX_CHUNK_CHARS,
    TextChunk,
    chunks_from_texts,
    hard_split_by_length,
    segment_text,
    split_into_sentences,
)
from .tts_engine import (
    DeepgramTtsEngine,
    GoogleGenAITtsEngine,
    MockTtsEngine,
    PollyTtsEngine,
    SynthesizedAudio,
    TtsEngine,
    VoiceParams,
)
from .scheduler import JobState, Progress, SynthesisJob, SynthesisResult, SynthesisScheduler
from .merger import AudioArtifact, concatenate_results
from .duration import TextStats, estimate_duration_seconds, probe_duration_seconds
from .pipeline import NarrationConfig, NarrationPipeline, NarrationRun, RunState
from .metadata import MetadataBuilder

__all__ = [
    "NarrationError",
    "InputValidationError",
    "NoContentError",
    "SynthesisError",
    "RunCancelledError",
    "IncompleteResultsError",
    "ConcatenationError",
    "FormatMismatchError",
    "DurationProbeError",
    "MAX_CHUNK_CHARS",
    "TextChunk",
    "segment_text",
    "split_into_sentences",
    "hard_split_by_length",
    "chunks_from_texts",
    "VoiceParams",
    "SynthesizedAudio",
    "TtsEngine",
    "DeepgramTtsEngine",
    "PollyTtsEngine",
    "GoogleGenAITtsEngine",
    "MockTtsEngine",
    "JobState",
    "Progress",
    "SynthesisJob",
    "SynthesisResult",
    "SynthesisScheduler",
    "AudioArtifact",
    "concatenate_results",
    "TextStats",
    "estimate_duration_seconds",
    "probe_duration_seconds",
    "NarrationConfig",
    "NarrationPipeline",
    "NarrationRun",
    "RunState",
    "MetadataBuilder",
]
