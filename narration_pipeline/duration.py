from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass
from typing import Sequence

from pydub import AudioSegment

from .errors import DurationProbeError
from .split_text import TextChunk

logger = logging.getLogger(__name__)

__all__ = [
    "WORDS_PER_MINUTE",
    "TextStats",
    "count_words",
    "estimate_duration_seconds",
    "probe_duration_seconds",
    "resolve_duration",
    "describe_text",
]

WORDS_PER_MINUTE = 150


@dataclass(frozen=True)
class TextStats:
    characters: int
    words: int
    chunks: int
    estimated_seconds: float

    @property
    def estimated_minutes(self) -> int:
        return int(math.ceil(self.estimated_seconds / 60))


def count_words(text: str) -> int:
    return len((text or "").split())


def estimate_duration_seconds(text: str, words_per_minute: int = WORDS_PER_MINUTE) -> float:
    """
    Rough pre-synthesis narration length. Only meant for progress text.
    """
    if words_per_minute <= 0:
        raise ValueError(f"words_per_minute must be positive, got {words_per_minute}")
    return count_words(text) / words_per_minute * 60


def probe_duration_seconds(audio_bytes: bytes, fmt: str = "wav") -> float:
    """
    Read the duration from the artifact's own header and sample count.
    """
    if not audio_bytes:
        raise DurationProbeError("Cannot probe duration of empty audio.")
    try:
        segment = AudioSegment.from_file(io.BytesIO(audio_bytes), format=fmt)
    except Exception as exc:
        raise DurationProbeError(f"Unable to read {fmt} metadata: {exc}") from exc
    return segment.duration_seconds


def resolve_duration(audio_bytes: bytes, fmt: str, fallback_seconds: float) -> float:
    try:
        return probe_duration_seconds(audio_bytes, fmt)
    except DurationProbeError as exc:
        logger.warning(
            "Duration probe failed (%s); falling back to estimate of %.1fs.",
            exc,
            fallback_seconds,
        )
        return fallback_seconds


def describe_text(
    text: str,
    chunks: Sequence[TextChunk],
    words_per_minute: int = WORDS_PER_MINUTE,
) -> TextStats:
    return TextStats(
        characters=len(text or ""),
        words=count_words(text),
        chunks=len(chunks),
        estimated_seconds=estimate_duration_seconds(text, words_per_minute),
    )
