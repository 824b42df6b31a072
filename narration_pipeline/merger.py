from __future__ import annotations

import io
import logging
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, List, Optional, Sequence, Tuple

from pydub import AudioSegment

from .duration import resolve_duration
from .errors import ConcatenationError, FormatMismatchError, NarrationError
from .scheduler import SynthesisResult
from .tts_engine import decode_audio

logger = logging.getLogger(__name__)

__all__ = ["AudioArtifact", "concatenate_results", "SUPPORTED_OUTPUT_FORMATS"]

SUPPORTED_OUTPUT_FORMATS = {"wav": "audio/wav"}
STAGED_EXTENSIONS = {
    "audio/wav": ".wav",
    "audio/wave": ".wav",
    "audio/x-wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/flac": ".flac",
}


@dataclass(frozen=True)
class AudioArtifact:
    audio_bytes: bytes
    duration_seconds: float
    format: str
    sample_rate: int
    channels: int
    chunk_count: int
    chunk_durations: Dict[int, float] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return SUPPORTED_OUTPUT_FORMATS.get(self.format, "application/octet-stream")

    @property
    def size_bytes(self) -> int:
        return len(self.audio_bytes)

    def write(self, output_path: Path) -> Path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(self.audio_bytes)
        return output_path


def concatenate_results(
    results: Sequence[SynthesisResult],
    *,
    output_format: str = "wav",
    silence_gap_ms: int = 0,
    staging_dir: Optional[Path] = None,
    keep_staged: bool = False,
    fallback_duration: Optional[float] = None,
) -> AudioArtifact:
    """
    Splice per-chunk audio into one container with a single header.

    Every result is demuxed to samples on its own (the inputs are complete WAV files,
    so their bytes cannot simply be appended) and the joined samples are exported
    once. All inputs must share sample rate, channel count and sample width.

    Staged buffers, and staged files when ``staging_dir`` is given, are released on
    every exit path. The returned duration is read back from the exported artifact.
    """
    if not results:
        raise ConcatenationError("No synthesis results provided for concatenation.")
    output_format = (output_format or "").lower()
    if output_format not in SUPPORTED_OUTPUT_FORMATS:
        raise ConcatenationError(f"Unsupported output format: {output_format}")
    _check_order(results)

    try:
        with _staged_units(results, staging_dir, keep_staged) as units:
            merged = _splice(units, silence_gap_ms)
        buffer = io.BytesIO()
        merged.export(buffer, format=output_format)
    except NarrationError:
        raise
    except Exception as exc:
        raise ConcatenationError(f"Failed to concatenate audio: {exc}") from exc

    audio_bytes = buffer.getvalue()
    if fallback_duration is None:
        fallback_duration = sum(result.duration_seconds for result in results)
    duration = resolve_duration(audio_bytes, output_format, fallback_duration)

    logger.info(
        "Concatenated %d chunks into %.1f MB of %s (%.2fs).",
        len(results),
        len(audio_bytes) / 1024 / 1024,
        output_format,
        duration,
    )
    return AudioArtifact(
        audio_bytes=audio_bytes,
        duration_seconds=duration,
        format=output_format,
        sample_rate=merged.frame_rate,
        channels=merged.channels,
        chunk_count=len(results),
        chunk_durations={result.index: result.duration_seconds for result in results},
    )


def _check_order(results: Sequence[SynthesisResult]) -> None:
    previous = None
    for result in results:
        if previous is not None and result.index <= previous:
            raise ConcatenationError(
                f"Results must be in ascending index order; got {result.index} after {previous}."
            )
        previous = result.index


def _splice(units: List[Tuple[SynthesisResult, BinaryIO]], silence_gap_ms: int) -> AudioSegment:
    merged: Optional[AudioSegment] = None
    reference: Optional[AudioSegment] = None

    for position, (result, handle) in enumerate(units):
        segment = decode_audio(handle.read(), result.content_type, default_rate=result.sample_rate)
        if reference is None:
            reference = segment
        else:
            _check_format(reference, segment, result.index)

        merged = segment if merged is None else merged + segment
        if position < len(units) - 1 and silence_gap_ms > 0:
            merged += _matching_silence(segment, silence_gap_ms)
        logger.debug("Spliced chunk %d (%d ms).", result.index, len(segment))

    return merged


def _check_format(reference: AudioSegment, segment: AudioSegment, index: int) -> None:
    for label, expected, actual in (
        ("frame rate", reference.frame_rate, segment.frame_rate),
        ("channels", reference.channels, segment.channels),
        ("sample width", reference.sample_width, segment.sample_width),
    ):
        if expected != actual:
            raise FormatMismatchError(
                f"Chunk {index} has {label} {actual}, expected {expected}",
                chunk_index=index,
            )


@contextmanager
def _staged_units(
    results: Sequence[SynthesisResult],
    staging_dir: Optional[Path],
    keep_staged: bool,
) -> Iterator[List[Tuple[SynthesisResult, BinaryIO]]]:
    with ExitStack() as stack:
        if staging_dir is not None:
            staging_dir = Path(staging_dir)
            staging_dir.mkdir(parents=True, exist_ok=True)

        units: List[Tuple[SynthesisResult, BinaryIO]] = []
        for result in results:
            if staging_dir is None:
                handle = stack.enter_context(io.BytesIO(result.audio_bytes))
            else:
                path = staging_dir / f"chunk_{result.index:03d}{_staged_extension(result)}"
                if not keep_staged:
                    stack.callback(_remove_staged, path)
                path.write_bytes(result.audio_bytes)
                handle = stack.enter_context(path.open("rb"))
            units.append((result, handle))
        yield units


def _staged_extension(result: SynthesisResult) -> str:
    base_type = (result.content_type or "").split(";")[0].strip().lower()
    return STAGED_EXTENSIONS.get(base_type, ".bin")


def _remove_staged(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except Exception as exc:  # pragma: no cover - best effort
        logger.warning("Failed to delete staged chunk %s: %s", path, exc)


def _matching_silence(segment: AudioSegment, duration_ms: int) -> AudioSegment:
    silence = AudioSegment.silent(duration=duration_ms, frame_rate=segment.frame_rate)
    silence = silence.set_channels(segment.channels)
    silence = silence.set_sample_width(segment.sample_width)
    return silence
