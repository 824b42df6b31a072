from __future__ import annotations

from typing import Optional

__all__ = [
    "STAGE_VALIDATION",
    "STAGE_SEGMENTING",
    "STAGE_SYNTHESIS",
    "STAGE_CONCATENATION",
    "STAGE_DURATION",
    "ERROR_KIND_AUTH",
    "ERROR_KIND_RATE_LIMIT",
    "ERROR_KIND_OVERSIZED_INPUT",
    "ERROR_KIND_INVALID",
    "ERROR_KIND_NETWORK",
    "ERROR_KIND_TIMEOUT",
    "ERROR_KIND_EMPTY_AUDIO",
    "ERROR_KIND_CANCELLED",
    "ERROR_KIND_FORMAT_MISMATCH",
    "ERROR_KIND_UNKNOWN",
    "NarrationError",
    "InputValidationError",
    "NoContentError",
    "SynthesisError",
    "RunCancelledError",
    "IncompleteResultsError",
    "ConcatenationError",
    "FormatMismatchError",
    "DurationProbeError",
]

STAGE_VALIDATION = "validation"
STAGE_SEGMENTING = "segmenting"
STAGE_SYNTHESIS = "synthesis"
STAGE_CONCATENATION = "concatenation"
STAGE_DURATION = "duration"

ERROR_KIND_AUTH = "auth"
ERROR_KIND_RATE_LIMIT = "rate_limit"
ERROR_KIND_OVERSIZED_INPUT = "oversized_input"
ERROR_KIND_INVALID = "invalid"
ERROR_KIND_NETWORK = "network"
ERROR_KIND_TIMEOUT = "timeout"
ERROR_KIND_EMPTY_AUDIO = "empty_audio"
ERROR_KIND_CANCELLED = "cancelled"
ERROR_KIND_FORMAT_MISMATCH = "format_mismatch"
ERROR_KIND_UNKNOWN = "unknown"


class NarrationError(RuntimeError):
    """
    Root of every error raised by the narration pipeline.

    ``stage`` tells the caller which part of the run failed so that "narration failed"
    can be told apart from "stitching failed" without inspecting the message.
    """

    stage = STAGE_VALIDATION

    def __init__(
        self,
        message: str,
        *,
        kind: str = ERROR_KIND_UNKNOWN,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.kind = str(kind or ERROR_KIND_UNKNOWN).strip().lower()
        if stage:
            self.stage = stage


class InputValidationError(NarrationError, ValueError):
    stage = STAGE_VALIDATION

    def __init__(self, message: str, *, kind: str = ERROR_KIND_INVALID) -> None:
        super().__init__(message, kind=kind)


class NoContentError(InputValidationError):
    def __init__(self, message: str = "No text content to narrate.") -> None:
        super().__init__(message)


class SynthesisError(NarrationError):
    """
    Failure of the synthesis service for one chunk. Fatal to the whole run.
    """

    stage = STAGE_SYNTHESIS

    def __init__(
        self,
        message: str,
        *,
        kind: str = ERROR_KIND_UNKNOWN,
        chunk_index: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, kind=kind)
        self.chunk_index = chunk_index
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.chunk_index is None:
            return message
        return f"chunk {self.chunk_index}: {message}"


class RunCancelledError(NarrationError):
    stage = STAGE_SYNTHESIS

    def __init__(self, message: str = "Narration run was cancelled.") -> None:
        super().__init__(message, kind=ERROR_KIND_CANCELLED)


class IncompleteResultsError(NarrationError):
    stage = STAGE_SYNTHESIS

    def __init__(self, missing_indices) -> None:
        self.missing_indices = sorted(missing_indices)
        preview = ", ".join(str(i) for i in self.missing_indices[:10])
        super().__init__(f"Synthesis results missing for chunk(s): {preview}")


class ConcatenationError(NarrationError):
    stage = STAGE_CONCATENATION


class FormatMismatchError(ConcatenationError):
    def __init__(self, message: str, *, chunk_index: Optional[int] = None) -> None:
        super().__init__(message, kind=ERROR_KIND_FORMAT_MISMATCH)
        self.chunk_index = chunk_index


class DurationProbeError(NarrationError):
    stage = STAGE_DURATION
