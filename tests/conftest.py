import io
import threading
from typing import Dict, List, Optional

import pytest
from pydub import AudioSegment

from narration_pipeline.errors import SynthesisError
from narration_pipeline.scheduler import SynthesisResult
from narration_pipeline.tts_engine import SynthesizedAudio, TtsEngine, VoiceParams


def tone_wav(value: int, duration_ms: int, frame_rate: int = 24000, channels: int = 1) -> bytes:
    frames = frame_rate * duration_ms // 1000
    sample = int(value).to_bytes(2, "little", signed=True)
    segment = AudioSegment(
        data=sample * frames * channels,
        sample_width=2,
        frame_rate=frame_rate,
        channels=channels,
    )
    buffer = io.BytesIO()
    segment.export(buffer, format="wav")
    return buffer.getvalue()


def make_result(index: int, duration_ms: int = 500, *, value: int = 100, frame_rate: int = 24000, channels: int = 1):
    audio = SynthesizedAudio(tone_wav(value, duration_ms, frame_rate, channels), "audio/wav")
    return SynthesisResult.from_audio(index, audio, default_rate=frame_rate)


class ToneEngine(TtsEngine):
    """
    Returns a constant-valued tone per text so that splice order is visible in the bytes.

    ``fail_on`` maps text to an exception to raise, ``hold`` maps text to an event the
    call waits on before answering.
    """

    def __init__(
        self,
        *,
        fail_on: Optional[Dict[str, Exception]] = None,
        hold: Optional[Dict[str, threading.Event]] = None,
        on_done: Optional[Dict[str, threading.Event]] = None,
        duration_ms: int = 100,
    ) -> None:
        self.fail_on = fail_on or {}
        self.hold = hold or {}
        self.on_done = on_done or {}
        self.duration_ms = duration_ms
        self.lock = threading.Lock()
        self.requested: List[str] = []
        self.completed: List[str] = []

    def _request_audio(self, text, voice: VoiceParams, *, timeout):
        with self.lock:
            self.requested.append(text)
        if text in self.hold:
            assert self.hold[text].wait(timeout=5), f"{text!r} was never released"
        if text in self.fail_on:
            raise self.fail_on[text]
        audio = SynthesizedAudio(
            tone_wav(sum(map(ord, text)) % 30000, self.duration_ms, voice.sample_rate),
            "audio/wav",
        )
        with self.lock:
            self.completed.append(text)
        if text in self.on_done:
            self.on_done[text].set()
        return audio


@pytest.fixture
def tone_engine():
    return ToneEngine()


@pytest.fixture
def network_failure():
    return SynthesisError("connection reset", kind="network")
