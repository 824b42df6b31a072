from __future__ import annotations

import base64
import io
import logging
import math
import mimetypes
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests
from pydub import AudioSegment

from .errors import (
    ERROR_KIND_AUTH,
    ERROR_KIND_EMPTY_AUDIO,
    ERROR_KIND_INVALID,
    ERROR_KIND_NETWORK,
    ERROR_KIND_OVERSIZED_INPUT,
    ERROR_KIND_RATE_LIMIT,
    ERROR_KIND_TIMEOUT,
    ERROR_KIND_UNKNOWN,
    SynthesisError,
)
from .split_text import MAX_CHUNK_CHARS

logger = logging.getLogger(__name__)

__all__ = [
    "VoiceParams",
    "SynthesizedAudio",
    "TtsEngine",
    "DeepgramTtsEngine",
    "PollyTtsEngine",
    "GoogleGenAITtsEngine",
    "MockTtsEngine",
    "decode_audio",
    "content_type_for_container",
]

ENCODINGS = {"linear16", "mulaw", "alaw", "mp3", "opus", "flac", "aac"}
CONTAINERS = {"wav", "ogg", "none"}
SPEED_RANGE = (0.7, 1.5)
CONTAINER_CONTENT_TYPES = {
    "wav": "audio/wav",
    "ogg": "audio/ogg",
}


def content_type_for_container(container: str) -> str:
    return CONTAINER_CONTENT_TYPES.get((container or "").lower(), "application/octet-stream")


def _clamp_speed(value: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"speed must be a number, got {value!r}") from exc
    if not math.isfinite(parsed):
        raise ValueError(f"speed must be finite, got {value!r}")
    low, high = SPEED_RANGE
    return round(max(low, min(high, parsed)), 3)


@dataclass(frozen=True)
class VoiceParams:
    """
    Per-request voice settings sent alongside every chunk.
    """

    voice_id: str = "aura-asteria-en"
    encoding: str = "linear16"
    container: str = "wav"
    sample_rate: int = 24000
    speed: float = 1.0

    def __post_init__(self) -> None:
        encoding = (self.encoding or "").lower()
        container = (self.container or "").lower()
        if encoding not in ENCODINGS:
            raise ValueError(f"Unsupported encoding: {self.encoding}")
        if container not in CONTAINERS:
            raise ValueError(f"Unsupported container: {self.container}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        object.__setattr__(self, "encoding", encoding)
        object.__setattr__(self, "container", container)
        object.__setattr__(self, "speed", _clamp_speed(self.speed))

    @property
    def content_type(self) -> str:
        return content_type_for_container(self.container)


@dataclass(frozen=True)
class SynthesizedAudio:
    audio_bytes: bytes
    content_type: str = "audio/wav"


class TtsEngine(ABC):
    """
    Thin abstraction over a text-to-speech service that returns encoded audio bytes.

    Engines never retry. Every failure is raised as ``SynthesisError`` with a ``kind``
    describing it (auth, rate_limit, oversized_input, network, ...).
    """

    max_input_chars = MAX_CHUNK_CHARS

    def synthesize(
        self,
        text: str,
        voice: VoiceParams,
        *,
        timeout: Optional[float] = None,
    ) -> SynthesizedAudio:
        if len(text) > self.max_input_chars:
            raise SynthesisError(
                f"Text exceeds the maximum length of {self.max_input_chars} characters",
                kind=ERROR_KIND_OVERSIZED_INPUT,
            )
        audio = self._request_audio(text, voice, timeout=timeout)
        if not audio.audio_bytes:
            raise SynthesisError(
                f"{self.descriptor()} returned empty audio.", kind=ERROR_KIND_EMPTY_AUDIO
            )
        return audio

    @abstractmethod
    def _request_audio(
        self, text: str, voice: VoiceParams, *, timeout: Optional[float]
    ) -> SynthesizedAudio:
        """
        Perform the actual service call for one chunk of text.
        """

    def descriptor(self) -> str:
        return self.__class__.__name__


class MockTtsEngine(TtsEngine):
    """
    Deterministic engine for tests and dry runs. Generates silent WAV audio whose
    length depends only on the text.
    """

    def __init__(
        self,
        durations_ms: Optional[Dict[str, int]] = None,
        *,
        base_duration_ms: int = 200,
        per_char_ms: int = 10,
        sample_rate: Optional[int] = None,
        channels: int = 1,
    ) -> None:
        self._durations_ms = durations_ms or {}
        self._base_duration_ms = base_duration_ms
        self._per_char_ms = per_char_ms
        self._sample_rate = sample_rate
        self._channels = channels
        self._lock = threading.Lock()
        self.requests_made = 0

    def _request_audio(
        self, text: str, voice: VoiceParams, *, timeout: Optional[float]
    ) -> SynthesizedAudio:
        with self._lock:
            self.requests_made += 1
        duration = self._durations_ms.get(
            text, self._base_duration_ms + len(text) * self._per_char_ms
        )
        frame_rate = self._sample_rate or voice.sample_rate
        segment = AudioSegment.silent(duration=duration, frame_rate=frame_rate)
        segment = segment.set_channels(self._channels)
        return SynthesizedAudio(_export_wav(segment), "audio/wav")


class DeepgramTtsEngine(TtsEngine):
    """
    Deepgram Aura text-to-speech over the REST ``/v1/speak`` endpoint.
    """

    DEFAULT_URL = "https://api.deepgram.com/v1/speak"

    def __init__(
        self,
        *,
        api_key: str,
        url: str = DEFAULT_URL,
        session: Optional[requests.Session] = None,
        default_timeout: Optional[float] = 60.0,
    ) -> None:
        if not api_key:
            raise ValueError("Deepgram engine requires an API key.")
        self._api_key = api_key
        self._url = url
        self._session = session or requests.Session()
        self._default_timeout = default_timeout

    def _request_audio(
        self, text: str, voice: VoiceParams, *, timeout: Optional[float]
    ) -> SynthesizedAudio:
        params = {
            "model": voice.voice_id,
            "encoding": voice.encoding,
            "sample_rate": voice.sample_rate,
            "speed": voice.speed,
        }
        if voice.container != "none":
            params["container"] = voice.container
        headers = {
            "Authorization": f"Token {self._api_key}",
            "Content-Type": "application/json",
        }
        logger.debug("Deepgram request params: %s", params)

        try:
            response = self._session.post(
                self._url,
                params=params,
                headers=headers,
                json={"text": text},
                timeout=timeout or self._default_timeout,
            )
        except requests.exceptions.Timeout as exc:
            raise SynthesisError(f"Deepgram request timed out: {exc}", kind=ERROR_KIND_TIMEOUT) from exc
        except requests.exceptions.RequestException as exc:
            raise SynthesisError(f"Deepgram request failed: {exc}", kind=ERROR_KIND_NETWORK) from exc

        if response.status_code != 200:
            detail = (response.text or "").strip()[:200]
            raise SynthesisError(
                f"Deepgram returned status {response.status_code}: {detail}",
                kind=_kind_for_status(response.status_code),
                status_code=response.status_code,
            )

        content_type = response.headers.get("Content-Type") or voice.content_type
        if voice.container == "none" and voice.encoding == "linear16":
            # Headerless PCM.
            content_type = f"audio/L16;rate={voice.sample_rate};channels=1"
        return SynthesizedAudio(response.content, content_type)


class PollyTtsEngine(TtsEngine):
    """
    Amazon Polly implementation. PCM output is wrapped in a WAV container.
    """

    def __init__(
        self,
        *,
        engine: str = "neural",
        language_code: Optional[str] = None,
        output_format: str = "pcm",
        boto3_client: Optional[object] = None,
        client_factory: Optional[Callable[..., object]] = None,
    ) -> None:
        try:
            import boto3  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "boto3 is required for PollyTtsEngine but is not installed."
            ) from exc

        self._client_factory = client_factory or (lambda **kwargs: boto3.client("polly", **kwargs))
        self._client = boto3_client or self._client_factory()
        self._timeout_clients: Dict[float, object] = {}
        self._clients_lock = threading.Lock()
        self._engine = engine
        self._language_code = language_code
        self._output_format = output_format.lower()

    def _client_for(self, timeout: Optional[float]) -> object:
        if timeout is None:
            return self._client
        with self._clients_lock:
            client = self._timeout_clients.get(timeout)
            if client is None:
                from botocore.config import Config  # type: ignore

                config = Config(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={"total_max_attempts": 1},
                )
                client = self._client_factory(config=config)
                self._timeout_clients[timeout] = client
        return client

    def _request_audio(
        self, text: str, voice: VoiceParams, *, timeout: Optional[float]
    ) -> SynthesizedAudio:
        from botocore.exceptions import BotoCoreError, ClientError  # type: ignore

        params = {
            "Engine": self._engine,
            "VoiceId": voice.voice_id,
            "OutputFormat": self._output_format,
            "SampleRate": str(voice.sample_rate),
            "Text": text,
            "TextType": "text",
        }
        if self._language_code:
            params["LanguageCode"] = self._language_code

        logger.debug("Polly request params: %s", {k: v for k, v in params.items() if k != "Text"})
        try:
            response = self._client_for(timeout).synthesize_speech(**params)  # type: ignore[attr-defined]
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            raise SynthesisError(f"Polly request failed: {exc}", kind=_kind_for_polly_code(code)) from exc
        except BotoCoreError as exc:
            raise SynthesisError(f"Polly request failed: {exc}", kind=ERROR_KIND_NETWORK) from exc

        stream = response.get("AudioStream")
        if stream is None:
            raise SynthesisError("Polly response did not include AudioStream.", kind=ERROR_KIND_EMPTY_AUDIO)
        audio_bytes = stream.read() if hasattr(stream, "read") else stream

        if self._output_format == "pcm" and audio_bytes:
            segment = AudioSegment(
                data=audio_bytes,
                sample_width=2,
                frame_rate=voice.sample_rate,
                channels=1,
            )
            return SynthesizedAudio(_export_wav(segment), "audio/wav")
        content_type = response.get("ContentType") or f"audio/{self._output_format}"
        return SynthesizedAudio(audio_bytes, content_type)


class GoogleGenAITtsEngine(TtsEngine):
    """
    Google Generative AI TTS implementation using the ``google-genai`` client.
    """

    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gemini-2.5-pro-preview-tts",
        language_code: Optional[str] = None,
    ) -> None:
        try:
            from google import genai  # type: ignore
            from google.genai import types  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "google-genai is required for GoogleGenAITtsEngine but is not installed."
            ) from exc

        self._client = genai.Client(api_key=api_key)
        self._types = types
        self._model = model
        self._language_code = language_code

    def _request_audio(
        self, text: str, voice: VoiceParams, *, timeout: Optional[float]
    ) -> SynthesizedAudio:
        types = self._types
        content = types.Content(role="user", parts=[types.Part.from_text(text=text)])
        speech_config = types.SpeechConfig(
            language_code=self._language_code,
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice.voice_id)
            ),
        )
        http_options = None
        if timeout is not None:
            http_options = types.HttpOptions(timeout=int(timeout * 1000))
        generate_config = types.GenerateContentConfig(
            response_modalities=["audio"],
            speech_config=speech_config,
            http_options=http_options,
        )

        audio_chunks = []
        mime_type: Optional[str] = None
        try:
            for chunk in self._client.models.generate_content_stream(
                model=self._model,
                contents=[content],
                config=generate_config,
            ):
                candidate = (chunk.candidates or [None])[0]
                if not candidate or not candidate.content or not candidate.content.parts:
                    continue
                for response_part in candidate.content.parts:
                    inline = getattr(response_part, "inline_data", None)
                    if inline and inline.data:
                        mime_type = inline.mime_type or mime_type
                        data = inline.data
                        if isinstance(data, str):
                            data = base64.b64decode(data)
                        audio_chunks.append(data)
        except Exception as exc:
            code = getattr(exc, "code", None)
            raise SynthesisError(
                f"Google GenAI request failed: {exc}",
                kind=_kind_for_status(code) if isinstance(code, int) else ERROR_KIND_UNKNOWN,
                status_code=code if isinstance(code, int) else None,
            ) from exc

        if not audio_chunks:
            raise SynthesisError("Google GenAI returned no audio data.", kind=ERROR_KIND_EMPTY_AUDIO)

        audio_bytes = b"".join(audio_chunks)
        mime = mime_type or "audio/wav"
        if mime.startswith("audio/L"):
            segment = decode_audio(audio_bytes, mime, default_rate=voice.sample_rate)
            return SynthesizedAudio(_export_wav(segment), "audio/wav")
        return SynthesizedAudio(audio_bytes, mime)


def decode_audio(data: bytes, mime_type: str, *, default_rate: int = 24000) -> AudioSegment:
    """
    Demux one encoded audio unit into a pydub segment.

    Raw linear PCM (``audio/L16;rate=...``) is wrapped directly; anything else goes
    through pydub's container readers.
    """
    mime_type = (mime_type or "audio/wav").strip()
    if mime_type.startswith("audio/L"):
        params = _parse_linear_pcm_mime(mime_type, default_rate=default_rate)
        return AudioSegment(
            data=data,
            sample_width=params["sample_width"],
            frame_rate=params["rate"],
            channels=params["channels"],
        )

    base_type = mime_type.split(";")[0].strip().lower()
    if base_type in {"audio/wav", "audio/wave", "audio/x-wav", "application/octet-stream"}:
        fmt = "wav"
    elif base_type in {"audio/mpeg", "audio/mp3"}:
        fmt = "mp3"
    else:
        guessed = (mimetypes.guess_extension(base_type) or "").lstrip(".")
        fmt = guessed or base_type.split("/")[-1]
    return AudioSegment.from_file(io.BytesIO(data), format=fmt)


def _export_wav(segment: AudioSegment) -> bytes:
    buffer = io.BytesIO()
    segment.export(buffer, format="wav")
    return buffer.getvalue()


def _kind_for_status(status_code: Optional[int]) -> str:
    if status_code in (401, 403):
        return ERROR_KIND_AUTH
    if status_code == 429:
        return ERROR_KIND_RATE_LIMIT
    if status_code == 413:
        return ERROR_KIND_OVERSIZED_INPUT
    if status_code in (400, 422):
        return ERROR_KIND_INVALID
    if status_code in (408, 504):
        return ERROR_KIND_TIMEOUT
    if status_code is not None and status_code >= 500:
        return ERROR_KIND_NETWORK
    return ERROR_KIND_UNKNOWN


def _kind_for_polly_code(code: str) -> str:
    if code in {"ThrottlingException", "TooManyRequestsException"}:
        return ERROR_KIND_RATE_LIMIT
    if code == "TextLengthExceededException":
        return ERROR_KIND_OVERSIZED_INPUT
    if code in {"UnrecognizedClientException", "AccessDeniedException", "InvalidSignatureException"}:
        return ERROR_KIND_AUTH
    if code in {"InvalidSampleRateException", "InvalidSsmlException", "ValidationException"}:
        return ERROR_KIND_INVALID
    if code == "ServiceFailureException":
        return ERROR_KIND_NETWORK
    return ERROR_KIND_UNKNOWN


def _parse_linear_pcm_mime(mime_type: str, *, default_rate: int) -> Dict[str, int]:
    params: Dict[str, int] = {"rate": default_rate, "sample_width": 2, "channels": 1}
    fragments = [fragment.strip() for fragment in mime_type.split(";")]
    for fragment in fragments:
        if fragment.lower().startswith("rate="):
            try:
                params["rate"] = int(fragment.split("=", 1)[1])
            except ValueError:
                logger.warning("Unable to parse rate from mime type %s", mime_type)
        elif fragment.lower().startswith("channels="):
            try:
                params["channels"] = int(fragment.split("=", 1)[1])
            except ValueError:
                logger.warning("Unable to parse channels from mime type %s", mime_type)
        elif fragment.lower().startswith("audio/l"):
            try:
                bits = int(fragment[len("audio/l"):])
                params["sample_width"] = max(1, bits // 8)
            except ValueError:
                logger.warning("Unable to parse bits from mime type %s", mime_type)
    return params
