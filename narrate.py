#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence

from narration_pipeline.errors import NarrationError, SynthesisError
from narration_pipeline.metadata import MetadataBuilder
from narration_pipeline.pipeline import NarrationConfig, NarrationPipeline
from narration_pipeline.scheduler import Progress
from narration_pipeline.split_text import MAX_CHUNK_CHARS
from narration_pipeline.tts_engine import (
    DeepgramTtsEngine,
    GoogleGenAITtsEngine,
    MockTtsEngine,
    PollyTtsEngine,
    TtsEngine,
    VoiceParams,
)

logger = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Narrate a text file into a single WAV audiobook.")
    parser.add_argument("--input", required=True, help="Input text file path.")
    parser.add_argument("--input-encoding", default="utf-8", help="Encoding used for input file.")
    parser.add_argument("--output", default="./output/audiobook.wav", help="Path for the narrated audio.")
    parser.add_argument("--metadata-output", default="./output/metadata.json", help="Path for metadata JSON output.")
    parser.add_argument("--title", help="Optional title recorded in the metadata.")
    parser.add_argument("--engine", default="deepgram", help="TTS engine to use (deepgram, polly, google_genai, mock).")
    parser.add_argument("--api-key", help="API key for engines that require one.")
    parser.add_argument("--google-model", default="gemini-2.5-pro-preview-tts", help="Google GenAI model name.")
    parser.add_argument("--voice-id", default="aura-asteria-en", help="Voice identifier (engine specific).")
    parser.add_argument("--language-code", help="Language code hint for engine.")
    parser.add_argument("--encoding", default="linear16", help="Audio encoding requested from the engine.")
    parser.add_argument("--container", default="wav", help="Audio container requested from the engine.")
    parser.add_argument("--sample-rate", type=int, default=24000, help="Requested sample rate.")
    parser.add_argument("--speed", type=float, default=1.0, help="Speech rate multiplier.")
    parser.add_argument("--max-chars", type=int, default=MAX_CHUNK_CHARS, help="Maximum characters per chunk.")
    parser.add_argument("--concurrency", type=int, default=3, help="Number of concurrent synthesis requests.")
    parser.add_argument("--request-timeout", type=float, help="Per-request timeout in seconds.")
    parser.add_argument("--silence-gap-ms", type=int, default=0, help="Silence inserted between chunks in milliseconds.")
    parser.add_argument("--chunk-dir", help="Stage per-chunk audio files in this directory while merging.")
    parser.add_argument("--keep-chunks", action="store_true", help="Keep staged chunk files after merging.")
    parser.add_argument("--preview", action="store_true", help="Only narrate the first chunk.")
    parser.add_argument("--estimate-only", action="store_true", help="Print text statistics and exit.")
    parser.add_argument("--debug", action="store_true", help="Enable verbose logging.")
    return parser.parse_args(argv)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def load_input_text(path: Path, encoding: str) -> str:
    if not path.exists():
        raise FileNotFoundError(f"Input file does not exist: {path}")
    return path.read_text(encoding=encoding)


def create_engine(args: argparse.Namespace) -> TtsEngine:
    engine_name = (args.engine or "").lower()
    if engine_name in {"mock", "dummy"}:
        return MockTtsEngine()

    if engine_name == "deepgram":
        api_key = args.api_key or os.environ.get("DEEPGRAM_API_KEY")
        if not api_key:
            raise ValueError("Deepgram engine requires an API key (use --api-key or DEEPGRAM_API_KEY env var).")
        return DeepgramTtsEngine(api_key=api_key)

    if engine_name in {"polly", "aws_polly"}:
        return PollyTtsEngine(language_code=args.language_code)

    if engine_name in {"google", "google_genai", "gemini"}:
        api_key = args.api_key or os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_GENAI_API_KEY")
        if not api_key:
            raise ValueError("Google GenAI engine requires an API key (use --api-key or GEMINI_API_KEY env var).")
        return GoogleGenAITtsEngine(
            api_key=api_key,
            model=args.google_model,
            language_code=args.language_code,
        )

    raise ValueError(f"Unsupported engine: {args.engine}")


def build_config(args: argparse.Namespace) -> NarrationConfig:
    voice = VoiceParams(
        voice_id=args.voice_id,
        encoding=args.encoding,
        container=args.container,
        sample_rate=args.sample_rate,
        speed=args.speed,
    )
    return NarrationConfig(
        voice=voice,
        max_chunk_chars=args.max_chars,
        concurrency=args.concurrency,
        request_timeout=args.request_timeout,
        silence_gap_ms=args.silence_gap_ms,
        staging_dir=Path(args.chunk_dir) if args.chunk_dir else None,
        keep_staged=args.keep_chunks,
    )


def log_progress(progress: Progress) -> None:
    logger.info(
        "Progress %3d%% (chunk %d, %d of %d done)",
        round(progress.fraction * 100),
        progress.chunk_index + 1,
        progress.completed,
        progress.total,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    configure_logging(args.debug)

    input_path = Path(args.input)
    text = load_input_text(input_path, args.input_encoding)
    config = build_config(args)

    if args.estimate_only:
        stats = NarrationPipeline(MockTtsEngine(), config).estimate(text)
        print(
            f"Characters: {stats.characters} | Words: {stats.words} | "
            f"Chunks: {stats.chunks} | Estimated Duration: {stats.estimated_minutes} minutes"
        )
        return 0

    pipeline = NarrationPipeline(create_engine(args), config)
    stats = pipeline.estimate(text)
    logger.info(
        "Text will be processed in %d chunk(s); %d words, about %d minutes.",
        stats.chunks,
        stats.words,
        stats.estimated_minutes,
    )

    cancel_event = threading.Event()

    def _request_cancel(signum, frame) -> None:
        logger.warning("Cancellation requested; stopping after in-flight requests.")
        cancel_event.set()

    previous_handler = signal.signal(signal.SIGINT, _request_cancel)
    try:
        if args.preview:
            artifact = pipeline.preview(text, cancel_event=cancel_event)
        else:
            artifact = pipeline.run(text, progress_callback=log_progress, cancel_event=cancel_event)
    except SynthesisError as exc:
        logger.error("Narration failed at chunk %s (%s): %s", exc.chunk_index, exc.kind, exc)
        return 1
    except NarrationError as exc:
        logger.error("Narration failed during %s (%s): %s", exc.stage, exc.kind, exc)
        return 1
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    output_path = artifact.write(Path(args.output))

    metadata_builder = MetadataBuilder(
        engine=pipeline.engine,
        config=config,
        output_path=Path(args.metadata_output),
    )
    metadata = metadata_builder.build_metadata(
        chunks=[chunk for chunk in pipeline.segment(text) if chunk.index in artifact.chunk_durations],
        artifact=artifact,
        final_output=output_path,
        estimated_seconds=stats.estimated_seconds,
        title=args.title or input_path.stem,
    )
    metadata_builder.write_metadata(metadata)
    logger.info("Metadata written to %s", metadata_builder.output_path)

    logger.info("Narration complete (%.1fs). Final audio saved to %s", artifact.duration_seconds, output_path)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.error("Interrupted by user.")
        sys.exit(1)
    except Exception as exc:
        logger.exception("Fatal error: %s", exc)
        sys.exit(1)
