from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Sequence

from .merger import AudioArtifact
from .pipeline import NarrationConfig
from .split_text import TextChunk
from .tts_engine import TtsEngine

__all__ = ["MetadataBuilder"]


@dataclass
class MetadataBuilder:
    engine: TtsEngine
    config: NarrationConfig
    output_path: Path

    def build_metadata(
        self,
        *,
        chunks: Sequence[TextChunk],
        artifact: AudioArtifact,
        final_output: Optional[Path],
        estimated_seconds: float,
        title: Optional[str] = None,
    ) -> Dict[str, object]:
        voice = self.config.voice
        metadata = {
            "created_at": datetime.now(timezone.utc).isoformat(),
            "title": title,
            "engine": self.engine.descriptor(),
            "voice": {
                "voice_id": voice.voice_id,
                "encoding": voice.encoding,
                "container": voice.container,
                "sample_rate": voice.sample_rate,
                "speed": voice.speed,
            },
            "format": artifact.format,
            "content_type": artifact.content_type,
            "sample_rate": artifact.sample_rate,
            "channels": artifact.channels,
            "size_bytes": artifact.size_bytes,
            "chunks": [
                {
                    "index": chunk.index,
                    "characters": len(chunk.text),
                    "duration_seconds": _chunk_duration(artifact, chunk.index),
                }
                for chunk in chunks
            ],
            "chunk_count": artifact.chunk_count,
            "duration_seconds": round(artifact.duration_seconds, 3),
            "estimated_seconds": round(estimated_seconds, 3),
            "final_output": str(final_output) if final_output else None,
            "config": {
                "max_chunk_chars": self.config.max_chunk_chars,
                "concurrency": self.config.concurrency,
                "silence_gap_ms": self.config.silence_gap_ms,
            },
        }

        return metadata

    def write_metadata(self, metadata: Dict[str, object]) -> None:
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with self.output_path.open("w", encoding="utf-8") as f:
            json.dump(metadata, f, ensure_ascii=False, indent=2)


def _chunk_duration(artifact: AudioArtifact, index: int) -> Optional[float]:
    duration = artifact.chunk_durations.get(index)
    return round(duration, 3) if duration is not None else None
