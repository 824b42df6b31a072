from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List

from .errors import InputValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "MAX_CHUNK_CHARS",
    "TextChunk",
    "segment_text",
    "split_into_paragraphs",
    "split_into_sentences",
    "hard_split_by_length",
    "chunks_from_texts",
]

MAX_CHUNK_CHARS = 2000
PARAGRAPH_BREAK_PATTERN = re.compile(r"\n\s*\n")
# A run of non-terminators closed by a run of terminators, or an unterminated tail.
SENTENCE_PATTERN = re.compile(r"[^.!?]*[.!?]+|[^.!?]+\Z")


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str

    def __len__(self) -> int:
        return len(self.text)

    @property
    def is_blank(self) -> bool:
        return not self.text.strip()


def segment_text(text: str, max_chars: int = MAX_CHUNK_CHARS) -> List[TextChunk]:
    """
    Split text into ordered chunks no longer than ``max_chars`` characters.

    Paragraphs (blank-line separated) that fit are kept whole. Longer paragraphs are
    regrouped sentence by sentence, and a sentence that alone exceeds the limit is cut
    into fixed-size slices without regard for word boundaries.
    """
    if max_chars <= 0:
        raise InputValidationError(f"max_chars must be positive, got {max_chars}.")

    pieces: List[str] = []
    for paragraph in split_into_paragraphs(text):
        if len(paragraph) <= max_chars:
            pieces.append(paragraph)
            continue
        logger.debug(
            "Paragraph of %d chars exceeds %d; regrouping by sentence.",
            len(paragraph),
            max_chars,
        )
        pieces.extend(_group_sentences(split_into_sentences(paragraph), max_chars))

    chunks = [TextChunk(index=i, text=piece) for i, piece in enumerate(pieces)]
    logger.debug("Segmented %d chars into %d chunks.", len(text or ""), len(chunks))
    return chunks


def split_into_paragraphs(text: str) -> List[str]:
    normalized = re.sub(r"\r\n?", "\n", text or "")
    paragraphs = []
    for paragraph in PARAGRAPH_BREAK_PATTERN.split(normalized):
        paragraph = paragraph.strip()
        if paragraph:
            paragraphs.append(paragraph)
    return paragraphs


def split_into_sentences(paragraph: str) -> List[str]:
    """
    Greedy sentence split on ``.``, ``!`` and ``?``.

    Units keep their leading whitespace so that joining them gives back the paragraph.
    """
    return SENTENCE_PATTERN.findall(paragraph or "")


def hard_split_by_length(sentence: str, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    """
    Fallback split into consecutive ``max_chars`` slices.

    Whitespace-only slices are dropped; nothing else is.
    """
    if max_chars <= 0:
        raise InputValidationError(f"max_chars must be positive, got {max_chars}.")
    slices = []
    for start in range(0, len(sentence or ""), max_chars):
        piece = sentence[start : start + max_chars]
        if piece.strip():
            slices.append(piece)
    return slices


def chunks_from_texts(texts: Iterable[str]) -> List[TextChunk]:
    return [TextChunk(index=i, text=text) for i, text in enumerate(texts)]


def _group_sentences(sentences: Iterable[str], max_chars: int) -> List[str]:
    grouped: List[str] = []
    buffer = ""

    for sentence in sentences:
        if len(buffer) + len(sentence) <= max_chars:
            buffer += sentence
            continue

        _flush(grouped, buffer)
        if len(sentence) > max_chars:
            logger.debug("Hard-splitting a %d char sentence.", len(sentence))
            grouped.extend(hard_split_by_length(sentence, max_chars))
            buffer = ""
        else:
            buffer = sentence

    _flush(grouped, buffer)
    return grouped


def _flush(grouped: List[str], buffer: str) -> None:
    text = buffer.strip()
    if text:
        grouped.append(text)
