"""
Paragraph-aware text chunking for embedding.

Long text is split on a separator (paragraph breaks by default) and the
pieces are greedily packed into chunks of at most ``max_chunk_size``
characters. Each chunk after the first is seeded with a short suffix of the
previous chunk so that context survives the boundary.

Text without any separator is never hard-split inside words; it becomes a
single oversize chunk.
"""

import logging
from dataclasses import dataclass

from .errors import ConfigurationError
from .types import TextChunk

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"


@dataclass
class ChunkingConfig:
    """Configuration for text chunking."""
    max_chunk_size: int = 800
    overlap_size: int = 100
    separator: str = PARAGRAPH_SEPARATOR

    def validate(self) -> "ChunkingConfig":
        """Reject configurations that cannot produce bounded chunks."""
        if self.max_chunk_size <= 0:
            raise ConfigurationError(
                f"max_chunk_size must be positive, got {self.max_chunk_size}"
            )
        if self.overlap_size < 0:
            raise ConfigurationError(
                f"overlap_size must not be negative, got {self.overlap_size}"
            )
        if self.overlap_size >= self.max_chunk_size:
            raise ConfigurationError(
                f"overlap_size ({self.overlap_size}) must be smaller than "
                f"max_chunk_size ({self.max_chunk_size})"
            )
        if not self.separator:
            raise ConfigurationError("separator must not be empty")
        return self


# 800 chars is safe for all-MiniLM-L6-v2 (~256 tokens); 100 chars of overlap
DEFAULT_CHUNKING_CONFIG = ChunkingConfig()


def chunk_text(text: str, config: ChunkingConfig = DEFAULT_CHUNKING_CONFIG) -> list[TextChunk]:
    """
    Split text into overlapping chunks for embedding.

    Args:
        text: Text to chunk
        config: Chunking configuration (validated before use)

    Returns:
        Chunks in index order, each carrying the final chunk count

    Raises:
        ConfigurationError: If the configuration is invalid
    """
    config.validate()
    max_size = config.max_chunk_size
    separator = config.separator

    if len(text) <= max_size:
        return [TextChunk(text=text, index=0, total_chunks=1, start_offset=0, end_offset=len(text))]

    chunks: list[TextChunk] = []
    current = ""
    current_start = 0
    current_end = 0

    for segment, seg_start in _segments(text, separator):
        seg_end = seg_start + len(segment)

        candidate = current + separator + segment if current else segment
        if len(candidate) > max_size and current:
            chunks.append(_make_chunk(current, len(chunks), current_start, current_end))

            overlap = get_overlap_text(current, config.overlap_size)
            if overlap:
                current = overlap + separator + segment
                # Approximate: the overlap is assumed to sit right before the separator
                current_start = max(0, seg_start - len(separator) - len(overlap))
            else:
                current = segment
                current_start = seg_start
        else:
            if not current:
                current_start = seg_start
            current = candidate
        current_end = seg_end

    if current.strip():
        chunks.append(_make_chunk(current, len(chunks), current_start, current_end))

    total = len(chunks)
    for chunk in chunks:
        chunk.total_chunks = total

    if total == 1 and len(chunks[0].text) > max_size:
        logger.debug(
            "No separator to split on, emitting oversize chunk (%d > %d chars)",
            len(chunks[0].text), max_size,
        )
    logger.debug(
        "Text chunked for embedding: %d chunks from %d chars (max %d)",
        total, len(text), max_size,
    )
    return chunks


def _segments(text: str, separator: str):
    """Yield (stripped segment, start offset) for each non-empty segment."""
    pos = 0
    for raw in text.split(separator):
        stripped = raw.strip()
        if stripped:
            lead = len(raw) - len(raw.lstrip())
            yield stripped, pos + lead
        pos += len(raw) + len(separator)


def _make_chunk(text: str, index: int, start: int, end: int) -> TextChunk:
    if end <= start:
        end = start + len(text)
    return TextChunk(text=text, index=index, total_chunks=-1, start_offset=start, end_offset=end)


def get_overlap_text(text: str, overlap_size: int) -> str:
    """
    Get overlap text from the end of a chunk.

    Takes the last ``overlap_size`` characters and drops the leading partial
    word when a word boundary exists inside that window.
    """
    if overlap_size <= 0:
        return ""
    if len(text) <= overlap_size:
        return text

    overlap = text[-overlap_size:]
    for i, ch in enumerate(overlap):
        if ch.isspace():
            trimmed = overlap[i + 1:].lstrip() if i > 0 else overlap.lstrip()
            return trimmed or overlap
    return overlap


def reconstruct_from_chunks(chunks: list[TextChunk]) -> str:
    """
    Reconstruct text from chunks for display or debugging.

    Approximate: overlap text is repeated at each boundary.
    """
    if not chunks:
        return ""
    if len(chunks) == 1:
        return chunks[0].text
    ordered = sorted(chunks, key=lambda c: c.index)
    return PARAGRAPH_SEPARATOR.join(c.text for c in ordered)


def calculate_optimal_chunk_size(model_name: str, content_type: str = "mixed") -> int:
    """Chunk size suited to the embedding model's context window."""
    # all-MiniLM-L6-v2 handles ~256 tokens, roughly 800-1000 chars
    if "MiniLM" in model_name:
        return 600 if content_type == "code" else 800
    return 500
