"""
Text chunking components for AskDoc.

This module splits the raw source text into overlapping fragments that are
small enough to embed, while keeping enough context across boundaries for
retrieval to work.
"""

from abc import ABC, abstractmethod
import logging
from typing import List, Optional

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..utils.data_models import Fragment, SourceDocument
from ..utils.errors import ConfigError

logger = logging.getLogger(__name__)

# Coarse to fine: paragraph, line, sentence, whitespace, character.
DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", " ", ""]


class BaseChunker(ABC):
    """Abstract base class for all chunker components."""

    @abstractmethod
    def split(self, text: str) -> List[Fragment]:
        """
        Splits raw text into an ordered list of fragments.

        Args:
            text (str): The text to be split.

        Returns:
            List[Fragment]: Fragments in source order.
        """
        pass

    def chunk(self, document: SourceDocument) -> List[Fragment]:
        """Splits a source document's content into fragments."""
        if not document.content or not document.content.strip():
            logger.warning(
                f"Document from source '{document.source}' is empty. Skipping chunking."
            )
            return []
        fragments = self.split(document.content)
        logger.debug(
            f"Created {len(fragments)} fragments from source: {document.source}"
        )
        return fragments


class RecursiveCharacterChunker(BaseChunker):
    """
    A chunker that splits text recursively by a list of separators.

    The coarsest separator present in the text is tried first; any piece that
    is still too large is split again with the next finer separator.
    Separators stay attached to the end of the piece they terminate and
    whitespace is never stripped, so every fragment is an exact substring of
    the source and the fragments can be reassembled into it.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 100,
        separators: Optional[List[str]] = None,
    ):
        """
        Initializes the chunker with a specific chunk size and overlap.

        Args:
            chunk_size (int): The maximum size of each chunk (in characters).
            chunk_overlap (int): The number of characters adjacent chunks may share.
            separators (Optional[List[str]]): Separator priority, coarse to fine.

        Raises:
            ConfigError: If the size/overlap combination is invalid.
        """
        chunk_size = int(chunk_size)
        chunk_overlap = int(chunk_overlap)
        if chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0:
            raise ConfigError(f"chunk_overlap must not be negative, got {chunk_overlap}")
        if chunk_overlap >= chunk_size:
            raise ConfigError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators or DEFAULT_SEPARATORS)
        if self.separators[-1] != "":
            self.separators.append("")
        self._text_splitter = RecursiveCharacterTextSplitter(
            separators=self.separators,
            keep_separator="end",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            strip_whitespace=False,
        )
        logger.debug(
            f"Initialized RecursiveCharacterChunker with size={chunk_size}, overlap={chunk_overlap}"
        )

    def _candidate_starts(self, text: str, piece: str, cursor: int) -> List[int]:
        """
        Offsets where `piece` may start given that `text[:cursor]` is covered.

        A fragment starts inside the previous fragment's overlap window or
        right at its end, and must cover at least one new character.
        """
        lowest = max(0, cursor - self.chunk_overlap, cursor - len(piece) + 1)
        starts = []
        start = text.find(piece, lowest, cursor + len(piece))
        while start != -1:
            starts.append(start)
            start = text.find(piece, start + 1, cursor + len(piece))
        return starts

    def _locate(self, text: str, pieces: List[str]) -> List[int]:
        """
        Assigns a start offset to every piece so that the pieces tile `text`.

        A piece can match several places in the overlap window (e.g. a lone
        newline), so this backtracks until the whole sequence is contiguous
        and ends exactly at the end of `text`.
        """
        starts: List[int] = []
        options: List[List[int]] = []
        while len(starts) < len(pieces):
            level = len(starts)
            if len(options) == level:
                cursor = starts[-1] + len(pieces[level - 1]) if starts else 0
                options.append(self._candidate_starts(text, pieces[level], cursor))
            if options[level]:
                # Latest candidate first: the least overlap.
                starts.append(options[level].pop())
                if len(starts) == len(pieces) and starts[-1] + len(pieces[-1]) != len(text):
                    starts.pop()
            else:
                options.pop()
                if not starts:
                    raise RuntimeError("Fragments could not be located in the source text")
                starts.pop()
        return starts

    def split(self, text: str) -> List[Fragment]:
        """Splits text into fragments and records where each one starts."""
        if not text:
            return []

        pieces = self._text_splitter.split_text(text)
        return [
            Fragment(
                content=piece,
                index=index,
                start_index=start,
                chunk_size=self.chunk_size,
                chunk_overlap=self.chunk_overlap,
            )
            for index, (piece, start) in enumerate(zip(pieces, self._locate(text, pieces)))
        ]


def reassemble(fragments: List[Fragment]) -> str:
    """Rebuilds the source text from fragments, collapsing the overlaps."""
    parts = []
    covered = 0
    for fragment in sorted(fragments, key=lambda f: f.index):
        if fragment.end_index <= covered:
            continue
        skip = max(0, covered - fragment.start_index)
        parts.append(fragment.content[skip:])
        covered = fragment.end_index
    return "".join(parts)
