"""
Core data models for AskDoc.

These are the plain data structures passed between the components of the
ingestion pipeline and the query service.
"""

from dataclasses import dataclass, field
from typing import Any, Dict

import numpy as np


@dataclass
class SourceDocument:
    """
    The raw text of the corpus plus where it came from.

    Only lives for the duration of one ingestion run.

    Attributes:
        content (str): The full raw text.
        source (str): Origin identifier (URL or file path).
    """

    content: str
    source: str


@dataclass
class Fragment:
    """
    A contiguous span of source text produced by the chunker.

    Attributes:
        content (str): The text of the fragment.
        index (int): 0-based position of the fragment within the source.
        start_index (int): Character offset of the fragment in the source text.
        chunk_size (int): The size limit the fragment was produced under.
        chunk_overlap (int): The overlap setting the fragment was produced under.
    """

    content: str
    index: int
    start_index: int
    chunk_size: int
    chunk_overlap: int

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.content)


@dataclass
class StoredRecord:
    """A persisted unit: id, content text, open metadata and its embedding."""

    id: str
    content: str
    metadata: Dict[str, Any]
    embedding: np.ndarray


@dataclass
class RetrievedFragment:
    """
    A search hit.

    `score` is cosine similarity (1 - cosine distance); results are always
    ordered by non-increasing score.
    """

    content: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class InboundMessage:
    """A message delivered by the chat transport."""

    chat_id: int
    text: str
    user_name: str = "User"


@dataclass
class ConversationTurn:
    """A single question/answer exchange. Never retained after the reply."""

    chat_id: int
    question: str
    answer: str
