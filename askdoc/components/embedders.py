"""
Embedding components for AskDoc.

This module contains classes responsible for converting text fragments and
questions into numerical vector embeddings.
"""

from abc import ABC, abstractmethod
import os
import logging
from typing import List, Optional

import numpy as np
from openai import OpenAI, OpenAIError

from ..utils.errors import EmbeddingError

logger = logging.getLogger(__name__)


class BaseEmbedder(ABC):
    """Abstract base class for all embedder components."""

    @abstractmethod
    def embed(self, chunks: List[str]) -> np.ndarray:
        """
        Embeds a list of text chunks into a NumPy array of vectors.

        Args:
            chunks (List[str]): A list of text strings to be embedded.

        Returns:
            np.ndarray: A 2D NumPy array where each row is the vector embedding
                        for the corresponding text chunk.

        Raises:
            EmbeddingError: If the embedding capability fails.
        """
        pass

    def embed_query(self, text: str) -> np.ndarray:
        """Embeds a single question and returns a 1D vector."""
        vectors = self.embed([text])
        if len(vectors) != 1:
            raise EmbeddingError(
                f"Expected one embedding for the query, got {len(vectors)}"
            )
        return vectors[0]


class SentenceTransformerEmbedder(BaseEmbedder):
    """
    An embedder that uses the sentence-transformers library from Hugging Face.

    Runs locally, which is handy for development without an API key. The
    vector store's `dimension` must match the model (384 for all-MiniLM-L6-v2).
    """

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model_name = model_name
        self.model = self._load_model()

    def _load_model(self):
        """Loads the SentenceTransformer model and handles potential errors."""
        from sentence_transformers import SentenceTransformer

        logger.debug(f"Loading SentenceTransformer model: '{self.model_name}'")
        try:
            model = SentenceTransformer(self.model_name)
        except Exception as e:
            logger.error(
                f"Failed to load SentenceTransformer model '{self.model_name}'.",
                exc_info=True,
            )
            raise EmbeddingError(
                f"Could not load SentenceTransformer model '{self.model_name}': {e}"
            ) from e
        logger.info(f"SentenceTransformer model '{self.model_name}' loaded successfully.")
        return model

    def embed(self, chunks: List[str]) -> np.ndarray:
        """Converts text chunks into embeddings using the pre-loaded model."""
        if not chunks:
            logger.warning("Embedder received an empty list of chunks. Returning empty array.")
            return np.array([])

        logger.info(f"Embedding {len(chunks)} chunks using '{self.model_name}'...")
        try:
            embeddings = self.model.encode(chunks, show_progress_bar=False)
        except Exception as e:
            logger.error(f"An error occurred during the embedding process: {e}", exc_info=True)
            raise EmbeddingError(f"Local embedding failed: {e}") from e
        logger.debug(f"Output embedding shape: {embeddings.shape}")
        return np.asarray(embeddings, dtype=np.float32)


class OpenAIEmbedder(BaseEmbedder):
    """
    An embedder that uses the OpenAI API to generate embeddings.
    """

    def __init__(
        self,
        model_name: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        batch_size: int = 100,
        timeout: float = 60.0,
    ):
        """
        Initializes the OpenAIEmbedder.

        Args:
            model_name (str): The name of the OpenAI model to use for embedding.
            api_key (str): The API key; falls back to OPENAI_API_KEY.
            batch_size (int): Maximum number of inputs per API request.
            timeout (float): Per-request timeout in seconds.
        """
        self.model_name = model_name
        self.batch_size = int(batch_size)
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise EmbeddingError(
                "You need an OpenAI API key. Pass it as the 'api_key' option or set the 'OPENAI_API_KEY' environment variable."
            )
        self.client = OpenAI(api_key=self.api_key, timeout=timeout)
        logger.info(f"Initialized OpenAIEmbedder with model '{self.model_name}'.")

    def embed(self, chunks: List[str]) -> np.ndarray:
        """Embeds a list of text chunks using the OpenAI API."""
        if not chunks:
            logger.warning("Got an empty list of chunks. Returning empty array.")
            return np.array([])

        logger.info(f"Embedding {len(chunks)} chunks using '{self.model_name}'...")
        embeddings = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start : start + self.batch_size]
            try:
                response = self.client.embeddings.create(input=batch, model=self.model_name)
            except OpenAIError as e:
                logger.error(f"Got error while embedding: {e}", exc_info=True)
                raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e
            # Re-order by input position before collecting.
            ordered = sorted(response.data, key=lambda item: item.index)
            embeddings.extend(item.embedding for item in ordered)
        return np.array(embeddings, dtype=np.float32)
