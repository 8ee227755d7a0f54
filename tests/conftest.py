"""
Configuration file for pytest.

This file adds the project's root directory to the Python path so that
pytest can find the 'askdoc' package without needing to install it, and
provides deterministic stand-ins for the embedding capability.
"""

import hashlib
import re
import sys
from pathlib import Path

import numpy as np
import pytest

# Add the project root directory to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from askdoc.components.embedders import BaseEmbedder  # noqa: E402

TEST_DIMENSION = 1024


class HashingEmbedder(BaseEmbedder):
    """Bag-of-words embedder: each lowercase word is hashed into one bucket."""

    def __init__(self, dimension: int = TEST_DIMENSION):
        self.dimension = dimension
        self.calls = 0

    def embed(self, chunks):
        self.calls += 1
        vectors = np.zeros((len(chunks), self.dimension), dtype=np.float32)
        for row, chunk in enumerate(chunks):
            for word in re.findall(r"\w+", chunk.lower()):
                bucket = int(hashlib.md5(word.encode("utf-8")).hexdigest(), 16) % self.dimension
                vectors[row, bucket] += 1.0
        return vectors


@pytest.fixture
def embedder():
    return HashingEmbedder()
