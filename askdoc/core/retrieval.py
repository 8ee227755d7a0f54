"""
Retrieval and grounded prompt construction.

The retriever embeds a question and asks the vector store for the most
similar fragments; the prompt builder turns those fragments into a prompt
that instructs the model to answer only from them.
"""

import logging
from typing import Any, Dict, List, Optional

from ..components.embedders import BaseEmbedder
from ..components.stores import BaseVectorStore
from ..utils.data_models import RetrievedFragment

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 4

GROUNDING_INSTRUCTION = (
    "Answer the following question using ONLY the information provided in the "
    "numbered context fragments above. Do not use any outside knowledge. If the "
    "fragments do not contain the answer, say that you do not know."
)


class Retriever:
    """Finds the fragments most similar to a question."""

    def __init__(self, embedder: BaseEmbedder, store: BaseVectorStore, k: int = DEFAULT_TOP_K):
        self.embedder = embedder
        self.store = store
        self.k = k

    def retrieve(
        self,
        query: str,
        k: Optional[int] = None,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievedFragment]:
        """
        Embeds the query and returns the top-k fragments, best first.

        An empty list means nothing relevant is stored; callers must not
        generate an answer in that case.
        """
        k = self.k if k is None else k
        query_vector = self.embedder.embed_query(query)
        fragments = self.store.similarity_search(query_vector, k=k, metadata_filter=metadata_filter)
        logger.debug(f"Retrieved {len(fragments)} fragments for query (k={k})")
        return fragments


def build_prompt(question: str, fragments: List[RetrievedFragment]) -> str:
    """
    Builds a grounded prompt from ranked fragments and the question.

    Fragments appear in rank order, tagged `(1)`, `(2)`, ... followed by the
    grounding instruction and the literal question.
    """
    if not fragments:
        raise ValueError("Cannot build a grounded prompt without context fragments.")
    context = "\n".join(
        f"({rank}) {fragment.content}" for rank, fragment in enumerate(fragments, start=1)
    )
    return f"{context}\n\n{GROUNDING_INSTRUCTION}\n\nQuestion: {question}\nAnswer:"
