import json
import logging
from typing import Any, Dict

from .retrieval import Retriever

logger = logging.getLogger(__name__)


class Evaluator:
    """
    Evaluates the retriever against a dataset of questions.

    The dataset is JSON Lines; each line has a `question` and either an
    `expected_substring` (text that must appear in one of the retrieved
    fragments) or an `expected_source` (metadata `source` of a fragment).
    """

    def __init__(self, retriever: Retriever):
        self.retriever = retriever

    @staticmethod
    def _is_hit(item: dict, fragments) -> bool:
        expected_substring = item.get("expected_substring")
        expected_source = item.get("expected_source")
        for fragment in fragments:
            if expected_substring and expected_substring in fragment.content:
                return True
            if expected_source and fragment.metadata.get("source") == expected_source:
                return True
        return False

    def evaluate(self, dataset_path: str, k: int = 4) -> Dict[str, Any]:
        """
        Evaluates the retriever on a given dataset.

        Args:
            dataset_path: The path to the evaluation dataset.
            k: The number of results to retrieve for each query.

        Returns:
            A dictionary containing the evaluation results (hit_rate, total_questions, hits).
        """
        logger.info(f"Starting evaluation for dataset: '{dataset_path}'")

        with open(dataset_path, "r", encoding="utf-8") as f:
            eval_data = [json.loads(line) for line in f if line.strip()]

        hit_count = 0
        for item in eval_data:
            question = item["question"]
            fragments = self.retriever.retrieve(question, k=k)
            if self._is_hit(item, fragments):
                logger.debug(f"Hit for question '{question}'")
                hit_count += 1
            else:
                logger.debug(f"Miss for question '{question}'")

        if not eval_data:
            hit_rate = 0.0
        else:
            hit_rate = (hit_count / len(eval_data)) * 100

        logger.info(
            f"Evaluation Finished. Hit Rate: {hit_rate:.2f}% ({hit_count}/{len(eval_data)})"
        )
        return {
            "hit_rate": hit_rate,
            "total_questions": len(eval_data),
            "hits": hit_count,
        }
