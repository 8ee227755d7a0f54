"""
Generation components for AskDoc.

A generator turns a grounded prompt into an answer string. Decoding is kept
deterministic (temperature 0) so the same context and question give the
same answer as far as the provider allows.
"""

from abc import ABC, abstractmethod
import os
import logging
from typing import Optional

from openai import OpenAI, OpenAIError

from ..utils.errors import GenerationError

logger = logging.getLogger(__name__)


class BaseGenerator(ABC):
    """Abstract base class for all generator components."""

    @abstractmethod
    def generate(self, prompt: str) -> str:
        """
        Generates an answer for the given prompt.

        Raises:
            GenerationError: If the capability fails or returns no usable text.
        """
        pass


class OpenAIChatGenerator(BaseGenerator):
    """
    A generator that uses the OpenAI chat completions API.
    """

    def __init__(
        self,
        model_name: str = "gpt-4o",
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        max_tokens: Optional[int] = None,
    ):
        self.model_name = model_name
        self.temperature = 0.0
        self.max_tokens = max_tokens
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise GenerationError(
                "You need an OpenAI API key. Pass it as the 'api_key' option or set the 'OPENAI_API_KEY' environment variable."
            )
        self.client = OpenAI(api_key=self.api_key, timeout=timeout)
        logger.info(f"Initialized OpenAIChatGenerator with model '{self.model_name}'.")

    def generate(self, prompt: str) -> str:
        kwargs = {}
        if self.max_tokens:
            kwargs["max_tokens"] = int(self.max_tokens)
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
                **kwargs,
            )
        except OpenAIError as e:
            logger.error(f"Got error while generating: {e}", exc_info=True)
            raise GenerationError(f"OpenAI completion request failed: {e}") from e

        if not response.choices:
            raise GenerationError("The model returned no choices")
        answer = response.choices[0].message.content
        if not isinstance(answer, str) or not answer.strip():
            raise GenerationError("The model response is empty")
        return answer
