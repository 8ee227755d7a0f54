"""
Tests for the embedding and generation components.
"""

import pytest
import numpy as np
from unittest.mock import patch, MagicMock
from openai import OpenAIError

from askdoc.components.embedders import OpenAIEmbedder, SentenceTransformerEmbedder
from askdoc.components.generators import OpenAIChatGenerator
from askdoc.utils.errors import EmbeddingError, GenerationError


def embedding_item(index, vector):
    item = MagicMock()
    item.index = index
    item.embedding = vector
    return item


@patch("askdoc.components.embedders.OpenAI")
def test_openai_embedder_batches_and_orders(mock_openai):
    client = mock_openai.return_value
    client.embeddings.create.side_effect = [
        MagicMock(data=[embedding_item(1, [0.0, 1.0]), embedding_item(0, [1.0, 0.0])]),
        MagicMock(data=[embedding_item(0, [0.5, 0.5])]),
    ]

    embedder = OpenAIEmbedder(api_key="sk-test", batch_size=2)
    vectors = embedder.embed(["a", "b", "c"])

    assert vectors.shape == (3, 2)
    np.testing.assert_allclose(vectors[0], [1.0, 0.0])
    np.testing.assert_allclose(vectors[1], [0.0, 1.0])
    assert client.embeddings.create.call_count == 2
    assert client.embeddings.create.call_args_list[0][1]["input"] == ["a", "b"]


@patch("askdoc.components.embedders.OpenAI")
def test_openai_embedder_query_is_one_vector(mock_openai):
    mock_openai.return_value.embeddings.create.return_value = MagicMock(
        data=[embedding_item(0, [0.1, 0.2, 0.3])]
    )
    vector = OpenAIEmbedder(api_key="sk-test").embed_query("What is X?")
    assert vector.shape == (3,)


@patch("askdoc.components.embedders.OpenAI")
def test_openai_embedder_failure_raises_embedding_error(mock_openai):
    mock_openai.return_value.embeddings.create.side_effect = OpenAIError("rate limited")
    with pytest.raises(EmbeddingError):
        OpenAIEmbedder(api_key="sk-test").embed(["a"])


def test_openai_embedder_requires_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(EmbeddingError):
        OpenAIEmbedder()


@patch.object(SentenceTransformerEmbedder, "_load_model")
def test_sentence_transformer_embedder(mock_load_model):
    mock_load_model.return_value.encode.return_value = np.ones((2, 4))
    vectors = SentenceTransformerEmbedder(model_name="test-model").embed(["a", "b"])
    assert vectors.shape == (2, 4)
    assert vectors.dtype == np.float32


def completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


@patch("askdoc.components.generators.OpenAI")
def test_generator_uses_zero_temperature(mock_openai):
    client = mock_openai.return_value
    client.chat.completions.create.return_value = completion("X is a thing.")

    answer = OpenAIChatGenerator(api_key="sk-test").generate("prompt")

    assert answer == "X is a thing."
    kwargs = client.chat.completions.create.call_args[1]
    assert kwargs["temperature"] == 0
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["messages"] == [{"role": "user", "content": "prompt"}]


@pytest.mark.parametrize("content", ["", "   ", None])
@patch("askdoc.components.generators.OpenAI")
def test_generator_rejects_empty_output(mock_openai, content):
    mock_openai.return_value.chat.completions.create.return_value = completion(content)
    with pytest.raises(GenerationError):
        OpenAIChatGenerator(api_key="sk-test").generate("prompt")


@patch("askdoc.components.generators.OpenAI")
def test_generator_failure_raises_generation_error(mock_openai):
    mock_openai.return_value.chat.completions.create.side_effect = OpenAIError("down")
    with pytest.raises(GenerationError):
        OpenAIChatGenerator(api_key="sk-test").generate("prompt")
