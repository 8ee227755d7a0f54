"""
Tests for the query service.
"""

import asyncio
import threading
import uuid
from unittest.mock import MagicMock

import pytest

from askdoc.components.stores import InMemoryVectorStore
from askdoc.components.transports import BaseTransport
from askdoc.core.retrieval import Retriever
from askdoc.core.service import Messages, QueryService
from askdoc.utils.data_models import InboundMessage, StoredRecord
from askdoc.utils.errors import GenerationError, RetrievalError, TransportError


class RecordingTransport(BaseTransport):
    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    async def send_message(self, chat_id, text):
        if chat_id in self.fail_for:
            raise TransportError(f"chat {chat_id} unreachable")
        self.sent.append((chat_id, text))

    def run(self, handler):
        raise NotImplementedError

    def replies_to(self, chat_id):
        return [text for cid, text in self.sent if cid == chat_id]


@pytest.fixture
def store(embedder):
    store = InMemoryVectorStore(dimension=embedder.dimension)
    store.ensure_schema()
    texts = ["X is a thing", "Y is another thing"]
    store.add_records(
        [
            StoredRecord(id=str(uuid.uuid4()), content=t, metadata={}, embedding=v)
            for t, v in zip(texts, embedder.embed(texts))
        ]
    )
    return store


def make_service(embedder, store, generator, transport):
    return QueryService(Retriever(embedder, store), generator, transport, top_k=4)


def ask(service, chat_id, text):
    return asyncio.run(service.handle_message(InboundMessage(chat_id=chat_id, text=text)))


def test_answers_question_with_grounded_prompt(embedder, store):
    generator = MagicMock()
    generator.generate.return_value = "X is a thing."
    transport = RecordingTransport()
    service = make_service(embedder, store, generator, transport)

    reply = ask(service, 1, "What is X?")

    assert reply == "X is a thing."
    assert transport.replies_to(1) == [Messages.processing, "X is a thing."]
    prompt = generator.generate.call_args[0][0]
    assert prompt.startswith("(1) X is a thing")


def test_no_fragments_skips_generation(embedder):
    empty = InMemoryVectorStore(dimension=embedder.dimension)
    empty.ensure_schema()
    generator = MagicMock()
    transport = RecordingTransport()
    service = make_service(embedder, empty, generator, transport)

    reply = ask(service, 1, "What is X?")

    assert reply == Messages.no_results
    generator.generate.assert_not_called()
    assert transport.replies_to(1)[-1] == Messages.no_results


@pytest.mark.parametrize(
    "failure",
    [GenerationError("down"), RuntimeError("unexpected"), ValueError("bad")],
)
def test_generation_failure_becomes_apology(embedder, store, failure):
    generator = MagicMock()
    generator.generate.side_effect = failure
    transport = RecordingTransport()
    service = make_service(embedder, store, generator, transport)

    reply = ask(service, 7, "What is X?")

    assert reply == Messages.error
    assert transport.replies_to(7)[-1] == Messages.error


@pytest.mark.parametrize("answer", ["", "   ", None])
def test_empty_answer_becomes_apology(embedder, store, answer):
    generator = MagicMock()
    generator.generate.return_value = answer
    transport = RecordingTransport()

    reply = ask(make_service(embedder, store, generator, transport), 1, "What is X?")

    assert reply == Messages.error


def test_retrieval_failure_becomes_apology(embedder):
    broken = MagicMock()
    broken.similarity_search.side_effect = RetrievalError("db down")
    generator = MagicMock()
    transport = RecordingTransport()

    reply = ask(make_service(embedder, broken, generator, transport), 3, "What is X?")

    assert reply == Messages.error
    generator.generate.assert_not_called()


def test_undeliverable_reply_does_not_propagate(embedder, store):
    generator = MagicMock()
    generator.generate.return_value = "answer"
    transport = RecordingTransport(fail_for={5})

    reply = ask(make_service(embedder, store, generator, transport), 5, "What is X?")

    assert reply == Messages.error
    assert transport.sent == []


def test_start_command_greets():
    transport = RecordingTransport()
    service = QueryService(MagicMock(), MagicMock(), transport)

    assert ask(service, 1, "/start") == Messages.greeting
    assert transport.sent == [(1, Messages.greeting)]


@pytest.mark.parametrize("text", ["/help", "", "   "])
def test_other_commands_and_blank_messages_are_ignored(text):
    retriever = MagicMock()
    transport = RecordingTransport()
    service = QueryService(retriever, MagicMock(), transport)

    assert ask(service, 1, text) is None
    assert transport.sent == []
    retriever.retrieve.assert_not_called()


def test_concurrent_messages_are_isolated(embedder, store):
    """One chat failing does not affect another chat being served at the same time."""
    both_started = threading.Barrier(2, timeout=5)

    def generate(prompt):
        both_started.wait()
        if "Question: boom" in prompt:
            raise GenerationError("boom")
        return "fine"

    generator = MagicMock()
    generator.generate.side_effect = generate
    transport = RecordingTransport()
    service = make_service(embedder, store, generator, transport)

    async def run_both():
        return await asyncio.gather(
            service.handle_message(InboundMessage(chat_id=1, text="What is X?")),
            service.handle_message(InboundMessage(chat_id=2, text="boom")),
        )

    first, second = asyncio.run(run_both())

    assert first == "fine"
    assert second == Messages.error
    assert transport.replies_to(1)[-1] == "fine"
    assert transport.replies_to(2)[-1] == Messages.error
