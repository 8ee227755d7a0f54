"""
Query service.

Answers one inbound chat message at a time: retrieve -> build prompt ->
generate -> reply. Each message is handled independently; a failure while
answering one message is logged and turned into an apology for that chat,
and never reaches the transport's event loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..components.generators import BaseGenerator
from ..components.transports import BaseTransport
from ..utils.data_models import ConversationTurn, InboundMessage
from ..utils.errors import GenerationError
from .factory import build_component, EMBEDDER_REGISTRY, STORE_REGISTRY, GENERATOR_REGISTRY
from .retrieval import DEFAULT_TOP_K, Retriever, build_prompt

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 150


@dataclass
class Messages:
    """User-facing texts sent by the query service."""

    greeting: str = (
        "Hello! I'm ready to answer your questions about the document. "
        "What would you like to know?"
    )
    processing: str = "Processing your question, give me a moment..."
    no_results: str = (
        "I couldn't find relevant information for your question. Can you rephrase it?"
    )
    error: str = (
        "Sorry, an error occurred while processing your question. Please try again later."
    )


def _preview(text: str) -> str:
    return text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")


class QueryService:
    """
    Orchestrates question answering for the chat transport.

    The retriever, generator and transport are shared by all in-flight
    messages and are only read from here. Blocking calls run in worker
    threads so that several chats can be served at once.
    """

    def __init__(
        self,
        retriever: Retriever,
        generator: BaseGenerator,
        transport: BaseTransport,
        top_k: int = DEFAULT_TOP_K,
        messages: Optional[Messages] = None,
    ):
        self.retriever = retriever
        self.generator = generator
        self.transport = transport
        self.top_k = top_k
        self.messages = messages or Messages()

    async def handle_message(self, message: InboundMessage) -> Optional[str]:
        """
        Handles one inbound message and sends the reply.

        Returns:
            Optional[str]: The reply that was sent, or None when the message
            was an ignored command or empty.
        """
        text = (message.text or "").strip()
        logger.info(f"Message received from {message.user_name} (ID: {message.chat_id}): \"{text}\"")

        if not text or text.startswith("/"):
            if text == "/start":
                logger.info(f"/start command received from {message.user_name}")
                await self._safe_send(message.chat_id, self.messages.greeting)
                return self.messages.greeting
            if text:
                logger.info(f"Unprocessed command: {text}")
            return None

        try:
            await self.transport.send_message(message.chat_id, self.messages.processing)
            turn = await self._answer(message.chat_id, text)
            await self.transport.send_message(message.chat_id, turn.answer)
            logger.info(f"Response sent to {message.user_name}")
            return turn.answer
        except Exception:
            logger.error(
                f"Error processing the query from chat {message.chat_id}: \"{text}\"",
                exc_info=True,
            )
            await self._safe_send(message.chat_id, self.messages.error)
            return self.messages.error

    async def _answer(self, chat_id: int, question: str) -> ConversationTurn:
        logger.info("Searching for relevant fragments for the query...")
        started = time.monotonic()
        fragments = await asyncio.to_thread(self.retriever.retrieve, question, self.top_k)
        search_time = time.monotonic() - started
        logger.info(f"Retrieved {len(fragments)} relevant fragments in {search_time:.2f} seconds")

        if not fragments:
            logger.warning("No relevant fragments found")
            return ConversationTurn(chat_id=chat_id, question=question, answer=self.messages.no_results)

        for rank, fragment in enumerate(fragments, start=1):
            logger.debug(f"Fragment #{rank} (score={fragment.score:.4f}): {_preview(fragment.content)}")

        prompt = build_prompt(question, fragments)
        logger.info("Sending query to LLM model...")
        llm_started = time.monotonic()
        answer = await asyncio.to_thread(self.generator.generate, prompt)
        llm_time = time.monotonic() - llm_started

        if not isinstance(answer, str) or not answer.strip():
            raise GenerationError("The model response is empty")

        logger.info(f"Response received from model in {llm_time:.2f} seconds")
        logger.info(
            f"Total processing time: {time.monotonic() - started:.2f} seconds "
            f"(Search: {search_time:.2f}s, LLM: {llm_time:.2f}s)"
        )
        return ConversationTurn(chat_id=chat_id, question=question, answer=answer)

    async def _safe_send(self, chat_id: int, text: str):
        try:
            await self.transport.send_message(chat_id, text)
        except Exception:
            logger.error(f"Could not deliver message to chat {chat_id}", exc_info=True)


def build_query_service(config, transport: BaseTransport) -> QueryService:
    """Builds the shared handles once and wires them into a QueryService."""
    logger.info("Initializing connections to external services...")
    embedder = build_component(config.embedder, EMBEDDER_REGISTRY)
    store = build_component(config.store, STORE_REGISTRY)
    generator = build_component(config.generator, GENERATOR_REGISTRY)
    retriever = Retriever(embedder, store, k=config.query.top_k)
    return QueryService(retriever, generator, transport, top_k=config.query.top_k)
