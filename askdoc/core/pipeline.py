"""
Core ingestion pipeline module.

This module turns the configured source document into stored, searchable
fragments: fetch -> chunk -> embed -> store. A run is a single forward pass
that either completes or fails as a whole; it is never retried or resumed.
"""

import enum
import logging
import os
import threading
import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

from ..components.chunkers import BaseChunker, reassemble
from ..components.embedders import BaseEmbedder
from ..components.sources import BaseSource
from ..components.stores import BaseVectorStore
from ..utils.config_models import AppConfig
from ..utils.data_models import Fragment, SourceDocument, StoredRecord
from ..utils.errors import EmbeddingError
from .factory import (
    build_component,
    SOURCE_REGISTRY,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    STORE_REGISTRY,
)

logger = logging.getLogger(__name__)

# Upper bound for a whole ingestion run before the process is killed.
INGEST_WATCHDOG_SECONDS = 300
WATCHDOG_EXIT_CODE = 2


class IngestionState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    CHUNKING = "chunking"
    EMBEDDING_AND_STORING = "embedding_and_storing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class IngestionResult:
    fragments: int
    records_written: int
    elapsed: float


class Watchdog:
    """
    Kills the process if it is still running after `timeout` seconds.

    This guards against a hung external call; it is cancelled as soon as the
    guarded work finishes, whatever the outcome.
    """

    def __init__(self, timeout: float, exit_code: int = WATCHDOG_EXIT_CODE, on_expire=None):
        self.timeout = timeout
        self.exit_code = exit_code
        self._on_expire = on_expire or self._terminate
        self._timer: Optional[threading.Timer] = None

    def _terminate(self):
        logger.error(
            f"Forcing process termination: ingestion did not finish within {self.timeout} seconds."
        )
        logging.shutdown()
        os._exit(self.exit_code)

    def start(self):
        self._timer = threading.Timer(self.timeout, self._on_expire)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cancel()
        return False


class IngestionPipeline:
    """
    Runs one ingestion of a source into a vector store.

    The store is opened once at the start of `run()`, checked with a trivial
    round trip, and closed exactly once on every exit path.
    """

    def __init__(
        self,
        source: BaseSource,
        chunker: BaseChunker,
        embedder: BaseEmbedder,
        store: BaseVectorStore,
        source_tag: Optional[str] = None,
    ):
        self.source = source
        self.chunker = chunker
        self.embedder = embedder
        self.store = store
        self.source_tag = source_tag
        self.state = IngestionState.IDLE

    def _transition(self, state: IngestionState):
        logger.debug(f"Ingestion state: {self.state.value} -> {state.value}")
        self.state = state

    def _build_records(self, document: SourceDocument, fragments: List[Fragment]) -> List[StoredRecord]:
        # Whitespace-only fragments only carry offsets; they are never stored.
        fragments = [fragment for fragment in fragments if fragment.content.strip()]
        if not fragments:
            return []
        logger.info(f"Generating embeddings using: {self.embedder.__class__.__name__}")
        embeddings = self.embedder.embed([fragment.content for fragment in fragments])
        if len(embeddings) != len(fragments):
            raise EmbeddingError(
                f"Expected {len(fragments)} embeddings, got {len(embeddings)}"
            )

        tag = self.source_tag or document.source
        records = []
        for fragment, embedding in zip(fragments, embeddings):
            record_id = str(uuid.uuid4())
            records.append(
                StoredRecord(
                    id=record_id,
                    content=fragment.content,
                    metadata={
                        "source": tag,
                        "uuid": record_id,
                        "chunk_index": fragment.index,
                        "start_index": fragment.start_index,
                        "chunk_size": fragment.chunk_size,
                        "chunk_overlap": fragment.chunk_overlap,
                    },
                    embedding=embedding,
                )
            )
        return records

    def run(self) -> IngestionResult:
        """
        Executes the pipeline once.

        Returns:
            IngestionResult: Counts and duration of the run.

        Raises:
            RuntimeError: If the pipeline has already been run.
            AskDocError: Whatever stage error aborted the run.
        """
        if self.state is not IngestionState.IDLE:
            raise RuntimeError(f"Ingestion pipeline cannot run from state '{self.state.value}'")

        started = time.monotonic()
        try:
            with self.store:
                self.store.ping()

                self._transition(IngestionState.FETCHING)
                logger.info(f"Loading data from source: {self.source.__class__.__name__}")
                document = self.source.load_data()

                self._transition(IngestionState.CHUNKING)
                logger.info(f"Chunking document using: {self.chunker.__class__.__name__}")
                fragments = self.chunker.chunk(document)
                logger.info(f"Total number of fragments created: {len(fragments)}")

                self._transition(IngestionState.EMBEDDING_AND_STORING)
                records = self._build_records(document, fragments)
                if records:
                    logger.info(f"Storing data in: {self.store.__class__.__name__}")
                    self.store.ensure_schema()
                    written = self.store.add_records(records)
                else:
                    logger.warning("No fragments were created. Nothing to embed or store.")
                    self.store.ensure_schema()
                    written = 0
        except BaseException:
            self._transition(IngestionState.FAILED)
            raise

        self._transition(IngestionState.COMPLETED)
        elapsed = time.monotonic() - started
        logger.info(f"Stored {written} fragments in {elapsed:.2f} seconds.")
        return IngestionResult(fragments=len(fragments), records_written=written, elapsed=elapsed)


def build_pipeline(config: AppConfig) -> IngestionPipeline:
    """Builds all pipeline components based on the configuration."""
    logger.info("Building pipeline components...")
    source = build_component(config.source, SOURCE_REGISTRY)
    chunker = build_component(config.chunker, CHUNKER_REGISTRY)
    embedder = build_component(config.embedder, EMBEDDER_REGISTRY)
    store = build_component(config.store, STORE_REGISTRY)
    logger.info("All components built successfully.")
    return IngestionPipeline(
        source, chunker, embedder, store, source_tag=config.source_tag
    )


def run_ingestion(config: AppConfig, timeout: float = INGEST_WATCHDOG_SECONDS) -> IngestionResult:
    """
    Runs the whole ingestion under a watchdog.

    Raises whatever stage error aborted the run; the caller decides the exit
    status.
    """
    with Watchdog(timeout):
        pipeline = build_pipeline(config)
        result = pipeline.run()
    logger.info("AskDoc ingestion completed successfully.")
    return result


def preview_ingestion(config: AppConfig) -> List[Fragment]:
    """
    Fetches and chunks the source without embedding or storing anything.

    Raises RuntimeError if the fragments do not reassemble into the source text.
    """
    source = build_component(config.source, SOURCE_REGISTRY)
    chunker = build_component(config.chunker, CHUNKER_REGISTRY)
    document = source.load_data()
    fragments = chunker.chunk(document)
    if fragments and reassemble(fragments) != document.content:
        raise RuntimeError(
            f"Fragments of '{document.source}' do not reassemble into the source text"
        )
    logger.info(f"Dry run: {len(fragments)} fragments from {document.source}")
    return fragments
