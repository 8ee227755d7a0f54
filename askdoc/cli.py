"""
Command-Line Interface for AskDoc.
"""

import asyncio
import logging
from pathlib import Path

import typer
from typing_extensions import Annotated

from .core.evaluation import Evaluator
from .core.factory import (
    SOURCE_REGISTRY,
    CHUNKER_REGISTRY,
    EMBEDDER_REGISTRY,
    STORE_REGISTRY,
    GENERATOR_REGISTRY,
    TRANSPORT_REGISTRY,
    build_component,
    build_transport,
)
from .core.pipeline import INGEST_WATCHDOG_SECONDS, preview_ingestion, run_ingestion
from .core.retrieval import Retriever
from .core.service import build_query_service
from .components.transports import ConsoleTransport
from .utils.config import load_config
from .utils.data_models import InboundMessage
from .utils.errors import AskDocError, ConfigError, StorageError


logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = typer.Typer(help="Answer questions about a document over chat, grounded in its text.")

EXIT_INTERRUPTED = 130

DEFAULT_CONFIG = "askdoc.yaml"

DEFAULT_YAML_CONTENT = """# Default AskDoc configuration. ${VAR} values come from the environment or .env
source:
  type: web
  config:
    url: ${URL_REMOTE_TEXT}

chunker:
  type: recursive_character
  config:
    chunk_size: ${CHUNK_SIZE:-1000}
    chunk_overlap: ${CHUNK_OVERLAP:-100}

embedder:
  type: openai
  config:
    model_name: text-embedding-3-small

store:
  type: pgvector
  config:
    host: ${PGHOST}
    port: ${PGPORT:-5432}
    user: ${PGUSER}
    password: ${PGPASSWORD}
    database: ${PGDATABASE}
    table_name: ${TABLE_NAME:-documents}
    dimension: 1536

generator:
  type: openai
  config:
    model_name: gpt-4o

transport:
  type: telegram
  token: ${TELEGRAM_TOKEN}

query:
  top_k: 4
"""

DEFAULT_ENV_CONTENT = """OPENAI_API_KEY=
TELEGRAM_TOKEN=
URL_REMOTE_TEXT=
PGHOST=localhost
PGPORT=5432
PGUSER=postgres
PGPASSWORD=
PGDATABASE=postgres
TABLE_NAME=documents
"""


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
):
    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@app.command()
def ingest(
    config_path: str = typer.Option(DEFAULT_CONFIG, "-c", help="Path to the YAML configuration file."),
    timeout: float = typer.Option(
        INGEST_WATCHDOG_SECONDS, "--timeout", help="Kill the run if it takes longer (seconds)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Fetch and chunk only; nothing is embedded or stored."
    ),
):
    """Fetches the source, splits it into fragments, embeds and stores them."""
    try:
        config = load_config(config_path)
        if dry_run:
            fragments = preview_ingestion(config)
        else:
            result = run_ingestion(config, timeout=timeout)
    except ConfigError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        logger.warning("Process manually interrupted. Finishing...")
        raise typer.Exit(code=EXIT_INTERRUPTED)
    except AskDocError as e:
        logger.error(f"Ingestion failed: {e}", exc_info=True)
        raise typer.Exit(code=1)
    except Exception as e:
        logger.error(f"An unexpected error occurred: {e}", exc_info=True)
        raise typer.Exit(code=1)
    if dry_run:
        typer.echo(f"Dry run: {len(fragments)} fragments, nothing stored.")
    else:
        typer.echo(f"Stored {result.records_written} fragments.")


@app.command()
def serve(
    config_path: str = typer.Option(DEFAULT_CONFIG, "-c", help="Path to the YAML configuration file."),
):
    """Runs the question-answering chat service until interrupted."""
    try:
        config = load_config(config_path, require_transport=True, require_generator=True)
        transport = build_transport(config.transport)
        service = build_query_service(config, transport)
    except AskDocError as e:
        logger.error(f"Startup failed: {e}")
        raise typer.Exit(code=1)

    store = service.retriever.store
    try:
        store.open()
        store.ping()
    except StorageError as e:
        logger.error(f"Startup failed, storage is unreachable: {e}", exc_info=True)
        store.close()
        raise typer.Exit(code=1)

    try:
        transport.run(service.handle_message)
    finally:
        logger.info("Closing connections...")
        store.close()
        logger.info("Connections closed. Terminating the process.")


@app.command()
def ask(
    question: Annotated[str, typer.Argument(help="The question to answer.")],
    config_path: str = typer.Option(DEFAULT_CONFIG, "-c", help="Path to the YAML configuration file."),
):
    """Answers a single question on the console, exactly as the chat service would."""
    try:
        config = load_config(config_path, require_generator=True)
        transport = ConsoleTransport()
        service = build_query_service(config, transport)
    except AskDocError as e:
        logger.error(f"Startup failed: {e}")
        raise typer.Exit(code=1)

    try:
        with service.retriever.store:
            reply = asyncio.run(
                service.handle_message(InboundMessage(chat_id=0, text=question, user_name="console"))
            )
    except StorageError as e:
        logger.error(f"Storage is unreachable: {e}", exc_info=True)
        raise typer.Exit(code=1)
    if reply == service.messages.error:
        raise typer.Exit(code=1)


@app.command()
def init():
    """Initializes a new AskDoc project."""
    logger.info("Initializing new AskDoc project...")
    for path, content in ((Path(DEFAULT_CONFIG), DEFAULT_YAML_CONTENT), (Path(".env.example"), DEFAULT_ENV_CONTENT)):
        if path.exists():
            logger.warning(f"'{path}' already exists.")
        else:
            path.write_text(content)
            logger.info(f"Created default '{path}'.")
    logger.info("Project initialized.")


@app.command(name="list-components")
def list_components():
    """Lists all available components."""

    def print_registry(title, registry):
        print(f"\n--- {title} ---")
        for name in sorted(registry.keys()):
            print(f"  - {name}")

    print_registry("Sources", SOURCE_REGISTRY)
    print_registry("Chunkers", CHUNKER_REGISTRY)
    print_registry("Embedders", EMBEDDER_REGISTRY)
    print_registry("Stores", STORE_REGISTRY)
    print_registry("Generators", GENERATOR_REGISTRY)
    print_registry("Transports", TRANSPORT_REGISTRY)


@app.command(name="test-connection")
def test_connection(
    component: Annotated[str, typer.Argument(help="Component to test (source or store)")],
    config_path: str = typer.Option(DEFAULT_CONFIG, "-c", help="Config path."),
):
    """Tests the connection for a specified component."""
    logger.info(f"Testing connection for '{component}'...")
    try:
        config = load_config(config_path)
        if component == "source":
            comp_obj = build_component(config.source, SOURCE_REGISTRY)
        elif component == "store":
            comp_obj = build_component(config.store, STORE_REGISTRY)
        else:
            logger.error(f"Unknown component: '{component}'")
            raise typer.Exit(code=1)
        comp_obj.test_connection()
    except AskDocError as e:
        logger.error(f"Connection test failed: {e}", exc_info=True)
        raise typer.Exit(code=1)


@app.command()
def eval(
    dataset_path: Annotated[str, typer.Argument(help="Path to evaluation dataset (JSON Lines).")],
    config_path: str = typer.Option(DEFAULT_CONFIG, "-c", help="Config path."),
    k: int = typer.Option(4, "--top-k", "-k", help="Top k results to check."),
):
    """Evaluates retrieval hit rate against a question dataset."""
    logger.info(f"Starting evaluation with config: '{config_path}'")
    try:
        config = load_config(config_path)
        embedder = build_component(config.embedder, EMBEDDER_REGISTRY)
        store = build_component(config.store, STORE_REGISTRY)
        with store:
            evaluator = Evaluator(Retriever(embedder, store))
            results = evaluator.evaluate(dataset_path=dataset_path, k=k)
    except (AskDocError, OSError, ValueError, KeyError) as e:
        logger.error(f"Evaluation failed: {e}", exc_info=True)
        raise typer.Exit(code=1)
    typer.echo(f"Hit rate: {results['hit_rate']:.2f}% ({results['hits']}/{results['total_questions']})")


if __name__ == "__main__":
    app()
