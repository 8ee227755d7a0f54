"""
Component Factory for AskDoc.

This module implements the factory pattern for creating pipeline components.
It uses registries to map configuration strings (e.g., 'pgvector') to the
actual component classes, so components can be swapped via configuration.
"""

import logging

from ..components.sources import WebSource, LocalFileSource
from ..components.chunkers import RecursiveCharacterChunker
from ..components.embedders import OpenAIEmbedder, SentenceTransformerEmbedder
from ..components.stores import PGVectorStore, LanceDBVectorStore, InMemoryVectorStore
from ..components.generators import OpenAIChatGenerator
from ..components.transports import TelegramTransport, ConsoleTransport
from ..utils.config_models import TransportConfig
from ..utils.errors import ConfigError

logger = logging.getLogger(__name__)

# A registry mapping 'type' strings to their corresponding Source classes.
SOURCE_REGISTRY = {"web": WebSource, "local_file": LocalFileSource}

# A registry mapping 'type' strings to their corresponding Chunker classes.
CHUNKER_REGISTRY = {"recursive_character": RecursiveCharacterChunker}

# A registry mapping 'type' strings to their corresponding Embedder classes.
EMBEDDER_REGISTRY = {
    "openai": OpenAIEmbedder,
    "sentence_transformer": SentenceTransformerEmbedder,
}

# A registry mapping 'type' strings to their corresponding VectorStore classes.
STORE_REGISTRY = {
    "pgvector": PGVectorStore,
    "lancedb": LanceDBVectorStore,
    "memory": InMemoryVectorStore,
}

# A registry mapping 'type' strings to their corresponding Generator classes.
GENERATOR_REGISTRY = {"openai": OpenAIChatGenerator}

# A registry mapping 'type' strings to their corresponding Transport classes.
TRANSPORT_REGISTRY = {"telegram": TelegramTransport, "console": ConsoleTransport}


def build_component(component_config, registry: dict):
    """
    Builds a component instance from a configuration and a registry.

    Takes a component's configuration, which must include a 'type' key, looks
    up the corresponding class in the provided registry and instantiates it
    with the parameters from the 'config' key.

    Args:
        component_config: A `ComponentConfig` or a dict with 'type' and
            'config' keys.
        registry (dict): The registry (e.g., SOURCE_REGISTRY) to look up the
            component class.

    Returns:
        An instance of the component class.

    Raises:
        ConfigError: If the 'type' is missing or unknown, or the options do
            not fit the component.
    """
    if hasattr(component_config, "model_dump"):
        component_config = component_config.model_dump()
    component_type = component_config.get("type", "")
    config = component_config.get("config") or {}

    if not component_type:
        raise ConfigError("Component 'type' not specified in configuration.")

    component_class = registry.get(component_type)
    if not component_class:
        raise ConfigError(f"'{component_type}' is not a valid component type.")

    logger.debug(f"Building component '{component_class.__name__}' with options: {sorted(config)}")
    try:
        return component_class(**config)
    except TypeError as e:
        raise ConfigError(f"Invalid options for '{component_type}': {e}") from e


def build_transport(transport_config: TransportConfig):
    """Builds the chat transport from its dedicated configuration section."""
    if transport_config.type == "telegram":
        if not transport_config.token:
            raise ConfigError("transport.token: required option is missing")
        return TelegramTransport(
            token=transport_config.token,
            drop_pending_updates=transport_config.drop_pending_updates,
        )
    if transport_config.type == "console":
        return ConsoleTransport()
    raise ConfigError(
        f"'{transport_config.type}' is not a valid transport type "
        f"(expected one of {sorted(TRANSPORT_REGISTRY)})"
    )
