import os

from pydantic import BaseModel, Field, model_validator
from typing import Dict, Any, List, Optional

# Options that must be present (and non-empty) for each component type.
REQUIRED_OPTIONS = {
    "source": {"web": ["url"], "local_file": ["path"]},
    "store": {
        "pgvector": ["host", "port", "user", "password", "database"],
        "lancedb": ["uri"],
        "memory": [],
    },
    "embedder": {"openai": [], "sentence_transformer": []},
    "generator": {"openai": []},
    "chunker": {"recursive_character": []},
}

# Components whose credential may come from the environment instead of `api_key`.
CREDENTIAL_ENV = {
    "embedder": {"openai": "OPENAI_API_KEY"},
    "generator": {"openai": "OPENAI_API_KEY"},
}

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 100
DEFAULT_TABLE_NAME = "documents"


class ComponentConfig(BaseModel):
    """A model for a single component's configuration (source, chunker, etc.)"""

    type: str
    config: Dict[str, Any] = {}


class TransportConfig(BaseModel):
    """Chat transport settings. Only required by the query service."""

    type: str = "telegram"
    token: Optional[str] = None
    drop_pending_updates: bool = False


class QueryConfig(BaseModel):
    """Query-time retrieval settings."""

    top_k: int = Field(default=4, ge=1)


class AppConfig(BaseModel):
    """The top-level model for the entire askdoc.yaml configuration."""

    source: ComponentConfig
    # Stored as metadata["source"] on every record; defaults to the source URI.
    source_tag: Optional[str] = None
    chunker: ComponentConfig = ComponentConfig(
        type="recursive_character",
        config={
            "chunk_size": DEFAULT_CHUNK_SIZE,
            "chunk_overlap": DEFAULT_CHUNK_OVERLAP,
        },
    )
    embedder: ComponentConfig
    store: ComponentConfig
    generator: ComponentConfig = ComponentConfig(type="openai")
    transport: TransportConfig = TransportConfig()
    query: QueryConfig = QueryConfig()

    @model_validator(mode="after")
    def check_chunk_overlap(self):
        chunk_size = self.chunker.config.get("chunk_size", DEFAULT_CHUNK_SIZE)
        chunk_overlap = self.chunker.config.get(
            "chunk_overlap", DEFAULT_CHUNK_OVERLAP
        )
        if int(chunk_overlap) >= int(chunk_size):
            raise ValueError(
                f"chunker.config.chunk_overlap ({chunk_overlap}) must be smaller "
                f"than chunk_size ({chunk_size})"
            )
        return self

    def missing_options(
        self, require_transport: bool = False, require_generator: bool = False
    ) -> List[str]:
        """Lists every required option that is absent or empty."""
        problems = []
        for section in ("source", "chunker", "embedder", "store", "generator"):
            component = getattr(self, section)
            known = REQUIRED_OPTIONS[section]
            if component.type not in known:
                problems.append(
                    f"{section}.type: unknown type '{component.type}' "
                    f"(expected one of {sorted(known)})"
                )
                continue
            for option in known[component.type]:
                value = component.config.get(option)
                if value is None or (isinstance(value, str) and not value.strip()):
                    problems.append(f"{section}.config.{option}: required option is missing")
            if section == "generator" and not require_generator:
                continue
            if component.type in CREDENTIAL_ENV.get(section, {}):
                env_name = CREDENTIAL_ENV[section][component.type]
                if not component.config.get("api_key") and not os.getenv(env_name):
                    problems.append(
                        f"{section}.config.api_key: required option is missing (or set {env_name})"
                    )
        if require_transport and self.transport.type == "telegram" and not self.transport.token:
            problems.append("transport.token: required option is missing")
        return problems
