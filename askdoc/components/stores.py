"""
Vector store components for AskDoc.

A vector store persists fragments together with their embeddings and
metadata, and ranks them by similarity to a query vector. All stores keep
the same four logical columns: id, content, metadata and embedding.
"""

from abc import ABC, abstractmethod
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import lancedb
import numpy as np
import psycopg2
import pyarrow as pa
from psycopg2 import pool, sql
from psycopg2.extras import Json, execute_values
from pgvector.psycopg2 import register_vector

from ..utils.data_models import RetrievedFragment, StoredRecord
from ..utils.errors import RetrievalError, StorageError

logger = logging.getLogger(__name__)


def _contains(metadata: Dict[str, Any], metadata_filter: Optional[Dict[str, Any]]) -> bool:
    """JSON containment (`metadata @> filter`) for flat and nested dicts."""
    if not metadata_filter:
        return True
    for key, expected in metadata_filter.items():
        if key not in metadata:
            return False
        actual = metadata[key]
        if isinstance(expected, dict):
            if not isinstance(actual, dict) or not _contains(actual, expected):
                return False
        elif actual != expected:
            return False
    return True


class BaseVectorStore(ABC):
    """
    Abstract base class for all vector store components.

    Stores are context managers: entering opens the underlying connection
    and exiting closes it, so callers get release on every exit path.
    """

    dimension: int

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def open(self):
        """Acquires the underlying connection(s). Idempotent."""

    @abstractmethod
    def ping(self):
        """Performs a trivial round trip to verify the store is alive."""
        pass

    @abstractmethod
    def ensure_schema(self):
        """Creates the record table and search primitive if missing. Idempotent."""
        pass

    @abstractmethod
    def add_records(self, records: List[StoredRecord]) -> int:
        """
        Inserts a batch of records.

        A failure part way through may leave a subset persisted; there is no
        rollback beyond what the underlying engine offers for one batch.

        Returns:
            int: The number of records written.
        """
        pass

    @abstractmethod
    def similarity_search(
        self,
        query_vector: np.ndarray,
        k: int = 4,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievedFragment]:
        """
        Returns at most `k` records ordered by descending similarity.

        Ties are broken by storage order, which is not guaranteed stable.
        """
        pass

    @abstractmethod
    def close(self):
        """Releases the underlying connection(s)."""
        pass

    def test_connection(self):
        """Tests the connection to the store. Raises StorageError on failure."""
        logger.info(f"Testing connection for {self.__class__.__name__}")
        with self:
            self.ping()
        logger.info(f"Connection to {self.__class__.__name__} successful.")

    def _check_dimension(self, vector: np.ndarray, error_cls=StorageError) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float32)
        if vector.ndim != 1 or vector.shape[0] != self.dimension:
            raise error_cls(
                f"Embedding dimension {vector.shape} does not match the store dimension ({self.dimension})"
            )
        return vector


class PGVectorStore(BaseVectorStore):
    """
    A vector store backed by PostgreSQL with the pgvector extension.

    Connections come from a thread-safe pool. A semaphore sized to the pool
    makes callers wait for a free connection instead of failing when every
    connection is in use.
    """

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        database: str,
        table_name: str = "documents",
        dimension: int = 1536,
        min_connections: int = 1,
        max_connections: int = 10,
        connect_timeout: int = 10,
    ):
        self.db_params = {
            "host": host,
            "port": port,
            "user": user,
            "password": password,
            "dbname": database,
            "connect_timeout": connect_timeout,
        }
        self.table_name = table_name
        self.dimension = int(dimension)
        self.min_connections = int(min_connections)
        self.max_connections = int(max_connections)
        self._pool = None
        self._slots = threading.BoundedSemaphore(self.max_connections)
        self._registered = set()
        self._lock = threading.Lock()
        logger.debug(
            f"Initialized PGVectorStore for {host}:{port}/{database}, table='{table_name}'"
        )

    @property
    def _table(self) -> sql.Identifier:
        return sql.Identifier(self.table_name)

    @property
    def _match_function(self) -> sql.Identifier:
        return sql.Identifier(f"match_{self.table_name}")

    def open(self):
        with self._lock:
            if self._pool is not None:
                return
            logger.info(
                f"Opening PostgreSQL connection pool to {self.db_params['host']}:{self.db_params['port']}"
            )
            try:
                self._pool = pool.ThreadedConnectionPool(
                    self.min_connections, self.max_connections, **self.db_params
                )
            except psycopg2.Error as e:
                raise StorageError(f"Could not connect to PostgreSQL: {e}") from e

    def close(self):
        with self._lock:
            if self._pool is None:
                return
            self._pool.closeall()
            self._pool = None
            self._registered.clear()
        logger.info("PostgreSQL connection pool closed.")

    @contextmanager
    def _connection(self, vectors: bool = True):
        """Borrows a pooled connection, waiting for a free slot if needed."""
        if self._pool is None:
            raise StorageError("PGVectorStore is not open.")
        self._slots.acquire()
        conn = None
        try:
            conn = self._pool.getconn()
            # The vector type only exists once the extension is installed.
            if vectors and id(conn) not in self._registered:
                register_vector(conn)
                self._registered.add(id(conn))
            yield conn
            conn.commit()
        except Exception:
            if conn is not None and not conn.closed:
                conn.rollback()
            raise
        finally:
            if conn is not None and self._pool is not None:
                self._pool.putconn(conn)
            self._slots.release()

    def ping(self):
        try:
            with self._connection(vectors=False) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                    cur.fetchone()
        except psycopg2.Error as e:
            raise StorageError(f"PostgreSQL liveness check failed: {e}") from e
        logger.info("PostgreSQL connection established successfully.")

    def ensure_schema(self):
        statements = [
            sql.SQL("CREATE EXTENSION IF NOT EXISTS vector"),
            sql.SQL(
                "CREATE TABLE IF NOT EXISTS {table} ("
                "id uuid PRIMARY KEY, "
                "content text NOT NULL, "
                "metadata jsonb NOT NULL DEFAULT '{{}}'::jsonb, "
                "embedding vector({dim}) NOT NULL)"
            ).format(table=self._table, dim=sql.Literal(self.dimension)),
            sql.SQL(
                "CREATE OR REPLACE FUNCTION {function}("
                "query_embedding vector({dim}), "
                "match_count int DEFAULT NULL, "
                "filter jsonb DEFAULT '{{}}'::jsonb) "
                "RETURNS TABLE (id uuid, content text, metadata jsonb, similarity float) "
                "LANGUAGE sql STABLE AS $$ "
                "SELECT t.id, t.content, t.metadata, 1 - (t.embedding <=> query_embedding) AS similarity "
                "FROM {table} AS t "
                "WHERE t.metadata @> filter "
                "ORDER BY t.embedding <=> query_embedding "
                "LIMIT match_count $$"
            ).format(
                function=self._match_function,
                table=self._table,
                dim=sql.Literal(self.dimension),
            ),
        ]
        logger.info(f"Ensuring schema for table '{self.table_name}'")
        try:
            with self._connection(vectors=False) as conn:
                with conn.cursor() as cur:
                    for statement in statements:
                        cur.execute(statement)
        except psycopg2.Error as e:
            raise StorageError(f"Could not create schema for '{self.table_name}': {e}") from e

    def add_records(self, records: List[StoredRecord]) -> int:
        if not records:
            logger.warning("No records provided to store. Aborting.")
            return 0

        rows = [
            (
                record.id,
                record.content,
                Json(record.metadata),
                self._check_dimension(record.embedding),
            )
            for record in records
        ]
        query = sql.SQL(
            "INSERT INTO {table} (id, content, metadata, embedding) VALUES %s"
        ).format(table=self._table)

        logger.info(f"Adding {len(rows)} records to table '{self.table_name}'.")
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    execute_values(cur, query, rows)
        except psycopg2.Error as e:
            raise StorageError(f"Could not write records to '{self.table_name}': {e}") from e
        return len(rows)

    def similarity_search(
        self,
        query_vector: np.ndarray,
        k: int = 4,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievedFragment]:
        vector = self._check_dimension(query_vector, RetrievalError)
        query = sql.SQL(
            "SELECT content, metadata, similarity FROM {function}(%s, %s, %s)"
        ).format(function=self._match_function)
        try:
            with self._connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(query, (vector, int(k), Json(metadata_filter or {})))
                    rows = cur.fetchall()
        except (psycopg2.Error, StorageError) as e:
            raise RetrievalError(f"Similarity search failed: {e}") from e
        return [
            RetrievedFragment(content=content, score=float(similarity), metadata=metadata or {})
            for content, metadata, similarity in rows
        ]


class LanceDBVectorStore(BaseVectorStore):
    """
    An embedded vector store backed by a LanceDB table.

    Metadata is kept as a JSON string column, so metadata filters are applied
    after the vector search over the whole table.
    """

    def __init__(self, uri: str, table_name: str = "documents", dimension: int = 1536):
        self.uri = uri
        self.table_name = table_name
        self.dimension = int(dimension)
        self._db = None
        self._table = None
        logger.debug(f"Initialized LanceDBVectorStore with uri='{uri}', table='{table_name}'")

    def _schema(self):
        return pa.schema(
            [
                pa.field("id", pa.string()),
                pa.field("content", pa.string()),
                pa.field("metadata", pa.string()),
                pa.field("embedding", pa.list_(pa.float32(), self.dimension)),
            ]
        )

    def open(self):
        if self._db is not None:
            return
        try:
            self._db = lancedb.connect(self.uri)
        except Exception as e:
            raise StorageError(f"Could not connect to LanceDB at '{self.uri}': {e}") from e

    def close(self):
        self._db = None
        self._table = None

    def _require_db(self):
        if self._db is None:
            raise StorageError("LanceDBVectorStore is not open.")
        return self._db

    def _open_table(self):
        if self._table is None:
            try:
                self._table = self._require_db().open_table(self.table_name)
            except (ValueError, FileNotFoundError) as e:
                raise StorageError(
                    f"Table '{self.table_name}' does not exist; run ensure_schema first"
                ) from e
        return self._table

    def ping(self):
        try:
            self._require_db().table_names()
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"LanceDB liveness check failed: {e}") from e

    def ensure_schema(self):
        db = self._require_db()
        try:
            if self.table_name in db.table_names():
                self._table = db.open_table(self.table_name)
            else:
                logger.info(f"Table '{self.table_name}' not found. Creating new table.")
                self._table = db.create_table(self.table_name, schema=self._schema())
        except Exception as e:
            raise StorageError(f"Could not create LanceDB table '{self.table_name}': {e}") from e

    def add_records(self, records: List[StoredRecord]) -> int:
        if not records:
            logger.warning("No records provided to store. Aborting.")
            return 0
        rows = [
            {
                "id": record.id,
                "content": record.content,
                "metadata": json.dumps(record.metadata),
                "embedding": self._check_dimension(record.embedding).tolist(),
            }
            for record in records
        ]
        table = self._open_table()
        logger.info(f"Adding {len(rows)} records to table '{self.table_name}'.")
        try:
            table.add(rows)
        except Exception as e:
            raise StorageError(f"Could not write records to LanceDB: {e}") from e
        return len(rows)

    def similarity_search(
        self,
        query_vector: np.ndarray,
        k: int = 4,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievedFragment]:
        vector = self._check_dimension(query_vector, RetrievalError)
        try:
            table = self._open_table()
            limit = table.count_rows() if metadata_filter else int(k)
            if limit == 0:
                return []
            hits = (
                table.search(vector.tolist(), vector_column_name="embedding")
                .distance_type("cosine")
                .limit(limit)
                .to_list()
            )
        except Exception as e:
            raise RetrievalError(f"LanceDB search failed: {e}") from e

        results = []
        for hit in sorted(hits, key=lambda h: h["_distance"]):
            metadata = json.loads(hit["metadata"] or "{}")
            if not _contains(metadata, metadata_filter):
                continue
            results.append(
                RetrievedFragment(
                    content=hit["content"],
                    score=1.0 - float(hit["_distance"]),
                    metadata=metadata,
                )
            )
            if len(results) == k:
                break
        return results


class InMemoryVectorStore(BaseVectorStore):
    """
    A process-local vector store using exact cosine similarity.

    Nothing is persisted. Useful for local trials and tests.
    """

    def __init__(self, dimension: int = 1536):
        self.dimension = int(dimension)
        self._records: List[StoredRecord] = []
        self._schema_ready = False
        self._open = False
        self._lock = threading.Lock()

    def open(self):
        self._open = True

    def close(self):
        self._open = False

    def ping(self):
        if not self._open:
            raise StorageError("InMemoryVectorStore is not open.")

    def ensure_schema(self):
        self._schema_ready = True

    def add_records(self, records: List[StoredRecord]) -> int:
        if not self._schema_ready:
            raise StorageError("Schema must exist before writing records.")
        checked = [
            StoredRecord(
                id=record.id,
                content=record.content,
                metadata=dict(record.metadata),
                embedding=self._check_dimension(record.embedding),
            )
            for record in records
        ]
        with self._lock:
            known = {record.id for record in self._records}
            for record in checked:
                if record.id in known:
                    raise StorageError(f"Duplicate record id '{record.id}'")
                known.add(record.id)
            self._records.extend(checked)
        return len(checked)

    def similarity_search(
        self,
        query_vector: np.ndarray,
        k: int = 4,
        metadata_filter: Optional[Dict[str, Any]] = None,
    ) -> List[RetrievedFragment]:
        vector = self._check_dimension(query_vector, RetrievalError)
        with self._lock:
            candidates = [r for r in self._records if _contains(r.metadata, metadata_filter)]
        if not candidates or k <= 0:
            return []

        matrix = np.stack([record.embedding for record in candidates])
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
        norms[norms == 0] = 1.0
        similarities = (matrix @ vector) / norms
        order = np.argsort(-similarities, kind="stable")[:k]
        return [
            RetrievedFragment(
                content=candidates[i].content,
                score=float(similarities[i]),
                metadata=dict(candidates[i].metadata),
            )
            for i in order
        ]
