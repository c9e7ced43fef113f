"""
qdrant_store.py — Local persistent Qdrant collection wrapper.

Used for two collections:
  datasets  — dataset catalog entries, searched by query embedding
  insights  — persisted insight records, looked up by id / payload filter

Distance:   Cosine
Dimension:  1024
Storage:    ./qdrant_storage (configurable via config.py)

Records carry an opaque string id in the payload (`record_id`); the Qdrant
point id is a UUIDv5 derived from it, so upserts are idempotent.
"""

import atexit
import logging
import time
import uuid
from typing import Any

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from insight_copilot.config import EMBEDDING_DIMENSION, QDRANT_PATH

logger = logging.getLogger(__name__)

_ID_NAMESPACE = uuid.UUID("6f1c1c8e-7d4e-4c57-9a57-1f0b7b0d2a11")


def point_id(record_id: str) -> str:
    return str(uuid.uuid5(_ID_NAMESPACE, record_id))


def _to_filter(filter_dict: dict[str, Any] | None) -> Filter | None:
    if not filter_dict:
        return None
    return Filter(must=[
        FieldCondition(key=k, match=MatchValue(value=v))
        for k, v in filter_dict.items()
    ])


class QdrantStore:
    """
    Local Qdrant collection.

    Usage:
        store = QdrantStore(collection="datasets")
        store.create_collection()                   # idempotent
        store.upsert(records, embeddings)           # [{"id": str, "payload": dict}]
        results = store.search(query_vec)           # scored hits
        store.retrieve("ds-1"); store.delete("ds-1")
    """

    def __init__(
        self,
        collection: str,
        path: str = QDRANT_PATH,
        dimension: int = EMBEDDING_DIMENSION,
        client: QdrantClient | None = None,
    ) -> None:
        self.path = path
        self.collection = collection
        self.dimension = dimension
        self._client = client or QdrantClient(path=path)
        # Register cleanup BEFORE Python tears down sys.modules — prevents the
        # portalocker ModuleNotFoundError on interpreter exit.
        atexit.register(self._cleanup)
        logger.info(
            "QdrantStore initialised — path=%s, collection=%s",
            path, collection,
        )

    def _cleanup(self) -> None:
        """Close the Qdrant client on interpreter exit."""
        try:
            self._client.close()
        except Exception as exc:
            logger.debug("Qdrant client close failed: %s", exc)

    # ── Collection Management ──────────────────────────────────────────────────

    def create_collection(self, recreate: bool = False) -> None:
        """
        Create the Qdrant collection if it does not exist.

        Args:
            recreate: If True, deletes and recreates the collection.
        """
        if self.collection_exists():
            if not recreate:
                logger.debug("Collection '%s' already exists — skipping creation.", self.collection)
                return
            logger.warning("Recreating collection '%s'...", self.collection)
            self._client.delete_collection(self.collection)

        self._client.create_collection(
            collection_name=self.collection,
            vectors_config=VectorParams(size=self.dimension, distance=Distance.COSINE),
        )
        logger.info(
            "Collection '%s' created — dim=%d, distance=Cosine",
            self.collection, self.dimension,
        )

    def collection_exists(self) -> bool:
        existing = [c.name for c in self._client.get_collections().collections]
        return self.collection in existing

    def count(self) -> int:
        """Return number of points in the collection."""
        if not self.collection_exists():
            return 0
        return self._client.count(collection_name=self.collection).count

    # ── Upsert / Delete ────────────────────────────────────────────────────────

    def upsert(self, records: list[dict[str, Any]], embeddings: list[list[float]]) -> int:
        """
        Upsert records with their embeddings.

        Args:
            records:    List of {"id": str, "payload": dict} dicts.
            embeddings: Corresponding list of float vectors.

        Returns:
            Number of points upserted.
        """
        if len(records) != len(embeddings):
            raise ValueError(
                f"Mismatch: {len(records)} records vs {len(embeddings)} embeddings"
            )
        if not records:
            return 0

        self.create_collection()

        points = [
            PointStruct(
                id=point_id(record["id"]),
                vector=vector,
                payload={**record["payload"], "record_id": record["id"]},
            )
            for record, vector in zip(records, embeddings)
        ]

        t0 = time.perf_counter()
        self._client.upsert(collection_name=self.collection, points=points)
        logger.info(
            "Upserted %d points into '%s' in %.2fs",
            len(points), self.collection, time.perf_counter() - t0,
        )
        return len(points)

    def delete(self, record_id: str) -> bool:
        """Delete one record. Returns False when it did not exist."""
        if self.retrieve(record_id) is None:
            return False
        self._client.delete(
            collection_name=self.collection,
            points_selector=PointIdsList(points=[point_id(record_id)]),
        )
        logger.info("Deleted record id=%s from '%s'", record_id, self.collection)
        return True

    # ── Reads ──────────────────────────────────────────────────────────────────

    def retrieve(self, record_id: str) -> dict[str, Any] | None:
        """Return the record's payload, or None."""
        if not self.collection_exists():
            return None
        points = self._client.retrieve(
            collection_name=self.collection,
            ids=[point_id(record_id)],
            with_payload=True,
        )
        if not points:
            return None
        return dict(points[0].payload or {})

    def scroll(self, filter_dict: dict[str, Any] | None = None, limit: int = 1000) -> list[dict[str, Any]]:
        """Return payloads of every record matching the equality filter."""
        if not self.collection_exists():
            return []
        payloads: list[dict[str, Any]] = []
        offset = None
        while True:
            points, offset = self._client.scroll(
                collection_name=self.collection,
                scroll_filter=_to_filter(filter_dict),
                limit=min(limit - len(payloads), 256),
                offset=offset,
                with_payload=True,
            )
            payloads.extend(dict(p.payload or {}) for p in points)
            if offset is None or len(payloads) >= limit:
                break
        return payloads

    def search(
        self,
        query_vector: list[float],
        top_k: int = 5,
        filter_dict: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Search for nearest neighbours (query_points(), qdrant-client >= 1.12).

        Args:
            query_vector: Embedded query vector.
            top_k:        Number of results to return.
            filter_dict:  Optional equality filters on payload fields,
                          e.g. {"source_type": "csv"}.

        Returns:
            List of dicts with keys: id, score, payload.
        """
        if not self.collection_exists():
            return []

        t0 = time.perf_counter()
        response = self._client.query_points(
            collection_name=self.collection,
            query=query_vector,
            limit=top_k,
            query_filter=_to_filter(filter_dict),
            with_payload=True,
        )
        elapsed = time.perf_counter() - t0

        results = []
        for hit in response.points:
            payload = dict(hit.payload or {})
            results.append(
                {
                    "id": payload.get("record_id", str(hit.id)),
                    "score": round(float(hit.score), 4),
                    "payload": payload,
                }
            )

        logger.info(
            "Search '%s' complete — top_k=%d, hits=%d, elapsed=%.3fs",
            self.collection, top_k, len(results), elapsed,
        )
        return results
