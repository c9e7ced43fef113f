"""
directory.py — Dataset directory capability.

Returns the datasets relevant to a query for the current tenant/session.
An empty result is a valid answer, not an error; failures to reach the
backing store raise DataSourceError.

Implementations:
  StaticDatasetDirectory  — a fixed, session-connected list ranked by
                            token overlap with the query
  QdrantDatasetDirectory  — semantic search over the indexed catalog, with
                            a keyword scan fallback when embedding fails;
                            each lookup is bounded by `timeout_s`
"""

import asyncio
import logging
import re
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter

from insight_copilot.agent.errors import DataSourceError
from insight_copilot.agent.state import DatasetRef
from insight_copilot.config import DATASET_COLLECTION, DATASET_TIMEOUT_S, DATASET_TOP_K
from insight_copilot.embeddings.embedder import EmbeddingError, TitanEmbedder
from insight_copilot.vectorstore.qdrant_store import QdrantStore

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_CATALOG = TypeAdapter(list[DatasetRef])


class DatasetDirectory(Protocol):
    async def find(self, query: str, limit: int = DATASET_TOP_K) -> list[DatasetRef]: ...


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN_RE.findall(text.lower()) if len(t) > 2}


def rank_by_overlap(query: str, datasets: Iterable[DatasetRef]) -> list[DatasetRef]:
    """Stable ranking by shared tokens with the query; non-matching entries keep their order at the end."""
    query_tokens = _tokens(query)
    scored = [
        (len(query_tokens & _tokens(f"{d.name} {d.summary or ''}")), i, d)
        for i, d in enumerate(datasets)
    ]
    scored.sort(key=lambda item: (-item[0], item[1]))
    return [d for _, _, d in scored]


def load_catalog(path: str | Path) -> list[DatasetRef]:
    """Read a dataset catalog JSON file (list of {id, name, sourceType, summary?})."""
    catalog = _CATALOG.validate_json(Path(path).read_text(encoding="utf-8"))
    logger.info("Loaded %d catalog entries from %s", len(catalog), path)
    return catalog


class StaticDatasetDirectory:
    """Directory over the datasets a session has connected."""

    def __init__(self, datasets: Sequence[DatasetRef] = ()) -> None:
        self._datasets = list(datasets)

    async def find(self, query: str, limit: int = DATASET_TOP_K) -> list[DatasetRef]:
        return rank_by_overlap(query, self._datasets)[:limit]


def _payload_to_dataset(payload: dict) -> DatasetRef:
    return DatasetRef(
        id=payload.get("record_id") or payload["id"],
        name=payload["name"],
        source_type=payload.get("source_type", "unknown"),
        summary=payload.get("summary"),
    )


class QdrantDatasetDirectory:
    """
    Catalog of datasets indexed in Qdrant.

    Usage:
        directory = QdrantDatasetDirectory()
        directory.index([DatasetRef(id="sales-2024", name="Sales 2024", source_type="csv")])
        await directory.find("monthly sales", limit=5)
    """

    def __init__(
        self,
        store: QdrantStore | None = None,
        embedder: TitanEmbedder | None = None,
        timeout_s: float = DATASET_TIMEOUT_S,
    ) -> None:
        self._store = store or QdrantStore(collection=DATASET_COLLECTION)
        self._embedder = embedder or TitanEmbedder()
        self.timeout_s = timeout_s

    def index(self, datasets: Sequence[DatasetRef]) -> int:
        """Embed and upsert catalog entries. Returns the number indexed."""
        texts = [f"{d.name}. {d.summary or ''}".strip() for d in datasets]
        vectors = self._embedder.embed_texts(texts)
        records = [
            {"id": d.id, "payload": d.model_dump(exclude={"id"})}
            for d in datasets
        ]
        return self._store.upsert(records, vectors)

    def _semantic_find(self, vector: list[float], limit: int) -> list[DatasetRef]:
        hits = self._store.search(vector, top_k=limit)
        return [_payload_to_dataset(h["payload"]) for h in hits]

    def _keyword_find(self, query: str, limit: int) -> list[DatasetRef]:
        catalog = [_payload_to_dataset(p) for p in self._store.scroll()]
        query_tokens = _tokens(query)
        matches = [
            d for d in rank_by_overlap(query, catalog)
            if query_tokens & _tokens(f"{d.name} {d.summary or ''}")
        ]
        return matches[:limit]

    def _find(self, query: str, limit: int) -> list[DatasetRef]:
        try:
            vector = self._embedder.embed_query(query)
        except EmbeddingError as exc:
            logger.warning("Query embedding failed (%s) — falling back to keyword scan", exc)
            return self._keyword_find(query, limit)
        return self._semantic_find(vector, limit)

    async def find(self, query: str, limit: int = DATASET_TOP_K) -> list[DatasetRef]:
        try:
            datasets = await asyncio.wait_for(
                asyncio.to_thread(self._find, query, limit), timeout=self.timeout_s
            )
        except asyncio.TimeoutError as exc:
            raise DataSourceError(f"Dataset lookup timed out after {self.timeout_s:.1f}s") from exc
        except Exception as exc:
            raise DataSourceError(f"Dataset directory unavailable: {exc}") from exc
        logger.info("QdrantDatasetDirectory: %d datasets for query=%r", len(datasets), query[:80])
        return datasets
