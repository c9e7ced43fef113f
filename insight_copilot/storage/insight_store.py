"""
insight_store.py — Persistence for insights produced by the agent graph.

Records are keyed by opaque string ids. `list()` takes an equality filter
over record fields (e.g. {"pinned": True}) and returns newest first.

Implementations:
  InMemoryInsightStore  — process-local dict, for sessions and tests
  QdrantInsightStore    — Qdrant collection; each record's content is
                          embedded with Titan so insights are searchable
"""

import logging
import threading
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel, Field

from insight_copilot.agent.errors import DataSourceError, InsightNotFoundError
from insight_copilot.agent.state import Insight, InsightType
from insight_copilot.config import INSIGHT_COLLECTION, INSIGHT_STORE_BACKEND
from insight_copilot.embeddings.embedder import TitanEmbedder
from insight_copilot.vectorstore.qdrant_store import QdrantStore

logger = logging.getLogger(__name__)


class StoredInsight(BaseModel):
    id: str = Field(default_factory=lambda: f"insight-{uuid.uuid4().hex[:12]}")
    type: InsightType
    title: str
    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    pinned: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: str | None = None
    query: str | None = None

    @classmethod
    def from_insight(cls, insight: Insight, session_id: str | None = None,
                     query: str | None = None) -> "StoredInsight":
        return cls(
            type=insight.type,
            title=insight.title,
            content=insight.content,
            confidence=insight.confidence,
            session_id=session_id,
            query=query,
        )


class InsightStore(Protocol):
    def save(self, records: Iterable[StoredInsight]) -> list[str]: ...

    def list(self, filter: Mapping[str, Any] | None = None) -> list[StoredInsight]: ...

    def get(self, insight_id: str) -> StoredInsight: ...

    def delete(self, insight_id: str) -> None: ...

    def set_pinned(self, insight_id: str, pinned: bool) -> StoredInsight: ...


def _matches(record: StoredInsight, filter: Mapping[str, Any] | None) -> bool:
    if not filter:
        return True
    return all(getattr(record, key, None) == value for key, value in filter.items())


def _newest_first(records: Iterable[StoredInsight]) -> list[StoredInsight]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


@contextmanager
def _qdrant_errors(action: str) -> Iterator[None]:
    """Re-raise Qdrant / Titan failures as DataSourceError; not-found passes through."""
    try:
        yield
    except InsightNotFoundError:
        raise
    except Exception as exc:
        raise DataSourceError(f"Could not {action}: {exc}") from exc


class InMemoryInsightStore:
    def __init__(self) -> None:
        self._records: dict[str, StoredInsight] = {}
        self._lock = threading.Lock()

    def save(self, records: Iterable[StoredInsight]) -> list[str]:
        records = list(records)
        with self._lock:
            for record in records:
                self._records[record.id] = record
        return [r.id for r in records]

    def list(self, filter: Mapping[str, Any] | None = None) -> list[StoredInsight]:
        with self._lock:
            snapshot = list(self._records.values())
        return _newest_first(r for r in snapshot if _matches(r, filter))

    def get(self, insight_id: str) -> StoredInsight:
        try:
            return self._records[insight_id]
        except KeyError:
            raise InsightNotFoundError(insight_id) from None

    def delete(self, insight_id: str) -> None:
        with self._lock:
            if self._records.pop(insight_id, None) is None:
                raise InsightNotFoundError(insight_id)

    def set_pinned(self, insight_id: str, pinned: bool) -> StoredInsight:
        with self._lock:
            record = self._records.get(insight_id)
            if record is None:
                raise InsightNotFoundError(insight_id)
            updated = record.model_copy(update={"pinned": pinned})
            self._records[insight_id] = updated
        return updated


class QdrantInsightStore:
    """
    Insight records in a local Qdrant collection.

    Usage:
        store = QdrantInsightStore()
        ids = store.save([StoredInsight(type="trend", title="...", content="...", confidence=0.9)])
        store.list({"pinned": True})
    """

    def __init__(self, store: QdrantStore | None = None, embedder: TitanEmbedder | None = None) -> None:
        self._store = store or QdrantStore(collection=INSIGHT_COLLECTION)
        self._embedder = embedder or TitanEmbedder()

    @staticmethod
    def _from_payload(payload: Mapping[str, Any]) -> StoredInsight:
        return StoredInsight.model_validate({**payload, "id": payload["record_id"]})

    def _upsert(self, records: list[StoredInsight]) -> None:
        vectors = self._embedder.embed_texts([f"{r.title}. {r.content}" for r in records])
        self._store.upsert(
            [{"id": r.id, "payload": r.model_dump(mode="json", exclude={"id"})} for r in records],
            vectors,
        )

    def save(self, records: Iterable[StoredInsight]) -> list[str]:
        records = list(records)
        if not records:
            return []
        with _qdrant_errors("persist insights"):
            self._upsert(records)
        logger.info("QdrantInsightStore: saved %d insights", len(records))
        return [r.id for r in records]

    def list(self, filter: Mapping[str, Any] | None = None) -> list[StoredInsight]:
        with _qdrant_errors("list insights"):
            payloads = self._store.scroll(filter_dict=dict(filter) if filter else None)
            return _newest_first(self._from_payload(p) for p in payloads)

    def get(self, insight_id: str) -> StoredInsight:
        with _qdrant_errors("fetch insight"):
            payload = self._store.retrieve(insight_id)
            if payload is None:
                raise InsightNotFoundError(insight_id)
            return self._from_payload(payload)

    def delete(self, insight_id: str) -> None:
        with _qdrant_errors("delete insight"):
            deleted = self._store.delete(insight_id)
        if not deleted:
            raise InsightNotFoundError(insight_id)

    def set_pinned(self, insight_id: str, pinned: bool) -> StoredInsight:
        updated = self.get(insight_id).model_copy(update={"pinned": pinned})
        with _qdrant_errors("update insight"):
            self._upsert([updated])
        return updated


def build_insight_store() -> InsightStore:
    """Insight store selected by INSIGHT_STORE_BACKEND ("memory" | "qdrant")."""
    if INSIGHT_STORE_BACKEND == "qdrant":
        return QdrantInsightStore()
    return InMemoryInsightStore()
