"""Tests for the dataset directories and catalog loading.

QdrantDatasetDirectory is exercised with MagicMock stand-ins for QdrantStore
and TitanEmbedder — no Qdrant or Bedrock access.
"""

import json
import time
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from insight_copilot.agent.errors import DataSourceError
from insight_copilot.agent.state import DatasetRef
from insight_copilot.datasets.directory import (
    QdrantDatasetDirectory,
    StaticDatasetDirectory,
    load_catalog,
    rank_by_overlap,
)


def _payload(record_id: str, name: str, summary: str | None = None) -> dict:
    return {"record_id": record_id, "name": name, "source_type": "csv", "summary": summary}


class TestStaticDatasetDirectory:
    async def test_ranks_by_token_overlap(self, datasets):
        found = await StaticDatasetDirectory(datasets).find("churned customers", limit=2)
        assert [d.id for d in found] == ["ds-2", "ds-1"]

    async def test_empty_directory_is_valid(self):
        assert await StaticDatasetDirectory().find("anything") == []

    def test_ranking_is_stable(self, datasets):
        ranked = rank_by_overlap("nothing matches here", datasets)
        assert ranked == datasets


class TestLoadCatalog:
    def test_reads_camel_case_catalog(self, tmp_path):
        path = tmp_path / "catalog.json"
        path.write_text(json.dumps([
            {"id": "a", "name": "Sales", "sourceType": "csv", "summary": "Monthly sales"},
            {"id": "b", "name": "Churn", "source_type": "excel"},
        ]))
        catalog = load_catalog(path)
        assert catalog == [
            DatasetRef(id="a", name="Sales", source_type="csv", summary="Monthly sales"),
            DatasetRef(id="b", name="Churn", source_type="excel"),
        ]


class TestQdrantDatasetDirectory:
    async def test_semantic_search(self):
        store, embedder = MagicMock(), MagicMock()
        embedder.embed_query.return_value = [0.1] * 4
        store.search.return_value = [
            {"id": "ds-1", "score": 0.91, "payload": _payload("ds-1", "Sales 2024")},
        ]
        found = await QdrantDatasetDirectory(store, embedder).find("sales", limit=3)
        assert found == [DatasetRef(id="ds-1", name="Sales 2024", source_type="csv")]
        store.search.assert_called_once_with([0.1] * 4, top_k=3)
        store.scroll.assert_not_called()

    async def test_embedding_failure_falls_back_to_keyword_scan(self):
        store, embedder = MagicMock(), MagicMock()
        embedder.embed_query.side_effect = ClientError(
            {"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "InvokeModel",
        )
        store.scroll.return_value = [
            _payload("ds-1", "Sales 2024", "Monthly sales by region"),
            _payload("ds-2", "Customer Churn"),
        ]
        found = await QdrantDatasetDirectory(store, embedder).find("regional sales", limit=5)
        assert [d.id for d in found] == ["ds-1"]
        store.search.assert_not_called()

    async def test_store_failure_raises_data_source_error(self):
        store, embedder = MagicMock(), MagicMock()
        embedder.embed_query.return_value = [0.1] * 4
        store.search.side_effect = RuntimeError("storage locked")
        with pytest.raises(DataSourceError):
            await QdrantDatasetDirectory(store, embedder).find("sales")

    async def test_malformed_hit_is_not_treated_as_embedding_failure(self):
        store, embedder = MagicMock(), MagicMock()
        embedder.embed_query.return_value = [0.1] * 4
        store.search.return_value = [{"id": "ds-1", "score": 0.9, "payload": {"record_id": "ds-1"}}]
        with pytest.raises(DataSourceError):
            await QdrantDatasetDirectory(store, embedder).find("sales")
        store.scroll.assert_not_called()

    async def test_stalled_lookup_times_out(self):
        store, embedder = MagicMock(), MagicMock()
        embedder.embed_query.return_value = [0.1] * 4
        store.search.side_effect = lambda *_, **__: time.sleep(0.5) or []
        directory = QdrantDatasetDirectory(store, embedder, timeout_s=0.05)
        t0 = time.perf_counter()
        with pytest.raises(DataSourceError, match="timed out"):
            await directory.find("How many orders did we get?")
        assert time.perf_counter() - t0 < 0.4

    def test_index_embeds_and_upserts(self, datasets):
        store, embedder = MagicMock(), MagicMock()
        embedder.embed_texts.return_value = [[0.0] * 4] * 2
        store.upsert.return_value = 2
        assert QdrantDatasetDirectory(store, embedder).index(datasets[:2]) == 2

        texts = embedder.embed_texts.call_args.args[0]
        assert texts[0] == "Sales 2024. Monthly sales by region"
        records, vectors = store.upsert.call_args.args
        assert records[0]["id"] == "ds-1"
        assert records[0]["payload"] == {
            "name": "Sales 2024", "source_type": "csv", "summary": "Monthly sales by region",
        }
        assert len(vectors) == 2
