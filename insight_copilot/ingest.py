"""
ingest.py — Dataset catalog ingestion.

Reads a catalog JSON file (list of {id, name, sourceType, summary?}),
generates Titan embeddings, and indexes the entries in the local Qdrant
`datasets` collection used by the Qdrant dataset directory.

Run once per catalog change:
    python -m insight_copilot.ingest catalog.json
    python -m insight_copilot.ingest catalog.json --recreate
"""

import argparse
import logging
import sys
import time

from insight_copilot.logging_config import setup_logging
setup_logging("INFO")

from insight_copilot.config import DATASET_CATALOG_FILE, DATASET_COLLECTION
from insight_copilot.datasets.directory import QdrantDatasetDirectory, load_catalog
from insight_copilot.vectorstore.qdrant_store import QdrantStore

logger = logging.getLogger(__name__)


def run_ingestion(catalog_path: str, recreate: bool = False) -> int:
    """
    Full pipeline: load catalog → embed → store.

    Args:
        catalog_path: Path to the catalog JSON file.
        recreate:     If True, wipe and rebuild the Qdrant collection.

    Returns:
        Number of catalog entries indexed.
    """
    logger.info("=" * 60)
    logger.info("DATASET CATALOG INGESTION START")
    logger.info("=" * 60)
    t_total = time.perf_counter()

    # ── Step 1: Load catalog ───────────────────────────────────────────────────
    logger.info("Step 1/2: Loading catalog from %s", catalog_path)
    datasets = load_catalog(catalog_path)
    if not datasets:
        logger.error("Catalog %s is empty — nothing to index.", catalog_path)
        return 0

    # ── Step 2: Embed + store ──────────────────────────────────────────────────
    logger.info("Step 2/2: Embedding and indexing %d datasets...", len(datasets))
    store = QdrantStore(collection=DATASET_COLLECTION)
    store.create_collection(recreate=recreate)
    n_stored = QdrantDatasetDirectory(store=store).index(datasets)

    total_elapsed = time.perf_counter() - t_total
    logger.info("=" * 60)
    logger.info("INGESTION COMPLETE")
    logger.info("  Catalog entries  : %d", len(datasets))
    logger.info("  Vectors stored   : %d", n_stored)
    logger.info("  Total time       : %.2fs", total_elapsed)
    logger.info("  Collection total : %d", store.count())
    logger.info("=" * 60)

    print("\n✅ Ingestion complete!")
    print(f"   Datasets: {len(datasets)}  |  Vectors stored: {n_stored}  |  Time: {total_elapsed:.1f}s")
    return n_stored


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Index a dataset catalog into Qdrant")
    parser.add_argument(
        "catalog",
        nargs="?",
        default=DATASET_CATALOG_FILE or None,
        help="Catalog JSON file (default: $DATASET_CATALOG)",
    )
    parser.add_argument(
        "--recreate",
        action="store_true",
        help="Delete and recreate the Qdrant collection before ingesting",
    )
    args = parser.parse_args()
    if not args.catalog:
        parser.error("no catalog file given and DATASET_CATALOG is not set")
    sys.exit(0 if run_ingestion(args.catalog, recreate=args.recreate) else 1)
