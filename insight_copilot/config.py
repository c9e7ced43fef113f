"""
config.py — Centralized configuration for the Insight Copilot.

All parameters, model IDs, and paths are defined here.
Import this module everywhere instead of hard-coding values.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env from project root (two levels up from this file)
_PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(dotenv_path=_PROJECT_ROOT / ".env")


# ─── AWS / Bedrock ────────────────────────────────────────────────────────────
AWS_ACCESS_KEY_ID: str = os.getenv("AWS_ACCESS_KEY_ID", "")
AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
AWS_DEFAULT_REGION: str = os.getenv("AWS_DEFAULT_REGION", "us-east-1")


# ─── LLM ─────────────────────────────────────────────────────────────────────
LLM_MODEL_ID: str = os.getenv("LLM_MODEL_ID", "amazon.nova-pro-v1:0")
LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "1024"))
LLM_TOP_P: float = 0.9
# Upper bound for a single completion call; a timeout is handled like any
# other LLM failure (node fallback).
LLM_TIMEOUT_S: float = float(os.getenv("LLM_TIMEOUT_S", "30"))


# ─── Embedding Model ──────────────────────────────────────────────────────────
EMBEDDING_MODEL_ID: str = "amazon.titan-embed-text-v2:0"
EMBEDDING_DIMENSION: int = 1024
EMBEDDING_BATCH_SIZE: int = 32


# ─── Vector DB ────────────────────────────────────────────────────────────────
QDRANT_PATH: str = os.getenv("QDRANT_PATH", str(_PROJECT_ROOT / "qdrant_storage"))
DATASET_COLLECTION: str = "datasets"
INSIGHT_COLLECTION: str = "insights"
DATASET_TOP_K: int = int(os.getenv("DATASET_TOP_K", "5"))
# Upper bound for one directory lookup (embedding + Qdrant search).
DATASET_TIMEOUT_S: float = float(os.getenv("DATASET_TIMEOUT_S", "10"))


# ─── Orchestration ───────────────────────────────────────────────────────────
# Hard cap on executed agent nodes per run (guards against routing cycles).
MAX_HOPS: int = int(os.getenv("MAX_HOPS", "8"))
# Number of dataset names embedded in prompt context.
DATASET_CONTEXT_LIMIT: int = 3
MAX_INSIGHTS: int = 4
# Optional JSON list of node configs, e.g. '[{"kind": "conversational"}]'.
NODE_CONFIG_JSON: str = os.getenv("COPILOT_NODES", "")
# "memory" | "qdrant"
INSIGHT_STORE_BACKEND: str = os.getenv("INSIGHT_STORE_BACKEND", "memory").lower()
# "static" | "qdrant"
DATASET_DIRECTORY_BACKEND: str = os.getenv("DATASET_DIRECTORY_BACKEND", "static").lower()
# JSON list of {id, name, sourceType, summary?}; seeds the static directory and ingest.
DATASET_CATALOG_FILE: str = os.getenv("DATASET_CATALOG", "")
# Chart points kept in a generated visualization.
VISUALIZATION_MAX_POINTS: int = 20


# ─── Web search (Tavily) ──────────────────────────────────────────────────────
# Search is skipped (the search node hands straight on) when no key is set.
TAVILY_API_KEY: str = os.getenv("TAVILY_API_KEY", "")
TAVILY_ENDPOINT: str = "https://api.tavily.com/search"
SEARCH_MAX_RESULTS: int = int(os.getenv("SEARCH_MAX_RESULTS", "5"))
SEARCH_TIMEOUT_S: float = float(os.getenv("SEARCH_TIMEOUT_S", "15"))


# ─── Paths ────────────────────────────────────────────────────────────────────
LOGS_DIR: Path = _PROJECT_ROOT / "logs"
METRICS_FILE: Path = LOGS_DIR / "metrics.jsonl"
LOG_FILE: Path = LOGS_DIR / "copilot.log"

# Ensure directories exist at import time
LOGS_DIR.mkdir(parents=True, exist_ok=True)
