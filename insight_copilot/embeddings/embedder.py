"""
embedder.py — Amazon Titan Text Embed v2 wrapper.

Embeds dataset descriptions and insight texts for the Qdrant-backed
dataset directory and insight store. Output dimension: 1024.
"""

import json
import logging
import time

from botocore.exceptions import BotoCoreError, ClientError

from insight_copilot.config import (
    EMBEDDING_BATCH_SIZE,
    EMBEDDING_DIMENSION,
    EMBEDDING_MODEL_ID,
)
from insight_copilot.llm import get_bedrock_client

logger = logging.getLogger(__name__)

EmbeddingError = (ClientError, BotoCoreError, ValueError, KeyError)


class TitanEmbedder:
    """
    Wraps Amazon Titan Text Embed v2.

    Example:
        embedder = TitanEmbedder()
        vectors = embedder.embed_texts(["monthly sales", "churn by region"])
        # list of 1024-dimensional float lists

    Raises one of `EmbeddingError` on Bedrock failure or a wrong-sized vector.
    """

    def __init__(self, client=None) -> None:
        self._client = client
        self.model_id = EMBEDDING_MODEL_ID
        self.dimension = EMBEDDING_DIMENSION
        self.batch_size = EMBEDDING_BATCH_SIZE
        logger.info(
            "TitanEmbedder initialised — model=%s, dim=%d",
            self.model_id, self.dimension,
        )

    def _embed_single(self, text: str) -> list[float]:
        client = self._client or get_bedrock_client()
        response = client.invoke_model(
            modelId=self.model_id,
            body=json.dumps({"inputText": text}),
            contentType="application/json",
            accept="application/json",
        )
        vector = json.loads(response["body"].read())["embedding"]
        if len(vector) != self.dimension:
            raise ValueError(f"Expected dim {self.dimension}, got {len(vector)}")
        return vector

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        t_start = time.perf_counter()
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            vectors.extend(self._embed_single(text) for text in batch)
            logger.debug("Embedded %d/%d texts", len(vectors), len(texts))

        logger.info(
            "Embedding complete — %d vectors, elapsed=%.2fs",
            len(vectors), time.perf_counter() - t_start,
        )
        return vectors

    def embed_query(self, query: str) -> list[float]:
        """Single-query embedding (used by the dataset directory)."""
        return self.embed_texts([query])[0]
