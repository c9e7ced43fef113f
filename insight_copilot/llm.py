"""
llm.py — LLM capability backed by Amazon Bedrock (Converse API).

    llm = BedrockLLM()
    response = await llm.invoke("Summarise ...")
    response.content  # str

boto3 is synchronous, so each call runs in a worker thread and is bounded
by `timeout_s`. Every failure (provider error, timeout, malformed response)
surfaces as LLMCallError.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from insight_copilot.agent.errors import LLMCallError
from insight_copilot.config import (
    AWS_ACCESS_KEY_ID,
    AWS_DEFAULT_REGION,
    AWS_SECRET_ACCESS_KEY,
    LLM_MAX_TOKENS,
    LLM_MODEL_ID,
    LLM_TEMPERATURE,
    LLM_TIMEOUT_S,
    LLM_TOP_P,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LLMResponse:
    content: str


class LLMCapability(Protocol):
    async def invoke(self, prompt: str) -> LLMResponse: ...


# ─── Bedrock client (lazy singleton) ──────────────────────────────────────────
# Shared by every run; never reconfigured after creation.
_bedrock_client = None


def get_bedrock_client():
    global _bedrock_client
    if _bedrock_client is None:
        _bedrock_client = boto3.client(
            "bedrock-runtime",
            region_name=AWS_DEFAULT_REGION,
            aws_access_key_id=AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=AWS_SECRET_ACCESS_KEY or None,
        )
    return _bedrock_client


class BedrockLLM:
    """Bedrock Converse wrapper implementing the LLM capability."""

    def __init__(
        self,
        model_id: str = LLM_MODEL_ID,
        temperature: float = LLM_TEMPERATURE,
        max_tokens: int = LLM_MAX_TOKENS,
        top_p: float = LLM_TOP_P,
        timeout_s: float = LLM_TIMEOUT_S,
        client=None,
    ) -> None:
        self.model_id = model_id
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.top_p = top_p
        self.timeout_s = timeout_s
        self._client = client

    def _converse(self, prompt: str) -> str:
        client = self._client or get_bedrock_client()
        response = client.converse(
            modelId=self.model_id,
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig={
                "maxTokens": self.max_tokens,
                "temperature": self.temperature,
                "topP": self.top_p,
            },
        )
        usage = response.get("usage", {})
        logger.debug(
            "Bedrock converse — tokens_in=%s, tokens_out=%s",
            usage.get("inputTokens"), usage.get("outputTokens"),
        )
        return response["output"]["message"]["content"][0]["text"]

    async def invoke(self, prompt: str) -> LLMResponse:
        t0 = time.perf_counter()
        try:
            text = await asyncio.wait_for(
                asyncio.to_thread(self._converse, prompt), timeout=self.timeout_s
            )
        except asyncio.TimeoutError as exc:
            raise LLMCallError(f"LLM call timed out after {self.timeout_s:.1f}s") from exc
        except (ClientError, BotoCoreError) as exc:
            raise LLMCallError(f"Bedrock error: {exc}") from exc
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMCallError(f"Malformed Bedrock response: {exc!r}") from exc

        logger.info(
            "BedrockLLM: model=%s, answer_len=%d, elapsed=%.3fs",
            self.model_id, len(text), time.perf_counter() - t0,
        )
        return LLMResponse(content=text)
