"""
retriever.py — Data-retrieval node.

Looks up the datasets relevant to the query and decides the next hop:

  no datasets                              → terminal guidance summary
  datasets + router picks a working agent  → Continue(that agent)
  datasets + router picks retrieval again  → terminal listing of what was found
"""

import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from insight_copilot.agent.directives import TERMINATE, Continue
from insight_copilot.agent.errors import ExternalCallError
from insight_copilot.agent.nodes.base import AgentNode
from insight_copilot.agent.router import Router
from insight_copilot.agent.state import Message, merge_state, snapshot
from insight_copilot.config import DATASET_TOP_K
from insight_copilot.datasets.directory import DatasetDirectory, rank_by_overlap
from insight_copilot.observability import EventSink

logger = logging.getLogger(__name__)

NO_DATASETS_SUMMARY = (
    "I couldn't find any datasets related to your question. "
    "Connect a data source or upload a file, then ask again."
)
UNAVAILABLE_SUMMARY = (
    "I'm having trouble reaching your data sources right now. "
    "Please try again in a moment, or ask me what I can do!"
)


class DataRetrievalAgent(AgentNode):
    def __init__(
        self,
        directory: DatasetDirectory,
        router: Router,
        agent_id: str = "retriever",
        top_k: int = DATASET_TOP_K,
        events: EventSink | None = None,
    ) -> None:
        super().__init__(agent_id, events)
        self.directory = directory
        self.router = router
        self.top_k = top_k

    async def run(self, state: Mapping[str, Any]) -> dict[str, Any]:
        query = state["user_query"]
        t0 = time.perf_counter()
        datasets = await self.directory.find(query, limit=self.top_k)
        if not datasets and state.get("relevant_datasets"):
            # Directory knows nothing beyond what the session already connected
            datasets = rank_by_overlap(query, state["relevant_datasets"])[: self.top_k]
        logger.info(
            "DataRetrievalAgent: %d datasets found, elapsed=%.3fs",
            len(datasets), time.perf_counter() - t0,
        )
        metadata = {
            "datasets_searched": len(datasets),
            "retrieved_at": datetime.now(timezone.utc).isoformat(),
        }

        if not datasets:
            return {
                "relevant_datasets": [],
                "summary": NO_DATASETS_SUMMARY,
                "messages": [Message(role="assistant", content=NO_DATASETS_SUMMARY)],
                "metadata": metadata,
                "next_agent": TERMINATE,
            }

        update = {"relevant_datasets": datasets, "metadata": metadata}
        # Ask the router again against the view this node is about to produce
        successor = self.router.classify(query, snapshot(merge_state(state, update)))
        if successor not in (self.agent_id, self.router.retrieval_agent, self.router.default_agent):
            logger.info("DataRetrievalAgent: handing off to '%s'", successor)
            return {**update, "next_agent": Continue(successor)}

        names = ", ".join(d.name for d in datasets)
        summary = f"Found {len(datasets)} relevant datasets: {names}"
        return {
            **update,
            "summary": summary,
            "messages": [Message(role="assistant", content=summary)],
            "next_agent": TERMINATE,
        }

    def fallback(self, state: Mapping[str, Any], error: ExternalCallError) -> dict[str, Any]:
        return {
            "summary": UNAVAILABLE_SUMMARY,
            "messages": [Message(role="assistant", content=UNAVAILABLE_SUMMARY)],
            "metadata": {"retrieval_error": str(error)},
            "next_agent": TERMINATE,
        }
