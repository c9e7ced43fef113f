"""
agent_service.py — Orchestration layer between entry points and the agent.

Provides a single run() method that:
  1. Runs the query through the agent graph (Orchestrator)
  2. Persists data-grounded insights to the insight store
  3. Tracks per-request metrics and appends them to logs/metrics.jsonl
  4. Returns a clean response dict for CLI/API consumers

run() never raises for agent, store or metrics failures.
"""

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any

from insight_copilot.agent.controller import Orchestrator, RunResult, build_orchestrator
from insight_copilot.agent.errors import CopilotError
from insight_copilot.agent.nodes.conversational import FALLBACK_SUMMARY
from insight_copilot.agent.state import RunStatus, SessionContext
from insight_copilot.config import METRICS_FILE
from insight_copilot.storage.insight_store import InsightStore, StoredInsight, build_insight_store

logger = logging.getLogger(__name__)


class CopilotService:
    """Entry-point facade for running the Insight Copilot."""

    def __init__(self, orchestrator: Orchestrator | None = None,
                 store: InsightStore | None = None) -> None:
        self.orchestrator = orchestrator or build_orchestrator()
        self.store = store if store is not None else build_insight_store()
        logger.info("CopilotService initialised")

    async def run(
        self,
        query: str,
        context: SessionContext | None = None,
        cancel_event: asyncio.Event | None = None,
        on_update: Callable[[Mapping[str, Any]], None] | None = None,
    ) -> dict[str, Any]:
        """
        Execute the agent graph for a user query.

        Args:
            query:        The user's natural language question.
            context:      Connected datasets / prior transcript for the session.
            cancel_event: Set to abandon the run between hops.
            on_update:    Receives a read-only state view after every graph step.

        Returns:
            dict with keys:
                message           : str   — user-facing summary
                status            : str   — "completed" | "aborted"
                abort_reason      : str | None
                intent            : str | None
                datasets          : list  — {id, name, source_type}
                insights          : list  — insight dicts
                visualization     : dict | None — chart config, when one was built
                saved_insight_ids : list  — ids persisted to the insight store
                session_id        : str
                path              : list  — agent ids in execution order
                metrics           : dict  — hop count, latency
                error             : str | None
        """
        context = context or SessionContext()
        session_id = context.session_id or f"session-{int(time.time() * 1000)}"
        if context.session_id is None:
            context = context.model_copy(update={"session_id": session_id})

        logger.info("CopilotService.run() — session=%s, query=%r", session_id, query[:120])
        t0 = time.perf_counter()

        try:
            result = await self.orchestrator.run(
                query, context, cancel_event=cancel_event, on_update=on_update,
            )
            response = self._to_response(result, session_id)
            response["saved_insight_ids"] = await self._persist(result, session_id, query)
        except Exception as exc:
            logger.error("CopilotService.run() fatal error: %s", exc, exc_info=True)
            response = {
                "message":           FALLBACK_SUMMARY,
                "status":            RunStatus.ABORTED.value,
                "abort_reason":      None,
                "intent":            None,
                "datasets":          [],
                "insights":          [],
                "visualization":     None,
                "saved_insight_ids": [],
                "session_id":        session_id,
                "path":              [],
                "metrics":           {},
                "error":             str(exc),
            }

        elapsed = time.perf_counter() - t0
        response["metrics"]["total_service_latency_s"] = round(elapsed, 3)

        self._save_metrics(query, response)

        logger.info(
            "CopilotService.run() complete — total=%.3fs, status=%s, path=%s, insights=%d",
            elapsed, response["status"], response["path"], len(response["insights"]),
        )
        return response

    def run_sync(self, query: str, context: SessionContext | None = None) -> dict[str, Any]:
        """Blocking wrapper for CLI use."""
        return asyncio.run(self.run(query, context))

    @staticmethod
    def _to_response(result: RunResult, session_id: str) -> dict[str, Any]:
        state = result.state
        intent = state.get("classification")
        chart = state.get("visualization")
        return {
            "message":      result.summary,
            "status":       result.status.value,
            "abort_reason": result.abort_reason.value if result.abort_reason else None,
            "intent":       intent.value if intent else None,
            "datasets": [
                {"id": d.id, "name": d.name, "source_type": d.source_type}
                for d in state["relevant_datasets"]
            ],
            "insights":     [i.model_dump(mode="json") for i in result.insights],
            "visualization": chart.model_dump(mode="json") if chart else None,
            "session_id":   session_id,
            "path":         list(result.path),
            "metrics":      {"hop_count": result.hop_count},
            "error":        state.get("error"),
        }

    async def _persist(self, result: RunResult, session_id: str, query: str) -> list[str]:
        """Save insights grounded in datasets; conversational replies are not stored."""
        if not result.insights or not result.state["relevant_datasets"]:
            return []
        records = [
            StoredInsight.from_insight(i, session_id=session_id, query=query)
            for i in result.insights
        ]
        try:
            return await asyncio.to_thread(self.store.save, records)
        except CopilotError as exc:
            logger.warning("Could not persist insights: %s", exc)
            return []

    def _save_metrics(self, query: str, response: dict[str, Any]) -> None:
        """Append a metrics record to logs/metrics.jsonl."""
        record = {
            "timestamp":    time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "query":        query[:100],
            "status":       response.get("status"),
            "abort_reason": response.get("abort_reason"),
            "path":         response.get("path", []),
            "insights":     len(response.get("insights", [])),
            "error":        response.get("error") is not None,
            **response.get("metrics", {}),
        }
        try:
            with open(METRICS_FILE, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
            logger.debug("Metrics saved to %s", METRICS_FILE)
        except OSError as exc:
            logger.warning("Could not save metrics: %s", exc)
