"""
errors.py — Exception hierarchy for the orchestration core.

ExternalCallError subclasses are recoverable: the node that made the call
substitutes its fallback update. RoutingError subclasses are handled by the
engine's safety net.
"""


class CopilotError(Exception):
    """Base class for all Insight Copilot errors."""


class ExternalCallError(CopilotError):
    """An outbound call (LLM, data source, search index) failed or timed out."""


class LLMCallError(ExternalCallError):
    pass


class DataSourceError(ExternalCallError):
    pass


class SearchError(ExternalCallError):
    """Web search provider failed, timed out or returned garbage."""


class RoutingError(CopilotError):
    """The graph cannot decide or resolve the next hop."""


class UnknownAgentError(RoutingError):
    def __init__(self, agent_id: str) -> None:
        super().__init__(f"Unknown agent id: {agent_id!r}")
        self.agent_id = agent_id


class MissingDirectiveError(RoutingError):
    def __init__(self, agent_id: str, got: object = None) -> None:
        super().__init__(
            f"Agent {agent_id!r} returned no valid next_agent directive (got {got!r})"
        )
        self.agent_id = agent_id


class InsightNotFoundError(CopilotError):
    def __init__(self, insight_id: str) -> None:
        super().__init__(f"Insight not found: {insight_id!r}")
        self.insight_id = insight_id
