"""
directives.py — Next-hop directives returned by agent nodes.

Every partial update carries exactly one directive under `next_agent`:

    Continue("insight_synthesis")   → engine resolves and runs that node
    TERMINATE                       → run completes with this node's output
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Continue:
    agent_id: str


@dataclass(frozen=True)
class Terminate:
    pass


TERMINATE = Terminate()

Directive = Continue | Terminate


def is_directive(value: object) -> bool:
    return isinstance(value, (Continue, Terminate))


def directive_target(directive: Directive) -> str | None:
    """Map a directive to the state's `next_agent` value (None = terminate)."""
    if isinstance(directive, Continue):
        return directive.agent_id
    if isinstance(directive, Terminate):
        return None
    raise TypeError(f"Not a directive: {directive!r}")
