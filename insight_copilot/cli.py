"""
cli.py — Command-line interface for the Insight Copilot.

Usage:
    # Single query
    python -m insight_copilot.cli --query "What can you do?"

    # Single query with connected datasets (catalog JSON file)
    python -m insight_copilot.cli --query "Show me sales trends" --datasets catalog.json

    # Interactive mode (one session; transcript carried between questions)
    python -m insight_copilot.cli
"""

import argparse
import textwrap

# ── Bootstrap logging before any other project imports ────────────────────────
from insight_copilot.logging_config import setup_logging
setup_logging("INFO")

from insight_copilot.agent.controller import build_orchestrator
from insight_copilot.agent.state import Message, SessionContext
from insight_copilot.config import MAX_HOPS
from insight_copilot.datasets.directory import load_catalog
from insight_copilot.services.agent_service import CopilotService

_BANNER = """
╔══════════════════════════════════════════════════════════╗
║   Insight Copilot — AI analytics assistant               ║
║   Type your question and press Enter. Ctrl+C to exit.    ║
╚══════════════════════════════════════════════════════════╝
"""

_DIVIDER = "─" * 60


def print_response(response: dict) -> None:
    """Pretty-print the agent response to stdout."""
    print(f"\n{_DIVIDER}")

    answer = response.get("message", "(no answer)")
    print("\n📝  ANSWER:")
    for line in textwrap.wrap(answer, width=78):
        print(f"    {line}")

    path = response.get("path", [])
    print(f"\n🔀  AGENTS:  {' → '.join(path) if path else 'none'}  [{response.get('status')}]")
    if response.get("abort_reason"):
        print(f"    abort reason: {response['abort_reason']}")

    datasets = response.get("datasets", [])
    if datasets:
        print(f"\n📚  DATASETS ({len(datasets)}):")
        for d in datasets[:5]:
            print(f"    {d['name']} ({d['source_type']})")

    insights = response.get("insights", [])
    if insights:
        print(f"\n💡  INSIGHTS ({len(insights)}):")
        for i in insights:
            print(f"    [{i['type']}] {i['title']}  ({i['confidence']:.2f})")

    chart = response.get("visualization")
    if chart:
        print(f"\n📊  CHART:  {chart['type']} — {chart['title']}  ({len(chart.get('data', []))} points)")

    error = response.get("error")
    if error:
        print(f"\n⚠️   ERROR:  {error}")

    metrics = response.get("metrics", {})
    if "total_service_latency_s" in metrics:
        print(f"\n⏱️   TIMING:  {metrics['total_service_latency_s']:.2f}s "
              f"over {metrics.get('hop_count', 0)} hop(s)")

    print(f"\n{_DIVIDER}\n")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Insight Copilot — multi-agent analytics assistant"
    )
    parser.add_argument(
        "--query", "-q",
        type=str,
        default=None,
        help="Single query string. If omitted, enters interactive mode.",
    )
    parser.add_argument(
        "--datasets", "-d",
        type=str,
        default=None,
        help="Catalog JSON file of datasets connected to this session.",
    )
    parser.add_argument(
        "--max-hops",
        type=int,
        default=MAX_HOPS,
        help=f"Maximum agent hops per query (default: {MAX_HOPS})",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args()

    # Re-init logging if the user changed the level
    if args.log_level != "INFO":
        setup_logging(args.log_level)

    datasets = load_catalog(args.datasets) if args.datasets else []
    service = CopilotService(orchestrator=build_orchestrator(max_hops=args.max_hops))
    context = SessionContext(datasets=datasets)

    if args.query:
        # ─── Single-shot mode ──────────────────────────────────────────────────
        print_response(service.run_sync(args.query, context))
        return

    # ─── Interactive mode ──────────────────────────────────────────────────────
    print(_BANNER)
    history: list[Message] = []
    while True:
        try:
            query = input("❓ Your question: ").strip()
            if not query:
                continue
            if query.lower() in {"exit", "quit", "q"}:
                print("Goodbye!")
                break
            response = service.run_sync(query, context.model_copy(update={"history": history}))
            context = context.model_copy(update={"session_id": response["session_id"]})
            history = [
                *history,
                Message(role="user", content=query),
                Message(role="assistant", content=response["message"]),
            ]
            print_response(response)
        except KeyboardInterrupt:
            print("\nGoodbye!")
            break
        except Exception as exc:
            print(f"\n❌  Unexpected error: {exc}\n")


if __name__ == "__main__":
    main()
