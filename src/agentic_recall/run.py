# run.py
# Entry point: reads settings, wires collaborators, prints the outcome.
#
#   agentic-recall "attachments mentioning a login timeout on issue 4711"
#
# Settings come from the environment / .env (see config.py).

import argparse
import logging

from agentic_recall import display
from agentic_recall.backend import OpenSearchBackend
from agentic_recall.config import Settings
from agentic_recall.errors import BackendError
from agentic_recall.loop import RetrievalLoop
from agentic_recall.oracles import (
    OpenAICoverageOracle,
    OpenAIEmbedder,
    OpenAIPlanOracle,
    build_client,
)


def build_loop(settings: Settings) -> RetrievalLoop:
    """Wire the production collaborators behind a RetrievalLoop."""
    backend = OpenSearchBackend.from_settings(settings)
    client = build_client(settings)

    try:
        fields = sorted(backend.field_names())
    except BackendError:
        # The planner can still work without the field list in its prompt.
        fields = []

    return RetrievalLoop(
        settings,
        backend,
        OpenAIEmbedder(client, settings),
        OpenAIPlanOracle(client, settings, fields),
        OpenAICoverageOracle(client, settings),
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="agentic-recall", description="Multi-step document retrieval.")
    parser.add_argument("query", help="Natural-language request.")
    parser.add_argument("-n", "--show", type=int, default=20, help="Hits to print.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log materialized requests.")
    parser.add_argument("--plans", action="store_true", help="Print every iteration's plan.")
    args = parser.parse_args(argv)

    display.configure_logging(logging.DEBUG if args.verbose else logging.INFO)
    settings = Settings.from_env()
    outcome = build_loop(settings).retrieve(args.query)

    if args.plans:
        for plan in outcome.plans:
            display.plan_table(plan)
    display.history_table(outcome.history)
    display.outcome(outcome, limit=args.show)
    return 1 if outcome.gave_up else 0


if __name__ == "__main__":
    raise SystemExit(main())
