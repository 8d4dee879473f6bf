#!/usr/bin/env python3
"""Programmatic planning example.

This demonstrates using the engine components directly:

* load settings from `.env` (AGENDA_LLM_API_KEY etc.)
* plan a day with the built-in `planmyday` workflow
* iterate once with feedback, then approve if no hard rubric fails

Context can come from a fixture file via AGENDA_CONTEXT_FIXTURE_PATH.
"""

from __future__ import annotations

import argparse
import json
from datetime import date
from typing import Sequence

from agenda_workflow.core.config import EngineConfig
from agenda_workflow.core.engine import PlanningEngine


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Plan a day (programmatic example).")
    parser.add_argument("--user", default="demo-user", help="User id")
    parser.add_argument("--date", default=date.today().isoformat(), help="YYYY-MM-DD")
    parser.add_argument("--feedback", default="", help="Optional feedback for one iteration")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = EngineConfig()
    config.setup_logging()
    engine = PlanningEngine(config)

    result = engine.execute(args.user, "planmyday", date.fromisoformat(args.date))
    if result.error is not None:
        print(f"Generation failed: {result.error.message}")
        return 1

    if args.feedback:
        result = engine.resume(result.execution.id, args.user, args.feedback, "iterate")
        if result.error is not None:
            print(f"Iteration failed: {result.error.message}")
            return 1

    proposal = result.proposal
    assert proposal is not None
    print(proposal.summary)
    print(f"Score: {proposal.aggregate_score}")
    for item in proposal.items:
        print(f"  {item.start_time:%H:%M}-{item.end_time:%H:%M}  {item.title}")

    final = engine.resume(result.execution.id, args.user, None, "approve")
    print(json.dumps(final.to_json()["execution"]["status"]))
    if final.error is not None:
        print(final.error.message)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
