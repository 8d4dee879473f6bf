"""CLI entrypoint for the planning engine.

Every command prints JSON on stdout. Exit codes:

- 0: success
- 1: unexpected error
- 2: configuration error
- 3: caller error (not found, state conflict, bad input)
- 4: approval blocked by a hard constraint, or iteration limit reached
- 5: agenda synthesis failed
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from agenda_workflow import __version__
from agenda_workflow.core.config import EngineConfig
from agenda_workflow.core.engine import PlanningEngine
from agenda_workflow.workflow.defaults import PLANMYDAY_SLUG
from agenda_workflow.workflow.errors import (
    HardConstraintBlocked,
    IterationLimitExceeded,
    NotFound,
    StateConflict,
    SynthesisFailure,
    WorkflowError,
)
from agenda_workflow.workflow.executor import ExecutorResult
from agenda_workflow.workflow.state_machine import ResumeAction

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2
EXIT_CALLER = 3
EXIT_BLOCKED = 4
EXIT_SYNTHESIS = 5


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD") from e


def _json_object(raw: str, source: str) -> dict[str, Any]:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"{source} must be a JSON object, got {type(data).__name__}")
    return data


def _load_input(args: argparse.Namespace) -> dict[str, Any]:
    """Merge ``--input-file``, ``--input`` and ``--note`` into execution input data.

    Raises:
        ValueError: Malformed JSON, a non-object document, or non-list notes.
        OSError: The input file cannot be read.
    """
    data: dict[str, Any] = {}
    if args.input_file is not None:
        data.update(_json_object(Path(args.input_file).read_text(encoding="utf-8"), "--input-file"))
    if args.input is not None:
        data.update(_json_object(args.input, "--input"))

    notes = data.get("notes")
    if isinstance(notes, str):
        data["notes"] = [notes]
    elif notes is not None and not isinstance(notes, list):
        raise ValueError(f'"notes" must be a string or a list, got {type(notes).__name__}')

    if args.note:
        data["notes"] = [*data.get("notes", []), *args.note]
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agenda-workflow",
        description="Plan a day with an LLM, scored against your rubrics",
    )
    parser.add_argument("--version", action="version", version=f"agenda-workflow-engine {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def with_user(p: argparse.ArgumentParser) -> argparse.ArgumentParser:
        p.add_argument("--user", required=True, help="User id the records belong to")
        return p

    execute = with_user(subparsers.add_parser("execute", help="Start a planning run"))
    execute.add_argument(
        "--workflow",
        default=PLANMYDAY_SLUG,
        help=f"Workflow id or slug (default: {PLANMYDAY_SLUG})",
    )
    execute.add_argument(
        "--date",
        type=_parse_date,
        default=None,
        help="Target date as YYYY-MM-DD (default: today)",
    )
    execute.add_argument("--input", default=None, help="Input data as a JSON object")
    execute.add_argument("--input-file", default=None, help="Path to a JSON file with input data")
    execute.add_argument(
        "--note",
        action="append",
        default=[],
        help="Free-text note for the planner (repeatable)",
    )

    resume = with_user(subparsers.add_parser("resume", help="Approve, reject or iterate a run"))
    resume.add_argument("execution_id", help="Execution id")
    resume.add_argument(
        "--action",
        required=True,
        choices=[a.value for a in ResumeAction],
        help="What to do with the current proposal",
    )
    resume.add_argument("--feedback", default="", help="Feedback for the next iteration")

    cancel = with_user(subparsers.add_parser("cancel", help="Cancel a run awaiting the user"))
    cancel.add_argument("execution_id", help="Execution id")

    status = with_user(subparsers.add_parser("status", help="Show a run"))
    status.add_argument("execution_id", help="Execution id")

    with_user(subparsers.add_parser("workflows", help="List workflows"))

    rubrics = with_user(subparsers.add_parser("rubrics", help="List a workflow's rubrics"))
    rubrics.add_argument("--workflow", default=PLANMYDAY_SLUG, help="Workflow id or slug")

    return parser


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _result_exit_code(result: ExecutorResult) -> int:
    if result.error is None:
        return EXIT_OK
    if isinstance(result.error, HardConstraintBlocked | IterationLimitExceeded):
        return EXIT_BLOCKED
    if isinstance(result.error, SynthesisFailure):
        return EXIT_SYNTHESIS
    return EXIT_UNEXPECTED


def main(argv: list[str] | None = None, engine: PlanningEngine | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    input_data: dict[str, Any] = {}
    if args.command == "execute":
        try:
            input_data = _load_input(args)
        except (ValueError, OSError) as e:
            print(f"Invalid input: {e}", file=sys.stderr)
            return EXIT_CALLER

    if engine is None:
        try:
            config = EngineConfig()
        except ValidationError as e:
            # Logging isn't configured yet; keep it simple and actionable.
            print("Configuration error (check your .env):", file=sys.stderr)
            print(e, file=sys.stderr)
            return EXIT_CONFIG

        config.setup_logging()
        try:
            engine = PlanningEngine(config)
        except ValueError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            return EXIT_CONFIG

    try:
        if args.command == "execute":
            result = engine.execute(
                args.user,
                args.workflow,
                args.date or date.today(),
                input_data,
            )
        elif args.command == "resume":
            result = engine.resume(args.execution_id, args.user, args.feedback, args.action)
        elif args.command == "cancel":
            result = engine.cancel(args.execution_id, args.user)
        elif args.command == "status":
            result = engine.get(args.execution_id, args.user)
        elif args.command == "workflows":
            _print_json([w.model_dump(mode="json") for w in engine.list_workflows(args.user)])
            return EXIT_OK
        elif args.command == "rubrics":
            rubrics = engine.list_rubrics(args.workflow, args.user)
            _print_json([r.model_dump(mode="json") for r in rubrics])
            return EXIT_OK
        else:
            logger.error("Unknown command", extra={"command": args.command})
            return EXIT_CONFIG

        _print_json(result.to_json())
        return _result_exit_code(result)

    except (NotFound, StateConflict) as e:
        logger.warning(e.message, extra={"code": e.code})
        print(json.dumps({"error": e.to_json()}), file=sys.stderr)
        return EXIT_CALLER

    except WorkflowError as e:
        logger.error(e.message, extra={"code": e.code})
        print(json.dumps({"error": e.to_json()}), file=sys.stderr)
        return EXIT_UNEXPECTED

    except Exception:
        logger.exception("Command failed")
        return EXIT_UNEXPECTED


if __name__ == "__main__":
    raise SystemExit(main())
