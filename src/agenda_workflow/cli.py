"""Module alias so ``python -m agenda_workflow.cli`` works.

The CLI itself lives in `agenda_workflow.main`.
"""

from __future__ import annotations

from agenda_workflow.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
