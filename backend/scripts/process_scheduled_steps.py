"""Run one scheduler pass; meant to be invoked from cron or a job runner."""
from __future__ import annotations

import json
import pathlib
import sys

ROOT = pathlib.Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import create_app
from backend.app.workflow.scheduler import process_scheduled_steps


def main() -> int:
    app = create_app()
    with app.app_context():
        result = process_scheduled_steps()
    print(json.dumps(result.to_dict()))
    return 1 if result.errors else 0


if __name__ == "__main__":
    raise SystemExit(main())
