"""Run log model definition."""

from __future__ import annotations

from datetime import datetime

from ..extensions import db

LOG_SOURCES = ("trigger", "engine", "action", "scheduler")


class RunLog(db.Model):
    """Persisted log entry written while workflows are dispatched and executed."""

    __tablename__ = "run_logs"

    id = db.Column(db.Integer, primary_key=True)
    source = db.Column(db.Enum(*LOG_SOURCES, name="runlog_source"), nullable=False)
    workflow_run_id = db.Column(db.Integer, nullable=True, index=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover - repr not critical for tests
        return f"<RunLog {self.id} from {self.source}>"
