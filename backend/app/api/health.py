"""Health check endpoint."""

from http import HTTPStatus

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models.run import STEP_PENDING, ScheduledWorkflowStep

bp = Blueprint("health", __name__)


@bp.get("/health")
def health() -> tuple[object, int]:
    """Return the service health status together with the scheduler backlog."""
    try:
        db.session.execute(text("SELECT 1"))
        pending = ScheduledWorkflowStep.query.filter_by(status=STEP_PENDING).count()
    except SQLAlchemyError:
        current_app.logger.exception("Health check failed")
        db.session.rollback()
        return jsonify({"status": "error", "database": "unavailable"}), HTTPStatus.SERVICE_UNAVAILABLE
    return jsonify({"status": "ok", "pending_steps": pending}), HTTPStatus.OK
