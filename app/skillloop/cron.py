"""
Scheduled jobs exposed as HTTP endpoints for an external daily cron.

Callers authenticate with `Authorization: Bearer $CRON_SECRET`. With no secret
configured the endpoints refuse every call.
"""
from flask import Blueprint, current_app, jsonify, request

from app.skillloop.db import db_session
from app.skillloop.security import bearer_token_matches

bp = Blueprint("cron", __name__)


def _authorized() -> bool:
    return bearer_token_matches(request, current_app.config.get("CRON_SECRET") or "")


@bp.route("/reminders", methods=["GET", "POST"])
def reminders():
    from app.skillloop.modules.trainings.reminders import send_reminders

    if not _authorized():
        return jsonify({"success": False, "message": "Unauthorized"}), 401
    s = db_session()
    result = send_reminders(s)
    s.commit()
    current_app.logger.info("cron reminders: %s", result)
    return jsonify({"success": True, **result})


@bp.route("/journeys", methods=["GET", "POST"])
def journeys():
    from app.skillloop.modules.journeys.engine import check_overdue_phases

    if not _authorized():
        return jsonify({"success": False, "message": "Unauthorized"}), 401
    s = db_session()
    overdue = check_overdue_phases(s)
    s.commit()
    current_app.logger.info("cron journeys: %d phase(s) marked overdue", overdue)
    return jsonify({"success": True, "overdue": overdue})
