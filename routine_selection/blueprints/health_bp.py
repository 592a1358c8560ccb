"""
Health endpoints for the routine selection service.

No identity headers are required here; they sit outside the
organization-scoped API.

    GET /api/v1/health/ready   process is up and serving
    GET /api/v1/health/live    database round-trip plus open selection counts
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from routine_selection.models import db
from routine_selection.models.selection import SelectionProcess

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok", "service": "routine-selection"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Database latency and how many processes are draft / active.

    Returns 503 with the database error when the round-trip fails.
    """
    started = time.perf_counter()
    try:
        rows = db.session.execute(
            select(SelectionProcess.status, func.count())
            .where(SelectionProcess.status.in_(("draft", "active")))
            .group_by(SelectionProcess.status)
        ).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness check failed on database: %s", exc)
        return jsonify({
            "status": "degraded",
            "database": {"status": "error", "detail": str(exc)},
        }), 503

    open_counts = {"draft": 0, "active": 0}
    open_counts.update({status: count for status, count in rows})
    return jsonify({
        "status": "healthy",
        "database": {
            "status": "ok",
            "latency_ms": round((time.perf_counter() - started) * 1000, 1),
        },
        "open_processes": open_counts,
        "default_algorithm": current_app.config.get("SELECTION_DEFAULT_ALGORITHM", "manual"),
    }), 200
