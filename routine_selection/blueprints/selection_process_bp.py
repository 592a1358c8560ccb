"""
Selection Process Blueprint — turn-based routine selection API.

Endpoints (all under /api/v1):
    GET    /selection-processes                      list summaries
    POST   /selection-processes                      create (draft)
    POST   /selection-processes/compute-order        preview a turn order
    GET    /selection-processes/<id>                 detail + caller context
    PUT    /selection-processes/<id>                 edit a draft
    POST   /selection-processes/<id>/start
    POST   /selection-processes/<id>/selections      record a pick
    GET    /selection-processes/<id>/selections      ledger
    POST   /selection-processes/<id>/complete-turn
    POST   /selection-processes/<id>/cancel
    PATCH  /selection-processes/<id>/dates
    GET    /stables/<stable_id>/selection-history    archive, newest first

Identity comes from the identity middleware (g.user_id, g.organization_id).
The service layer owns all business rules and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

import routine_selection.services.selection_process_service as sps
from routine_selection.blueprints import (
    current_identity,
    json_body,
    paginate_query,
    register_error_handlers,
)
from routine_selection.models.selection import PROCESS_STATUSES
from routine_selection.services import selection_history_service
from routine_selection.services.membership_service import can_manage, get_stable
from routine_selection.services.selection_projection import process_detail, process_summary
from routine_selection.utils.errors import E, api_error

logger = logging.getLogger(__name__)

selection_process_bp = Blueprint("selection_process", __name__, url_prefix="/api/v1")

register_error_handlers(selection_process_bp, logger)


def _invalid_body():
    return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object", status=400)


def _detail(process, organization_id, user_id, status=200):
    stable = get_stable(process.stable_id, organization_id)
    return jsonify(process_detail(process, user_id, can_manage(stable, user_id))), status


# ═════════════════════════════════════════════════════════════════════════
# Processes
# ═════════════════════════════════════════════════════════════════════════


@selection_process_bp.route("/selection-processes", methods=["GET"])
def list_selection_processes():
    """List processes of the caller's organization.

    Query params: stable_id, status, limit, offset
    """
    organization_id, user_id = current_identity()
    status = request.args.get("status")
    if status and status not in PROCESS_STATUSES:
        return api_error(
            E.VALIDATION_INVALID,
            f"Invalid status. Must be one of: {sorted(PROCESS_STATUSES)}",
            status=400,
        )
    q = sps.list_processes(organization_id, stable_id=request.args.get("stable_id"), status=status)
    items, total = paginate_query(
        q, default_limit=current_app.config.get("SELECTION_LIST_DEFAULT_LIMIT", 50),
    )
    return jsonify({
        "items": [process_summary(p, user_id) for p in items],
        "total": total,
    })


@selection_process_bp.route("/selection-processes", methods=["POST"])
def create_selection_process():
    organization_id, user_id = current_identity()
    data = json_body()
    if data is None:
        return _invalid_body()
    process = sps.create_process(organization_id, user_id, data)
    return _detail(process, organization_id, user_id, status=201)


@selection_process_bp.route("/selection-processes/compute-order", methods=["POST"])
def compute_selection_order():
    """Preview the turn order a create request would produce."""
    organization_id, user_id = current_identity()
    data = json_body()
    if data is None:
        return _invalid_body()
    return jsonify(sps.preview_turn_order(organization_id, user_id, data))


@selection_process_bp.route("/selection-processes/<process_id>", methods=["GET"])
def get_selection_process(process_id):
    organization_id, user_id = current_identity()
    process = sps.get_process(process_id, organization_id)
    return _detail(process, organization_id, user_id)


@selection_process_bp.route("/selection-processes/<process_id>", methods=["PUT"])
def update_selection_process(process_id):
    organization_id, user_id = current_identity()
    data = json_body()
    if data is None:
        return _invalid_body()
    process = sps.update_process(process_id, organization_id, user_id, data)
    return _detail(process, organization_id, user_id)


@selection_process_bp.route("/selection-processes/<process_id>/start", methods=["POST"])
def start_selection_process(process_id):
    organization_id, user_id = current_identity()
    process = sps.start_process(process_id, organization_id, user_id)
    return _detail(process, organization_id, user_id)


@selection_process_bp.route("/selection-processes/<process_id>/cancel", methods=["POST"])
def cancel_selection_process(process_id):
    organization_id, user_id = current_identity()
    data = json_body()
    if data is None:
        return _invalid_body()
    process = sps.cancel_process(process_id, organization_id, user_id, reason=data.get("reason"))
    return _detail(process, organization_id, user_id)


@selection_process_bp.route("/selection-processes/<process_id>/dates", methods=["PATCH"])
def update_selection_dates(process_id):
    organization_id, user_id = current_identity()
    data = json_body()
    if data is None:
        return _invalid_body()
    process = sps.update_dates(process_id, organization_id, user_id, data)
    return _detail(process, organization_id, user_id)


# ═════════════════════════════════════════════════════════════════════════
# Turns & ledger
# ═════════════════════════════════════════════════════════════════════════


@selection_process_bp.route("/selection-processes/<process_id>/selections", methods=["POST"])
def record_selection(process_id):
    """Body: {"routine_instance_id": str}"""
    organization_id, user_id = current_identity()
    data = json_body()
    if data is None:
        return _invalid_body()
    entry = sps.record_selection(
        process_id, organization_id, user_id, data.get("routine_instance_id"),
    )
    return jsonify(entry.to_dict()), 201


@selection_process_bp.route("/selection-processes/<process_id>/selections", methods=["GET"])
def list_selections(process_id):
    organization_id, _ = current_identity()
    process = sps.get_process(process_id, organization_id)
    entries = sps.list_entries(process)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@selection_process_bp.route("/selection-processes/<process_id>/complete-turn", methods=["POST"])
def complete_turn(process_id):
    organization_id, user_id = current_identity()
    return jsonify(sps.complete_turn(process_id, organization_id, user_id))


# ═════════════════════════════════════════════════════════════════════════
# History
# ═════════════════════════════════════════════════════════════════════════


@selection_process_bp.route("/stables/<stable_id>/selection-history", methods=["GET"])
def list_selection_history(stable_id):
    organization_id, _ = current_identity()
    get_stable(stable_id, organization_id)
    q = selection_history_service.list_histories(organization_id, stable_id)
    items, total = paginate_query(
        q, default_limit=current_app.config.get("SELECTION_LIST_DEFAULT_LIMIT", 50),
    )
    return jsonify({"items": [h.to_dict() for h in items], "total": total})
