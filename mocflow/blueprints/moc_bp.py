"""
MOC request blueprint.

Endpoint groups:
  CRUD             GET/POST /api/v1/moc-requests
                   GET/PUT/DELETE /api/v1/moc-requests/<id>
  Named views      GET /api/v1/moc-requests/<view>
                   (active, inactive, approved, closed, drafts, for-restoration, bypass)
  Workflow         POST /<id>/submit
                   POST /<id>/approvers/<approver_id>/complete   {approved, remarks?}
                   POST /<id>/advance-stage                      {remarks?}
                   POST /<id>/mark-inactive
                   POST /<id>/reactivate
  Activity         GET  /<id>/activity

Every POST/PUT/DELETE requires the editor API role (admin inherits it).

This layer parses and shape-checks input (400); business rules, state checks
and commits live in mocflow.services.moc_workflow.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, jsonify, request

import mocflow.services.moc_workflow as workflow
from mocflow.auth import require_role, resolve_actor
from mocflow.blueprints import json_body, page_params
from mocflow.models.audit import activity_for
from mocflow.utils.errors import E, api_error
from mocflow.utils.helpers import parse_bool, parse_date, parse_date_input

logger = logging.getLogger(__name__)

moc_bp = Blueprint("moc", __name__, url_prefix="/api/v1/moc-requests")

_DATE_FIELDS = ("target_implementation_date", "planned_restoration_date")


def _parse_payload(data: dict):
    """Convert date strings in place. Returns an error response or None."""
    for field in _DATE_FIELDS:
        if field in data:
            try:
                data[field] = parse_date_input(data[field])
            except ValueError as exc:
                return api_error(E.VALIDATION_INVALID, f"{field}: {exc}")
    return None


def _list_filters() -> dict:
    args = request.args
    status_in = [s.strip() for s in args.get("status_in", "").split(",") if s.strip()]
    inactive_over = args.get("inactive_over_days", type=int)
    if inactive_over is None and parse_bool(args.get("inactive_over_alert")):
        inactive_over = current_app.config.get("MOC_INACTIVE_ALERT_DAYS", 60)
    return {
        "request_type": args.get("request_type"),
        "status": args.get("status"),
        "status_in": status_in,
        "stage": args.get("stage"),
        "risk_level": args.get("risk_level"),
        "department_id": args.get("department_id", type=int),
        "is_temporary": parse_bool(args.get("is_temporary")),
        "search": args.get("search"),
        "date_from": parse_date(args.get("date_from")),
        "date_to": parse_date(args.get("date_to")),
        "for_restoration": parse_bool(args.get("for_restoration")),
        "inactive_over_days": inactive_over if inactive_over and inactive_over > 0 else None,
    }


def _list(view=None):
    page, page_size = page_params()
    result = workflow.list_requests(
        _list_filters(),
        view=view,
        sort_by=request.args.get("sort_by"),
        descending=bool(parse_bool(request.args.get("sort_desc"))),
        page=page,
        page_size=page_size,
    )
    return jsonify(result), 200


# ═════════════════════════════════════════════════════════════════════════
# CRUD
# ═════════════════════════════════════════════════════════════════════════


@moc_bp.route("", methods=["GET"])
def list_requests():
    """Filtered, sorted, paged list.

    Query params: request_type, status, status_in (comma list), stage,
    risk_level, department_id, is_temporary, search, date_from, date_to,
    for_restoration, inactive_over_days, inactive_over_alert (uses
    MOC_INACTIVE_ALERT_DAYS), sort_by, sort_desc, page, page_size.
    """
    return _list()


@moc_bp.route("/<view>", methods=["GET"])
def list_view(view):
    return _list(view=view)


@moc_bp.route("", methods=["POST"])
@require_role("editor")
def create_request():
    """Create a MOC request.

    Body: {request_type, title, target_implementation_date, ..., save_as_draft?}
    Returns: request detail (201).
    """
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not data.get("request_type"):
        return api_error(E.VALIDATION_REQUIRED, "request_type is required")
    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    err = _parse_payload(data)
    if err:
        return err

    save_as_draft = data.pop("save_as_draft", True)
    if not isinstance(save_as_draft, bool):
        return api_error(E.VALIDATION_INVALID, "save_as_draft must be a boolean")

    result = workflow.create_request(data, resolve_actor(), save_as_draft=save_as_draft)
    return jsonify(result), 201


@moc_bp.route("/<int:moc_id>", methods=["GET"])
def get_request(moc_id):
    return jsonify(workflow.get_request(moc_id)), 200


@moc_bp.route("/<int:moc_id>", methods=["PUT"])
@require_role("editor")
def update_request(moc_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    err = _parse_payload(data)
    if err:
        return err
    return jsonify(workflow.update_request(moc_id, data, resolve_actor())), 200


@moc_bp.route("/<int:moc_id>", methods=["DELETE"])
@require_role("editor")
def delete_request(moc_id):
    workflow.delete_request(moc_id, resolve_actor())
    return "", 204


# ═════════════════════════════════════════════════════════════════════════
# Workflow actions
# ═════════════════════════════════════════════════════════════════════════


@moc_bp.route("/<int:moc_id>/submit", methods=["POST"])
@require_role("editor")
def submit(moc_id):
    return jsonify(workflow.submit(moc_id, resolve_actor())), 200


@moc_bp.route("/<int:moc_id>/approvers/<int:approver_id>/complete", methods=["POST"])
@require_role("editor")
def complete_approver(moc_id, approver_id):
    """Record an approver's decision. Never advances the stage.

    Body: {approved: bool, remarks?: str}
    """
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if "approved" not in data:
        return api_error(E.VALIDATION_REQUIRED, "approved is required")
    if not isinstance(data["approved"], bool):
        return api_error(E.VALIDATION_INVALID, "approved must be true or false")
    remarks = data.get("remarks")
    if remarks is not None and not isinstance(remarks, str):
        return api_error(E.VALIDATION_INVALID, "remarks must be a string")

    result = workflow.complete_approver(
        moc_id, approver_id, data["approved"], resolve_actor(), remarks=remarks,
    )
    return jsonify(result), 200


@moc_bp.route("/<int:moc_id>/advance-stage", methods=["POST"])
@require_role("editor")
def advance_stage(moc_id):
    """Advance to the next stage.

    Body: {remarks?: str}
    Errors: 409 ERR_STAGE_GATE_BLOCKED with details.required_roles when
    gate approvers are missing; 409 ERR_CONFLICT_STATE at the final stage.
    """
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    remarks = data.get("remarks")
    if remarks is not None and not isinstance(remarks, str):
        return api_error(E.VALIDATION_INVALID, "remarks must be a string")
    return jsonify(workflow.advance_stage(moc_id, resolve_actor(), remarks=remarks)), 200


@moc_bp.route("/<int:moc_id>/mark-inactive", methods=["POST"])
@require_role("editor")
def mark_inactive(moc_id):
    return jsonify(workflow.mark_inactive(moc_id, resolve_actor())), 200


@moc_bp.route("/<int:moc_id>/reactivate", methods=["POST"])
@require_role("editor")
def reactivate(moc_id):
    return jsonify(workflow.reactivate(moc_id, resolve_actor())), 200


@moc_bp.route("/<int:moc_id>/activity", methods=["GET"])
def activity(moc_id):
    workflow.get_request(moc_id)  # 404 for unknown ids
    return jsonify({"items": activity_for(workflow.ENTITY, moc_id)}), 200
