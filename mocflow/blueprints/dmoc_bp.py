"""
DMOC blueprint.

    GET  /api/v1/dmoc                 ?status=&originator=&page=&page_size=
    POST /api/v1/dmoc                 create draft
    GET  /api/v1/dmoc/<id>
    PUT  /api/v1/dmoc/<id>            update draft
    POST /api/v1/dmoc/<id>/submit
    POST /api/v1/dmoc/<id>/approve    {remarks?}
    POST /api/v1/dmoc/<id>/reject     {remarks?}
    GET  /api/v1/dmoc/<id>/activity

Writes (POST/PUT) require the editor API role.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import mocflow.services.dmoc_service as dmoc
from mocflow.auth import require_role, resolve_actor
from mocflow.blueprints import json_body, page_params
from mocflow.models.audit import activity_for
from mocflow.models.dmoc import DMOC_STATUSES
from mocflow.utils.errors import E, api_error
from mocflow.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

dmoc_bp = Blueprint("dmoc", __name__, url_prefix="/api/v1/dmoc")


def _parsed_body():
    """(data, error_response) with date fields converted."""
    data = json_body()
    if data is None:
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    for field in ("target_implementation_date", "planned_end_date"):
        if field in data:
            try:
                data[field] = parse_date_input(data[field])
            except ValueError as exc:
                return None, api_error(E.VALIDATION_INVALID, f"{field}: {exc}")
    return data, None


def _remarks():
    data = json_body()
    if data is None:
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    remarks = data.get("remarks")
    if remarks is not None and not isinstance(remarks, str):
        return None, api_error(E.VALIDATION_INVALID, "remarks must be a string")
    return remarks, None


@dmoc_bp.route("", methods=["GET"])
def list_dmocs():
    status = request.args.get("status")
    if status and status not in DMOC_STATUSES:
        return api_error(E.VALIDATION_INVALID, f"status must be one of: {', '.join(DMOC_STATUSES)}")
    page, page_size = page_params()
    result = dmoc.list_dmocs(
        status=status,
        originator=request.args.get("originator"),
        page=page,
        page_size=page_size,
    )
    return jsonify(result), 200


@dmoc_bp.route("", methods=["POST"])
@require_role("editor")
def create_draft():
    data, err = _parsed_body()
    if err:
        return err
    return jsonify(dmoc.create_draft(data, resolve_actor())), 201


@dmoc_bp.route("/<int:dmoc_id>", methods=["GET"])
def get_dmoc(dmoc_id):
    return jsonify(dmoc.get(dmoc_id)), 200


@dmoc_bp.route("/<int:dmoc_id>", methods=["PUT"])
@require_role("editor")
def update_draft(dmoc_id):
    data, err = _parsed_body()
    if err:
        return err
    return jsonify(dmoc.update_draft(dmoc_id, data, resolve_actor())), 200


@dmoc_bp.route("/<int:dmoc_id>/submit", methods=["POST"])
@require_role("editor")
def submit(dmoc_id):
    return jsonify(dmoc.submit(dmoc_id, resolve_actor())), 200


@dmoc_bp.route("/<int:dmoc_id>/approve", methods=["POST"])
@require_role("editor")
def approve(dmoc_id):
    remarks, err = _remarks()
    if err:
        return err
    return jsonify(dmoc.approve(dmoc_id, resolve_actor(), remarks=remarks)), 200


@dmoc_bp.route("/<int:dmoc_id>/reject", methods=["POST"])
@require_role("editor")
def reject(dmoc_id):
    remarks, err = _remarks()
    if err:
        return err
    return jsonify(dmoc.reject(dmoc_id, resolve_actor(), remarks=remarks)), 200


@dmoc_bp.route("/<int:dmoc_id>/activity", methods=["GET"])
def activity(dmoc_id):
    dmoc.get(dmoc_id)
    return jsonify({"items": activity_for(dmoc.ENTITY, dmoc_id)}), 200
