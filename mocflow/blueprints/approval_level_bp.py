"""
Approval Level Registry blueprint.

    GET    /api/v1/approval-levels            ?include_inactive=true
    POST   /api/v1/approval-levels            {role_key, order?, is_active?}   (admin)
    GET    /api/v1/approval-levels/<id>
    PUT    /api/v1/approval-levels/<id>       {role_key?, order?, is_active?}  (admin)
    DELETE /api/v1/approval-levels/<id>                                        (admin)
"""

import logging

from flask import Blueprint, jsonify, request

import mocflow.services.approval_level_service as levels
from mocflow.auth import require_role, resolve_actor
from mocflow.blueprints import json_body
from mocflow.utils.errors import E, api_error
from mocflow.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

approval_level_bp = Blueprint("approval_levels", __name__, url_prefix="/api/v1/approval-levels")


@approval_level_bp.route("", methods=["GET"])
def list_levels():
    include_inactive = parse_bool(request.args.get("include_inactive")) or False
    return jsonify({"items": levels.list_levels(active_only=not include_inactive)}), 200


@approval_level_bp.route("/<int:level_id>", methods=["GET"])
def get_level(level_id):
    return jsonify(levels.get_level(level_id)), 200


@approval_level_bp.route("", methods=["POST"])
@require_role("admin")
def create_level():
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    if not data.get("role_key"):
        return api_error(E.VALIDATION_REQUIRED, "role_key is required")
    return jsonify(levels.create_level(data, resolve_actor())), 201


@approval_level_bp.route("/<int:level_id>", methods=["PUT"])
@require_role("admin")
def update_level(level_id):
    data = json_body()
    if data is None:
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return jsonify(levels.update_level(level_id, data, resolve_actor())), 200


@approval_level_bp.route("/<int:level_id>", methods=["DELETE"])
@require_role("admin")
def delete_level(level_id):
    levels.delete_level(level_id, resolve_actor())
    return "", 204
