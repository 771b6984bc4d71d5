"""
Approval Level Registry service.

Admin CRUD over the chain template.  Nothing here touches MocApprover rows:
chains already built are snapshots and stay as they are.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from mocflow.core.exceptions import NotFoundError, ValidationError
from mocflow.models import db
from mocflow.models.approval_level import ApprovalLevel
from mocflow.models.audit import write_activity
from mocflow.models.lookup import Role
from mocflow.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

ENTITY = "approval_level"


def _require_role(role_key) -> str:
    if not isinstance(role_key, str) or not role_key.strip():
        raise ValidationError("role_key is required.", details={"role_key": "required"})
    role_key = role_key.strip()
    role = db.session.execute(select(Role).where(Role.key == role_key)).scalar_one_or_none()
    if role is None or not role.is_active:
        raise ValidationError(
            f"Role '{role_key}' does not exist or is inactive.", details={"role_key": role_key},
        )
    return role_key


def _require_order(order) -> int:
    if isinstance(order, bool) or not isinstance(order, int):
        raise ValidationError("order must be an integer.", details={"order": order})
    return order


def _get(level_id: int) -> ApprovalLevel:
    level = db.session.get(ApprovalLevel, level_id)
    if level is None:
        raise NotFoundError(resource="ApprovalLevel", resource_id=level_id)
    return level


def list_levels(active_only: bool = True) -> list[dict]:
    query = ApprovalLevel.query
    if active_only:
        query = query.filter_by(is_active=True)
    levels = query.order_by(ApprovalLevel.order.asc(), ApprovalLevel.id.asc()).all()
    return [lv.to_dict() for lv in levels]


def get_level(level_id: int) -> dict:
    return _get(level_id).to_dict()


def create_level(data: dict, actor) -> dict:
    """Append a level; ``order`` defaults to max(order) + 1."""
    role_key = _require_role(data.get("role_key"))
    order = data.get("order")
    if order is None:
        current_max = db.session.execute(select(func.max(ApprovalLevel.order))).scalar()
        order = (current_max or 0) + 1
    else:
        order = _require_order(order)
    is_active = data.get("is_active", True)
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean.", details={"is_active": is_active})

    level = ApprovalLevel(order=order, role_key=role_key, is_active=is_active, created_by=actor.name)
    db.session.add(level)
    db.session.flush()
    write_activity(
        entity_type=ENTITY, entity_id=level.id, action="created", actor=actor,
        diff={"order": order, "role_key": role_key, "is_active": is_active},
    )
    commit_or_raise("ApprovalLevel", level.id)
    logger.info(
        "Approval level created id=%s order=%s role=%s", level.id, order, role_key,
        extra={"approval_level_id": level.id, "actor_id": actor.id},
    )
    return level.to_dict()


def update_level(level_id: int, data: dict, actor) -> dict:
    level = _get(level_id)
    changes = {}
    if "role_key" in data:
        changes["role_key"] = _require_role(data["role_key"])
    if "order" in data:
        changes["order"] = _require_order(data["order"])
    if "is_active" in data:
        if not isinstance(data["is_active"], bool):
            raise ValidationError("is_active must be a boolean.", details={"is_active": data["is_active"]})
        changes["is_active"] = data["is_active"]

    diff = {}
    for field, value in changes.items():
        old = getattr(level, field)
        if old != value:
            diff[field] = {"old": old, "new": value}
            setattr(level, field, value)
    if diff:
        level.updated_at = datetime.now(timezone.utc)
        level.updated_by = actor.name
        write_activity(entity_type=ENTITY, entity_id=level.id, action="updated", actor=actor, diff=diff)
        commit_or_raise("ApprovalLevel", level.id)
        logger.info(
            "Approval level updated id=%s fields=%s", level.id, sorted(diff),
            extra={"approval_level_id": level.id, "actor_id": actor.id},
        )
    return level.to_dict()


def delete_level(level_id: int, actor) -> None:
    level = _get(level_id)
    snapshot = {"order": level.order, "role_key": level.role_key}
    db.session.delete(level)
    write_activity(entity_type=ENTITY, entity_id=level_id, action="deleted", actor=actor, diff=snapshot)
    commit_or_raise("ApprovalLevel", level_id)
    logger.info(
        "Approval level deleted id=%s role=%s", level_id, snapshot["role_key"],
        extra={"approval_level_id": level_id, "actor_id": actor.id},
    )
