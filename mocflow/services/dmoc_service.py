"""
DMOC lifecycle service.

    draft -> submitted -> approved | rejected

  - validate_draft_payload() runs on create, update and again on submit, so a
    stale or partial draft cannot be submitted.
  - dmoc_number is assigned on submit from the shared DMOC counter.
  - approve/reject append their remarks to additional_remarks; earlier text
    is never overwritten.
  - db.session.commit() happens only in this file.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import select

from mocflow.core.exceptions import NotFoundError, StateTransitionError, ValidationError
from mocflow.models import db
from mocflow.models.audit import write_activity
from mocflow.models.dmoc import DMOC_NATURES, DmocRequest, validate_dmoc_transition
from mocflow.models.lookup import Department
from mocflow.services.control_number import generate_dmoc_number
from mocflow.utils.helpers import clamp_page, commit_or_raise, paginate, parse_date_input

logger = logging.getLogger(__name__)

ENTITY = "dmoc_request"
DEFAULT_MAX_TEMPORARY_DAYS = 90

DRAFT_FIELDS = (
    "title",
    "change_originator_user_id",
    "change_originator_name",
    "originator_position",
    "area_or_department_id",
    "nature_of_change",
    "target_implementation_date",
    "planned_end_date",
    "description_of_change",
    "reason_for_change",
    "affected_equipment",
    "attachments_or_reference_links",
    "additional_remarks",
)
_DATE_FIELDS = ("target_implementation_date", "planned_end_date")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _max_temporary_days() -> int:
    return int(current_app.config.get("DMOC_MAX_TEMPORARY_DAYS", DEFAULT_MAX_TEMPORARY_DAYS))


def validate_draft_payload(payload: dict, max_days: int = DEFAULT_MAX_TEMPORARY_DAYS) -> None:
    """Check the DMOC field rules; raise ValidationError naming the first violated rule.

    ``payload`` holds the full field set with dates already parsed.
    """
    required = (
        ("title", "Title is required."),
        ("change_originator_name", "Change originator name is required."),
        ("description_of_change", "Description of change is required."),
        ("reason_for_change", "Reason for change is required."),
    )
    for field, message in required:
        if not (payload.get(field) or "").strip():
            raise ValidationError(message, details={field: "required"})

    nature = payload.get("nature_of_change") or "permanent"
    if nature not in DMOC_NATURES:
        raise ValidationError(
            f"nature_of_change must be one of: {', '.join(DMOC_NATURES)}",
            details={"nature_of_change": nature},
        )
    if nature != "temporary":
        return

    start = payload.get("target_implementation_date")
    end = payload.get("planned_end_date")
    if start is None:
        raise ValidationError(
            "Target implementation date is required for temporary changes.",
            details={"target_implementation_date": "required"},
        )
    if end is None:
        raise ValidationError(
            "Planned end date is required for temporary changes.",
            details={"planned_end_date": "required"},
        )
    if end < start:
        raise ValidationError(
            "Planned end date must be on or after target implementation date.",
            details={"planned_end_date": "before_target"},
        )
    span = (end - start).days
    if span > max_days:
        raise ValidationError(
            f"Temporary change must be within {max_days} days of implementation.",
            details={"planned_end_date": "exceeds_max_days", "days": span, "max_days": max_days},
        )


def _coerce(data: dict) -> dict:
    out = {}
    for field in DRAFT_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in _DATE_FIELDS:
            try:
                value = parse_date_input(value)
            except ValueError as exc:
                raise ValidationError(f"{field}: {exc}", details={field: "invalid"}) from exc
        elif field == "area_or_department_id":
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationError(
                    "area_or_department_id must be an integer.",
                    details={"area_or_department_id": "invalid"},
                )
        elif value is not None:
            if not isinstance(value, str):
                raise ValidationError(f"{field} must be a string.", details={field: "invalid"})
            value = value.strip()
        out[field] = value
    return out


def _department_name(department_id):
    """Snapshot of Department.name; None when no department is given."""
    if department_id is None:
        return None
    dept = db.session.get(Department, department_id)
    if dept is None:
        raise ValidationError(
            "Invalid department ID.", details={"area_or_department_id": department_id},
        )
    return dept.name


def _load(dmoc_id: int, *, for_update: bool = False) -> DmocRequest:
    stmt = select(DmocRequest).where(DmocRequest.id == dmoc_id)
    if for_update:
        stmt = stmt.with_for_update()
    entity = db.session.execute(stmt).scalar_one_or_none()
    if entity is None:
        raise NotFoundError(resource="DmocRequest", resource_id=dmoc_id)
    return entity


def _snapshot(entity: DmocRequest) -> dict:
    return {field: getattr(entity, field) for field in DRAFT_FIELDS}


# ── Draft maintenance ────────────────────────────────────────────────────────


def create_draft(data: dict, actor) -> dict:
    fields = _coerce(data)
    fields.setdefault("nature_of_change", "permanent")
    if fields["nature_of_change"] is None:
        fields["nature_of_change"] = "permanent"
    validate_draft_payload(fields, _max_temporary_days())
    department_name = _department_name(fields.get("area_or_department_id"))

    entity = DmocRequest(status="draft", created_by=actor.name)
    for field, value in fields.items():
        setattr(entity, field, value)
    entity.area_or_department_name = department_name
    if not entity.change_originator_user_id:
        entity.change_originator_user_id = actor.id

    db.session.add(entity)
    db.session.flush()
    write_activity(
        entity_type=ENTITY, entity_id=entity.id, action="created", actor=actor,
        diff={"title": entity.title, "nature_of_change": entity.nature_of_change},
    )
    commit_or_raise("DmocRequest", entity.id)
    logger.info(
        "DMOC draft created id=%s", entity.id,
        extra={"dmoc_request_id": entity.id, "actor_id": actor.id},
    )
    return entity.to_dict()


def update_draft(dmoc_id: int, data: dict, actor) -> dict:
    entity = _load(dmoc_id, for_update=True)
    if entity.status != "draft":
        raise StateTransitionError("Only draft DMOCs can be updated.", current=entity.status)

    incoming = _coerce(data)
    merged = _snapshot(entity)
    merged.update(incoming)
    if merged.get("nature_of_change") is None:
        merged["nature_of_change"] = incoming["nature_of_change"] = "permanent"
    validate_draft_payload(merged, _max_temporary_days())
    department_name = _department_name(merged.get("area_or_department_id"))

    diff = {}
    for field, value in incoming.items():
        old = getattr(entity, field)
        if old != value:
            diff[field] = {"old": old, "new": value}
            setattr(entity, field, value)
    entity.area_or_department_name = department_name

    if diff:
        entity.updated_at = _utcnow()
        entity.updated_by = actor.name
        write_activity(entity_type=ENTITY, entity_id=entity.id, action="updated", actor=actor, diff=diff)
    commit_or_raise("DmocRequest", entity.id)
    logger.info(
        "DMOC draft updated id=%s fields=%s", entity.id, sorted(diff),
        extra={"dmoc_request_id": entity.id, "actor_id": actor.id},
    )
    return entity.to_dict()


# ── Lifecycle transitions ────────────────────────────────────────────────────


def submit(dmoc_id: int, actor) -> dict:
    """Re-validate the draft, assign its DMOC number and mark it submitted."""
    entity = _load(dmoc_id, for_update=True)
    if not validate_dmoc_transition(entity.status, "submitted"):
        raise StateTransitionError("Only draft DMOCs can be submitted.", current=entity.status)
    validate_draft_payload(_snapshot(entity), _max_temporary_days())

    if not entity.dmoc_number:
        entity.dmoc_number = generate_dmoc_number()
    entity.status = "submitted"
    entity.updated_at = _utcnow()
    entity.updated_by = actor.name
    write_activity(
        entity_type=ENTITY, entity_id=entity.id, action="submitted", actor=actor,
        diff={"status": {"old": "draft", "new": "submitted"}, "dmoc_number": entity.dmoc_number},
    )
    commit_or_raise("DmocRequest", entity.id)
    logger.info(
        "DMOC submitted id=%s %s", entity.id, entity.dmoc_number,
        extra={
            "dmoc_request_id": entity.id,
            "control_number": entity.dmoc_number,
            "status": entity.status,
            "actor_id": actor.id,
        },
    )
    return entity.to_dict()


def _decide(dmoc_id: int, actor, new_status: str, label: str, action: str, remarks) -> dict:
    entity = _load(dmoc_id, for_update=True)
    if not validate_dmoc_transition(entity.status, new_status):
        verb = "approved" if new_status == "approved" else "rejected"
        raise StateTransitionError(f"Only submitted DMOCs can be {verb}.", current=entity.status)

    entity.status = new_status
    entity.append_remark(label, remarks)
    entity.updated_at = _utcnow()
    entity.updated_by = actor.name
    write_activity(
        entity_type=ENTITY, entity_id=entity.id, action=action, actor=actor,
        diff={"status": {"old": "submitted", "new": new_status}, "remarks": remarks},
    )
    commit_or_raise("DmocRequest", entity.id)
    logger.info(
        "DMOC %s %s", entity.dmoc_number, new_status,
        extra={
            "dmoc_request_id": entity.id,
            "control_number": entity.dmoc_number,
            "status": new_status,
            "actor_id": actor.id,
        },
    )
    return entity.to_dict()


def approve(dmoc_id: int, actor, remarks: str | None = None) -> dict:
    return _decide(dmoc_id, actor, "approved", "Approval", "approved", remarks)


def reject(dmoc_id: int, actor, remarks: str | None = None) -> dict:
    return _decide(dmoc_id, actor, "rejected", "Rejection", "rejected", remarks)


# ── Reads ────────────────────────────────────────────────────────────────────


def get(dmoc_id: int) -> dict:
    return _load(dmoc_id).to_dict()


def list_dmocs(status: str | None = None, originator: str | None = None, page: int = 1, page_size: int = 20) -> dict:
    """Newest first, optionally filtered by status and originator user id."""
    query = DmocRequest.query
    if status:
        query = query.filter(DmocRequest.status == status)
    if originator:
        query = query.filter(DmocRequest.change_originator_user_id == originator)
    query = query.order_by(DmocRequest.created_at.desc(), DmocRequest.id.desc())

    page, page_size = clamp_page(page, page_size)
    result = paginate(query, page, page_size)
    result["items"] = [d.to_dict() for d in result["items"]]
    return result
