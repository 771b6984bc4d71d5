"""
MOC request workflow service.

Owns every state change of a MocRequest and its approver slots:

    create_request / update_request / delete_request   (draft maintenance)
    submit                                              (draft -> submitted, builds chain)
    complete_approver                                   (approver slot ledger)
    advance_stage                                       (stage transition engine)
    mark_inactive / reactivate                          (side transitions)
    get_request / list_requests                         (reads)

Rules:
  - db.session.commit() happens only in this file (via commit_or_raise).
  - Every mutation writes an ActivityLog row in the same transaction.
  - Transitions load the request row with SELECT ... FOR UPDATE; the
    ``version`` column catches anything that slips past the lock.
  - The acting identity is always passed in; nothing here reads Flask globals.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import case, func, or_, select

from mocflow.core.exceptions import (
    NotFoundError,
    StageGateError,
    StateTransitionError,
    ValidationError,
)
from mocflow.models import db
from mocflow.models.audit import write_activity
from mocflow.models.lookup import Department
from mocflow.models.moc import (
    EDITABLE_STATUSES,
    INACTIVATABLE_STATUSES,
    MOC_STATUSES,
    NON_ADVANCEABLE_STATUSES,
    REQUEST_TYPES,
    RISK_LEVELS,
    STAGES,
    MocApprover,
    MocRequest,
    next_stage,
    required_roles_for_stage,
    status_on_entering,
    unsatisfied_roles,
)
from mocflow.services.approver_chain import ensure_approver_chain
from mocflow.services.control_number import generate_control_number
from mocflow.utils.helpers import commit_or_raise, paginate, parse_date_input

logger = logging.getLogger(__name__)

ENTITY = "moc_request"

_TEXT_FIELDS = (
    "title", "originator", "units_affected", "equipment_tag",
    "scope_description", "risk_tool_used", "bypass_type",
)
_NON_NULL_TEXT = ("units_affected", "equipment_tag", "scope_description")
_DATE_FIELDS = ("target_implementation_date", "planned_restoration_date")
_BOOL_FIELDS = ("is_temporary", "is_bypass_emergency")
_NON_NULL_BOOL = ("is_temporary",)
_INT_FIELDS = ("department_id", "bypass_duration_days")
EDITABLE_FIELDS = _TEXT_FIELDS + _DATE_FIELDS + _BOOL_FIELDS + _INT_FIELDS + ("risk_level",)

# Named list views: view name -> filter overrides
MOC_VIEWS = {
    "active":          {"status_in": ["submitted", "active"]},
    "inactive":        {"status": "inactive"},
    "approved":        {"status": "approved"},
    "closed":          {"status": "closed"},
    "drafts":          {"status": "draft"},
    "for-restoration": {"for_restoration": True},
    "bypass":          {"request_type": "bypass_emoc"},
}

_STAGE_RANK = {stage: rank for rank, stage in enumerate(STAGES)}

SORT_KEYS = {
    "control_number": MocRequest.control_number,
    "title": MocRequest.title,
    "status": MocRequest.status,
    "stage": case(_STAGE_RANK, value=MocRequest.current_stage, else_=len(STAGES)),
    "risk_level": MocRequest.risk_level,
    "target_date": MocRequest.target_implementation_date,
    "created_at": MocRequest.created_at,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Loading ──────────────────────────────────────────────────────────────────


def _load_request(moc_id: int, *, for_update: bool = False) -> MocRequest:
    stmt = select(MocRequest).where(MocRequest.id == moc_id)
    if for_update:
        stmt = stmt.with_for_update()
    req = db.session.execute(stmt).scalar_one_or_none()
    if req is None:
        raise NotFoundError(resource="MocRequest", resource_id=moc_id)
    return req


def _load_slot(moc_id: int, approver_id: int) -> MocApprover:
    """Slot lookup scoped to its request: a foreign slot is indistinguishable from a missing one."""
    slot = db.session.execute(
        select(MocApprover)
        .where(MocApprover.id == approver_id, MocApprover.moc_request_id == moc_id)
        .with_for_update()
    ).scalar_one_or_none()
    if slot is None:
        raise NotFoundError(resource="MocApprover", resource_id=approver_id)
    return slot


# ── Validation ───────────────────────────────────────────────────────────────


def _coerce(data: dict) -> dict:
    """Normalise the editable fields present in *data*; unknown keys are dropped."""
    out = {}
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in _DATE_FIELDS:
            try:
                value = parse_date_input(value)
            except ValueError as exc:
                raise ValidationError(f"{field}: {exc}", details={field: "invalid"}) from exc
        elif field in _BOOL_FIELDS:
            if value is None and field in _NON_NULL_BOOL:
                value = False
            elif value is not None and not isinstance(value, bool):
                raise ValidationError(f"{field} must be a boolean.", details={field: "invalid"})
        elif field in _INT_FIELDS:
            if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
                raise ValidationError(f"{field} must be an integer.", details={field: "invalid"})
        elif field in _TEXT_FIELDS:
            if value is None:
                value = "" if field in _NON_NULL_TEXT else None
            elif isinstance(value, str):
                value = value.strip()
            else:
                raise ValidationError(f"{field} must be a string.", details={field: "invalid"})
        out[field] = value
    return out


def _validate(fields: dict) -> None:
    """Business rules on the merged (existing + incoming) field set."""
    if not (fields.get("title") or "").strip():
        raise ValidationError("Title is required.", details={"title": "required"})

    if fields.get("target_implementation_date") is None:
        raise ValidationError(
            "Target implementation date is required.",
            details={"target_implementation_date": "required"},
        )

    risk_level = fields.get("risk_level")
    if risk_level is not None and risk_level not in RISK_LEVELS:
        raise ValidationError(
            f"risk_level must be one of: {', '.join(RISK_LEVELS)}",
            details={"risk_level": risk_level},
        )

    department_id = fields.get("department_id")
    if department_id is not None and db.session.get(Department, department_id) is None:
        raise ValidationError("Invalid department ID.", details={"department_id": department_id})

    if fields.get("is_temporary"):
        target = fields["target_implementation_date"]
        restoration = fields.get("planned_restoration_date")
        if restoration is None:
            raise ValidationError(
                "Planned restoration date is required for temporary changes.",
                details={"planned_restoration_date": "required"},
            )
        if restoration < target:
            raise ValidationError(
                "Planned restoration date must be on or after the target implementation date.",
                details={"planned_restoration_date": "before_target"},
            )

    duration = fields.get("bypass_duration_days")
    if duration is not None and duration < 1:
        raise ValidationError(
            "bypass_duration_days must be at least 1.",
            details={"bypass_duration_days": duration},
        )


# ── Draft maintenance ────────────────────────────────────────────────────────


def create_request(data: dict, actor, *, save_as_draft: bool = True) -> dict:
    """Create a MOC request in draft and assign its control number.

    With ``save_as_draft=False`` the request is submitted in the same
    transaction (status submitted, stage validation, approver chain built).

    Raises:
        ValidationError: unknown request type or a violated field rule.
    """
    request_type = data.get("request_type")
    if request_type not in REQUEST_TYPES:
        raise ValidationError(
            f"request_type must be one of: {', '.join(REQUEST_TYPES)}",
            details={"request_type": request_type},
        )
    fields = _coerce(data)
    fields.setdefault("is_temporary", False)
    _validate(fields)

    req = MocRequest(
        request_type=request_type,
        control_number=generate_control_number(request_type),
        current_stage=STAGES[0],
        status="draft",
        created_by=actor.name,
    )
    for field, value in fields.items():
        setattr(req, field, value)
    if not req.originator:
        req.originator = actor.name
    for field in _NON_NULL_TEXT:
        if getattr(req, field) is None:
            setattr(req, field, "")

    db.session.add(req)
    db.session.flush()
    write_activity(
        entity_type=ENTITY, entity_id=req.id, action="created", actor=actor,
        diff={"control_number": req.control_number, "request_type": request_type},
    )
    if not save_as_draft:
        _submit(req, actor)

    commit_or_raise("MocRequest", req.id)
    logger.info(
        "MOC request created id=%s %s status=%s",
        req.id, req.control_number, req.status,
        extra={
            "moc_request_id": req.id,
            "control_number": req.control_number,
            "status": req.status,
            "actor_id": actor.id,
        },
    )
    return req.to_dict(include_approvers=True)


def update_request(moc_id: int, data: dict, actor) -> dict:
    """Apply a partial update. Only draft or submitted requests are editable."""
    req = _load_request(moc_id, for_update=True)
    if req.status not in EDITABLE_STATUSES:
        raise StateTransitionError(
            "Cannot update a request that is already in progress.", current=req.status,
        )
    if "request_type" in data and data["request_type"] != req.request_type:
        raise ValidationError(
            "request_type cannot be changed after creation.",
            details={"request_type": data["request_type"]},
        )

    incoming = _coerce(data)
    if "originator" in incoming and not incoming["originator"]:
        raise ValidationError("Originator is required.", details={"originator": "required"})
    merged = {field: getattr(req, field) for field in EDITABLE_FIELDS}
    merged.update(incoming)
    _validate(merged)

    diff = {}
    for field, value in incoming.items():
        old = getattr(req, field)
        if old != value:
            diff[field] = {"old": old, "new": value}
            setattr(req, field, value)

    if diff:
        req.updated_at = _utcnow()
        req.updated_by = actor.name
        write_activity(entity_type=ENTITY, entity_id=req.id, action="updated", actor=actor, diff=diff)
        commit_or_raise("MocRequest", req.id)
        logger.info(
            "MOC request updated id=%s fields=%s", req.id, sorted(diff),
            extra={"moc_request_id": req.id, "actor_id": actor.id},
        )
    return req.to_dict(include_approvers=True)


def delete_request(moc_id: int, actor) -> None:
    """Hard-delete a draft request and its slots. The control number is not reused."""
    req = _load_request(moc_id, for_update=True)
    if req.status != "draft":
        raise StateTransitionError("Only draft requests can be deleted.", current=req.status)

    control_number = req.control_number
    db.session.delete(req)
    write_activity(
        entity_type=ENTITY, entity_id=moc_id, action="deleted", actor=actor,
        diff={"control_number": control_number},
    )
    commit_or_raise("MocRequest", moc_id)
    logger.info(
        "MOC request deleted id=%s %s", moc_id, control_number,
        extra={"moc_request_id": moc_id, "control_number": control_number, "actor_id": actor.id},
    )


# ── Submit ───────────────────────────────────────────────────────────────────


def _submit(req: MocRequest, actor) -> None:
    if req.status != "draft":
        raise StateTransitionError("Only draft requests can be submitted.", current=req.status)

    old_stage = req.current_stage
    req.status = "submitted"
    if req.current_stage == "initiation":
        req.current_stage = "validation"
    if not req.control_number:
        req.control_number = generate_control_number(req.request_type)
    req.updated_at = _utcnow()
    req.updated_by = actor.name
    db.session.flush()

    slots = ensure_approver_chain(req, actor)
    write_activity(
        entity_type=ENTITY, entity_id=req.id, action="submitted", actor=actor,
        diff={
            "status": {"old": "draft", "new": "submitted"},
            "current_stage": {"old": old_stage, "new": req.current_stage},
            "approvers": [s.role_key for s in slots],
        },
    )


def submit(moc_id: int, actor) -> dict:
    """Submit a draft: status submitted, stage validation, approver chain built.

    Raises:
        StateTransitionError: the request is not a draft.
    """
    req = _load_request(moc_id, for_update=True)
    _submit(req, actor)
    commit_or_raise("MocRequest", req.id)
    logger.info(
        "MOC request submitted id=%s %s", req.id, req.control_number,
        extra={
            "moc_request_id": req.id,
            "control_number": req.control_number,
            "stage": req.current_stage,
            "status": req.status,
            "actor_id": actor.id,
        },
    )
    return req.to_dict(include_approvers=True)


# ── Approver slot ledger ─────────────────────────────────────────────────────


def complete_approver(moc_id: int, approver_id: int, approved: bool, actor, remarks: str | None = None) -> dict:
    """Record one approver's one-time decision.

    Never advances the stage; call ``advance_stage`` separately.

    Raises:
        NotFoundError: request missing, or the slot does not belong to it.
        StateTransitionError: the slot is already completed (immutable).
        ValidationError: ``approved`` is not a boolean.
    """
    req = _load_request(moc_id)
    slot = _load_slot(req.id, approver_id)
    if slot.is_completed:
        raise StateTransitionError(
            "This approver slot has already been completed.", current="completed",
        )
    if not isinstance(approved, bool):
        raise ValidationError("approved must be true or false.", details={"approved": approved})

    slot.is_completed = True
    slot.is_approved = approved
    slot.remarks = remarks
    slot.completed_at = _utcnow()
    slot.completed_by = actor.name
    slot.completed_by_id = actor.id

    write_activity(
        entity_type=ENTITY, entity_id=req.id, action="approver_completed", actor=actor,
        diff={
            "approver_id": slot.id,
            "role_key": slot.role_key,
            "approved": approved,
            "remarks": remarks,
        },
    )
    commit_or_raise("MocApprover", slot.id)
    logger.info(
        "Approver %s (%s) %s MOC %s",
        slot.id, slot.role_key, "approved" if approved else "rejected", req.id,
        extra={
            "moc_request_id": req.id,
            "approver_id": slot.id,
            "role_key": slot.role_key,
            "actor_id": actor.id,
        },
    )
    return req.to_dict(include_approvers=True)


# ── Stage transition engine ──────────────────────────────────────────────────


def _gate_slots(moc_id: int, stage: str) -> list[MocApprover]:
    roles = required_roles_for_stage(stage)
    if not roles:
        return []
    return list(
        db.session.execute(
            select(MocApprover)
            .where(MocApprover.moc_request_id == moc_id, MocApprover.role_key.in_(roles))
            .order_by(MocApprover.sequence)
        ).scalars()
    )


def advance_stage(moc_id: int, actor, remarks: str | None = None) -> dict:
    """Move the request to its next stage if the current stage's gate is satisfied.

    Raises:
        StateTransitionError: already at the final stage, or the request is
            draft / inactive / cancelled.
        StageGateError: gate roles have not completed-and-approved; carries
            the distinct missing role keys in chain order.
    """
    req = _load_request(moc_id, for_update=True)
    current = req.current_stage

    target = next_stage(current)
    if target is None:
        raise StateTransitionError("Request is already at the final stage.", current=current)
    if req.status in NON_ADVANCEABLE_STATUSES:
        raise StateTransitionError(
            f"Cannot advance a request with status '{req.status}'.", current=req.status,
        )

    missing = unsatisfied_roles(current, _gate_slots(req.id, current))
    if missing:
        logger.info(
            "Stage gate blocked MOC %s at %s: %s", req.id, current, missing,
            extra={"moc_request_id": req.id, "stage": current, "actor_id": actor.id},
        )
        raise StageGateError(current, missing)

    old_status = req.status
    req.current_stage = target
    forced = status_on_entering(target)
    if forced:
        req.status = forced
    req.updated_at = _utcnow()
    req.updated_by = actor.name

    diff = {"current_stage": {"old": current, "new": target}}
    if req.status != old_status:
        diff["status"] = {"old": old_status, "new": req.status}
    if remarks:
        diff["remarks"] = remarks
    write_activity(entity_type=ENTITY, entity_id=req.id, action="stage_advanced", actor=actor, diff=diff)

    commit_or_raise("MocRequest", req.id)
    logger.info(
        "MOC %s advanced %s -> %s (status=%s)", req.control_number, current, target, req.status,
        extra={
            "moc_request_id": req.id,
            "control_number": req.control_number,
            "stage": target,
            "status": req.status,
            "actor_id": actor.id,
        },
    )
    return req.to_dict(include_approvers=True)


# ── Side transitions ─────────────────────────────────────────────────────────


def mark_inactive(moc_id: int, actor) -> dict:
    req = _load_request(moc_id, for_update=True)
    if req.status not in INACTIVATABLE_STATUSES:
        raise StateTransitionError(
            "Only submitted or active requests can be marked inactive.", current=req.status,
        )
    old_status = req.status
    now = _utcnow()
    req.status = "inactive"
    req.marked_inactive_at = now
    req.updated_at = now
    req.updated_by = actor.name
    write_activity(
        entity_type=ENTITY, entity_id=req.id, action="marked_inactive", actor=actor,
        diff={"status": {"old": old_status, "new": "inactive"}},
    )
    commit_or_raise("MocRequest", req.id)
    logger.info(
        "MOC request marked inactive id=%s", req.id,
        extra={"moc_request_id": req.id, "status": req.status, "actor_id": actor.id},
    )
    return req.to_dict(include_approvers=True)


def reactivate(moc_id: int, actor) -> dict:
    req = _load_request(moc_id, for_update=True)
    if req.status != "inactive":
        raise StateTransitionError("Only inactive requests can be reactivated.", current=req.status)
    req.status = "active"
    req.marked_inactive_at = None
    req.updated_at = _utcnow()
    req.updated_by = actor.name
    write_activity(
        entity_type=ENTITY, entity_id=req.id, action="reactivated", actor=actor,
        diff={"status": {"old": "inactive", "new": "active"}},
    )
    commit_or_raise("MocRequest", req.id)
    logger.info(
        "MOC request reactivated id=%s", req.id,
        extra={"moc_request_id": req.id, "status": req.status, "actor_id": actor.id},
    )
    return req.to_dict(include_approvers=True)


# ── Reads ────────────────────────────────────────────────────────────────────


def get_request(moc_id: int) -> dict:
    return _load_request(moc_id).to_dict(include_approvers=True)


def _apply_filters(query, filters: dict):
    request_type = filters.get("request_type")
    if request_type:
        query = query.filter(MocRequest.request_type == request_type)

    status_in = [s for s in (filters.get("status_in") or []) if s in MOC_STATUSES]
    if status_in:
        query = query.filter(MocRequest.status.in_(status_in))
    elif filters.get("status"):
        query = query.filter(MocRequest.status == filters["status"])

    if filters.get("stage"):
        query = query.filter(MocRequest.current_stage == filters["stage"])
    if filters.get("risk_level"):
        query = query.filter(MocRequest.risk_level == filters["risk_level"])
    if filters.get("department_id") is not None:
        query = query.filter(MocRequest.department_id == filters["department_id"])
    if filters.get("is_temporary") is not None:
        query = query.filter(MocRequest.is_temporary == filters["is_temporary"])

    date_from = filters.get("date_from")
    if date_from:
        query = query.filter(MocRequest.created_at >= datetime.combine(date_from, datetime.min.time()))
    date_to = filters.get("date_to")
    if date_to:
        query = query.filter(MocRequest.created_at < datetime.combine(date_to + timedelta(days=1), datetime.min.time()))

    search = (filters.get("search") or "").strip().lower()
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            func.lower(MocRequest.control_number).like(pattern),
            func.lower(MocRequest.title).like(pattern),
            func.lower(MocRequest.equipment_tag).like(pattern),
        ))

    if filters.get("for_restoration"):
        query = query.filter(
            MocRequest.is_temporary.is_(True),
            MocRequest.planned_restoration_date.isnot(None),
            MocRequest.planned_restoration_date < date.today(),
            MocRequest.status == "active",
        )

    inactive_days = filters.get("inactive_over_days")
    if inactive_days:
        cutoff = _utcnow() - timedelta(days=int(inactive_days))
        query = query.filter(
            MocRequest.status == "inactive",
            MocRequest.marked_inactive_at.isnot(None),
            MocRequest.marked_inactive_at < cutoff,
        )
    return query


def list_requests(
    filters: dict | None = None,
    *,
    view: str | None = None,
    sort_by: str | None = None,
    descending: bool = False,
    page: int = 1,
    page_size: int = 20,
) -> dict:
    """Filtered, sorted, paged listing.

    ``view`` names one of MOC_VIEWS and overrides the matching filter keys.
    Unknown sort keys fall back to ``created_at``.
    """
    filters = dict(filters or {})
    if view is not None:
        if view not in MOC_VIEWS:
            raise NotFoundError(resource="MocRequest view", resource_id=view)
        filters.update(MOC_VIEWS[view])

    query = _apply_filters(MocRequest.query, filters)
    column = SORT_KEYS.get(sort_by or "created_at", MocRequest.created_at)
    query = query.order_by(column.desc() if descending else column.asc(), MocRequest.id.asc())

    result = paginate(query, page, page_size)
    result["items"] = [r.to_dict() for r in result["items"]]
    return result
