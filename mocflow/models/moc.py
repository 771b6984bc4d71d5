"""
MOC Workflow Platform
MOC domain model.

Models:
    - MocRequest:   the change record moving through the 7-stage workflow.
    - MocApprover:  one approval slot per (request, approval level) snapshot.

Stage / gate tables are plain dicts with pure lookup helpers so the stage
transition engine is a linear function of (current stage, approver states).
"""

from datetime import date, datetime, timezone

from mocflow.models import db

# ── Vocabulary ───────────────────────────────────────────────────────────────

REQUEST_TYPES = ("standard_emoc", "bypass_emoc", "omoc", "dmoc")

CONTROL_NUMBER_PREFIXES = {
    "standard_emoc": "EMOC",
    "bypass_emoc": "BYPASS",
    "omoc": "OMOC",
    "dmoc": "DMOC",
}

MOC_STATUSES = (
    "draft",
    "submitted",
    "active",
    "inactive",
    "approved",
    "for_restoration",
    "restored",
    "closed",
    "cancelled",
)

RISK_LEVELS = ("green", "yellow", "red")

STAGES = (
    "initiation",
    "validation",
    "evaluation",
    "final_approval",
    "pre_implementation",
    "implementation",
    "restoration_or_closeout",
)

# stage -> successor (None = terminal)
STAGE_SUCCESSORS = {
    "initiation":              "validation",
    "validation":              "evaluation",
    "evaluation":              "final_approval",
    "final_approval":          "pre_implementation",
    "pre_implementation":      "implementation",
    "implementation":          "restoration_or_closeout",
    "restoration_or_closeout": None,
}

# stage -> roles whose slots must be completed+approved before leaving it
STAGE_GATES = {
    "validation":     ("DepartmentManager",),
    "final_approval": ("DivisionManager",),
}

# stage -> status forced when the stage is entered
STAGE_ENTRY_STATUS = {
    "implementation":          "active",
    "restoration_or_closeout": "closed",
}

EDITABLE_STATUSES = frozenset({"draft", "submitted"})
INACTIVATABLE_STATUSES = frozenset({"submitted", "active"})
NON_ADVANCEABLE_STATUSES = frozenset({"draft", "inactive", "cancelled"})


def next_stage(stage):
    """Return the successor of *stage*, or None when *stage* is terminal."""
    return STAGE_SUCCESSORS.get(stage)


def required_roles_for_stage(stage):
    """Return the role keys gating exit from *stage* (empty tuple = no gate)."""
    return STAGE_GATES.get(stage, ())


def status_on_entering(stage):
    """Return the status forced on entering *stage*, or None to keep the current one."""
    return STAGE_ENTRY_STATUS.get(stage)


def unsatisfied_roles(stage, approvers):
    """Distinct gate roles still blocking exit from *stage*, in chain order.

    Only slots whose role is in the gate are considered.  A gate role with no
    matching slot at all does not block: the engine never invents approvers
    the chain was not configured with.
    """
    required = set(required_roles_for_stage(stage))
    if not required:
        return []
    missing = []
    for slot in approvers:
        if slot.role_key not in required:
            continue
        if slot.is_completed and slot.is_approved is True:
            continue
        if slot.role_key not in missing:
            missing.append(slot.role_key)
    return missing


# ── Models ───────────────────────────────────────────────────────────────────


def _iso(value):
    return value.isoformat() if value else None


class MocRequest(db.Model):
    """
    Management of Change request.

    Business rules:
    - status and current_stage are kept consistent by the stage transition
      engine (implementation => active, restoration_or_closeout => closed).
    - Editable only while draft or submitted; hard-deleted only while draft.
    - ``version`` is the optimistic concurrency token (SQLAlchemy
      version_id_col); a lost update raises StaleDataError on flush.
    """

    __tablename__ = "moc_requests"
    __table_args__ = (
        db.Index("ix_moc_requests_type_status", "request_type", "status"),
        db.Index("ix_moc_requests_stage", "current_stage"),
    )

    id = db.Column(db.Integer, primary_key=True)
    control_number = db.Column(db.String(30), nullable=True, unique=True,
                               comment="{PREFIX}-{YEAR}-{SEQ:04d}")
    request_type = db.Column(db.String(20), nullable=False,
                             comment="standard_emoc | bypass_emoc | omoc | dmoc")
    title = db.Column(db.String(300), nullable=False)
    originator = db.Column(db.String(150), nullable=False, default="system")
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    units_affected = db.Column(db.String(500), nullable=False, default="")
    equipment_tag = db.Column(db.String(200), nullable=False, default="")
    scope_description = db.Column(db.Text, nullable=False, default="")
    risk_tool_used = db.Column(db.String(100), nullable=True)
    risk_level = db.Column(db.String(10), nullable=True, comment="green | yellow | red")

    is_temporary = db.Column(db.Boolean, nullable=False, default=False)
    target_implementation_date = db.Column(db.Date, nullable=False)
    planned_restoration_date = db.Column(db.Date, nullable=True)

    bypass_duration_days = db.Column(db.Integer, nullable=True)
    is_bypass_emergency = db.Column(db.Boolean, nullable=True)
    bypass_type = db.Column(db.String(100), nullable=True)

    current_stage = db.Column(db.String(30), nullable=False, default="initiation")
    status = db.Column(db.String(20), nullable=False, default="draft")
    marked_inactive_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=False, default="system")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    approvers = db.relationship(
        "MocApprover",
        backref="moc_request",
        cascade="all, delete-orphan",
        order_by="MocApprover.sequence",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Derived, display-only flags ──────────────────────────────────────

    def is_overdue(self, today=None):
        """Temporary + active + planned restoration date already passed."""
        today = today or date.today()
        return bool(
            self.is_temporary
            and self.planned_restoration_date is not None
            and self.planned_restoration_date < today
            and self.status == "active"
        )

    def days_inactive(self, now=None):
        if self.marked_inactive_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        marked = self.marked_inactive_at
        if marked.tzinfo is None:
            marked = marked.replace(tzinfo=timezone.utc)
        return (now - marked).days

    def to_dict(self, include_approvers=False):
        data = {
            "id": self.id,
            "control_number": self.control_number,
            "request_type": self.request_type,
            "title": self.title,
            "originator": self.originator,
            "department_id": self.department_id,
            "units_affected": self.units_affected,
            "equipment_tag": self.equipment_tag,
            "scope_description": self.scope_description,
            "risk_tool_used": self.risk_tool_used,
            "risk_level": self.risk_level,
            "is_temporary": self.is_temporary,
            "target_implementation_date": _iso(self.target_implementation_date),
            "planned_restoration_date": _iso(self.planned_restoration_date),
            "bypass_duration_days": self.bypass_duration_days,
            "is_bypass_emergency": self.is_bypass_emergency,
            "bypass_type": self.bypass_type,
            "current_stage": self.current_stage,
            "status": self.status,
            "marked_inactive_at": _iso(self.marked_inactive_at),
            "is_overdue": self.is_overdue(),
            "days_inactive": self.days_inactive(),
            "created_at": _iso(self.created_at),
            "created_by": self.created_by,
            "updated_at": _iso(self.updated_at),
            "updated_by": self.updated_by,
            "version": self.version,
        }
        if include_approvers:
            data["approvers"] = [a.to_dict() for a in self.approvers]
        return data

    def __repr__(self):
        return f"<MocRequest #{self.id} {self.control_number} {self.current_stage}/{self.status}>"


class MocApprover(db.Model):
    """
    Approval slot for one role on one request.

    Business rules:
    - Created in a single batch by the approver-chain builder; never
      reordered or deleted afterwards (only cascaded with the request).
    - Once ``is_completed`` is True the slot is immutable.
    - ``role_key`` is a snapshot: later edits to the approval level do not
      propagate.  ``approval_level_id`` is informational and nulled if the
      level is deleted.
    """

    __tablename__ = "moc_approvers"
    __table_args__ = (
        db.UniqueConstraint("moc_request_id", "sequence", name="uq_moc_approver_sequence"),
        db.Index("ix_moc_approvers_request_role", "moc_request_id", "role_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    moc_request_id = db.Column(
        db.Integer, db.ForeignKey("moc_requests.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    sequence = db.Column(db.Integer, nullable=False, comment="1-based position in the chain")
    role_key = db.Column(db.String(60), nullable=False)
    approval_level_id = db.Column(
        db.Integer, db.ForeignKey("approval_levels.id", ondelete="SET NULL"),
        nullable=True,
    )

    is_completed = db.Column(db.Boolean, nullable=False, default=False)
    is_approved = db.Column(db.Boolean, nullable=True)
    remarks = db.Column(db.Text, nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(150), nullable=True)
    completed_by_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=False, default="system")

    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_dict(self):
        return {
            "id": self.id,
            "moc_request_id": self.moc_request_id,
            "sequence": self.sequence,
            "role_key": self.role_key,
            "approval_level_id": self.approval_level_id,
            "is_completed": self.is_completed,
            "is_approved": self.is_approved,
            "remarks": self.remarks,
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
        }

    def __repr__(self):
        return f"<MocApprover #{self.id} req={self.moc_request_id} {self.role_key} done={self.is_completed}>"
