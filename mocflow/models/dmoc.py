"""
Departmental MOC (DMOC): DmocRequest model.

Structurally independent of MocRequest.  Lifecycle:

    draft -> submitted -> approved | rejected
    (closed is set outside the engine)

``dmoc_number`` stays NULL until submit.  ``additional_remarks`` doubles as an
append-only decision log: approve/reject remarks are appended, never replace
earlier text.
"""

from datetime import datetime, timezone

from mocflow.models import db

DMOC_STATUSES = ("draft", "submitted", "approved", "rejected", "closed")
DMOC_NATURES = ("permanent", "temporary")

DMOC_TRANSITIONS = {
    "draft":     ["submitted"],
    "submitted": ["approved", "rejected"],
    "approved":  [],
    "rejected":  [],
    "closed":    [],
}


def validate_dmoc_transition(old_status, new_status):
    """Return True if DMOC status transition is valid."""
    return new_status in DMOC_TRANSITIONS.get(old_status, [])


class DmocRequest(db.Model):
    __tablename__ = "dmoc_requests"
    __table_args__ = (
        db.Index("ix_dmoc_requests_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    dmoc_number = db.Column(db.String(30), nullable=True, unique=True,
                            comment="DMOC-YYYY-NNNN, assigned on submit")
    title = db.Column(db.String(300), nullable=False)

    change_originator_user_id = db.Column(db.String(64), nullable=True, index=True)
    change_originator_name = db.Column(db.String(150), nullable=False)
    originator_position = db.Column(db.String(150), nullable=True)

    area_or_department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
    )
    area_or_department_name = db.Column(db.String(200), nullable=True,
                                        comment="Snapshot of Department.name")

    nature_of_change = db.Column(db.String(20), nullable=False, default="permanent")
    target_implementation_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)

    description_of_change = db.Column(db.Text, nullable=False)
    reason_for_change = db.Column(db.Text, nullable=False)
    affected_equipment = db.Column(db.Text, nullable=True)
    attachments_or_reference_links = db.Column(db.Text, nullable=True)
    additional_remarks = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default="draft")

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=False, default="system")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)

    version = db.Column(db.Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def append_remark(self, label, remarks):
        """Append ``[label] remarks`` to the remarks log; blank remarks are ignored."""
        text = (remarks or "").strip()
        if not text:
            return
        self.additional_remarks = (self.additional_remarks or "") + f"\n[{label}] {text}"

    def to_dict(self):
        return {
            "id": self.id,
            "dmoc_number": self.dmoc_number,
            "title": self.title,
            "change_originator_user_id": self.change_originator_user_id,
            "change_originator_name": self.change_originator_name,
            "originator_position": self.originator_position,
            "area_or_department_id": self.area_or_department_id,
            "area_or_department_name": self.area_or_department_name,
            "nature_of_change": self.nature_of_change,
            "target_implementation_date": (
                self.target_implementation_date.isoformat()
                if self.target_implementation_date else None
            ),
            "planned_end_date": self.planned_end_date.isoformat() if self.planned_end_date else None,
            "description_of_change": self.description_of_change,
            "reason_for_change": self.reason_for_change,
            "affected_equipment": self.affected_equipment,
            "attachments_or_reference_links": self.attachments_or_reference_links,
            "additional_remarks": self.additional_remarks,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
            "version": self.version,
        }

    def __repr__(self):
        return f"<DmocRequest #{self.id} {self.dmoc_number or 'draft'} {self.status}>"
