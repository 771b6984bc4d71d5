"""
Approval Level Registry: ApprovalLevel model.

One row per link in the canonical approval chain template.  When a MOC request
is submitted the active levels are read in ``(order, id)`` order and copied
into MocApprover slots; editing or deleting a level afterwards never touches
slots that were already built.

``order`` is a sort key only: duplicates and gaps are allowed, ties fall back
to ``id`` (insertion order).
"""

from datetime import datetime, timezone

from mocflow.models import db


class ApprovalLevel(db.Model):
    __tablename__ = "approval_levels"
    __table_args__ = (
        db.Index("ix_approval_levels_active_order", "is_active", "order", "id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order = db.Column(db.Integer, nullable=False, default=1,
                      comment="Position in the chain; not unique, not contiguous")
    role_key = db.Column(db.String(60), nullable=False,
                         comment="Roles.key that must approve at this level")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_by = db.Column(db.String(150), nullable=False, default="system")
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_by = db.Column(db.String(150), nullable=True)

    @classmethod
    def chain_template(cls):
        """Active levels in deterministic chain order."""
        return (
            cls.query
            .filter_by(is_active=True)
            .order_by(cls.order.asc(), cls.id.asc())
            .all()
        )

    def to_dict(self):
        return {
            "id": self.id,
            "order": self.order,
            "role_key": self.role_key,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return f"<ApprovalLevel #{self.id} order={self.order} role={self.role_key}>"
