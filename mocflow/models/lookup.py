"""
Reference tables read by the workflow engine.

Models:
    - Role:        role catalogue that approval levels point at (by key).
    - Department:  organisational lookup snapshotted onto DMOC requests.

Maintenance of these tables lives outside the engine; they are seeded by
scripts/seed_reference_data.py.
"""

from datetime import datetime, timezone

from mocflow.models import db


class Role(db.Model):
    """Approver role, referenced by ``ApprovalLevel.role_key`` and ``MocApprover.role_key``."""

    __tablename__ = "roles"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(60), nullable=False, unique=True,
                    comment="Stable identifier, e.g. DepartmentManager")
    name = db.Column(db.String(150), nullable=False, default="")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Role {self.key}>"


class Department(db.Model):
    """Department lookup. Inactive rows stay referenced by historical requests."""

    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Department {self.code}>"
