"""
MOC Workflow Platform
Activity log model.

Models:
    - ActivityLog: immutable, append-only trail of workflow actions.

Rows are written in the same transaction as the mutation they describe and
are never replayed.
"""

import json
from datetime import datetime, timezone

from mocflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ACTIVITY_ENTITY_TYPES = {"moc_request", "dmoc_request", "approval_level"}

ACTIVITY_ACTIONS = {
    "created",
    "updated",
    "deleted",
    "submitted",
    "approver_completed",
    "stage_advanced",
    "marked_inactive",
    "reactivated",
    "approved",
    "rejected",
}


class ActivityLog(db.Model):
    """
    One row per action.  ``diff_json`` carries ``{field: {old, new}}`` for
    state changes plus any action-specific payload (remarks, missing roles).
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_actor", "actor_id"),
        db.Index("idx_activity_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="moc_request | dmoc_request | approval_level",
    )
    entity_id = db.Column(db.String(36), nullable=False)

    action = db.Column(db.String(40), nullable=False)
    actor_id = db.Column(db.String(64), nullable=True)
    actor_name = db.Column(db.String(150), nullable=False, default="system")

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor_id": self.actor_id,
            "actor_name": self.actor_name,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_activity(*, entity_type: str, entity_id, action: str, actor, diff: dict | None = None) -> ActivityLog:
    """
    Append a single activity row to the session.  It is persisted by the
    caller's commit, so a stale version on the audited row surfaces there
    (commit_or_raise) rather than on an intermediate flush.

    ``actor`` is a ``mocflow.auth.Actor``.

    Raises:
        ValueError: entity_type or action outside the activity vocabulary.
    """
    if entity_type not in ACTIVITY_ENTITY_TYPES:
        raise ValueError(f"Unknown activity entity type: {entity_type!r}")
    if action not in ACTIVITY_ACTIONS:
        raise ValueError(f"Unknown activity action: {action!r}")
    log = ActivityLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor_id=actor.id,
        actor_name=actor.name,
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    return log


def activity_for(entity_type: str, entity_id) -> list[dict]:
    """Chronological activity for one entity."""
    rows = (
        ActivityLog.query
        .filter_by(entity_type=entity_type, entity_id=str(entity_id))
        .order_by(ActivityLog.timestamp.asc(), ActivityLog.id.asc())
        .all()
    )
    return [r.to_dict() for r in rows]
