"""
Activity log writer: vocabulary checks and same-transaction persistence.
"""

import pytest

from mocflow.models import db as _db
from mocflow.models.audit import ActivityLog, activity_for, write_activity


def test_row_is_persisted_by_the_callers_commit(actor):
    write_activity(entity_type="moc_request", entity_id=7, action="created", actor=actor, diff={"a": 1})
    _db.session.commit()

    (row,) = activity_for("moc_request", 7)
    assert row["actor_id"] == actor.id
    assert row["actor_name"] == actor.name
    assert row["diff"] == {"a": 1}


def test_rollback_discards_the_row(actor):
    write_activity(entity_type="dmoc_request", entity_id=3, action="approved", actor=actor)
    _db.session.rollback()
    assert ActivityLog.query.count() == 0


@pytest.mark.parametrize("entity_type,action", [
    ("moc_requests", "created"),
    ("moc_request", "advanced"),
])
def test_unknown_vocabulary_is_rejected(actor, entity_type, action):
    with pytest.raises(ValueError, match="Unknown activity"):
        write_activity(entity_type=entity_type, entity_id=1, action=action, actor=actor)
    assert ActivityLog.query.count() == 0
