"""
Approver slot ledger: one-time decisions, immutability and scoping.
"""

from datetime import date

import pytest

from mocflow.core.exceptions import NotFoundError, StateTransitionError, ValidationError
from mocflow.models import db as _db
from mocflow.models.moc import MocApprover
from mocflow.services import moc_workflow


def _submitted(actor, title="Install temporary clamp on line 4-P-1021"):
    return moc_workflow.create_request(
        {
            "request_type": "standard_emoc",
            "title": title,
            "target_implementation_date": date(2025, 8, 20),
        },
        actor,
        save_as_draft=False,
    )


def _slot(moc_id, role_key="Supervisor"):
    return MocApprover.query.filter_by(moc_request_id=moc_id, role_key=role_key).one()


def test_completion_records_decision_and_actor(standard_chain, actor):
    created = _submitted(actor)
    slot_id = _slot(created["id"]).id

    result = moc_workflow.complete_approver(created["id"], slot_id, True, actor, remarks="OK to proceed")

    slot = _db.session.get(MocApprover, slot_id)
    assert slot.is_completed is True
    assert slot.is_approved is True
    assert slot.remarks == "OK to proceed"
    assert slot.completed_by == actor.name
    assert slot.completed_by_id == actor.id
    assert slot.completed_at is not None
    by_id = {a["id"]: a for a in result["approvers"]}
    assert by_id[slot_id]["is_completed"] is True


def test_rejection_is_recorded_as_completed(standard_chain, actor):
    created = _submitted(actor)
    slot_id = _slot(created["id"]).id

    moc_workflow.complete_approver(created["id"], slot_id, False, actor, remarks="Needs HAZOP")

    slot = _db.session.get(MocApprover, slot_id)
    assert slot.is_completed is True
    assert slot.is_approved is False


def test_completed_slot_is_immutable(standard_chain, actor):
    created = _submitted(actor)
    slot_id = _slot(created["id"]).id
    moc_workflow.complete_approver(created["id"], slot_id, True, actor, remarks="first")
    first_completed_at = _db.session.get(MocApprover, slot_id).completed_at

    with pytest.raises(StateTransitionError, match="already been completed"):
        moc_workflow.complete_approver(created["id"], slot_id, False, actor, remarks="second")

    slot = _db.session.get(MocApprover, slot_id)
    assert slot.is_approved is True
    assert slot.remarks == "first"
    assert slot.completed_at == first_completed_at


def test_slot_of_another_request_is_not_found(standard_chain, actor):
    first = _submitted(actor, title="First")
    second = _submitted(actor, title="Second")
    foreign_slot_id = _slot(first["id"]).id

    with pytest.raises(NotFoundError):
        moc_workflow.complete_approver(second["id"], foreign_slot_id, True, actor)
    assert _db.session.get(MocApprover, foreign_slot_id).is_completed is False


def test_unknown_request_or_slot_is_not_found(standard_chain, actor):
    created = _submitted(actor)
    with pytest.raises(NotFoundError):
        moc_workflow.complete_approver(9999, _slot(created["id"]).id, True, actor)
    with pytest.raises(NotFoundError):
        moc_workflow.complete_approver(created["id"], 9999, True, actor)


def test_completing_never_advances_the_stage(standard_chain, actor):
    created = _submitted(actor)
    for role_key in ("Supervisor", "DepartmentManager", "ProcessSafety", "DivisionManager"):
        moc_workflow.complete_approver(created["id"], _slot(created["id"], role_key).id, True, actor)

    detail = moc_workflow.get_request(created["id"])
    assert detail["current_stage"] == "validation"
    assert detail["status"] == "submitted"


def test_approved_must_be_a_boolean(standard_chain, actor):
    created = _submitted(actor)
    slot_id = _slot(created["id"]).id

    with pytest.raises(ValidationError):
        moc_workflow.complete_approver(created["id"], slot_id, "yes", actor)
    assert _db.session.get(MocApprover, slot_id).is_completed is False
