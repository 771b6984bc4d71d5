"""
Approver-chain builder: ordering, idempotency and snapshot semantics.
"""

from datetime import date

import pytest

from mocflow.core.exceptions import StateTransitionError
from mocflow.models import db as _db
from mocflow.models.moc import MocApprover, MocRequest
from mocflow.services import approval_level_service, moc_workflow
from mocflow.services.approver_chain import count_slots, ensure_approver_chain


def _draft(actor):
    return moc_workflow.create_request(
        {
            "request_type": "standard_emoc",
            "title": "Upgrade flare tip",
            "target_implementation_date": date(2025, 9, 1),
        },
        actor,
    )


def _slots(moc_id):
    return (
        MocApprover.query
        .filter_by(moc_request_id=moc_id)
        .order_by(MocApprover.sequence)
        .all()
    )


def test_levels_3_1_2_with_roles_c_a_b_build_a_b_c(make_levels, actor):
    make_levels([(3, "C"), (1, "A"), (2, "B")])
    created = _draft(actor)

    moc_workflow.submit(created["id"], actor)

    slots = _slots(created["id"])
    assert [s.role_key for s in slots] == ["A", "B", "C"]
    assert [s.sequence for s in slots] == [1, 2, 3]
    assert all(s.is_completed is False for s in slots)
    assert all(s.is_approved is None for s in slots)


@pytest.mark.parametrize("n", [0, 1, 4])
def test_second_build_is_a_no_op(n, make_levels, actor):
    make_levels([(i + 1, key) for i, key in enumerate(["A", "B", "C", "Supervisor"][:n])])
    created = _draft(actor)
    req = _db.session.get(MocRequest, created["id"])

    ensure_approver_chain(req, actor)
    _db.session.commit()
    first_ids = [s.id for s in _slots(req.id)]

    ensure_approver_chain(req, actor)
    _db.session.commit()

    assert count_slots(req.id) == n
    assert [s.id for s in _slots(req.id)] == first_ids


def test_equal_orders_fall_back_to_insertion_order(make_levels, actor):
    make_levels([(1, "B"), (1, "A"), (0, "C")])
    created = _draft(actor)
    moc_workflow.submit(created["id"], actor)

    assert [s.role_key for s in _slots(created["id"])] == ["C", "B", "A"]


def test_inactive_levels_do_not_participate(make_levels, actor):
    make_levels([(1, "A"), (3, "C")])
    make_levels([(2, "B")], active=False)
    created = _draft(actor)
    moc_workflow.submit(created["id"], actor)

    assert [s.role_key for s in _slots(created["id"])] == ["A", "C"]


def test_no_active_levels_yields_empty_chain(roles, actor):
    created = _draft(actor)
    result = moc_workflow.submit(created["id"], actor)

    assert result["approvers"] == []
    assert count_slots(created["id"]) == 0


def test_draft_has_no_chain(make_levels, actor):
    make_levels([(1, "A")])
    created = _draft(actor)
    assert created["approvers"] == []
    assert count_slots(created["id"]) == 0


def test_built_chain_is_a_snapshot(make_levels, actor):
    first, second = make_levels([(1, "A"), (2, "B")])
    created = _draft(actor)
    moc_workflow.submit(created["id"], actor)

    approval_level_service.update_level(first.id, {"role_key": "C"}, actor)
    approval_level_service.delete_level(second.id, actor)

    assert [s.role_key for s in _slots(created["id"])] == ["A", "B"]


def test_resubmitting_is_refused_and_chain_unchanged(make_levels, actor):
    make_levels([(1, "A")])
    created = _draft(actor)
    moc_workflow.submit(created["id"], actor)

    with pytest.raises(StateTransitionError, match="Only draft"):
        moc_workflow.submit(created["id"], actor)
    assert count_slots(created["id"]) == 1


def test_slots_stamped_with_actor_and_level(make_levels, actor):
    (level,) = make_levels([(1, "A")])
    created = _draft(actor)
    moc_workflow.submit(created["id"], actor)

    (slot,) = _slots(created["id"])
    assert slot.created_by == actor.name
    assert slot.approval_level_id == level.id
