"""
Approver-Chain Builder.

Materialises one MocApprover slot per active ApprovalLevel, in ``(order, id)``
order, exactly once per request.

    ensure_approver_chain(request, actor) -> list[MocApprover]

Idempotency is detected by counting existing slots: a request that already
has any slot is left untouched.  An empty active-level set yields an empty
chain, which the stage transition engine treats as "no gate".

The chain is a snapshot: ``role_key`` is copied from the level, so later
edits or deletions in the registry never alter slots already built.
Callers own the transaction; this module only flushes.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from mocflow.models import db
from mocflow.models.approval_level import ApprovalLevel
from mocflow.models.moc import MocApprover, MocRequest

logger = logging.getLogger(__name__)


def count_slots(moc_request_id: int) -> int:
    return db.session.execute(
        select(func.count(MocApprover.id)).where(
            MocApprover.moc_request_id == moc_request_id
        )
    ).scalar_one()


def ensure_approver_chain(moc_request: MocRequest, actor) -> list[MocApprover]:
    """Build the approver chain for *moc_request* unless one already exists.

    Args:
        moc_request: A persisted (flushed) request.
        actor: ``mocflow.auth.Actor`` stamped onto ``created_by``.

    Returns:
        The request's slots in chain order (existing or newly built).
    """
    existing = count_slots(moc_request.id)
    if existing:
        logger.debug(
            "Approver chain already built for MOC %s (%d slots)",
            moc_request.id, existing,
        )
        return list(moc_request.approvers)

    levels = ApprovalLevel.chain_template()
    slots = []
    for sequence, level in enumerate(levels, start=1):
        slot = MocApprover(
            moc_request_id=moc_request.id,
            sequence=sequence,
            role_key=level.role_key,
            approval_level_id=level.id,
            is_completed=False,
            is_approved=None,
            created_by=actor.name,
        )
        db.session.add(slot)
        slots.append(slot)
    db.session.flush()
    # Refresh the collection so callers see the slots just inserted.
    db.session.expire(moc_request, ["approvers"])

    logger.info(
        "Approver chain built for MOC %s: %s",
        moc_request.id, [s.role_key for s in slots] or "(empty)",
        extra={
            "moc_request_id": moc_request.id,
            "slot_count": len(slots),
            "actor_id": actor.id,
        },
    )
    return slots
