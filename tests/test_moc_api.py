"""
MOC request API: CRUD, workflow actions, views and error mapping.

Exercises the HTTP layer end-to-end against the SQLite test database, plus
lost-update detection at the service level and write access by API role.
"""

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from mocflow.core.exceptions import ConcurrencyError
from mocflow.models import db as _db
from mocflow.models.moc import MocApprover, MocRequest
from mocflow.services import moc_workflow

BASE = "/api/v1/moc-requests"


def _body(**overrides):
    data = {
        "request_type": "standard_emoc",
        "title": "Upgrade FT-3001 transmitter",
        "target_implementation_date": "2025-09-01",
        "equipment_tag": "FT-3001",
        "risk_level": "yellow",
    }
    data.update(overrides)
    return data


def _create(client, **overrides):
    res = client.post(BASE, json=_body(**overrides))
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _submitted(client, **overrides):
    return _create(client, save_as_draft=False, **overrides)


def _slot_id(moc, role_key):
    return next(a["id"] for a in moc["approvers"] if a["role_key"] == role_key)


# ═════════════════════════════════════════════════════════════════════════
# Create / read / update / delete
# ═════════════════════════════════════════════════════════════════════════


class TestCrud:

    def test_create_draft(self, client):
        moc = _create(client)
        assert moc["status"] == "draft"
        assert moc["current_stage"] == "initiation"
        assert moc["control_number"].startswith("EMOC-")
        assert moc["approvers"] == []

    def test_create_and_submit_in_one_call(self, client, standard_chain):
        moc = _submitted(client)
        assert moc["status"] == "submitted"
        assert moc["current_stage"] == "validation"
        assert [a["role_key"] for a in moc["approvers"]] == [
            "Supervisor", "DepartmentManager", "ProcessSafety", "DivisionManager",
        ]

    def test_missing_title_is_400(self, client):
        res = client.post(BASE, json=_body(title=""))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_missing_request_type_is_400(self, client):
        res = client.post(BASE, json=_body(request_type=None))
        assert res.status_code == 400

    def test_unknown_request_type_is_422(self, client):
        res = client.post(BASE, json=_body(request_type="xmoc"))
        assert res.status_code == 422

    def test_bad_date_is_400(self, client):
        res = client.post(BASE, json=_body(target_implementation_date="31/31/2025"))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_non_boolean_save_as_draft_is_400(self, client):
        res = client.post(BASE, json=_body(save_as_draft="no"))
        assert res.status_code == 400

    def test_temporary_without_restoration_date_is_422(self, client):
        res = client.post(BASE, json=_body(is_temporary=True))
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert body["details"] == {"planned_restoration_date": "required"}

    def test_get_unknown_is_404(self, client):
        res = client.get(f"{BASE}/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_draft(self, client):
        moc = _create(client)
        res = client.put(f"{BASE}/{moc['id']}", json={"title": "Upgrade FT-3001 and FT-3002"})
        assert res.status_code == 200
        assert res.get_json()["title"] == "Upgrade FT-3001 and FT-3002"

    def test_null_originator_on_update_is_422(self, client):
        moc = _create(client)
        for value in (None, "   "):
            res = client.put(f"{BASE}/{moc['id']}", json={"originator": value})
            assert res.status_code == 422
            assert res.get_json()["details"] == {"originator": "required"}
        assert client.get(f"{BASE}/{moc['id']}").get_json()["originator"] == moc["originator"]

    def test_null_is_temporary_means_permanent(self, client):
        moc = _create(client)
        res = client.put(f"{BASE}/{moc['id']}", json={"is_temporary": None})
        assert res.status_code == 200
        assert res.get_json()["is_temporary"] is False

        created = _create(client, title="Null flag on create", is_temporary=None)
        assert created["is_temporary"] is False

    def test_request_type_cannot_change(self, client):
        moc = _create(client)
        res = client.put(f"{BASE}/{moc['id']}", json={"request_type": "omoc"})
        assert res.status_code == 422

    def test_update_blocked_once_in_progress(self, client, roles):
        moc = _submitted(client)
        client.post(f"{BASE}/{moc['id']}/mark-inactive")
        res = client.put(f"{BASE}/{moc['id']}", json={"title": "Late edit"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_only_drafts_can_be_deleted(self, client, roles):
        draft = _create(client)
        submitted = _submitted(client, title="Submitted one")

        assert client.delete(f"{BASE}/{draft['id']}").status_code == 204
        assert client.get(f"{BASE}/{draft['id']}").status_code == 404

        res = client.delete(f"{BASE}/{submitted['id']}")
        assert res.status_code == 409

    def test_invalid_json_body_is_400(self, client):
        res = client.post(BASE, data="[1, 2]", content_type="application/json")
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════


class TestWorkflow:

    def test_submit_twice_is_409(self, client, standard_chain):
        moc = _create(client)
        assert client.post(f"{BASE}/{moc['id']}/submit").status_code == 200
        res = client.post(f"{BASE}/{moc['id']}/submit")
        assert res.status_code == 409
        assert res.get_json()["details"] == {"current": "submitted"}

    def test_gate_blocks_until_department_manager_approves(self, client, standard_chain):
        moc = _submitted(client)

        res = client.post(f"{BASE}/{moc['id']}/advance-stage", json={})
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_STAGE_GATE_BLOCKED"
        assert body["details"]["required_roles"] == ["DepartmentManager"]
        assert body["details"]["stage"] == "validation"

        res = client.post(
            f"{BASE}/{moc['id']}/approvers/{_slot_id(moc, 'DepartmentManager')}/complete",
            json={"approved": True, "remarks": "Fine by me"},
        )
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "validation"

        res = client.post(f"{BASE}/{moc['id']}/advance-stage", json={"remarks": "Validated"})
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "evaluation"

    def test_completing_twice_is_409(self, client, standard_chain):
        moc = _submitted(client)
        url = f"{BASE}/{moc['id']}/approvers/{_slot_id(moc, 'Supervisor')}/complete"
        assert client.post(url, json={"approved": True}).status_code == 200

        res = client.post(url, json={"approved": False})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_approved_flag_is_required(self, client, standard_chain):
        moc = _submitted(client)
        url = f"{BASE}/{moc['id']}/approvers/{_slot_id(moc, 'Supervisor')}/complete"
        assert client.post(url, json={}).status_code == 400
        assert client.post(url, json={"approved": "yes"}).status_code == 400

    def test_foreign_approver_is_404(self, client, standard_chain):
        first = _submitted(client, title="First")
        second = _submitted(client, title="Second")
        res = client.post(
            f"{BASE}/{second['id']}/approvers/{_slot_id(first, 'Supervisor')}/complete",
            json={"approved": True},
        )
        assert res.status_code == 404

    def test_final_stage_is_409(self, client, roles):
        moc = _submitted(client)
        for _ in range(5):
            assert client.post(f"{BASE}/{moc['id']}/advance-stage", json={}).status_code == 200
        res = client.post(f"{BASE}/{moc['id']}/advance-stage", json={})
        assert res.status_code == 409
        assert res.get_json()["error"] == "Request is already at the final stage."

    def test_mark_inactive_and_reactivate(self, client, roles):
        moc = _submitted(client)

        res = client.post(f"{BASE}/{moc['id']}/mark-inactive")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "inactive"
        assert body["days_inactive"] == 0

        res = client.post(f"{BASE}/{moc['id']}/reactivate")
        assert res.status_code == 200
        assert res.get_json()["status"] == "active"
        assert res.get_json()["days_inactive"] is None

        res = client.post(f"{BASE}/{moc['id']}/reactivate")
        assert res.status_code == 409

    def test_draft_cannot_be_marked_inactive(self, client):
        moc = _create(client)
        assert client.post(f"{BASE}/{moc['id']}/mark-inactive").status_code == 409

    def test_activity_is_stamped_with_caller(self, client, roles):
        headers = {"X-User-Id": "u-42", "X-User-Name": "Sam Reviewer"}
        res = client.post(BASE, json=_body(save_as_draft=False), headers=headers)
        moc = res.get_json()
        assert moc["created_by"] == "Sam Reviewer"
        assert moc["originator"] == "Sam Reviewer"

        client.post(f"{BASE}/{moc['id']}/advance-stage", json={"remarks": "Go"}, headers=headers)

        items = client.get(f"{BASE}/{moc['id']}/activity").get_json()["items"]
        assert [i["action"] for i in items] == ["created", "submitted", "stage_advanced"]
        assert {i["actor_id"] for i in items} == {"u-42"}
        assert items[-1]["diff"]["remarks"] == "Go"

    def test_activity_for_unknown_request_is_404(self, client):
        assert client.get(f"{BASE}/999/activity").status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# Listing and views
# ═════════════════════════════════════════════════════════════════════════


class TestListing:

    def test_default_order_is_oldest_first(self, client):
        ids = [_create(client, title=f"Change {i}")["id"] for i in range(3)]
        body = client.get(BASE).get_json()
        assert [m["id"] for m in body["items"]] == ids
        assert body["total"] == 3

    def test_sort_descending(self, client):
        ids = [_create(client, title=f"Change {i}")["id"] for i in range(3)]
        body = client.get(f"{BASE}?sort_by=created_at&sort_desc=true").get_json()
        assert [m["id"] for m in body["items"]] == list(reversed(ids))

    def test_sort_by_stage_follows_workflow_order(self, client, roles):
        submitted = _submitted(client, title="Submitted")
        draft = _create(client, title="Draft")
        body = client.get(f"{BASE}?sort_by=stage").get_json()
        assert [m["id"] for m in body["items"]] == [draft["id"], submitted["id"]]

    def test_paging(self, client):
        for i in range(5):
            _create(client, title=f"Change {i}")
        body = client.get(f"{BASE}?page=3&page_size=2").get_json()
        assert len(body["items"]) == 1
        assert body["total_pages"] == 3

    def test_search_matches_title_tag_and_number(self, client):
        first = _create(client, title="Replace pump seal", equipment_tag="P-101A")
        _create(client, title="Relief valve retest", equipment_tag="PSV-7")

        assert [m["id"] for m in client.get(f"{BASE}?search=pump").get_json()["items"]] == [first["id"]]
        assert [m["id"] for m in client.get(f"{BASE}?search=p-101a").get_json()["items"]] == [first["id"]]
        by_number = client.get(f"{BASE}?search={first['control_number']}").get_json()["items"]
        assert [m["id"] for m in by_number] == [first["id"]]

    def test_status_in_filter(self, client, roles):
        draft = _create(client, title="Draft")
        submitted = _submitted(client, title="Submitted")
        body = client.get(f"{BASE}?status_in=draft,submitted").get_json()
        assert {m["id"] for m in body["items"]} == {draft["id"], submitted["id"]}

    @pytest.mark.parametrize("view,expected", [
        ("drafts", {"draft"}),
        ("active", {"submitted"}),
        ("inactive", {"inactive"}),
    ])
    def test_status_views(self, client, roles, view, expected):
        _create(client, title="Draft")
        _submitted(client, title="Submitted")
        inactive = _submitted(client, title="Parked")
        client.post(f"{BASE}/{inactive['id']}/mark-inactive")

        body = client.get(f"{BASE}/{view}").get_json()
        assert {m["status"] for m in body["items"]} == expected
        assert body["total"] == 1

    def test_bypass_view(self, client):
        bypass = _create(client, request_type="bypass_emoc", bypass_duration_days=3)
        _create(client)
        body = client.get(f"{BASE}/bypass").get_json()
        assert [m["id"] for m in body["items"]] == [bypass["id"]]
        assert body["items"][0]["control_number"].startswith("BYPASS-")

    def test_unknown_view_is_404(self, client):
        assert client.get(f"{BASE}/archived").status_code == 404

    def test_overdue_temporary_request(self, client):
        overdue = _create(
            client,
            title="Temporary bypass of TSHH-12",
            is_temporary=True,
            target_implementation_date="2020-01-01",
            planned_restoration_date="2020-02-01",
        )
        _create(client, title="Permanent change")
        req = _db.session.get(MocRequest, overdue["id"])
        req.status = "active"
        _db.session.commit()

        assert client.get(f"{BASE}/{overdue['id']}").get_json()["is_overdue"] is True
        body = client.get(f"{BASE}/for-restoration").get_json()
        assert [m["id"] for m in body["items"]] == [overdue["id"]]

    def test_inactive_over_days_filter(self, client, roles):
        parked = _submitted(client, title="Parked")
        client.post(f"{BASE}/{parked['id']}/mark-inactive")
        req = _db.session.get(MocRequest, parked["id"])
        req.marked_inactive_at = datetime.now(timezone.utc) - timedelta(days=90)
        _db.session.commit()

        body = client.get(f"{BASE}?inactive_over_days=60").get_json()
        assert [m["id"] for m in body["items"]] == [parked["id"]]
        assert body["items"][0]["days_inactive"] >= 89
        assert client.get(f"{BASE}?inactive_over_days=120").get_json()["total"] == 0

    def test_inactive_over_alert_uses_configured_threshold(self, client, roles):
        parked = _submitted(client, title="Parked")
        recent = _submitted(client, title="Recently parked")
        for moc, age in ((parked, 61), (recent, 10)):
            client.post(f"{BASE}/{moc['id']}/mark-inactive")
            req = _db.session.get(MocRequest, moc["id"])
            req.marked_inactive_at = datetime.now(timezone.utc) - timedelta(days=age)
        _db.session.commit()

        body = client.get(f"{BASE}?inactive_over_alert=true").get_json()
        assert [m["id"] for m in body["items"]] == [parked["id"]]


# ═════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert "X-Request-ID" in res.headers


# ═════════════════════════════════════════════════════════════════════════
# Lost updates
# ═════════════════════════════════════════════════════════════════════════


class TestConcurrency:

    def _bump_version(self, model, row_id):
        _db.session.execute(
            update(model)
            .where(model.id == row_id)
            .values(version=model.version + 1)
            .execution_options(synchronize_session=False)
        )

    def test_stale_request_update_is_rejected(self, actor):
        created = moc_workflow.create_request(
            {
                "request_type": "omoc",
                "title": "Shift pattern change",
                "target_implementation_date": date(2025, 10, 1),
            },
            actor,
        )
        req = _db.session.get(MocRequest, created["id"])
        assert req.version == 1
        self._bump_version(MocRequest, req.id)

        with pytest.raises(ConcurrencyError):
            moc_workflow.update_request(req.id, {"title": "Changed"}, actor)
        assert _db.session.get(MocRequest, created["id"]).title == "Shift pattern change"

    def test_stale_slot_completion_is_rejected(self, standard_chain, actor):
        created = moc_workflow.create_request(
            {
                "request_type": "omoc",
                "title": "Shift pattern change",
                "target_implementation_date": date(2025, 10, 1),
            },
            actor,
            save_as_draft=False,
        )
        slot = MocApprover.query.filter_by(moc_request_id=created["id"], role_key="Supervisor").one()
        slot_version = slot.version
        self._bump_version(MocApprover, slot.id)
        assert slot.version == slot_version

        with pytest.raises(ConcurrencyError):
            moc_workflow.complete_approver(created["id"], slot.id, True, actor)


# ═════════════════════════════════════════════════════════════════════════
# Write access by API role
# ═════════════════════════════════════════════════════════════════════════


class TestWriteAccess:

    VIEWER = {"X-API-Key": "k-view"}
    EDITOR = {"X-API-Key": "k-edit"}

    @pytest.fixture(autouse=True)
    def _auth_on(self, monkeypatch):
        monkeypatch.setenv("API_AUTH_ENABLED", "true")
        monkeypatch.setenv("API_KEYS", "k-view:viewer,k-edit:editor")

    def test_viewer_can_read_but_not_create(self, client):
        assert client.get(BASE, headers=self.VIEWER).status_code == 200
        res = client.post(BASE, json=_body(), headers=self.VIEWER)
        assert res.status_code == 403
        assert MocRequest.query.count() == 0

    def test_viewer_cannot_complete_or_advance(self, client, standard_chain):
        res = client.post(BASE, json=_body(save_as_draft=False), headers=self.EDITOR)
        assert res.status_code == 201
        moc = res.get_json()
        slot_url = f"{BASE}/{moc['id']}/approvers/{_slot_id(moc, 'DepartmentManager')}/complete"

        assert client.post(slot_url, json={"approved": True}, headers=self.VIEWER).status_code == 403
        assert client.post(f"{BASE}/{moc['id']}/advance-stage", json={}, headers=self.VIEWER).status_code == 403
        assert client.post(f"{BASE}/{moc['id']}/mark-inactive", headers=self.VIEWER).status_code == 403
        assert _db.session.get(MocApprover, _slot_id(moc, "DepartmentManager")).is_completed is False

        assert client.post(slot_url, json={"approved": True}, headers=self.EDITOR).status_code == 200
        res = client.post(f"{BASE}/{moc['id']}/advance-stage", json={}, headers=self.EDITOR)
        assert res.status_code == 200
        assert res.get_json()["current_stage"] == "evaluation"

    def test_viewer_cannot_decide_a_dmoc(self, client):
        res = client.post(
            "/api/v1/dmoc",
            json={
                "title": "Relocate eyewash station",
                "change_originator_name": "Jane Operator",
                "description_of_change": "Move station 3m east",
                "reason_for_change": "New walkway",
            },
            headers=self.EDITOR,
        )
        assert res.status_code == 201
        dmoc_id = res.get_json()["id"]
        assert client.post(f"/api/v1/dmoc/{dmoc_id}/submit", headers=self.VIEWER).status_code == 403
        assert client.post(f"/api/v1/dmoc/{dmoc_id}/submit", headers=self.EDITOR).status_code == 200
        assert client.post(f"/api/v1/dmoc/{dmoc_id}/approve", json={}, headers=self.VIEWER).status_code == 403
