"""
Task API — authorization end to end.

Test blocks:
  1. Manager field gate (task.update vs task.assign)
  2. Trainee self-service
  3. Task creation and the task.create grant
  4. Scope, 404 ordering and authentication
  5. Soft delete / restore
  6. Body validation
"""

import pytest

from app.models import db
from app.models.program import Task
from app.services.permission_service import grant_permission, revoke_permission


@pytest.fixture()
def world(make_user, make_program, make_task, manager, trainee):
    """Mona manages alpha; Tom is a trainee in alpha; beta is unmanaged."""
    other = make_user("olga_trainee", roles=["trainee"])
    make_program("alpha", managers=[manager], members=[trainee, other])
    make_program("beta")
    return {
        "manager": manager,
        "trainee": trainee,
        "other": other,
        "tom_task": make_task(trainee, "Collect badge", program_id="alpha"),
        "olga_task": make_task(other, "Meet buddy", program_id="alpha"),
        "beta_task": make_task(other, "Beta intro", program_id="beta"),
    }


def _revoke(role, codename):
    revoke_permission(role, codename)
    db.session.commit()


def _grant(role, codename):
    grant_permission(role, codename)
    db.session.commit()


def _reason(res):
    return res.get_json()["details"]["reason"]


# ═══════════════════════════════════════════════════════════════
# 1. Manager field gate
# ═══════════════════════════════════════════════════════════════

class TestManagerFieldGate:
    def test_assign_only_manager_may_reschedule(self, client, auth_headers, world):
        _revoke("manager", "task.update")
        task = world["tom_task"]
        res = client.patch(f"/api/v1/tasks/{task.id}", json={"scheduled_for": "2024-02-02"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 200
        assert res.get_json()["scheduled_for"] == "2024-02-02"

    def test_assign_only_manager_may_not_relabel(self, client, auth_headers, world):
        _revoke("manager", "task.update")
        task = world["tom_task"]
        res = client.patch(f"/api/v1/tasks/{task.id}", json={"label": "x"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_FORBIDDEN"
        assert body["details"] == {"reason": "field_not_allowed", "fields": ["label"]}
        assert db.session.get(Task, task.id).label == "Collect badge"

    def test_full_manager_edits_any_task_field(self, client, auth_headers, world):
        task = world["tom_task"]
        res = client.patch(f"/api/v1/tasks/{task.id}",
                           json={"label": "Collect badge + parking", "notes": "Level 2"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 200
        assert res.get_json()["label"] == "Collect badge + parking"

    def test_deleted_flag_is_not_patchable(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={"deleted": True},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 403
        assert _reason(res) == "status_requires_transition"

    def test_moving_task_out_of_managed_programs(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={"program_id": "beta"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 403
        assert _reason(res) == "target_program_out_of_scope"

    def test_manager_cannot_clear_program(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={"program_id": None},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 403
        assert _reason(res) == "target_program_out_of_scope"
        assert db.session.get(Task, world["tom_task"].id).program_id == "alpha"



# ═══════════════════════════════════════════════════════════════
# 2. Trainee self-service
# ═══════════════════════════════════════════════════════════════

class TestTraineeSelfService:
    def test_trainee_ticks_own_task(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={"done": True},
                           headers=auth_headers(world["trainee"]))
        assert res.status_code == 200
        assert res.get_json()["done"] is True

    def test_trainee_cannot_tick_someone_elses_task(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['olga_task'].id}", json={"done": True},
                           headers=auth_headers(world["trainee"]))
        assert res.status_code == 403
        assert db.session.get(Task, world["olga_task"].id).done is False

    def test_trainee_cannot_relabel_own_task(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}",
                           json={"done": True, "label": "Skip"},
                           headers=auth_headers(world["trainee"]))
        assert res.status_code == 403
        assert res.get_json()["details"]["fields"] == ["label"]
        # the allowed half of the body is not applied either
        assert db.session.get(Task, world["tom_task"].id).done is False

    def test_trainee_lists_only_own_tasks(self, client, auth_headers, world):
        res = client.get("/api/v1/tasks", headers=auth_headers(world["trainee"]))
        assert res.status_code == 200
        assert [t["label"] for t in res.get_json()] == ["Collect badge"]


# ═══════════════════════════════════════════════════════════════
# 3. Creation
# ═══════════════════════════════════════════════════════════════

class TestCreate:
    def test_task_create_grant_flips_403_to_201(self, client, auth_headers, world):
        body = {"label": "Security training", "program_id": "alpha",
                "user_id": world["trainee"].id}
        _revoke("manager", "task.create")
        denied = client.post("/api/v1/tasks", json=body, headers=auth_headers(world["manager"]))
        assert denied.status_code == 403
        assert _reason(denied) == "missing_permission"

        _grant("manager", "task.create")
        allowed = client.post("/api/v1/tasks", json=body, headers=auth_headers(world["manager"]))
        assert allowed.status_code == 201
        assert allowed.get_json()["user_id"] == world["trainee"].id

    def test_manager_cannot_create_in_unmanaged_program(self, client, auth_headers, world):
        res = client.post("/api/v1/tasks",
                          json={"label": "x", "program_id": "beta", "user_id": world["other"].id},
                          headers=auth_headers(world["manager"]))
        assert res.status_code == 403
        assert _reason(res) == "out_of_scope"

    def test_label_is_required(self, client, auth_headers, world):
        res = client.post("/api/v1/tasks", json={"program_id": "alpha"},
                          headers=auth_headers(world["manager"]))
        assert res.status_code == 400
        assert res.get_json()["error"] == "label_required"

    def test_time_alias_on_create(self, client, auth_headers, world):
        res = client.post("/api/v1/tasks",
                          json={"label": "Standup", "time": "09:15", "scheduled_for": "05.02.2024"},
                          headers=auth_headers(world["manager"]))
        assert res.status_code == 201
        data = res.get_json()
        assert (data["scheduled_time"], data["scheduled_for"]) == ("09:15", "2024-02-05")


# ═══════════════════════════════════════════════════════════════
# 4. Scope, ordering, authentication
# ═══════════════════════════════════════════════════════════════

class TestScopeAndOrdering:
    def test_task_outside_managed_programs(self, client, auth_headers, world):
        res = client.get(f"/api/v1/tasks/{world['beta_task'].id}",
                         headers=auth_headers(world["manager"]))
        assert res.status_code == 403
        assert _reason(res) == "out_of_scope"

    def test_missing_task_is_404_before_scope(self, client, auth_headers, world):
        res = client.get("/api/v1/tasks/999999", headers=auth_headers(world["trainee"]))
        assert res.status_code == 404

    def test_manager_list_is_scope_filtered(self, client, auth_headers, world):
        res = client.get("/api/v1/tasks", headers=auth_headers(world["manager"]))
        labels = sorted(t["label"] for t in res.get_json())
        assert labels == ["Collect badge", "Meet buddy"]

    def test_admin_lists_everything(self, client, auth_headers, world, admin):
        res = client.get("/api/v1/tasks", headers=auth_headers(admin))
        assert len(res.get_json()) == 3

    def test_list_date_window(self, client, auth_headers, world, make_task):
        from datetime import date
        make_task(world["trainee"], "Day one", program_id="alpha", scheduled_for=date(2024, 2, 1))
        make_task(world["trainee"], "Day nine", program_id="alpha", scheduled_for=date(2024, 2, 9))
        res = client.get("/api/v1/tasks?start=2024-02-01&end=2024-02-05",
                         headers=auth_headers(world["trainee"]))
        assert [t["label"] for t in res.get_json()] == ["Day one"]

    def test_missing_token(self, client, world):
        res = client.get("/api/v1/tasks")
        assert res.status_code == 401
        assert res.get_json() == {"error": "auth_required"}

    def test_garbage_token(self, client, world):
        res = client.get("/api/v1/tasks", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401

    def test_suspended_actor(self, client, auth_headers, world, make_user):
        ghost = make_user("sam_suspended", roles=["admin"], status="suspended")
        res = client.get("/api/v1/tasks", headers=auth_headers(ghost))
        assert res.status_code == 403
        assert _reason(res) == "actor_inactive"


# ═══════════════════════════════════════════════════════════════
# 5. Soft delete / restore
# ═══════════════════════════════════════════════════════════════

class TestSoftDelete:
    def test_delete_is_idempotent(self, client, auth_headers, world):
        url = f"/api/v1/tasks/{world['tom_task'].id}"
        first = client.delete(url, headers=auth_headers(world["manager"]))
        second = client.delete(url, headers=auth_headers(world["manager"]))
        assert first.get_json()["wasDeleted"] is False
        assert second.status_code == 200
        assert second.get_json()["wasDeleted"] is True
        assert db.session.get(Task, world["tom_task"].id) is not None

    def test_trainee_cannot_delete_own_task(self, client, auth_headers, world):
        res = client.delete(f"/api/v1/tasks/{world['tom_task'].id}",
                            headers=auth_headers(world["trainee"]))
        assert res.status_code == 403

    def test_owner_may_restore(self, client, auth_headers, world):
        task = world["tom_task"]
        task.deleted = True
        db.session.commit()
        res = client.post(f"/api/v1/tasks/{task.id}/restore",
                          headers=auth_headers(world["trainee"]))
        assert res.status_code == 200
        assert res.get_json()["wasDeleted"] is True

    def test_patch_on_deleted_task_conflicts(self, client, auth_headers, world):
        task = world["tom_task"]
        task.deleted = True
        db.session.commit()
        res = client.patch(f"/api/v1/tasks/{task.id}", json={"notes": "late"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 409
        assert res.get_json()["details"]["reason"] == "resource_archived"

    def test_deleted_tasks_hidden_from_list(self, client, auth_headers, world):
        client.delete(f"/api/v1/tasks/{world['tom_task'].id}",
                      headers=auth_headers(world["manager"]))
        res = client.get("/api/v1/tasks", headers=auth_headers(world["trainee"]))
        assert res.get_json() == []
        res = client.get("/api/v1/tasks?include_deleted=1", headers=auth_headers(world["trainee"]))
        assert len(res.get_json()) == 1


# ═══════════════════════════════════════════════════════════════
# 6. Validation
# ═══════════════════════════════════════════════════════════════

class TestValidation:
    def test_time_alias_wins(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}",
                           json={"time": "09:30", "scheduled_time": "10:00"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 200
        assert res.get_json()["scheduled_time"] == "09:30"

    def test_bad_time(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={"time": "25:00"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 400
        assert res.get_json()["error"] == "invalid_time"

    def test_bad_date(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}",
                           json={"scheduled_for": "someday"},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_done_must_be_boolean(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={"done": "yes"},
                           headers=auth_headers(world["trainee"]))
        assert res.status_code == 400

    def test_empty_patch_is_rejected(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['tom_task'].id}", json={},
                           headers=auth_headers(world["manager"]))
        assert res.status_code == 400
        assert res.get_json()["error"] == "no_fields"


    def test_forbidden_is_checked_before_validation(self, client, auth_headers, world):
        res = client.patch(f"/api/v1/tasks/{world['olga_task'].id}",
                           json={"scheduled_for": "someday"},
                           headers=auth_headers(world["trainee"]))
        assert res.status_code == 403
