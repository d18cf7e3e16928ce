"""
Program ↔ Template association manager.

Test blocks:
  1. Attach / detach idempotency
  2. Link metadata updates (single + bulk + reorder)
  3. Listings
  4. Instantiation
"""

from datetime import date

import pytest

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.audit import AuditLog
from app.models.program import ProgramTemplateLink, Task
from app.services import association_service as links


@pytest.fixture()
def alpha(make_program):
    return make_program("alpha")


# ═══════════════════════════════════════════════════════════════
# 1. Attach / detach
# ═══════════════════════════════════════════════════════════════

class TestAttachDetach:
    def test_attach_twice_keeps_one_row(self, alpha, make_template):
        template = make_template("Badge")
        first = links.attach("alpha", template.id, {"required": True})
        second = links.attach("alpha", template.id, {"required": False})

        assert first["alreadyAttached"] is False
        assert second["alreadyAttached"] is True
        assert ProgramTemplateLink.query.filter_by(program_id="alpha").count() == 1
        # overrides only apply on creation
        assert second["template"]["required"] is True

    def test_attach_writes_one_audit_row(self, alpha, make_template):
        template = make_template("Badge")
        links.attach("alpha", template.id)
        links.attach("alpha", template.id)
        assert AuditLog.query.filter_by(action="link.attach").count() == 1

    def test_attach_unknown_template(self, alpha):
        with pytest.raises(NotFoundError):
            links.attach("alpha", 404)

    def test_attach_archived_template(self, alpha, make_template):
        template = make_template("Badge")
        template.soft_delete()
        db.session.commit()
        with pytest.raises(ConflictError) as exc:
            links.attach("alpha", template.id)
        assert exc.value.reason == "resource_archived"
        assert ProgramTemplateLink.query.count() == 0

    def test_attach_accepts_digit_strings(self, alpha, make_template):
        template = make_template("Badge")
        result = links.attach("alpha", str(template.id))
        assert result["template"]["template_id"] == template.id

    def test_attach_rejects_negative_ids(self, alpha):
        with pytest.raises(ValidationError):
            links.attach("alpha", -1)

    def test_detach_missing_link_is_success(self, alpha, make_template):
        template = make_template("Badge")
        assert links.detach("alpha", template.id) == {"detached": True, "wasAttached": False}

    def test_detach_removes_only_the_link(self, alpha, make_template):
        template = make_template("Badge", link_to="alpha")
        assert links.detach("alpha", template.id)["wasAttached"] is True
        assert not links.is_linked("alpha", template.id)
        assert template.deleted_at is None


# ═══════════════════════════════════════════════════════════════
# 2. Metadata updates
# ═══════════════════════════════════════════════════════════════

class TestUpdates:
    def test_update_link_drops_unknown_keys(self, alpha, make_template):
        template = make_template("Badge", link_to="alpha", status="draft")
        result = links.update_link("alpha", template.id, {"status": "published", "week_number": 4})
        assert result["updated"] is True
        assert result["template"]["week_number"] == 4
        assert template.status == "draft"

    def test_update_with_nothing_to_write(self, alpha, make_template):
        template = make_template("Badge", link_to="alpha")
        assert links.update_link("alpha", template.id, {"label": "New"}) == {
            "updated": False, "template": None}

    def test_update_unlinked_pair(self, alpha, make_template):
        template = make_template("Badge")
        with pytest.raises(NotFoundError):
            links.update_link("alpha", template.id, {"week_number": 1})

    def test_bulk_partial_failure(self, alpha, make_template):
        good = make_template("Badge", link_to="alpha")
        bad = make_template("Laptop", link_to="alpha")
        result = links.bulk_update_links("alpha", [
            {"template_id": good.id, "week_number": 2},
            {"template_id": bad.id, "week_number": "next week"},
            "garbage",
        ])
        assert (result["updated"], result["failed"]) == (1, 2)
        assert result["results"][1]["error"] == "invalid_number"
        assert result["results"][2]["error"] == "invalid_entry"

        rows = {l.template_id: l for l in ProgramTemplateLink.query.all()}
        assert rows[good.id].week_number == 2
        assert rows[bad.id].week_number is None

    def test_bulk_requires_a_list(self, alpha):
        with pytest.raises(ValidationError):
            links.bulk_update_links("alpha", {"template_id": 1})

    def test_reorder_assigns_positions_from_one(self, alpha, make_template):
        a = make_template("A", link_to="alpha")
        b = make_template("B", link_to="alpha")
        stranger = make_template("C")
        result = links.reorder("alpha", [b.id, a.id, stranger.id])

        assert result["reordered"] == 2
        assert result["results"][2] == {"template_id": stranger.id, "updated": False,
                                        "error": "not_linked"}
        rows = {l.template_id: l.sort_order for l in ProgramTemplateLink.query.all()}
        assert rows == {b.id: 1, a.id: 2}


# ═══════════════════════════════════════════════════════════════
# 3. Listings
# ═══════════════════════════════════════════════════════════════

class TestListings:
    def test_order_is_week_then_sort_then_id_nulls_last(self, alpha, make_template):
        late = make_template("Late", link_to="alpha", week_number=3)
        undated = make_template("Undated", link_to="alpha")
        early_b = make_template("Early B", link_to="alpha", week_number=1, sort_order=2)
        early_a = make_template("Early A", link_to="alpha", week_number=1, sort_order=1)

        data = links.list_templates_for_program("alpha")["data"]
        assert [r["template_id"] for r in data] == [early_a.id, early_b.id, late.id, undated.id]

    def test_order_uses_merged_values(self, alpha, make_template):
        first = make_template("Template week 5", link_to="alpha", week_number=5,
                              link_overrides={"week_number": 1})
        second = make_template("Template week 2", link_to="alpha", week_number=2)
        data = links.list_templates_for_program("alpha")["data"]
        assert [r["template_id"] for r in data] == [first.id, second.id]

    def test_archived_templates_hidden_by_default(self, alpha, make_template):
        make_template("Live", link_to="alpha")
        gone = make_template("Gone", link_to="alpha")
        gone.soft_delete()
        db.session.commit()

        assert links.list_templates_for_program("alpha")["meta"]["total"] == 1
        assert links.list_templates_for_program("alpha", include_deleted=True)["meta"]["total"] == 2

    def test_paging_window(self, alpha, make_template):
        for week in range(1, 6):
            make_template(f"Week {week}", link_to="alpha", week_number=week)
        page = links.list_templates_for_program("alpha", limit="2", offset="3")
        assert [r["week_number"] for r in page["data"]] == [4, 5]
        assert page["meta"] == {"total": 5, "limit": 2, "offset": 3}

    def test_limit_is_capped(self, alpha):
        assert links.list_templates_for_program("alpha", limit=5000)["meta"]["limit"] == 100

    @pytest.mark.parametrize("raw", ["inf", "-inf", "1e999", "nan"])
    def test_unbounded_paging_values_fall_back(self, alpha, raw):
        meta = links.list_templates_for_program("alpha", limit=raw, offset=raw)["meta"]
        assert (meta["limit"], meta["offset"]) == (25, 0)


    def test_search_escapes_wildcards(self, alpha, make_template):
        make_template("100% remote setup", link_to="alpha")
        make_template("Office tour", link_to="alpha")
        data = links.list_templates_for_program("alpha", search="100%")["data"]
        assert [r["label"] for r in data] == ["100% remote setup"]
        assert links.list_templates_for_program("alpha", search="%")["meta"]["total"] == 1

    def test_programs_for_template(self, make_program, make_template):
        make_program("beta", title="Beta")
        make_program("alpha", title="Alpha")
        template = make_template("Shared")
        links.attach("beta", template.id)
        links.attach("alpha", template.id, {"week_number": 7})

        data = links.list_programs_for_template(template.id)["data"]
        assert [p["id"] for p in data] == ["alpha", "beta"]
        assert data[0]["link"]["week_number"] == 7

    def test_unknown_program(self):
        with pytest.raises(NotFoundError):
            links.list_templates_for_program("nope")


# ═══════════════════════════════════════════════════════════════
# 4. Instantiation
# ═══════════════════════════════════════════════════════════════

class TestInstantiate:
    def test_creates_tasks_from_visible_templates(self, alpha, make_template, trainee):
        make_template("Badge", link_to="alpha", week_number=1, due_offset_days=2)
        make_template("Laptop", link_to="alpha", week_number=2)
        make_template("Hidden", link_to="alpha", link_overrides={"visible": False})

        result = links.instantiate("alpha", trainee.id, start_date="2026-01-05")

        assert result["created"] == 2
        tasks = {t.label: t for t in Task.query.filter_by(user_id=trainee.id).all()}
        assert set(tasks) == {"Badge", "Laptop"}
        assert tasks["Badge"].scheduled_for == date(2026, 1, 7)
        assert tasks["Laptop"].scheduled_for == date(2026, 1, 12)

    def test_repeat_skips_existing(self, alpha, make_template, trainee):
        make_template("Badge", link_to="alpha")
        links.instantiate("alpha", trainee.id)
        again = links.instantiate("alpha", trainee.id)
        assert (again["created"], again["skipped"]) == (0, 1)
        assert Task.query.count() == 1

    def test_bad_start_date(self, alpha, trainee):
        with pytest.raises(ValidationError) as exc:
            links.instantiate("alpha", trainee.id, start_date="tomorrow")
        assert str(exc.value) == "invalid_date"
