"""
Program / Template lifecycle — state machine and transition_resource.
"""

import pytest

from app.core.exceptions import ConflictError, ValidationError
from app.models import db
from app.models.audit import AuditLog
from app.models.program import Template
from app.services.lifecycle import transition_resource, validate_transition


class TestValidateTransition:
    @pytest.mark.parametrize("status,action,valid,changed", [
        ("draft", "publish", True, True),
        ("published", "publish", True, False),
        ("deprecated", "publish", False, False),
        ("published", "deprecate", True, True),
        ("deprecated", "deprecate", True, False),
        ("draft", "deprecate", False, False),
    ])
    def test_status_moves(self, status, action, valid, changed):
        check = validate_transition(status, action)
        assert check["valid"] is valid
        assert check["changed"] is changed

    def test_archive_is_valid_from_any_status(self):
        for status in ("draft", "published", "deprecated"):
            assert validate_transition(status, "archive")["valid"]

    def test_unknown_action(self):
        check = validate_transition("draft", "explode")
        assert not check["valid"]
        assert "Unknown action" in check["reason"]


class TestTransitionResource:
    def test_publish_program_restores_linked_templates(self, make_program, make_template):
        program = make_program("alpha")
        linked = make_template("Sign NDA", link_to="alpha")
        unlinked = make_template("Unrelated")
        linked.soft_delete()
        unlinked.soft_delete()

        result = transition_resource(program, "publish", actor_id=None)

        assert result["changed"] is True
        assert result["status"] == "published"
        assert result["restored_templates"] == [linked.id]
        assert db.session.get(Template, linked.id).deleted_at is None
        assert db.session.get(Template, unlinked.id).deleted_at is not None

    def test_repeated_publish_is_a_noop(self, make_program):
        program = make_program("alpha", status="published")
        result = transition_resource(program, "publish")
        assert result["changed"] is False
        assert result["status"] == "published"
        assert AuditLog.query.count() == 0

    def test_backward_move_conflicts(self, make_program):
        program = make_program("alpha", status="deprecated")
        with pytest.raises(ConflictError) as exc:
            transition_resource(program, "publish")
        assert exc.value.reason == "invalid_transition"
        assert program.status == "deprecated"

    def test_archive_and_restore_are_idempotent(self, make_template):
        template = make_template("Laptop setup")
        first = transition_resource(template, "archive")
        second = transition_resource(template, "archive")
        assert (first["changed"], first["wasArchived"]) == (True, False)
        assert (second["changed"], second["wasArchived"]) == (False, True)

        restored = transition_resource(template, "restore")
        assert restored["archived"] is False
        assert restored["wasArchived"] is True

    def test_archive_keeps_status(self, make_program):
        program = make_program("alpha", status="published")
        transition_resource(program, "archive")
        assert program.status == "published"
        assert program.is_deleted

    def test_unknown_action_is_a_validation_error(self, make_program):
        with pytest.raises(ValidationError):
            transition_resource(make_program("alpha"), "delete")

    def test_audit_row_written(self, make_template):
        template = make_template("Laptop setup")
        transition_resource(template, "publish", actor_id=None)
        log = AuditLog.query.filter_by(action="template.publish").one()
        assert log.entity_id == str(template.id)
        assert log.diff["status"] == "published"
