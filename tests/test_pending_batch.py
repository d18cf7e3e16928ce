"""
Debounced save batching.

Timers are replaced by a manual fake so the tests drive the clock.
"""

from app.core.exceptions import ForbiddenError, ValidationError
from app.models.program import ProgramTemplateLink
from app.services.pending_batch import (
    REORDER_SAVE_DELAY_MS,
    BatchState,
    PendingBatch,
    link_metadata_batch,
)


class FakeTimer:
    created = []

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.cancelled = False
        self.started = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


def _live_timers():
    return [t for t in FakeTimer.created if t.started and not t.cancelled]


def setup_function():
    FakeTimer.created = []


def test_stage_starts_timer_with_delay():
    batch = PendingBatch(lambda k, c: True, delay_ms=REORDER_SAVE_DELAY_MS, timer_factory=FakeTimer)
    batch.stage(1, {"sort_order": 2})
    assert batch.state is BatchState.ACCUMULATING
    assert _live_timers()[0].interval == 0.4


def test_staging_again_restarts_the_timer_and_merges():
    batch = PendingBatch(lambda k, c: True, timer_factory=FakeTimer)
    batch.stage(1, {"week_number": 1})
    batch.stage(1, {"notes": "bring ID"})
    assert len(_live_timers()) == 1
    assert FakeTimer.created[0].cancelled
    assert batch.pending_changes(1) == {"week_number": 1, "notes": "bring ID"}


def test_timer_fire_flushes_everything():
    sent = []
    batch = PendingBatch(lambda k, c: sent.append((k, c)) or True, timer_factory=FakeTimer)
    batch.stage(1, {"week_number": 1})
    batch.stage(2, {"week_number": 2})
    _live_timers()[0].fire()
    assert sent == [(1, {"week_number": 1}), (2, {"week_number": 2})]
    assert batch.state is BatchState.EMPTY


def test_failed_rows_are_reverted_and_successful_rows_kept():
    reverted = []

    def send(key, changes):
        if key == 2:
            raise ValidationError("invalid_number")
        return True

    reloads = []
    batch = PendingBatch(send, reload=lambda: reloads.append(True), timer_factory=FakeTimer)
    batch.stage(1, {"week_number": 1}, revert=lambda: reverted.append(1))
    batch.stage(2, {"week_number": "x"}, revert=lambda: reverted.append(2))
    batch.stage(3, {"week_number": 3}, revert=lambda: reverted.append(3))

    result = batch.flush()

    assert result == {"sent": [1, 3], "failed": [2]}
    assert reverted == [2]
    assert reloads == [True]


def test_unexpected_send_error_fails_only_its_row():
    sent, reverted, reloads = [], [], []

    def send(key, changes):
        if key == 1:
            raise ForbiddenError("out_of_scope")
        if key == 2:
            raise ConnectionError("socket closed")
        sent.append(key)
        return True

    batch = PendingBatch(send, reload=lambda: reloads.append(True), timer_factory=FakeTimer)
    for key in (1, 2, 3):
        batch.stage(key, {"week_number": key}, revert=lambda k=key: reverted.append(k))

    result = batch.flush()

    assert result == {"sent": [3], "failed": [1, 2]}
    assert sent == [3]
    assert reverted == [1, 2]
    assert reloads == [True]
    assert batch.state is BatchState.EMPTY


def test_first_revert_is_kept():

    reverted = []
    batch = PendingBatch(lambda k, c: False, timer_factory=FakeTimer)
    batch.stage(1, {"a": 1}, revert=lambda: reverted.append("first"))
    batch.stage(1, {"a": 2}, revert=lambda: reverted.append("second"))
    batch.flush()
    assert reverted == ["first"]


def test_edits_staged_during_flush_start_the_next_batch():
    batch = None
    calls = []

    def send(key, changes):
        calls.append(key)
        if key == 1:
            batch.stage(99, {"late": True})
            assert batch.state is BatchState.FLUSHING
        return True

    batch = PendingBatch(send, timer_factory=FakeTimer)
    batch.stage(1, {"x": 1})
    first = batch.flush()

    assert first["sent"] == [1]
    assert batch.pending_count() == 1
    assert len(_live_timers()) == 1
    _live_timers()[0].fire()
    assert calls == [1, 99]


def test_cancel_drops_without_sending():
    sent = []
    batch = PendingBatch(lambda k, c: sent.append(k) or True, timer_factory=FakeTimer)
    batch.stage(1, {"x": 1})
    batch.cancel()
    assert batch.flush() == {"sent": [], "failed": []}
    assert sent == []
    assert _live_timers() == []


def test_link_metadata_batch_writes_links(make_program, make_template, manager):
    make_program("alpha", managers=[manager])
    first = make_template("Badge", link_to="alpha")
    second = make_template("Laptop", link_to="alpha")
    batch = link_metadata_batch("alpha", actor_id=manager.id, timer_factory=FakeTimer)

    batch.stage(first.id, {"week_number": 2})
    batch.stage(second.id, {"week_number": "soon"})
    batch.stage(12345, {"week_number": 1})
    result = batch.flush()

    assert result == {"sent": [first.id], "failed": [second.id, 12345]}
    link = ProgramTemplateLink.query.filter_by(program_id="alpha", template_id=first.id).one()
    assert link.week_number == 2


def test_link_metadata_batch_checks_the_actor(make_program, make_template, manager):
    make_program("alpha")
    template = make_template("Badge", link_to="alpha", week_number=1)
    reverted = []
    batch = link_metadata_batch("alpha", actor_id=manager.id, timer_factory=FakeTimer)

    batch.stage(template.id, {"week_number": 5}, revert=lambda: reverted.append(template.id))
    result = batch.flush()

    assert result == {"sent": [], "failed": [template.id]}
    assert reverted == [template.id]
    link = ProgramTemplateLink.query.filter_by(program_id="alpha", template_id=template.id).one()
    assert link.week_number is None

