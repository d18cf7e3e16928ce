"""
Debounced save batching for link metadata and reorder edits.

An editor session stages edits as they happen; after a quiet period
(600 ms for metadata, 400 ms for reorder) the batch is flushed row by
row. Rows that fail are reverted through their own callback, the rest
stay applied, and an optional ``reload`` callback runs once the flush is
over.

States::

    empty ──stage──▶ accumulating ──timer / flush──▶ flushing ──▶ empty
                         ▲                               │
                         └────────── stage during flush ─┘

Edits staged while a flush is running are not part of that flush; they
start the next batch.

Usage:
    batch = PendingBatch(send=lambda key, changes: save(key, changes))
    batch.stage(12, {"week_number": 3}, revert=lambda: ui.reset(12))
    batch.flush()        # or wait for the timer
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

METADATA_SAVE_DELAY_MS = 600
REORDER_SAVE_DELAY_MS = 400


class BatchState(str, Enum):
    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class _Pending:
    changes: dict = field(default_factory=dict)
    revert: Optional[Callable[[], None]] = None


class PendingBatch:
    """Per-session accumulator of unsaved row edits."""

    def __init__(
        self,
        send: Callable[[object, dict], bool],
        *,
        delay_ms: int = METADATA_SAVE_DELAY_MS,
        reload: Optional[Callable[[], None]] = None,
        timer_factory=threading.Timer,
    ):
        self._send = send
        self._reload = reload
        self._delay = max(delay_ms, 0) / 1000.0
        self._timer_factory = timer_factory
        self._timer = None
        self._pending: dict[object, _Pending] = {}
        self._flushing = False
        self._lock = threading.RLock()

    # Introspection -----------------------------------------------------
    @property
    def state(self) -> BatchState:
        with self._lock:
            if self._flushing:
                return BatchState.FLUSHING
            return BatchState.ACCUMULATING if self._pending else BatchState.EMPTY

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def pending_changes(self, key) -> dict:
        with self._lock:
            entry = self._pending.get(key)
            return dict(entry.changes) if entry else {}

    # Control -----------------------------------------------------------
    def stage(self, key, changes: dict, revert: Optional[Callable[[], None]] = None) -> None:
        """Merge ``changes`` into the pending row ``key`` and restart the timer.

        The first ``revert`` staged for a row is kept: it restores the
        state from before the batch started.
        """
        with self._lock:
            entry = self._pending.setdefault(key, _Pending())
            entry.changes.update(changes or {})
            if entry.revert is None:
                entry.revert = revert
            self._schedule()

    def cancel(self) -> None:
        """Drop everything staged and stop the timer. Nothing is sent or reverted."""
        with self._lock:
            self._stop_timer()
            self._pending.clear()

    def flush(self) -> dict:
        """Send every staged row now. Returns ``{"sent", "failed"}`` key lists."""
        with self._lock:
            self._stop_timer()
            if self._flushing or not self._pending:
                return {"sent": [], "failed": []}
            batch, self._pending = self._pending, {}
            self._flushing = True

        sent, failed = [], []
        try:
            for key, entry in batch.items():
                if self._send_row(key, entry.changes):
                    sent.append(key)
                    continue
                failed.append(key)
                if entry.revert is not None:
                    entry.revert()
            if self._reload is not None:
                self._reload()
        finally:
            with self._lock:
                self._flushing = False
                if self._pending:
                    self._schedule()

        if failed:
            logger.warning("Pending batch flush: %d sent, %d failed (%s)",
                           len(sent), len(failed), failed)
        return {"sent": sent, "failed": failed}

    # Internal ----------------------------------------------------------
    def _send_row(self, key, changes) -> bool:
        try:
            return bool(self._send(key, changes))
        except (ValidationError, NotFoundError, ForbiddenError, ConflictError) as exc:
            logger.warning("Pending batch row %r rejected: %s", key, exc)
            return False
        except Exception:
            logger.exception("Pending batch row %r failed", key)
            return False

    def _schedule(self) -> None:
        self._stop_timer()
        if self._flushing:
            return
        self._timer = self._timer_factory(self._delay, self.flush)
        self._timer.daemon = True
        self._timer.start()

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


def link_metadata_batch(program_id, *, actor_id, reload=None, **kwargs) -> PendingBatch:
    """A batch whose rows are template ids of ``program_id`` and whose sends are link PATCHes.

    Each send re-checks ``link.update`` for ``actor_id`` on the program.
    """
    from app.services.association_service import get_program_or_404, update_link
    from app.services.permission_service import authorize_actor, load_actor

    def send(template_id, changes):
        program = get_program_or_404(program_id)
        authorize_actor(
            load_actor(actor_id),
            "link.update",
            resource_program_id=program.id,
            resource_status=program.status,
            resource_archived=program.is_deleted,
        )
        update_link(program.id, template_id, changes, actor_id=actor_id)
        return True

    kwargs.setdefault("delay_ms", METADATA_SAVE_DELAY_MS)
    return PendingBatch(send, reload=reload, **kwargs)

