"""Schedule reconciliation passes for every stored volume group."""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Optional

from .logging_utils import log_event
from .reconciler import RECONCILE_INTERVAL, ReconcileError, Result, VGReconciler
from .state import ObjectStore

__all__ = ["Manager", "MAX_IMMEDIATE_REQUEUES", "POLL_INTERVAL"]

# Bounds back-to-back passes for one volume group (finalizer, then
# Progressing, then the mutation) before it waits for its next slot.
MAX_IMMEDIATE_REQUEUES = 5
POLL_INTERVAL = 1.0


class Manager:
    """Run passes sequentially, one volume group at a time.

    Each volume group is requeued :data:`RECONCILE_INTERVAL` seconds after
    its last pass, whether that pass succeeded or failed.
    """

    def __init__(
        self,
        reconciler: VGReconciler,
        store: ObjectStore,
        *,
        clock: Callable[[], float] = time.monotonic,
        max_immediate_requeues: int = MAX_IMMEDIATE_REQUEUES,
    ) -> None:
        self.reconciler = reconciler
        self.store = store
        self.clock = clock
        self.max_immediate_requeues = max_immediate_requeues
        self.due: Dict[str, float] = {}

    def reconcile(self, name: str) -> Optional[Result]:
        """Run passes for *name* until it no longer asks for an immediate requeue.

        Returns the last result, or ``None`` when the last pass failed.
        """

        for _ in range(self.max_immediate_requeues + 1):
            try:
                result = self.reconciler.reconcile(name)
            except ReconcileError as exc:
                log_event("vg_manager.manager.pass_failed", vg=name, error=str(exc))
                self.due[name] = self.clock() + RECONCILE_INTERVAL
                return None
            except Exception as exc:
                log_event("vg_manager.manager.pass_error", vg=name, error=exc)
                self.due[name] = self.clock() + RECONCILE_INTERVAL
                return None
            if not result.requeue:
                break
        if result.requeue_after is not None or result.requeue:
            self.due[name] = self.clock() + (result.requeue_after or RECONCILE_INTERVAL)
        else:
            self.due.pop(name, None)
        return result

    def run_once(self) -> Dict[str, Optional[Result]]:
        """Run one round over every stored volume group."""

        results: Dict[str, Optional[Result]] = {}
        for spec in self.store.list_specs():
            results[spec.name] = self.reconcile(spec.name)
        return results

    def run_forever(self, stop: Optional[threading.Event] = None) -> None:
        """Reconcile until *stop* is set.

        The store is polled every :data:`POLL_INTERVAL` seconds so newly
        applied volume groups get their first pass promptly.
        """

        stop = stop or threading.Event()
        # Last observed content per volume group; a change triggers a pass
        # the way a watch event would.
        seen: Dict[str, dict] = {}
        log_event("vg_manager.manager.start")
        while not stop.is_set():
            now = self.clock()
            specs = self.store.list_specs()
            for spec in specs:
                content = spec.to_dict()
                due = self.due.get(spec.name)
                if seen.get(spec.name) != content:
                    due = now
                seen[spec.name] = content
                if due is not None and due <= now:
                    self.reconcile(spec.name)
                    latest = self.store.get_spec(spec.name)
                    if latest is not None:
                        seen[spec.name] = latest.to_dict()
            names = {spec.name for spec in specs}
            for name in list(seen):
                if name not in names:
                    seen.pop(name)
                    self.due.pop(name, None)
            stop.wait(POLL_INTERVAL)
        log_event("vg_manager.manager.stop")
