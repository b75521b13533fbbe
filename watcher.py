"""
Order change watcher.

Follows the order collection and reacts to what changed since the last
observation of each order:

- a recent order seen for the first time in a pending status -> NEW_ORDER
- a status transition -> STATUS_CHANGED / ORDER_CANCELLED, and on the
  transition into "fulfilled" one invoice synthesis task for the order
- totals or item count changed without a transition -> ORDER_UPDATED

The change feed delivers the current document plus the names of the fields
an update wrote. A status write counts as a transition on its own; other
changes are compared with this watcher's cache of the last version seen.
Status notifications are keyed by the status value and are naturally
deduplicated; updates get a fresh id each time. The cache and the trigger
set are bounded, least recently seen orders first out. All state lives on
the instance: independent watchers never share a cache or a trigger set.

The stream is opened before the initial load, so a change committed while
priming is still delivered afterwards.

Synthesis runs on a single worker, one order after another. The set of
in-flight tasks is bounded and `wait_idle()` lets callers wait for it to
drain. This is at-least-once and best effort; invoices missed while no
watcher runs are recovered by the manual reconciliation scan.
"""

import logging
import threading
from collections import OrderedDict
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Set

from pymongo.database import Database
from pymongo.errors import PyMongoError

import notifications
from config import (
    ORDER_WATCH_CACHE_LIMIT,
    ORDER_WATCH_RECENT_LIMIT,
    ORDER_WATCH_WINDOW_HOURS,
    SYNTHESIS_MAX_IN_FLIGHT,
)
from database import as_utc, utc_now
from invoices import generate_invoices_for_order, order_id_of
from money import to_amount
from schemas import FULFILLED, PENDING_STATUSES

logger = logging.getLogger(__name__)

ChangeKind = Literal["added", "modified", "removed"]
Synthesizer = Callable[[Database, dict], Any]


@dataclass
class OrderChange:
    kind: ChangeKind
    order: dict
    # set when the feed reports that the status field itself was written
    status_written: bool = False

    @property
    def order_id(self) -> str:
        return order_id_of(self.order)


def change_from_event(event: dict) -> Optional[OrderChange]:
    """Map a MongoDB change stream event onto an OrderChange (None if irrelevant)."""
    operation = event.get("operationType")
    if operation == "delete":
        return OrderChange("removed", {"_id": event["documentKey"]["_id"]})
    if operation == "insert":
        kind = "added"
    elif operation in ("update", "replace"):
        kind = "modified"
    else:
        return None
    document = event.get("fullDocument")
    if document is None:
        # deleted before the update lookup ran
        return None
    updated_fields = (event.get("updateDescription") or {}).get("updatedFields") or {}
    return OrderChange(kind, document, status_written="status" in updated_fields)


def order_total(order: dict) -> float:
    if order.get("grand_total_after_tax") is not None:
        return to_amount(order["grand_total_after_tax"])
    return to_amount(order.get("total"))


def item_count(order: dict) -> int:
    return len(order.get("items") or [])


class OrderChangeWatcher:
    """One watcher per observing session.

    - database: the Mongo database holding "order", invoices and notifications
    - synthesize: invoice generation entry point, called as synthesize(database, order)
    - window_hours: how old an order may be and still earn a NEW_ORDER notification
    - recent_limit: how many of the newest orders `prime()` loads
    - max_in_flight: bound on queued + running synthesis tasks
    - cache_limit: how many orders the cache and trigger set remember, least
      recently seen first out
    """

    def __init__(
        self,
        database: Database,
        synthesize: Synthesizer = generate_invoices_for_order,
        window_hours: float = ORDER_WATCH_WINDOW_HOURS,
        recent_limit: int = ORDER_WATCH_RECENT_LIMIT,
        max_in_flight: int = SYNTHESIS_MAX_IN_FLIGHT,
        cache_limit: int = ORDER_WATCH_CACHE_LIMIT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.window = timedelta(hours=window_hours)
        self.recent_limit = recent_limit
        self.max_in_flight = max(1, max_in_flight)
        self.cache_limit = max(1, cache_limit)
        self._synthesize = synthesize
        self._clock = clock

        self._cache: "OrderedDict[str, dict]" = OrderedDict()
        self._triggered: "OrderedDict[str, None]" = OrderedDict()
        self._in_flight: Set[Future] = set()
        self._lock = threading.RLock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="invoice-synthesis")
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------- change handling --------------------

    def handle_changes(self, changes: Iterable[OrderChange]) -> int:
        """Process one batch of changes; returns the number of notifications created."""
        pending: List[notifications.PendingNotification] = []
        for change in changes:
            try:
                pending.extend(self._observe(change))
            except Exception:
                logger.exception("Failed to process change for order %s", change.order_id)
        if not pending:
            return 0
        return notifications.emit(self.database, pending)

    def _observe(self, change: OrderChange) -> List[notifications.PendingNotification]:
        order = change.order
        order_id = change.order_id
        with self._lock:
            previous = self._cache.pop(order_id, None)
            if change.kind == "removed":
                return []
            self._cache[order_id] = order
            while len(self._cache) > self.cache_limit:
                self._cache.popitem(last=False)

        vendor_id = order.get("vendor_id")
        if not vendor_id:
            return []

        if change.kind == "added":
            if order.get("status") in PENDING_STATUSES and self._is_recent(order):
                return notifications.new_order(order_id, vendor_id, order.get("restaurant_id"))
            return []

        status = order.get("status")
        transitioned = bool(status) and (
            change.status_written or (previous is not None and status != previous.get("status"))
        )
        if transitioned:
            pending = notifications.status_changed(order_id, vendor_id, status)
            if status == FULFILLED:
                self.trigger_synthesis(order)
            return pending

        if previous is None:
            return []
        if order_total(order) != order_total(previous) or item_count(order) != item_count(previous):
            return notifications.order_updated(order_id, vendor_id)
        return []

    def _is_recent(self, order: dict) -> bool:
        created_at = as_utc(order.get("created_at"))
        if created_at is None:
            return False
        return self._clock() - created_at < self.window

    # -------------------- synthesis tasks --------------------

    def trigger_synthesis(self, order: dict) -> Optional[Future]:
        """Queue invoice synthesis for an order, once per watcher lifetime."""
        order_id = order_id_of(order)
        with self._lock:
            if order_id in self._triggered:
                return None
            self._triggered[order_id] = None
            while len(self._triggered) > self.cache_limit:
                self._triggered.popitem(last=False)

        self._wait_for_slot()
        future = self._executor.submit(self._run_synthesis, dict(order))
        with self._lock:
            self._in_flight.add(future)
        future.add_done_callback(self._release)
        return future

    def _wait_for_slot(self) -> None:
        while True:
            with self._lock:
                if len(self._in_flight) < self.max_in_flight:
                    return
                running = list(self._in_flight)
            wait(running, return_when=FIRST_COMPLETED)

    def _release(self, future: Future) -> None:
        with self._lock:
            self._in_flight.discard(future)

    def _run_synthesis(self, order: dict) -> Any:
        try:
            return self._synthesize(self.database, order)
        except Exception:
            logger.exception("Invoice synthesis failed for order %s", order_id_of(order))
            return None

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every queued synthesis task has finished. False on timeout."""
        with self._lock:
            running = list(self._in_flight)
        if not running:
            return True
        _, not_done = wait(running, timeout=timeout)
        return not not_done

    # -------------------- subscription --------------------

    def prime(self) -> int:
        """Observe the newest `recent_limit` orders as first sightings."""
        cursor = self.database["order"].find().sort("created_at", -1).limit(self.recent_limit)
        return self.handle_changes(OrderChange("added", order) for order in cursor)

    def start(self) -> None:
        """Open the order change stream, prime the cache, then follow the stream on a daemon thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="order-watcher", daemon=True)
        self._thread.start()

    def stop(self, join: bool = True, wait_for_tasks: bool = False) -> None:
        """End the subscription. Queued synthesis tasks still run to completion."""
        self._stop_event.set()
        if join and self._thread is not None:
            self._thread.join()
        self._executor.shutdown(wait=wait_for_tasks)

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self.is_running(),
                "cached_orders": len(self._cache),
                "triggered_orders": len(self._triggered),
                "in_flight": len(self._in_flight),
            }

    def _run(self) -> None:
        try:
            with self.database["order"].watch(full_document="updateLookup", max_await_time_ms=500) as stream:
                self.prime()
                while not self._stop_event.is_set():
                    batch = []
                    event = stream.try_next()
                    while event is not None:
                        change = change_from_event(event)
                        if change is not None:
                            batch.append(change)
                        event = stream.try_next() if len(batch) < 100 else None
                    if batch:
                        self.handle_changes(batch)
        except PyMongoError:
            if not self._stop_event.is_set():
                logger.exception("Order change stream stopped unexpectedly")
        except Exception:
            logger.exception("Order watcher crashed")
        finally:
            logger.info("Order watcher stopped")
