import threading
import time
from datetime import datetime, timedelta, timezone

from conftest import make_order
from watcher import OrderChange, OrderChangeWatcher, change_from_event


def added(order):
    return OrderChange("added", dict(order))


def modified(order, **changes):
    return OrderChange("modified", {**order, **changes})


def notification_ids(db):
    return sorted(doc["_id"] for doc in db["notification"].find())


def test_new_recent_order_notifies_admin_and_vendor(db):
    watcher = OrderChangeWatcher(db)
    order = make_order()

    assert watcher.handle_changes([added(order)]) == 2
    assert notification_ids(db) == [
        "order-00000001_NEW_ORDER_ADMIN",
        "order-00000001_NEW_ORDER_vendor-1",
    ]
    vendor_copy = db["notification"].find_one({"_id": "order-00000001_NEW_ORDER_vendor-1"})
    assert vendor_copy["role"] == "VENDOR"
    assert vendor_copy["type"] == "NEW_ORDER"
    assert vendor_copy["is_read"] is False


def test_old_or_non_pending_orders_are_not_announced(db):
    watcher = OrderChangeWatcher(db)
    old = make_order("order-old00001", created_at=datetime.now(timezone.utc) - timedelta(days=3))
    shipped = make_order("order-shipped1", status="delivery_in_route")
    no_vendor = make_order("order-novend01", vendor_id=None)

    assert watcher.handle_changes([added(old), added(shipped), added(no_vendor)]) == 0


def test_status_change_notifies_both_audiences(db):
    watcher = OrderChangeWatcher(db)
    order = make_order()
    watcher.handle_changes([added(order)])

    watcher.handle_changes([modified(order, status="pending_fulfillment")])
    assert db["notification"].find_one({"_id": "order-00000001_STATUS_pending_fulfillment_ADMIN"})["type"] == "STATUS_CHANGED"

    watcher.handle_changes([modified(order, status="cancelled")])
    cancelled = db["notification"].find_one({"_id": "order-00000001_STATUS_cancelled_vendor-1"})
    assert cancelled["type"] == "ORDER_CANCELLED"


def test_change_without_cached_predecessor_is_ignored(db):
    watcher = OrderChangeWatcher(db)
    assert watcher.handle_changes([modified(make_order(), status="fulfilled")]) == 0
    assert db["vendorinvoice"].count_documents({}) == 0


def test_duplicate_fulfilled_delivery_is_handled_once(db, vendor):
    calls = []

    def synthesize(database, order):
        calls.append(order["_id"])

    watcher = OrderChangeWatcher(db, synthesize=synthesize)
    order = make_order()
    watcher.handle_changes([added(order)])

    fulfilled = modified(order, status="fulfilled")
    watcher.handle_changes([fulfilled])
    watcher.handle_changes([fulfilled])
    assert watcher.wait_idle(timeout=5)

    assert calls == ["order-00000001"]
    for audience in ("ADMIN", "vendor-1"):
        assert db["notification"].count_documents({"_id": f"order-00000001_STATUS_fulfilled_{audience}"}) == 1
    assert db["notification"].count_documents({"type": "STATUS_CHANGED"}) == 2


def test_fulfilled_transition_creates_one_invoice_per_type(db, vendor):
    watcher = OrderChangeWatcher(db)
    order = make_order()
    watcher.handle_changes([added(order)])
    watcher.handle_changes([modified(order, status="fulfilled")])
    assert watcher.wait_idle(timeout=5)

    vendor_invoice = db["vendorinvoice"].find_one({"_id": "order-00000001"})
    assert vendor_invoice["net_vendor_payable"] == 22.5
    assert db["restaurantinvoice"].find_one({"_id": "order-00000001"})["grand_total"] == 27.6
    watcher.stop(wait_for_tasks=True)


def test_independent_watchers_do_not_duplicate_writes(db, vendor):
    order = make_order()
    first = OrderChangeWatcher(db)
    second = OrderChangeWatcher(db)

    for watcher in (first, second):
        watcher.handle_changes([added(order)])
        watcher.handle_changes([modified(order, status="fulfilled")])
        assert watcher.wait_idle(timeout=5)

    assert first.status()["triggered_orders"] == 1
    assert second.status()["triggered_orders"] == 1
    assert db["vendorinvoice"].count_documents({}) == 1
    assert db["restaurantinvoice"].count_documents({}) == 1
    assert db["notification"].count_documents({"type": "NEW_ORDER"}) == 2
    assert db["notification"].count_documents({"type": "STATUS_CHANGED"}) == 2


def test_total_change_emits_unique_update_notifications(db):
    watcher = OrderChangeWatcher(db)
    order = make_order()
    watcher.handle_changes([added(order)])

    watcher.handle_changes([modified(order, grand_total_after_tax=30.0)])
    watcher.handle_changes([modified(order, grand_total_after_tax=31.0)])

    updates = list(db["notification"].find({"type": "ORDER_UPDATED"}))
    assert len(updates) == 4
    assert len({doc["_id"] for doc in updates}) == 4


def test_removed_order_drops_from_cache(db):
    watcher = OrderChangeWatcher(db)
    order = make_order()
    watcher.handle_changes([added(order)])
    assert watcher.status()["cached_orders"] == 1

    watcher.handle_changes([OrderChange("removed", {"_id": order["_id"]})])
    assert watcher.status()["cached_orders"] == 0


def test_synthesis_failure_is_logged_not_raised(db, caplog):
    def synthesize(database, order):
        raise RuntimeError("boom")

    watcher = OrderChangeWatcher(db, synthesize=synthesize)
    order = make_order()
    watcher.handle_changes([added(order)])
    watcher.handle_changes([modified(order, status="fulfilled")])
    assert watcher.wait_idle(timeout=5)
    assert "Invoice synthesis failed for order order-00000001" in caplog.text


def test_wait_idle_times_out_while_synthesis_runs(db):
    release = threading.Event()
    watcher = OrderChangeWatcher(db, synthesize=lambda database, order: release.wait(5))
    watcher.trigger_synthesis(make_order())

    assert watcher.wait_idle(timeout=0.05) is False
    release.set()
    assert watcher.wait_idle(timeout=5) is True
    assert watcher.status()["in_flight"] == 0


def test_prime_announces_recent_pending_orders(db):
    db["order"].insert_many([make_order("order-00000001"), make_order("order-00000002", status="fulfilled")])
    watcher = OrderChangeWatcher(db, recent_limit=10)
    assert watcher.prime() == 2
    assert watcher.status()["cached_orders"] == 2


def test_change_from_event():
    insert = change_from_event({"operationType": "insert", "fullDocument": {"_id": "o1"}})
    assert insert.kind == "added" and insert.order_id == "o1"
    update = change_from_event({"operationType": "update", "fullDocument": {"_id": "o1"}})
    assert update.kind == "modified"
    assert not update.status_written
    status_update = change_from_event({
        "operationType": "update",
        "fullDocument": {"_id": "o1", "status": "fulfilled"},
        "updateDescription": {"updatedFields": {"status": "fulfilled"}, "removedFields": []},
    })
    assert status_update.status_written
    delete = change_from_event({"operationType": "delete", "documentKey": {"_id": "o1"}})
    assert delete.kind == "removed"
    assert change_from_event({"operationType": "update", "fullDocument": None}) is None
    assert change_from_event({"operationType": "drop"}) is None


class ReplayStream:
    """Change stream stand-in replaying a fixed list of events."""

    def __init__(self, events, calls):
        self.events = list(events)
        self.calls = calls
        self.drained = threading.Event()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("close")

    def try_next(self):
        if self.events:
            return self.events.pop(0)
        self.drained.set()
        time.sleep(0.01)
        return None


class StreamingOrders:
    def __init__(self, collection, stream, calls):
        self.collection = collection
        self.stream = stream
        self.calls = calls

    def watch(self, **kwargs):
        self.calls.append("watch")
        return self.stream

    def find(self, *args, **kwargs):
        self.calls.append("find")
        return self.collection.find(*args, **kwargs)


class StreamingDatabase:
    def __init__(self, db, orders):
        self.db = db
        self.orders = orders

    def __getitem__(self, name):
        return self.orders if name == "order" else self.db[name]


def test_fulfilment_committed_while_priming_is_not_lost(db):
    # the order was already fulfilled when the initial load read it
    order = make_order(status="fulfilled")
    db["order"].insert_one(order)
    calls = []
    stream = ReplayStream([{
        "operationType": "update",
        "fullDocument": order,
        "updateDescription": {"updatedFields": {"status": "fulfilled"}},
    }], calls)
    synthesized = []
    watcher = OrderChangeWatcher(
        StreamingDatabase(db, StreamingOrders(db["order"], stream, calls)),
        synthesize=lambda database, o: synthesized.append(o["_id"]),
    )

    watcher.start()
    assert stream.drained.wait(5)
    watcher.stop(wait_for_tasks=True)

    assert calls[:2] == ["watch", "find"]
    assert calls[-1] == "close"
    assert synthesized == ["order-00000001"]
    assert db["notification"].count_documents({"_id": {"$regex": "_STATUS_fulfilled_"}}) == 2


def test_status_write_without_cached_predecessor_is_a_transition(db):
    synthesized = []
    watcher = OrderChangeWatcher(db, synthesize=lambda database, o: synthesized.append(o["_id"]))
    change = OrderChange("modified", make_order(status="fulfilled"), status_written=True)

    assert watcher.handle_changes([change, change]) == 2
    assert watcher.wait_idle(timeout=5)
    assert synthesized == ["order-00000001"]


def test_submitter_blocks_while_synthesis_slots_are_full(db):
    release = threading.Event()
    ran = []

    def synthesize(database, order):
        release.wait(5)
        ran.append(order["_id"])

    watcher = OrderChangeWatcher(db, synthesize=synthesize, max_in_flight=1)
    watcher.trigger_synthesis(make_order("order-00000001"))

    second = threading.Thread(target=watcher.trigger_synthesis, args=(make_order("order-00000002"),))
    second.start()
    second.join(timeout=0.2)
    assert second.is_alive()
    assert watcher.status()["in_flight"] == 1

    release.set()
    second.join(timeout=5)
    assert not second.is_alive()
    assert watcher.wait_idle(timeout=5)
    assert ran == ["order-00000001", "order-00000002"]


def test_added_line_alone_emits_update_notifications(db):
    watcher = OrderChangeWatcher(db)
    order = make_order()
    watcher.handle_changes([added(order)])

    salt = {"item_name": "Salt", "qty": 1, "vendor_price": 0.0, "taxable": False}
    assert watcher.handle_changes([modified(order, items=order["items"] + [salt])]) == 2
    assert db["notification"].count_documents({"type": "ORDER_UPDATED"}) == 2


def test_cache_forgets_least_recently_seen_orders(db):
    watcher = OrderChangeWatcher(db, cache_limit=2)
    first, second, third = (make_order(f"order-0000000{n}") for n in (1, 2, 3))
    watcher.handle_changes([added(first), added(second)])
    watcher.handle_changes([modified(first, grand_total_after_tax=1.0)])
    watcher.handle_changes([added(third)])

    assert watcher.status()["cached_orders"] == 2
    assert watcher.handle_changes([modified(second, grand_total_after_tax=2.0)]) == 0
    assert watcher.handle_changes([modified(third, grand_total_after_tax=3.0)]) == 2
