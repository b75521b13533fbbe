import pytest
from bson import ObjectId

from conftest import NOW, make_order
from reconciliation import (
    InvoiceAlreadyPaid,
    InvoiceNotFound,
    mark_invoice_paid,
    recompute_total,
    run_integrity_check,
    scan_and_generate_missing,
    stored_total,
)


@pytest.fixture
def fulfilled_orders(db, vendor):
    orders = [make_order(f"order-0000000{n}", status="fulfilled") for n in range(1, 4)]
    orders.append(make_order("order-00000009", status="pending_confirmation"))
    db["order"].insert_many(orders)
    return orders


def test_scan_creates_missing_invoices(db, fulfilled_orders):
    result = scan_and_generate_missing(db, "vendor", now=NOW)
    assert (result.eligible, result.missing, result.created, result.failed) == (3, 3, 3, 0)
    assert db["vendorinvoice"].count_documents({}) == 3
    assert db["restaurantinvoice"].count_documents({}) == 0

    numbers = {doc["invoice_number"] for doc in db["vendorinvoice"].find()}
    assert len(numbers) == 3
    assert all(doc["admin_notes"].startswith("Manually generated") for doc in db["vendorinvoice"].find())


def test_rescan_creates_nothing(db, fulfilled_orders):
    scan_and_generate_missing(db, "restaurant", now=NOW)
    again = scan_and_generate_missing(db, "restaurant", now=NOW)
    assert again.missing == 0
    assert again.created == 0
    assert db["restaurantinvoice"].count_documents({}) == 3


def test_scan_only_fills_gaps(db, fulfilled_orders):
    db["vendorinvoice"].insert_one({"_id": "legacy-random", "order_id": "order-00000001"})
    result = scan_and_generate_missing(db, "vendor", now=NOW)
    assert result.missing == 2
    assert result.created == 2


def test_recompute_total_rounds_per_line():
    order = make_order()
    assert recompute_total(order) == 27.6
    assert stored_total(order) == 27.6
    assert stored_total({"total": "12.5"}) == 12.5
    assert stored_total({}) is None


def test_integrity_check_flags_and_clears(db, vendor):
    good = make_order("order-good0001")
    bad = make_order("order-bad00001", grand_total_after_tax=30.0)
    cleared = make_order("order-fixed001", tax_integrity_status="MISMATCH", tax_mismatch_reason="old")
    db["order"].insert_many([good, bad, cleared])

    report = run_integrity_check(db)
    assert (report.checked, report.mismatched, report.cleared) == (3, 1, 1)

    flagged = db["order"].find_one({"_id": "order-bad00001"})
    assert flagged["tax_integrity_status"] == "MISMATCH"
    assert flagged["tax_mismatch_reason"] == "Stored: 30.0, Calc: 27.6"
    assert flagged["grand_total_after_tax"] == 30.0
    assert db["order"].find_one({"_id": "order-fixed001"})["tax_integrity_status"] == "OK"
    assert "tax_integrity_status" not in db["order"].find_one({"_id": "order-good0001"})


def test_mark_paid_is_one_way(db, fulfilled_orders):
    scan_and_generate_missing(db, "vendor", now=NOW)

    paid = mark_invoice_paid(db, "vendor", "order-00000001", paid_by="Dana")
    assert paid["payment_status"] == "PAID"
    assert paid["paid_by_admin_name"] == "Dana"
    assert paid["paid_at"] is not None

    with pytest.raises(InvoiceAlreadyPaid):
        mark_invoice_paid(db, "vendor", "order-00000001")
    with pytest.raises(InvoiceNotFound):
        mark_invoice_paid(db, "vendor", "order-missing")


def test_malformed_order_does_not_stop_the_scan(db, vendor):
    bad = make_order("order-00000001", status="fulfilled")
    del bad["subtotal_before_tax"]
    bad["items"] = [{"item_id": ObjectId(), "item_name": 7, "qty": 1, "price": 4.0}]
    bad["items"].append("not-a-line")
    db["order"].insert_many([bad, make_order("order-00000002", status="fulfilled")])

    result = scan_and_generate_missing(db, "vendor", now=NOW)
    assert (result.missing, result.created, result.failed) == (2, 1, 1)
    assert db["vendorinvoice"].find_one({"_id": "order-00000002"}) is not None


def test_non_string_ids_are_stored_as_strings(db, vendor):
    item_id = ObjectId()
    order = make_order("order-00000003", status="fulfilled", restaurant_id=42)
    order["items"][0]["item_id"] = item_id
    db["order"].insert_one(order)

    result = scan_and_generate_missing(db, "restaurant", now=NOW)
    assert result.created == 1
    invoice = db["restaurantinvoice"].find_one({"_id": "order-00000003"})
    assert invoice["items"][0]["item_id"] == str(item_id)
    assert invoice["restaurant_id"] == "42"
