from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

import main

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def db():
    return mongomock.MongoClient()["marketplace_test"]


@pytest.fixture
def client(db):
    main.app.dependency_overrides[main.get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def vendor(db):
    doc = {
        "_id": "vendor-1",
        "name": "Fresh Farms",
        "country": "Canada",
        "province": "ON",
        "commission_percent": 10,
    }
    db["vendor"].insert_one(doc)
    return doc


def make_order(order_id="order-00000001", status="pending_confirmation", created_at=None, **extra):
    """Snapshot-shaped order: line A taxable 2 x 10.00, line B non-taxable 1 x 5.00 at 13%."""
    order = {
        "_id": order_id,
        "vendor_id": "vendor-1",
        "vendor_name": "Fresh Farms",
        "restaurant_id": "rest-1",
        "status": status,
        "created_at": created_at or datetime.now(timezone.utc) - timedelta(minutes=5),
        "items": [
            {"item_id": "item-a", "item_name": "Tomatoes", "unit": "kg", "qty": 2, "vendor_price": 10.0,
             "taxable": True, "line_subtotal": 20.0},
            {"item_id": "item-b", "item_name": "Basil", "unit": "bunch", "qty": 1, "vendor_price": 5.0,
             "taxable": False, "line_subtotal": 5.0},
        ],
        "subtotal_before_tax": 25.0,
        "total_tax": 2.6,
        "grand_total_after_tax": 27.6,
        "tax_rate": 13,
    }
    order.update(extra)
    return order
