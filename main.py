import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from catalog import ReviewClosed, ReviewNotFound, approve_review, list_reviews, reject_review
from config import DATABASE_NAME, DATABASE_URL, LOG_LEVEL, ORDER_WATCHER_ENABLED, PORT
from dashboard import compute_dashboard
from database import create_document, find_by_id, get_documents, id_query, serialize, utc_now
from invoices import INVOICE_COLLECTIONS
from notifications import list_notifications, mark_read
from reconciliation import (
    InvoiceAlreadyPaid,
    InvoiceNotFound,
    mark_invoice_paid,
    run_integrity_check,
    scan_and_generate_missing,
)
from schemas import ORDER_STATUSES, Item, OrderStatus, RestaurantInfo, Vendor
from tax_rates import COUNTRIES, rate_for, region_label, regions_for_country
from watcher import OrderChangeWatcher

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("vendor_api")

InvoiceKind = Literal["vendor", "restaurant"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    watcher = None
    if ORDER_WATCHER_ENABLED and database.db is not None:
        watcher = OrderChangeWatcher(database.db)
        watcher.start()
        logger.info("Order watcher started")
    app.state.order_watcher = watcher
    yield
    if watcher is not None:
        watcher.stop()


app = FastAPI(title="Vendor Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db() -> Database:
    if database.db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return database.db


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=400, detail="Invalid id")


def require(doc: Optional[dict], what: str = "Not found") -> dict:
    if doc is None:
        raise HTTPException(status_code=404, detail=what)
    return doc


@app.get("/")
def root():
    return {"message": "Vendor Marketplace API Running"}


@app.get("/api/health")
def health():
    return {"status": "ok", "service": "vendor-management-api"}


# Restaurant billing profile (printed on restaurant invoices)
def billing_profile(info: dict) -> RestaurantInfo:
    return RestaurantInfo(**{k: str(info.get(k) or "") for k in RestaurantInfo.model_fields})


@app.get("/api/restaurant-info/{restaurant_id}", response_model=RestaurantInfo)
def restaurant_info(restaurant_id: str, db: Database = Depends(get_db)):
    try:
        info = find_by_id(db, "restaurantinfo", restaurant_id)
    except PyMongoError:
        logger.exception("Failed to fetch restaurant info for %s", restaurant_id)
        raise HTTPException(status_code=503, detail="Failed to fetch restaurant info")
    if not info:
        raise HTTPException(status_code=404, detail="Restaurant info not found")
    return billing_profile(info)


# Tax jurisdictions (vendor country / province pickers)
@app.get("/api/tax/countries")
def tax_countries():
    return [{"country": c, "region_label": region_label(c)} for c in COUNTRIES]


@app.get("/api/tax/regions")
def tax_regions(country: str):
    regions = regions_for_country(country)
    if not regions:
        raise HTTPException(status_code=404, detail="Unknown country")
    return {"country": country, "region_label": region_label(country), "regions": regions}


# Vendors
@app.post("/vendors")
def create_vendor(payload: Vendor, db: Database = Depends(get_db)):
    vendor_id = create_document("vendor", payload, database=db)
    return {"vendor_id": vendor_id}


@app.get("/vendors")
def list_vendors(limit: Optional[int] = None, db: Database = Depends(get_db)):
    return [serialize(v) for v in get_documents("vendor", limit=limit, database=db)]


@app.get("/vendors/{vendor_id}")
def get_vendor(vendor_id: str, db: Database = Depends(get_db)):
    vendor = serialize(require(db["vendor"].find_one({"_id": oid(vendor_id)})))
    vendor["tax_rate"] = rate_for(vendor.get("country") or "Canada", vendor.get("province"))
    return vendor


class ItemPayload(BaseModel):
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    unit: str = "unit"
    pack_qty: Optional[float] = Field(None, ge=0)
    price: float = Field(..., ge=0)
    taxable: bool = False
    sku: Optional[str] = None


@app.post("/vendors/{vendor_id}/items")
def add_item(vendor_id: str, payload: ItemPayload, db: Database = Depends(get_db)):
    vendor = require(db["vendor"].find_one({"_id": oid(vendor_id)}), "Vendor not found")
    item = Item(vendor_id=str(vendor["_id"]), **payload.model_dump())
    item_id = create_document("item", item, database=db)
    return {"item_id": item_id}


@app.get("/vendors/{vendor_id}/items")
def list_items(vendor_id: str, status: Optional[str] = None, db: Database = Depends(get_db)):
    query = {"vendor_id": vendor_id}
    if status:
        query["status"] = status
    return [serialize(i) for i in get_documents("item", query, database=db)]


# Orders
@app.get("/admin/orders")
def admin_orders(
    vendor_id: Optional[str] = None,
    restaurant_id: Optional[str] = None,
    status: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query = {}
    if vendor_id:
        query["vendor_id"] = vendor_id
    if restaurant_id:
        query["restaurant_id"] = restaurant_id
    if status:
        query["status"] = status
    docs = db["order"].find(query).sort("created_at", -1)
    return [serialize(d) for d in docs]


class StatusUpdate(BaseModel):
    status: OrderStatus


@app.patch("/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdate, db: Database = Depends(get_db)):
    result = db["order"].update_one(
        id_query(order_id),
        {"$set": {"status": payload.status, "updated_at": utc_now()}},
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=404, detail="Not found")
    return {"status": payload.status}


@app.get("/orders/statuses")
def order_statuses():
    return list(ORDER_STATUSES)


@app.post("/admin/orders/integrity-check")
def integrity_check(db: Database = Depends(get_db)):
    try:
        report = run_integrity_check(db)
    except PyMongoError:
        logger.exception("Integrity check failed")
        raise HTTPException(status_code=503, detail="Failed to run integrity check")
    return {"checked": report.checked, "mismatched": report.mismatched, "cleared": report.cleared}


# Invoices
@app.get("/admin/invoices/{kind}")
def list_invoices(
    kind: InvoiceKind,
    vendor_id: Optional[str] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query = {}
    if vendor_id:
        query["vendor_id"] = vendor_id
    if status:
        query["payment_status"] = status
    if q:
        query["$or"] = [
            {"invoice_number": {"$regex": q, "$options": "i"}},
            {"order_id": {"$regex": q, "$options": "i"}},
        ]
    docs = db[INVOICE_COLLECTIONS[kind]].find(query).sort("created_at", -1)
    return [serialize(d) for d in docs]


@app.post("/admin/invoices/{kind}/scan")
def scan_invoices(kind: InvoiceKind, db: Database = Depends(get_db)):
    try:
        result = scan_and_generate_missing(db, kind)
    except PyMongoError:
        logger.exception("Failed scanning for %s invoices", kind)
        raise HTTPException(status_code=503, detail="Failed to generate missing invoices")
    if result.missing == 0:
        message = "All eligible orders already have invoices."
    else:
        message = f"Successfully generated {result.created} missing invoice(s)."
    return {
        "eligible": result.eligible,
        "missing": result.missing,
        "created": result.created,
        "failed": result.failed,
        "message": message,
    }


class MarkPaidRequest(BaseModel):
    paid_by: Optional[str] = None


@app.post("/admin/invoices/{kind}/{invoice_id}/mark-paid")
def mark_paid(kind: InvoiceKind, invoice_id: str, payload: Optional[MarkPaidRequest] = None, db: Database = Depends(get_db)):
    try:
        invoice = mark_invoice_paid(db, kind, invoice_id, paid_by=payload.paid_by if payload else None)
    except InvoiceNotFound:
        raise HTTPException(status_code=404, detail="Invoice not found")
    except InvoiceAlreadyPaid:
        raise HTTPException(status_code=409, detail="Invoice is already paid")
    except PyMongoError:
        logger.exception("Failed to mark %s invoice %s as paid", kind, invoice_id)
        raise HTTPException(status_code=503, detail="Failed to mark invoice as paid")
    return serialize(invoice)


@app.get("/admin/invoices/restaurant/{invoice_id}/document")
def restaurant_invoice_document(invoice_id: str, db: Database = Depends(get_db)):
    invoice = serialize(require(find_by_id(db, "restaurantinvoice", invoice_id), "Invoice not found"))
    billing = RestaurantInfo()
    try:
        info = find_by_id(db, "restaurantinfo", invoice.get("restaurant_id"))
        if info:
            billing = billing_profile(info)
    except PyMongoError:
        logger.warning("Could not fetch restaurant info for invoice %s", invoice_id, exc_info=True)
    return {"invoice": invoice, "bill_to": billing.model_dump()}


# Dashboard
@app.get("/admin/dashboard")
def dashboard(timeframe: Literal["today", "week", "month"] = "month", db: Database = Depends(get_db)):
    orders = list(db["order"].find({}))
    invoices = list(db["vendorinvoice"].find({}))
    vendors = list(db["vendor"].find({}))
    return compute_dashboard(orders, invoices, vendors, timeframe)


@app.get("/admin/watcher")
def watcher_status():
    watcher = getattr(app.state, "order_watcher", None)
    if watcher is None:
        return {"running": False}
    return watcher.status()


# Notifications
@app.get("/notifications")
def get_notifications(
    role: Optional[Literal["ADMIN", "VENDOR"]] = None,
    vendor_id: Optional[str] = None,
    unread_only: bool = False,
    db: Database = Depends(get_db),
):
    return [serialize(n) for n in list_notifications(db, role, vendor_id, unread_only)]


@app.post("/notifications/{notification_id}/read")
def read_notification(notification_id: str, db: Database = Depends(get_db)):
    if not mark_read(db, notification_id):
        raise HTTPException(status_code=404, detail="Not found")
    return {"status": "ok"}


# Catalog reviews
@app.get("/admin/reviews")
def get_reviews(status: Optional[str] = None, db: Database = Depends(get_db)):
    return [serialize(r) for r in list_reviews(db, status)]


class ReviewDecision(BaseModel):
    reviewer: Optional[str] = None
    comment: Optional[str] = None


def _decide(action, *args):
    try:
        return serialize(action(*args))
    except ReviewNotFound:
        raise HTTPException(status_code=404, detail="Review not found")
    except ReviewClosed as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.post("/admin/reviews/{review_id}/approve")
def approve(review_id: str, payload: Optional[ReviewDecision] = None, db: Database = Depends(get_db)):
    reviewer = payload.reviewer if payload else None
    return _decide(approve_review, db, review_id, reviewer)


@app.post("/admin/reviews/{review_id}/reject")
def reject(review_id: str, payload: ReviewDecision, db: Database = Depends(get_db)):
    if not payload.comment or not payload.comment.strip():
        raise HTTPException(status_code=400, detail="A rejection comment is required")
    return _decide(reject_review, db, review_id, payload.comment, payload.reviewer)


@app.get("/test")
def diagnostics():
    watcher = getattr(app.state, "order_watcher", None)
    report = {
        "backend": "running",
        "database_configured": bool(DATABASE_URL and DATABASE_NAME),
        "database": "not configured",
        "collections": {},
        "order_watcher": watcher.status() if watcher else {"enabled": ORDER_WATCHER_ENABLED, "running": False},
    }
    if database.db is None:
        return report

    try:
        for name in ("vendor", "item", "order", *INVOICE_COLLECTIONS.values(), "notification", "pendingreview"):
            report["collections"][name] = database.db[name].count_documents({})
        report["database"] = "connected"
    except PyMongoError as e:
        logger.warning("Diagnostics could not read the database", exc_info=True)
        report["database"] = f"error: {str(e)[:50]}"
    return report


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
