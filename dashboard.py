"""
Super-admin dashboard figures, aggregated from orders and vendor invoices.

Pending payout is what the platform still owes vendors: net payable plus the
tax collected on their behalf, for every invoice not yet PAID.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional

from database import as_utc, utc_now
from money import round2, to_amount

Timeframe = Literal["today", "week", "month"]

NEW_STATUSES = {"new", "pending", "pending_confirmation", "pending_customer_approval", "pending_fulfillment"}
REVENUE_STATUSES = {"fulfilled", "completed", "accepted", "delivery_in_route"}
CANCELLED_STATUSES = {"cancelled", "rejected"}


def timeframe_start(timeframe: Timeframe, now: datetime) -> datetime:
    day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "today":
        return day
    if timeframe == "week":
        # weeks start on Sunday
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return day.replace(day=1)


def _stamp(doc: dict, *keys: str) -> Optional[datetime]:
    for key in keys:
        value = as_utc(doc.get(key))
        if value is not None:
            return value
    return None


def _since(docs: List[dict], start: datetime, *keys: str) -> List[dict]:
    selected = []
    for doc in docs:
        stamp = _stamp(doc, *keys)
        if stamp is not None and stamp >= start:
            selected.append(doc)
    return selected


def _status(order: dict) -> str:
    return (order.get("status") or "").lower()


def _order_amount(order: dict) -> float:
    return to_amount(order.get("grand_total_after_tax") or order.get("total"))


def _pending_payout(invoice: dict) -> float:
    return to_amount(invoice.get("net_vendor_payable")) + to_amount(invoice.get("total_tax_amount"))


def compute_dashboard(
    orders: List[dict],
    invoices: List[dict],
    vendors: List[dict],
    timeframe: Timeframe = "month",
    now: Optional[datetime] = None,
) -> Dict:
    now = now or utc_now()
    start = timeframe_start(timeframe, now)
    today = timeframe_start("today", now)

    tf_orders = _since(orders, start, "created_at", "order_date")
    tf_invoices = _since(invoices, start, "created_at", "invoice_date")

    stats = {
        "timeframe": timeframe,
        "total_revenue": 0.0,
        "orders_today": 0,
        "cancelled_today": 0,
        "new_orders_count": 0,
        "total_commission": 0.0,
        "total_vendor_gross": 0.0,
        "total_pending_payout": 0.0,
        "pending_invoices_count": 0,
    }
    by_vendor: Dict[str, Dict] = {}

    def vendor_row(vendor_id: str) -> Dict:
        return by_vendor.setdefault(vendor_id, {
            "id": vendor_id, "orders": 0, "revenue": 0.0, "cancelled": 0, "commission": 0.0, "pending": 0.0,
        })

    for order in tf_orders:
        status = _status(order)
        created = _stamp(order, "created_at", "order_date")
        if created is not None and created >= today:
            stats["orders_today"] += 1
            if status in CANCELLED_STATUSES:
                stats["cancelled_today"] += 1
        if status in NEW_STATUSES:
            stats["new_orders_count"] += 1

        row = vendor_row(str(order.get("vendor_id")))
        row["orders"] += 1
        if status in CANCELLED_STATUSES:
            row["cancelled"] += 1
        if status in REVENUE_STATUSES:
            stats["total_revenue"] += _order_amount(order)
            row["revenue"] += _order_amount(order)

    for invoice in tf_invoices:
        commission = to_amount(invoice.get("commission_amount"))
        stats["total_commission"] += commission
        stats["total_vendor_gross"] += to_amount(
            invoice.get("gross_vendor_amount") or invoice.get("subtotal_vendor_amount")
        )
        row = vendor_row(str(invoice.get("vendor_id")))
        row["commission"] += commission
        if invoice.get("payment_status") == "PENDING":
            stats["total_pending_payout"] += _pending_payout(invoice)
            stats["pending_invoices_count"] += 1
            row["pending"] += _pending_payout(invoice)

    for key in ("total_revenue", "total_commission", "total_vendor_gross", "total_pending_payout"):
        stats[key] = round2(stats[key])

    names = {str(v.get("_id")): v.get("name") or v.get("business_name") for v in vendors}
    top = []
    for row in by_vendor.values():
        top.append({
            **row,
            "revenue": round2(row["revenue"]),
            "commission": round2(row["commission"]),
            "pending": round2(row["pending"]),
            "name": names.get(row["id"]) or "Unknown Vendor",
            "cancellation_rate": round2(row["cancelled"] / row["orders"] * 100) if row["orders"] else 0.0,
        })
    top.sort(key=lambda r: r["revenue"], reverse=True)
    stats["top_vendors"] = top[:5]
    return stats
