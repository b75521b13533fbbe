"""
Order line normalization.

Orders come in two shapes. Orders written since price snapshots were
introduced carry `subtotal_before_tax` on the order and `line_subtotal` /
`taxable` on each line. Older orders only have a price and a quantity per
line, and whether a line is taxable has to be read from the vendor's catalog
as it stands at invoice time. Both shapes normalize to the same InvoiceLine.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from pymongo.database import Database

from money import round2, to_amount
from schemas import InvoiceLine

# item_id -> taxable flag, as currently recorded in the catalog
CatalogLookup = Callable[[], Dict[str, bool]]


def has_snapshot(order: dict) -> bool:
    """True when the order's monetary snapshot was frozen at checkout."""
    return "subtotal_before_tax" in order


def explicit_taxable(line: dict) -> Optional[bool]:
    for key in ("taxable", "is_taxable"):
        if line.get(key) is not None:
            return bool(line[key])
    return None


def unit_price(line: dict) -> float:
    if line.get("vendor_price") is not None:
        return to_amount(line["vendor_price"])
    return to_amount(line.get("price"))


def quantity(line: dict) -> float:
    qty = to_amount(line.get("qty"), default=1.0)
    return qty or 1.0


def normalize_line(
    line: dict,
    rate: float,
    snapshot: bool,
    catalog: Optional[Dict[str, bool]] = None,
) -> InvoiceLine:
    price = unit_price(line)
    qty = quantity(line)

    if line.get("line_subtotal") is not None:
        line_subtotal = round2(to_amount(line["line_subtotal"]))
    else:
        line_subtotal = round2(price * qty)

    is_taxable = explicit_taxable(line)
    if is_taxable is None:
        if not snapshot and catalog is not None and line.get("item_id"):
            is_taxable = catalog.get(str(line["item_id"]), False)
        else:
            is_taxable = False

    line_tax = round2(line_subtotal * rate / 100) if is_taxable else 0.0

    item_id = line.get("item_id")
    return InvoiceLine(
        item_id=str(item_id) if item_id is not None else None,
        item_name=str(line.get("item_name") or line.get("name") or "Unknown Item"),
        unit=str(line.get("unit") or "unit"),
        qty=qty,
        price=price,
        line_subtotal=line_subtotal,
        is_taxable=is_taxable,
        line_tax=line_tax,
    )


@dataclass
class NormalizedOrder:
    lines: List[InvoiceLine] = field(default_factory=list)
    subtotal: float = 0.0
    total_tax: float = 0.0
    from_snapshot: bool = True


def normalize_order_lines(order: dict, rate: float, catalog: Optional[CatalogLookup] = None) -> NormalizedOrder:
    """Normalize every line of an order and total the result.

    `catalog` is only called when a legacy line has no taxable flag of its
    own, and at most once per order.
    """
    snapshot = has_snapshot(order)
    result = NormalizedOrder(from_snapshot=snapshot)
    taxable_by_item: Optional[Dict[str, bool]] = None

    for raw in order.get("items") or []:
        needs_catalog = (
            not snapshot
            and catalog is not None
            and explicit_taxable(raw) is None
            and raw.get("item_id")
        )
        if needs_catalog and taxable_by_item is None:
            taxable_by_item = catalog()
        line = normalize_line(raw, rate, snapshot, taxable_by_item)
        result.lines.append(line)
        result.subtotal += line.line_subtotal
        result.total_tax += line.line_tax

    result.subtotal = round2(result.subtotal)
    result.total_tax = round2(result.total_tax)
    return result


def catalog_lookup(database: Database, vendor_id: Optional[str]) -> CatalogLookup:
    """Deferred read of a vendor's catalog taxability map."""

    def load() -> Dict[str, bool]:
        if not vendor_id:
            return {}
        return {
            str(doc["_id"]): bool(doc.get("taxable"))
            for doc in database["item"].find({"vendor_id": str(vendor_id)}, {"taxable": 1})
        }

    return load
