"""
Database Schemas for the Vendor Marketplace

Each Pydantic model represents a collection in MongoDB. Collection name is the lowercase of the class name.

- Vendor -> "vendor"
- Item -> "item"
- Order -> "order"
- VendorInvoice -> "vendorinvoice"
- RestaurantInvoice -> "restaurantinvoice"
- Notification -> "notification"
- PendingReview -> "pendingreview"
- RestaurantInfo -> "restaurantinfo"
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, get_args

from pydantic import BaseModel, EmailStr, Field

OrderStatus = Literal[
    "new",
    "pending_confirmation",
    "pending_customer_approval",
    "pending_fulfillment",
    "delivery_in_route",
    "fulfilled",
    "rejected",
    "cancelled",
]
ORDER_STATUSES = get_args(OrderStatus)

PENDING_STATUSES = ("new", "pending_confirmation")
CANCELLED_STATUSES = ("cancelled", "rejected")
FULFILLED = "fulfilled"

PaymentStatus = Literal["PENDING", "PAID"]
NotificationType = Literal["NEW_ORDER", "STATUS_CHANGED", "ORDER_CANCELLED", "ORDER_UPDATED"]
Role = Literal["ADMIN", "VENDOR"]


class Vendor(BaseModel):
    name: str
    contact_email: Optional[EmailStr] = None
    phone: Optional[str] = None
    country: str = Field("Canada", description="Tax jurisdiction country")
    province: Optional[str] = Field(None, description="Province/state code, e.g. 'ON'")
    commission_percent: float = Field(10, ge=0, le=100)


class Item(BaseModel):
    vendor_id: str = Field(..., description="Reference to vendor _id as string")
    name: str
    brand: Optional[str] = None
    category: Optional[str] = None
    unit: str = "unit"
    pack_qty: Optional[float] = Field(None, ge=0)
    price: float = Field(..., ge=0)
    taxable: bool = False
    sku: Optional[str] = None
    status: Literal["active", "in-review", "rejected"] = "active"
    rejection_comment: Optional[str] = None


class OrderLine(BaseModel):
    item_id: Optional[str] = None
    item_name: str
    unit: str = "unit"
    qty: float = Field(1, gt=0)
    vendor_price: float = Field(..., ge=0)
    taxable: Optional[bool] = None
    line_subtotal: Optional[float] = None
    line_tax: Optional[float] = None


class Order(BaseModel):
    vendor_id: str
    vendor_name: Optional[str] = None
    restaurant_id: str
    order_group_id: Optional[str] = None
    items: List[OrderLine]
    status: OrderStatus = "pending_confirmation"
    subtotal_before_tax: Optional[float] = None
    total_tax: Optional[float] = None
    grand_total_after_tax: Optional[float] = None
    tax_rate: Optional[float] = Field(None, description="Percent applied when the snapshot was taken")
    tax_integrity_status: Optional[Literal["OK", "MISMATCH"]] = None
    tax_mismatch_reason: Optional[str] = None


class InvoiceLine(BaseModel):
    """Canonical taxed line, shared by both invoice types."""
    item_id: Optional[str] = None
    item_name: str
    unit: str
    qty: float
    price: float
    line_subtotal: float
    is_taxable: bool
    line_tax: float


class VendorInvoice(BaseModel):
    order_id: str
    order_group_id: str
    vendor_id: Optional[str] = None
    restaurant_id: str
    invoice_number: str
    invoice_date: datetime
    due_date: datetime
    payment_status: PaymentStatus = "PENDING"
    paid_at: Optional[datetime] = None
    paid_by_admin_name: Optional[str] = None
    subtotal_vendor_amount: float
    total_tax_amount: float
    total_vendor_amount: float = Field(..., description="Gross + tax, kept for pre-commission invoices")
    gross_vendor_amount: float
    commission_percent: float
    commission_amount: float
    net_vendor_payable: float
    commission_model: str = "VENDOR_FLAT_PERCENT"
    items: List[InvoiceLine]
    admin_notes: Optional[str] = None


class RestaurantInvoice(BaseModel):
    order_id: str
    order_group_id: str
    vendor_id: Optional[str] = None
    vendor_name: str
    restaurant_id: str
    invoice_number: str
    invoice_date: datetime
    due_date: datetime
    payment_status: PaymentStatus = "PENDING"
    paid_at: Optional[datetime] = None
    paid_by_admin_name: Optional[str] = None
    subtotal: float
    total_tax: float
    grand_total: float
    items: List[InvoiceLine]
    admin_notes: Optional[str] = None


class Notification(BaseModel):
    order_id: str
    type: NotificationType
    role: Role
    vendor_id: Optional[str] = None
    title: str
    message: str
    is_read: bool = False


class PendingReview(BaseModel):
    item_id: str
    vendor_id: str
    change_type: Literal["edit", "delete"]
    proposed_data: Dict[str, Any] = Field(default_factory=dict)
    original_data: Dict[str, Any] = Field(default_factory=dict)
    requested_by: Optional[str] = None
    status: Literal["pending", "approved", "rejected"] = "pending"
    rejection_comment: Optional[str] = None


class RestaurantInfo(BaseModel):
    """Buyer billing profile printed on restaurant invoices."""
    business_name: str = ""
    legal_name: str = ""
    email: str = ""
    phone: str = ""
    hst_number: str = ""
    province: str = ""
    country: str = ""
