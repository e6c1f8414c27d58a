import re
from datetime import datetime
from typing import Annotated, Any, List, Optional
from pydantic import BaseModel, BeforeValidator, EmailStr, Field, ValidationInfo, field_validator
from enum import Enum

from oilmart.utils.formatters import parse_number, round2


def _to_number(value: Any) -> float:
    if isinstance(value, str) and not re.search(r"\d", value):
        raise ValueError("Input should be a number")
    if value is None:
        raise ValueError("Input should be a number")
    return parse_number(value)


def _to_money(value: Any) -> float:
    return round2(_to_number(value))


# One validated number type per concern, applied wherever a value enters or
# leaves the database. NUMERIC columns arrive as Decimal and are normalized here.
Money = Annotated[float, BeforeValidator(_to_money)]
Quantity = Annotated[float, BeforeValidator(_to_number)]


class UserRole(str, Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    OWNER = "owner"

class ProductCategory(str, Enum):
    SUNFLOWER = "sunflower"
    GROUNDNUT = "groundnut"
    GINGELLY = "gingelly"
    MUSTARD = "mustard"
    COCONUT = "coconut"

class ProductType(str, Enum):
    EDIBLE = "edible"
    NON_EDIBLE = "non-edible"

class Packaging(str, Enum):
    TIN = "tin"
    CAN = "can"
    BOTTLE = "bottle"

class Unit(str, Enum):
    LITRE = "L"
    KILOGRAM = "KG"

class SalePaymentMethod(str, Enum):
    CASH = "cash"
    GPAY = "gpay"
    CREDIT = "credit"

class BillPaymentMethod(str, Enum):
    CASH = "cash"
    GPAY = "gpay"
    CREDIT = "credit"
    UPI = "upi"

class PaymentStatus(str, Enum):
    PAID = "paid"
    PENDING = "pending"
    PARTIAL = "partial"

class CreditRequestStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class CreditTransactionType(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"

class AdjustmentType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    CORRECTION = "correction"

class AdjustmentReason(str, Enum):
    DAMAGED = "damaged"
    EXPIRED = "expired"
    THEFT = "theft"
    RECOUNT = "recount"
    SUPPLIER_RETURN = "supplier_return"
    OTHER = "other"

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class OrderPaymentMethod(str, Enum):
    CASH = "cash"
    UPI = "upi"
    CREDIT = "credit"

class TransferStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    REJECTED = "rejected"

class DateRange(str, Enum):
    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


def _strip_required(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("This field is required")
    return value


# Users
class UserProfile(BaseModel):
    name: str
    phone: str = ""
    address: str = ""
    photo_url: Optional[str] = None

class User(BaseModel):
    id: int
    email: EmailStr
    role: UserRole
    profile: UserProfile
    is_active: bool = True
    created_at: datetime

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    phone: Optional[str] = None
    address: Optional[str] = None
    photo_url: Optional[str] = None


# Products
class ProductBase(BaseModel):
    name: str = Field(..., min_length=1)
    category: ProductCategory
    type: ProductType = ProductType.EDIBLE
    packaging: Packaging
    base_price: Money = Field(..., ge=0)
    stock: Quantity = Field(0, ge=0)
    unit: Unit
    shelf_life: str = ""
    lowstock_alert: Quantity = Field(0, ge=0)
    description: str = ""
    image_url: Optional[str] = None

class Product(ProductBase):
    id: int
    version: int = 0
    created_by: Optional[int] = None
    created_at: datetime
    updated_at: datetime

class ProductCreate(ProductBase):
    pass

class ProductUpdate(BaseModel):
    # Stock is only changed through sales, bills, orders and stock adjustments
    name: Optional[str] = None
    category: Optional[ProductCategory] = None
    type: Optional[ProductType] = None
    packaging: Optional[Packaging] = None
    base_price: Optional[Money] = Field(None, ge=0)
    unit: Optional[Unit] = None
    shelf_life: Optional[str] = None
    lowstock_alert: Optional[Quantity] = Field(None, ge=0)
    description: Optional[str] = None
    image_url: Optional[str] = None

class InventorySummary(BaseModel):
    total_products: int
    low_stock_products: int
    out_of_stock_products: int
    total_inventory_value: Money


# Sales
class SaleCreate(BaseModel):
    product_id: int
    customer_name: str
    customer_phone: str
    quantity: int = Field(..., ge=1)
    payment_method: SalePaymentMethod
    paid_amount: Optional[Money] = Field(None, ge=0)

    @field_validator("customer_name")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

class Sale(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_category: Optional[str] = None
    customer_name: str
    customer_phone: str
    quantity: int
    unit: str
    unit_price: Money
    total_amount: Money
    paid_amount: Money
    credit_amount: Money
    payment_method: SalePaymentMethod
    staff_id: Optional[int] = None
    staff_name: str
    created_at: datetime


# Bills
class BillItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)

class BillItem(BaseModel):
    product_id: Optional[int] = None
    product_name: str
    category: Optional[str] = None
    quantity: int = Field(..., ge=1)
    unit: str
    unit_price: Money
    total_price: Money

class CustomBillItemIn(BaseModel):
    product_name: str
    quantity: int = Field(..., ge=1)
    unit: str = "L"
    unit_price: Money = Field(..., ge=0)

    @field_validator("product_name")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

class BillCustomer(BaseModel):
    customer_name: str
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    discount_amount: Money = Field(0, ge=0)
    payment_method: BillPaymentMethod
    notes: str = ""

    @field_validator("customer_name")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("customer_phone", "customer_address")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        # Only keep contact fields that have content
        if value is None:
            return None
        return value.strip() or None

class BillCreate(BillCustomer):
    items: List[BillItemIn] = Field(..., min_length=1)

class CustomBillCreate(BillCustomer):
    items: List[CustomBillItemIn] = Field(..., min_length=1)

class Bill(BaseModel):
    id: int
    bill_number: str
    customer_id: Optional[int] = None
    customer_name: str
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    items: List[BillItem] = []
    subtotal: Money
    discount_amount: Money
    total_amount: Money
    payment_method: BillPaymentMethod
    payment_status: PaymentStatus
    staff_id: Optional[int] = None
    staff_name: str
    notes: str = ""
    created_at: datetime
    voided_at: Optional[datetime] = None
    voided_by: Optional[int] = None
    void_reason: Optional[str] = None
    is_custom: bool = False

class BillVoid(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)


# Customer credit ledger
class CreditTransaction(BaseModel):
    id: int
    type: CreditTransactionType
    amount: Money
    description: str
    sale_id: Optional[int] = None
    order_id: Optional[int] = None
    created_at: datetime

class CustomerCredit(BaseModel):
    customer_phone: str
    customer_name: str
    total_credit: Money
    credit_limit: Money = 0
    last_updated: datetime
    transactions: List[CreditTransaction] = []

class CreditPaymentCreate(BaseModel):
    amount: Money = Field(..., gt=0)
    description: str = "Payment received"


# Market credits
class MarketCreditCreate(BaseModel):
    customer_name: str
    customer_phone: str
    amount: Money = Field(..., gt=0)
    description: str = ""
    collection_amount: Optional[Money] = Field(None, ge=0)

    @field_validator("customer_name")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

class MarketCreditUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    amount: Optional[Money] = Field(None, gt=0)
    description: Optional[str] = None

class MarketCredit(BaseModel):
    id: int
    customer_name: str
    customer_phone: str
    amount: Money
    description: str = ""
    paid: bool = False
    paid_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_by_name: str
    created_at: datetime
    updated_at: datetime
    total_collected: Money = 0
    outstanding: Money = 0

class CollectionCreate(BaseModel):
    amount: Money = Field(..., gt=0)
    notes: Optional[str] = None

class Collection(BaseModel):
    id: int
    credit_id: int
    amount: Money
    collected_by: Optional[int] = None
    collected_by_name: str
    collected_at: datetime
    notes: Optional[str] = None

class CustomerBalance(BaseModel):
    customer_phone: str
    credit_amount: Money
    total_collected: Money
    outstanding: Money
    collections: List[Collection] = []

class CustomerHistory(BaseModel):
    credit_entries: List[MarketCredit] = []
    collections: List[Collection] = []

class MarketCreditSummary(BaseModel):
    total_outstanding: Money
    unique_customers: int
    total_credits: int
    negative_balances: List[int] = []


# Credit requests
class CreditRequestCreate(BaseModel):
    requested_amount: Money = Field(..., gt=0)
    reason: str
    supporting_docs: List[str] = []
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    employee_comments: Optional[str] = None
    draft: bool = False

    @field_validator("reason")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

class CreditRequestApprove(BaseModel):
    owner_comments: Optional[str] = None

class CreditRequestReject(BaseModel):
    # Blank reasons are rejected by the ledger rules so the request stays pending
    rejection_reason: str = ""
    owner_comments: Optional[str] = None

class CreditRequest(BaseModel):
    id: int
    customer_id: Optional[int] = None
    customer_name: str
    customer_phone: str
    customer_email: str = ""
    requested_amount: Money
    reason: str
    supporting_docs: List[str] = []
    status: CreditRequestStatus
    employee_comments: Optional[str] = None
    owner_comments: Optional[str] = None
    reviewed_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    order_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


# Pending payments
class PendingPayment(BaseModel):
    id: int
    sale_id: Optional[int] = None
    bill_id: Optional[int] = None
    custom_bill_id: Optional[int] = None
    order_id: Optional[int] = None
    bill_number: Optional[str] = None
    customer_name: str
    customer_phone: str = ""
    product_name: Optional[str] = None
    total_amount: Money
    paid_amount: Money
    pending_amount: Money
    payment_method: str
    staff_id: Optional[int] = None
    staff_name: str = ""
    status: PaymentStatus
    display_status: Optional[str] = None
    due_date: datetime
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

class PaymentReceipt(BaseModel):
    amount: Money = Field(..., gt=0)

class PendingPaymentSummary(BaseModel):
    total_pending_amount: Money
    pending_count: int
    partial_count: int
    overdue_count: int
    due_soon_count: int


# Stock
class StockAdjustmentCreate(BaseModel):
    product_id: int
    adjustment_type: AdjustmentType
    quantity: Quantity = Field(..., ge=0)
    reason: str
    reason_code: AdjustmentReason
    attachment_url: Optional[str] = None

    @field_validator("quantity")
    @classmethod
    def check_quantity(cls, value: float, info: ValidationInfo) -> float:
        # A correction sets the count outright and may be zero
        if value == 0 and info.data.get("adjustment_type") != AdjustmentType.CORRECTION:
            raise ValueError("Quantity must be greater than zero")
        return value

    @field_validator("reason")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

class StockAdjustment(BaseModel):
    id: int
    product_id: int
    product_name: str
    adjustment_type: AdjustmentType
    quantity: Quantity
    unit: str
    reason: str
    reason_code: AdjustmentReason
    previous_stock: Quantity
    new_stock: Quantity
    attachment_url: Optional[str] = None
    staff_id: Optional[int] = None
    staff_name: str
    approved_by: Optional[int] = None
    status: str
    created_at: datetime
    approved_at: Optional[datetime] = None

class TransferRequestCreate(BaseModel):
    from_warehouse: str
    to_warehouse: str
    product_id: int
    quantity: int = Field(..., ge=1)
    reason: str
    notes: Optional[str] = None

    @field_validator("from_warehouse", "to_warehouse", "reason")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _strip_required(value)

class TransferStatusUpdate(BaseModel):
    status: TransferStatus
    notes: Optional[str] = None

class TransferRequest(BaseModel):
    id: int
    from_warehouse: str
    to_warehouse: str
    product_id: int
    product_name: str
    quantity: int
    unit: str
    reason: str
    requested_by: Optional[int] = None
    requested_by_name: str
    status: TransferStatus
    approved_by: Optional[int] = None
    completed_by: Optional[int] = None
    notes: Optional[str] = None
    created_at: datetime
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


# Orders
class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)

class OrderItem(BaseModel):
    product_id: int
    name: str
    quantity: int
    price: Money
    unit: str

class OrderCreate(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    payment_method: OrderPaymentMethod
    delivery_slot: str = ""
    delivery_address: Optional[str] = None
    notes: Optional[str] = None

class OrderStatusUpdate(BaseModel):
    status: OrderStatus

class Order(BaseModel):
    id: int
    customer_id: Optional[int] = None
    customer_name: str
    customer_phone: str = ""
    customer_email: Optional[str] = None
    items: List[OrderItem] = []
    total: Money
    status: OrderStatus
    payment_method: OrderPaymentMethod
    delivery_slot: str = ""
    delivery_address: str = ""
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    delivered_at: Optional[datetime] = None
    delivered_by: Optional[int] = None

class OrderPlaced(BaseModel):
    order: Order
    credit_request: Optional[CreditRequest] = None


# Dashboard Models
class OwnerDashboardStats(BaseModel):
    total_products: int
    low_stock_products: int
    today_sales: Money
    total_customers: int
    pending_credits: Money
    pending_credit_requests: int
    pending_payments: int
    total_pending_amount: Money
    recent_sales: List[Sale]
    recent_credit_requests: List[CreditRequest]

class StaffDashboardStats(BaseModel):
    today_sales: Money
    today_transactions: int
    low_stock: List[Product]
    pending_payments: int
    total_pending_amount: Money
