"""
Request schemas for the storefront API

Each Pydantic model validates one JSON request body. Firestore documents
themselves stay plain dicts (see dbhelper.py); these models only guard what
comes in over HTTP.
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

ORDER_STATUSES = ('pending', 'confirmed', 'processing', 'shipped', 'completed', 'cancelled')
ROLES = ('customer', 'admin', 'super_admin')
REVIEW_STATUSES = ('pending', 'approved', 'rejected')

OrderStatus = Literal['pending', 'confirmed', 'processing', 'shipped', 'completed', 'cancelled']
Role = Literal['customer', 'admin', 'super_admin']


# Catalog

class ProductCreate(BaseModel):
    # unknown keys (specifications, cost, material, ...) are kept as-is
    model_config = ConfigDict(extra='allow')

    name: str = Field(..., min_length=1, max_length=200)
    description: str = ''
    category: str = Field('', description="Category id or name")
    price: Optional[float] = Field(None, ge=0)
    actualPrice: Optional[float] = Field(None, ge=0)
    discountedPrice: Optional[float] = Field(None, ge=0)
    priceTier: Optional[Literal['A', 'B', 'C', 'D']] = None
    stockQty: int = Field(0, ge=0)
    tags: List[str] = []
    features: List[str] = []
    images: List[str] = []
    imageUrl: Optional[str] = None
    isActive: bool = True
    isFeatured: bool = False


class ProductUpdate(BaseModel):
    model_config = ConfigDict(extra='allow')

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    actualPrice: Optional[float] = Field(None, ge=0)
    discountedPrice: Optional[float] = Field(None, ge=0)
    priceTier: Optional[Literal['A', 'B', 'C', 'D']] = None
    stockQty: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    features: Optional[List[str]] = None
    images: Optional[List[str]] = None
    imageUrl: Optional[str] = None
    isActive: Optional[bool] = None
    isFeatured: Optional[bool] = None


class BulkProducts(BaseModel):
    products: List[ProductCreate] = Field(..., min_length=1)


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern=r'^[a-z0-9]+(?:-[a-z0-9]+)*$')
    description: str = ''
    icon: str = ''


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    slug: Optional[str] = Field(None, min_length=1, pattern=r'^[a-z0-9]+(?:-[a-z0-9]+)*$')
    description: Optional[str] = None
    icon: Optional[str] = None


class DropdownOption(BaseModel):
    fieldName: str = Field(..., min_length=1)
    value: str = Field(..., min_length=1)


# Cart and orders

class CartAdd(BaseModel):
    productId: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class CartUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class OrderItemIn(BaseModel):
    productId: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class OrderCreate(BaseModel):
    """Authenticated checkout: the customer comes from the token."""
    items: List[OrderItemIn] = []
    shippingAddress: Optional[Union[Dict[str, Any], str]] = None
    paymentMethod: str = 'whatsapp'
    notes: str = Field('', max_length=500)
    customerName: Optional[str] = None
    customerPhone: Optional[str] = None


class GuestOrderCreate(OrderCreate):
    customerName: str = Field(..., min_length=2, max_length=100)
    customerEmail: EmailStr
    customerPhone: str = Field(..., pattern=r'^[0-9]{10}$')


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None


# Reviews

class ReviewCreate(BaseModel):
    productId: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    title: str = ''
    comment: str = ''
    images: List[str] = []


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    title: Optional[str] = None
    comment: Optional[str] = None


class ReviewModerate(BaseModel):
    status: Literal['pending', 'approved', 'rejected']


# Users and auth

class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    displayName: str = Field(..., min_length=1)
    phoneNumber: Optional[str] = None

    @field_validator('displayName')
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('Display name required')
        return v


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RoleUpdate(BaseModel):
    role: Role


class AdminCreate(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    displayName: Optional[str] = None
    role: Literal['admin', 'super_admin'] = 'admin'


# Billing

class ExpenseCreate(BaseModel):
    description: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    date: Optional[str] = None
    category: str = 'Sale'
    type: str = 'Earned'
    quantity: int = Field(0, ge=0)


class DailyEntryCreate(BaseModel):
    date: str = Field(..., min_length=10)
    paperCount: int = Field(0, ge=0)
    amount: float = Field(0, ge=0)


class BillItem(BaseModel):
    name: str = ''
    price: float = Field(0, ge=0)
    discountPercent: float = Field(0, ge=0, le=100)
    extraDiscountPercent: float = Field(0, ge=0, le=100)
    quantity: int = Field(0, ge=0)
    stockType: Optional[str] = None


class BillRequest(BaseModel):
    customerName: Optional[str] = None
    items: List[BillItem] = Field(..., min_length=1)
    date: Optional[str] = None
    save: bool = False


# Uploads and payments

class UploadUrlRequest(BaseModel):
    fileName: str = Field(..., min_length=1)
    contentType: str = Field(..., min_length=1)


class PaymentCreate(BaseModel):
    orderId: str = Field(..., min_length=1)


class PaymentVerify(BaseModel):
    orderId: str = Field(..., min_length=1)
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class WhatsAppLinkRequest(BaseModel):
    kind: Literal['product', 'inquiry'] = 'product'
    productId: Optional[str] = None
    quantity: int = Field(1, ge=1)
    subject: Optional[str] = None
    message: Optional[str] = None
