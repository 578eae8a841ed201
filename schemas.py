"""
Database Schemas for the E‑Commerce API

Each Pydantic model maps to a MongoDB collection (snake_cased class name).
References to other documents (category_id, product_id, order_id on
order items) are stored as ObjectIds; the services set them after
``model_dump()``.

Collections:
- user
- category
- product
- variant
- order
- order_item
"""
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, EmailStr

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_METHODS = ("cash", "bank_transfer")
PAYMENT_STATUSES = ("pending", "paid", "failed")

OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["cash", "bank_transfer"]
PaymentStatus = Literal["pending", "paid", "failed"]


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    phone: Optional[str] = None
    address: Optional[str] = None
    avatar: Optional[str] = None
    status: Literal["active", "inactive"] = "active"
    role: Literal["admin", "customer"] = "customer"


class Category(BaseModel):
    """
    Categories collection schema
    Collection name: "category"
    """
    name: str = Field(..., description="Display name")
    slug: str = Field(..., description="Unique URL slug")
    description: Optional[str] = None
    image: Optional[str] = None
    product_count: int = Field(0, ge=0, description="Denormalized number of products")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., description="Product name")
    slug: str = Field(..., description="Unique URL slug")
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: float = Field(..., ge=0)
    stock: int = Field(0, description="Units in stock")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    supplier_id: Optional[str] = None
    is_best_seller: bool = False
    is_new: bool = False
    rating: float = Field(0, ge=0, le=5)


class Variant(BaseModel):
    """
    Variants collection schema
    Collection name: "variant"
    """
    size: Optional[str] = None
    variant: Optional[str] = None
    price: float = Field(..., ge=0)
    stock_quantity: int = Field(0, ge=0)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    order_id: str = Field(..., description="External order code")
    user_id: Optional[str] = None
    customer_name: str
    customer_email: Optional[EmailStr] = None
    customer_phone: str
    shipping_address: str
    status: OrderStatus = "pending"
    payment_method: PaymentMethod = "cash"
    payment_status: PaymentStatus = "pending"
    subtotal: float = Field(0, ge=0)
    shipping_fee: float = Field(0, ge=0)
    discount: float = Field(0, ge=0)
    total: float = Field(0, ge=0)
    notes: Optional[str] = None


class OrderItem(BaseModel):
    """
    Order lines collection schema
    Collection name: "order_item"
    """
    product_name: Optional[str] = None
    product_image: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    subtotal: float = Field(..., ge=0)
