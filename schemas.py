"""
Database Schemas for E-commerce

Each Pydantic model represents a collection in MongoDB.
Class name lowercased = collection name (e.g., Product -> "product").
References to other documents are ObjectId strings.
"""
from pydantic import BaseModel, Field, EmailStr
from typing import Optional, List
from datetime import datetime
from decimal import Decimal

class ShippingAddress(BaseModel):
    first_name: str
    last_name: str
    address: str
    city: str
    postal_code: str
    province: Optional[str] = None
    country: str
    phone: str

class User(BaseModel):
    name: str
    email: EmailStr
    password_hash: str
    is_admin: bool = False
    orders: List[str] = []
    has_shipping_address: bool = False
    shipping_address: Optional[ShippingAddress] = None

class Category(BaseModel):
    name: str
    user: str
    image: Optional[str] = None
    products: List[str] = []

class Brand(BaseModel):
    name: str
    user: str
    products: List[str] = []

class Product(BaseModel):
    name: str
    description: str
    brand: str
    category: str
    sizes: List[str] = []
    colors: List[str] = []
    user: str
    images: List[str] = []
    reviews: List[str] = []
    price: float = Field(0, ge=0)
    quantity: int = Field(0, ge=0)
    total_sold: int = 0

class Review(BaseModel):
    user: str
    product: str
    message: str
    rating: int = Field(..., ge=1, le=5)

class Coupon(BaseModel):
    code: str
    start_date: datetime
    end_date: datetime
    discount: float = Field(0, ge=0, le=100)
    user: str

class OrderItem(BaseModel):
    name: str
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    product_id: Optional[str] = None

class Order(BaseModel):
    user: str
    order_number: str
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    subtotal: float
    discount: float = 0
    total_price: float
    total_amount_minor: int
    currency: str = "usd"
    coupon: Optional[str] = None
    payment_status: str = "not paid"
    payment_method: str = "not specified"
    status: str = "pending"

COLLECTIONS = [User, Category, Brand, Product, Review, Coupon, Order]
