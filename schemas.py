"""
Database Schemas for the grocery storefront

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from typing import List, Optional, Literal, get_args
from pydantic import BaseModel, Field, EmailStr

Category = Literal[
    "Dairy, Bread and Eggs",
    "Cold Drink and Juices",
    "Snack and Munchies",
    "Breakfast and Instant Food",
    "Sweet Tooth",
    "Bakery and Biscuits",
    "Tea, Coffee and Milk Drinks",
    "Atta, Rice and Dal",
    "Masala, Oil and More",
    "Sauces and Spreads",
    "Baby Care",
    "Cleaning Essentials",
    "Personal Care",
    "Home and Office",
]

CATEGORIES = list(get_args(Category))

PaymentMethod = Literal["cod", "upi"]
PaymentStatus = Literal["pending", "awaiting_verification"]

# "preparing" is only read (legacy documents, analytics); nothing sets it.
OrderStatus = Literal["placed", "preparing", "out_for_delivery", "delivered"]

STATUS_TRANSITIONS = {
    "placed": {"out_for_delivery", "delivered"},
    "out_for_delivery": {"placed", "delivered"},
    "delivered": {"placed", "out_for_delivery"},
    "preparing": {"placed", "out_for_delivery", "delivered"},
}


def can_transition(current: str, target: str) -> bool:
    return target in STATUS_TRANSITIONS.get(current, set())


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{10}$", description="10-digit phone number")
    address: str
    password_hash: str = Field(..., description="Hashed password")
    role: Literal["user", "admin"] = "user"


class Product(BaseModel):
    name: str
    price: float = Field(..., ge=0, description="Price in rupees")
    category: Category
    size: Optional[str] = Field(None, description="e.g. '500 ml', '1 kg'")
    stock_count: int = Field(0, ge=0, description="Units available")
    stock: bool = Field(False, description="Derived: stock_count > 0")
    image: Optional[str] = None

    def model_post_init(self, _context) -> None:
        self.stock = self.stock_count > 0


class CartLine(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class DeliveryProfile(BaseModel):
    name: str = ""
    phone: str = ""
    address: str = ""
    email: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int


class Order(BaseModel):
    user_id: str
    user_name: str
    user_email: Optional[str] = None
    phone: str
    address: str
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: float
    platform_fee: float = 0
    total: float
    payment_method: PaymentMethod = "cod"
    payment_app: Optional[str] = None
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "placed"
