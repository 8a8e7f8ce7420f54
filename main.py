import logging
import os
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import jwt
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr, Field
from bson.objectid import ObjectId

import checkout
from cart import Cart
from checkout import InsufficientStock, ProductNotFound, TransactionAborted, generate_payment_link, place_order
from database import db, create_document, get_documents, to_object_id
from schemas import (
    CATEGORIES,
    CartLine,
    Category,
    DeliveryProfile,
    OrderStatus,
    PaymentMethod,
    Product as ProductSchema,
    User as UserSchema,
    can_transition,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="QuickGrocery Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------- Utils -----------------------
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
security = HTTPBearer()


def serialize_doc(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.get("_id")
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
        del doc["_id"]
    # convert datetimes
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def public_user(doc) -> dict:
    user = serialize_doc(doc)
    user.pop("password_hash", None)
    return user


def require_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")


def find_by_id(collection: str, doc_id: str, label: str) -> dict:
    oid = to_object_id(doc_id)
    doc = db[collection].find_one({"_id": oid}) if oid else None
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def hash_password(password: str) -> str:
    import hashlib
    return hashlib.sha256(password.encode()).hexdigest()


def create_token(payload: dict) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=7)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGO)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGO])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    token = credentials.credentials
    payload = decode_token(token)
    user_id = payload.get("id")
    oid = to_object_id(user_id) if user_id else None
    if not oid:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    require_db()
    user = db["user"].find_one({"_id": oid})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return serialize_doc(user)


async def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def auth_response(user: dict) -> dict:
    token = create_token({"id": user["id"], "email": user["email"], "role": user.get("role", "user")})
    return {"token": token, "user": public_user(user)}


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., pattern=r"^\d{10}$", description="10-digit phone number")
    address: str = Field(..., min_length=1)
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateBody(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=r"^\d{10}$", description="10-digit phone number")
    address: str = Field(..., min_length=1)


class PasswordChangeBody(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class ProductCreateBody(ProductSchema):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    size: Optional[str] = None
    stock_count: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None


class CheckoutBody(BaseModel):
    items: List[CartLine]
    payment_method: PaymentMethod = "cod"
    payment_app: Optional[str] = None


class StatusUpdateBody(BaseModel):
    status: OrderStatus


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "QuickGrocery API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/signup")
def signup(body: SignupBody):
    require_db()
    existing = db["user"].find_one({"email": body.email})
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = UserSchema(
        name=body.name,
        email=body.email,
        phone=body.phone,
        address=body.address,
        password_hash=hash_password(body.password),
        role="user",
    )
    user_id = create_document("user", user)
    return auth_response(serialize_doc(db["user"].find_one({"_id": ObjectId(user_id)})))


@app.post("/auth/login")
def login(body: LoginBody):
    require_db()
    user = db["user"].find_one({"email": body.email})
    if not user or user.get("password_hash") != hash_password(body.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return auth_response(serialize_doc(user))


# ----------------------- Profile -----------------------
@app.get("/me")
def get_me(user=Depends(get_current_user)):
    return public_user(user)


@app.put("/me")
def update_me(body: ProfileUpdateBody, user=Depends(get_current_user)):
    # email is fixed at signup
    update = body.model_dump()
    update["updated_at"] = datetime.now(timezone.utc)
    db["user"].update_one({"_id": ObjectId(user["id"])}, {"$set": update})
    return public_user(db["user"].find_one({"_id": ObjectId(user["id"])}))


@app.post("/me/password")
def change_password(body: PasswordChangeBody, user=Depends(get_current_user)):
    if user.get("password_hash") != hash_password(body.current_password):
        raise HTTPException(status_code=400, detail="Old password is incorrect")
    db["user"].update_one(
        {"_id": ObjectId(user["id"])},
        {"$set": {"password_hash": hash_password(body.new_password), "updated_at": datetime.now(timezone.utc)}},
    )
    return {"ok": True}


# ----------------------- Products -----------------------
@app.get("/categories")
def list_categories():
    return CATEGORIES


@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, in_stock: Optional[bool] = None):
    require_db()
    filt = {}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if category:
        filt["category"] = category
    if in_stock is not None:
        filt["stock"] = in_stock
    items = db["product"].find(filt).limit(200)
    return [serialize_doc(i) for i in items]


@app.get("/products/{product_id}")
def get_product(product_id: str):
    require_db()
    return serialize_doc(find_by_id("product", product_id, "Product"))


@app.post("/products")
def create_product(body: ProductCreateBody, user=Depends(require_admin)):
    pid = create_document("product", body)
    return {"id": pid}


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(require_admin)):
    update = {k: v for k, v in body.model_dump(exclude_none=True).items()}
    if "stock_count" in update:
        update["stock"] = update["stock_count"] > 0
    update["updated_at"] = datetime.now(timezone.utc)
    oid = to_object_id(product_id)
    res = db["product"].update_one({"_id": oid}, {"$set": update}) if oid else None
    if res is None or res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin)):
    oid = to_object_id(product_id)
    res = db["product"].delete_one({"_id": oid}) if oid else None
    if res is None or res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"ok": True}


# ----------------------- Checkout -----------------------
@app.post("/checkout")
def checkout_cart(body: CheckoutBody, background_tasks: BackgroundTasks, user=Depends(get_current_user)):
    cart = Cart(body.items)
    profile = DeliveryProfile(
        name=user.get("name") or "",
        phone=user.get("phone") or "",
        address=user.get("address") or "",
        email=user.get("email"),
    )
    try:
        order_id = place_order(
            cart, profile, body.payment_method, body.payment_app,
            user=user, dispatch=background_tasks.add_task,
        )
    except InsufficientStock as e:
        raise HTTPException(
            status_code=409,
            detail={"message": e.message, "product": e.name, "available": e.available},
        )
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except checkout.ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except TransactionAborted as e:
        raise HTTPException(status_code=503, detail=e.message)

    order = db["order"].find_one({"_id": ObjectId(order_id)})
    response = {
        "order_id": order_id,
        "total": order["total"],
        "payment_status": order["payment_status"],
    }
    if body.payment_method == "upi":
        response["payment_link"] = generate_payment_link(order_id, order["total"])
    return response


# ----------------------- Orders -----------------------
@app.get("/orders")
def my_orders(user=Depends(get_current_user)):
    docs = get_documents("order", {"user_id": user["id"]}, sort=[("created_at", -1)])
    return [serialize_doc(d) for d in docs]


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    order = find_by_id("order", order_id, "Order")
    if order["user_id"] != user["id"] and user.get("role") != "admin":
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(order)


# ----------------------- Admin -----------------------
@app.get("/admin/orders")
def all_orders(status: Optional[OrderStatus] = None, user=Depends(require_admin)):
    filt = {"status": status} if status else {}
    docs = get_documents("order", filt, sort=[("created_at", -1)])
    return [serialize_doc(d) for d in docs]


@app.patch("/admin/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdateBody, user=Depends(require_admin)):
    order = find_by_id("order", order_id, "Order")
    current = order.get("status", "placed")
    if not can_transition(current, body.status):
        raise HTTPException(status_code=400, detail=f"Cannot move order from {current} to {body.status}")
    now = datetime.now(timezone.utc)
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"status": body.status, "updated_at": now}})
    logger.info("Order %s moved from %s to %s by %s", order_id, current, body.status, user["id"])
    return {"ok": True, "status": body.status}


def _as_utc(value) -> Optional[datetime]:
    if isinstance(value, str):
        # JS toISOString() ends in "Z", which fromisoformat rejects before 3.11
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@app.get("/admin/stats")
def admin_stats(user=Depends(require_admin)):
    now = datetime.now(timezone.utc)
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = today - timedelta(days=7)
    month_start = today.replace(day=1)

    orders = db["order"].find({}, {"total": 1, "status": 1, "created_at": 1})
    revenue = {"today": 0, "week": 0, "month": 0, "total": 0}
    counts = {"today": 0, "week": 0, "month": 0}
    status_counts = {"placed": 0, "preparing": 0, "out_for_delivery": 0, "delivered": 0}

    for order in orders:
        total = order.get("total", 0)
        revenue["total"] += total
        status = order.get("status")
        if status in status_counts:
            status_counts[status] += 1
        created = _as_utc(order.get("created_at"))
        if created is None:
            continue
        for key, start in (("today", today), ("week", week_ago), ("month", month_start)):
            if created >= start:
                revenue[key] += total
                counts[key] += 1

    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "out_of_stock": db["product"].count_documents({"stock": False}),
        "orders": db["order"].count_documents({}),
        "order_counts": counts,
        "revenue": revenue,
        "status_counts": status_counts,
    }


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Amul Taaza Toned Milk",
        "price": 27,
        "category": "Dairy, Bread and Eggs",
        "size": "500 ml",
        "stock_count": 40,
        "image": "https://images.unsplash.com/photo-1563636619-e9143da7973b",
    },
    {
        "name": "Brown Bread",
        "price": 45,
        "category": "Dairy, Bread and Eggs",
        "size": "400 g",
        "stock_count": 20,
        "image": "https://images.unsplash.com/photo-1509440159596-0249088772ff",
    },
    {
        "name": "Farm Eggs",
        "price": 84,
        "category": "Dairy, Bread and Eggs",
        "size": "12 pcs",
        "stock_count": 15,
        "image": "https://images.unsplash.com/photo-1582722872445-44dc5f7e3c8f",
    },
    {
        "name": "Orange Juice",
        "price": 110,
        "category": "Cold Drink and Juices",
        "size": "1 L",
        "stock_count": 18,
        "image": "https://images.unsplash.com/photo-1600271886742-f049cd451bba",
    },
    {
        "name": "Salted Potato Chips",
        "price": 20,
        "category": "Snack and Munchies",
        "size": "52 g",
        "stock_count": 60,
        "image": "https://images.unsplash.com/photo-1566478989037-eec170784d0b",
    },
    {
        "name": "Basmati Rice",
        "price": 189,
        "category": "Atta, Rice and Dal",
        "size": "1 kg",
        "stock_count": 25,
        "image": "https://images.unsplash.com/photo-1586201375761-83865001e31c",
    },
    {
        "name": "Masala Chai Tea",
        "price": 145,
        "category": "Tea, Coffee and Milk Drinks",
        "size": "250 g",
        "stock_count": 30,
        "image": "https://images.unsplash.com/photo-1564890369478-c89ca6d9cde9",
    },
    {
        "name": "Dishwash Liquid",
        "price": 99,
        "category": "Cleaning Essentials",
        "size": "500 ml",
        "stock_count": 0,
        "image": "https://images.unsplash.com/photo-1585421514738-01798e348b17",
    },
]


@app.post("/seed")
def seed():
    require_db()
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        prod = ProductSchema(**p)
        create_document("product", prod)
    # create admin user if none
    if db["user"].count_documents({"role": "admin"}) == 0:
        admin = UserSchema(
            name="Admin",
            email="admin@quickgrocery.in",
            phone="9999999999",
            address="QuickGrocery Store",
            password_hash=hash_password("admin123"),
            role="admin",
        )
        create_document("user", admin)
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
