"""
Cart, checkout, wishlist and order history.

Cart documents carry a `version` counter. Every write is a compare-and-swap
on that counter so two requests against the same cart cannot silently drop
each other's changes. Checkout reserves stock with one conditional
decrement per line (`stock_quantity >= quantity`) and releases whatever it
already reserved when a later line comes up short, so stock never goes
negative no matter how many checkouts race for the same product.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends
from pydantic import Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from catalog import load_product, parse_object_id
from database import create_document, now, serialize_doc
from errors import (
    AuthorizationError,
    BusinessRuleError,
    ConflictError,
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    envelope,
)
from schemas import Cart as CartSchema, CartItem as CartItemSchema, Order as OrderSchema, OrderItem, PaymentMethod, RequestModel
from security import get_current_user, get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])

FREE_SHIPPING_THRESHOLD = 999
SHIPPING_FEE = 99
COUPON_CODE = "welcome10"
COUPON_RATE = 0.10
CAS_ATTEMPTS = 3


def shipping_for(subtotal: float) -> float:
    return 0 if subtotal > FREE_SHIPPING_THRESHOLD else SHIPPING_FEE


def discount_for(subtotal: float, coupon_code: Optional[str]) -> float:
    if coupon_code and coupon_code.strip().lower() == COUPON_CODE:
        return round(subtotal * COUPON_RATE, 2)
    return 0


def fetch_products(db: Database, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
    ids = [ObjectId(pid) for pid in set(product_ids) if ObjectId.is_valid(pid)]
    if not ids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}


def find_cart(db: Database, user_id: str, create: bool = True) -> Optional[Dict[str, Any]]:
    cart = db["cart"].find_one({"user_id": user_id})
    if cart is None and create:
        try:
            create_document(db, "cart", CartSchema(user_id=user_id).model_dump())
        except DuplicateKeyError:
            # another request created it first
            pass
        cart = db["cart"].find_one({"user_id": user_id})
    return cart


def save_items(db: Database, cart: Dict[str, Any], items: List[Dict[str, Any]]) -> bool:
    """Write `items` only if nobody else has written the cart since it was read."""
    res = db["cart"].update_one(
        {"_id": cart["_id"], "version": cart.get("version", 0)},
        {"$set": {"items": items, "updated_at": now()}, "$inc": {"version": 1}},
    )
    return res.modified_count == 1


def mutate_cart(db: Database, user_id: str, mutate: Callable[[List[Dict[str, Any]]], List[Dict[str, Any]]], create: bool = True) -> Dict[str, Any]:
    for _ in range(CAS_ATTEMPTS):
        cart = find_cart(db, user_id, create=create)
        if not cart:
            raise NotFoundError("Cart not found")
        items = mutate([dict(it) for it in cart.get("items", [])])
        if save_items(db, cart, items):
            return db["cart"].find_one({"_id": cart["_id"]})
        logger.info(f"Cart {cart['_id']} changed underneath a write, retrying")
    raise ConflictError()


def cart_summary(db: Database, cart: Dict[str, Any]) -> Dict[str, Any]:
    items = cart.get("items", [])
    products = fetch_products(db, [it["product_id"] for it in items])
    lines = []
    subtotal = 0.0
    total_items = 0
    for it in items:
        product = products.get(it["product_id"])
        line = dict(it)
        line["product"] = None
        if product:
            line["product"] = {
                "id": str(product["_id"]),
                "name": product.get("name"),
                "price": product.get("price", 0),
                "images": product.get("images", []),
                "stock_quantity": product.get("stock_quantity", 0),
            }
            subtotal += product.get("price", 0) * it["quantity"]
            total_items += it["quantity"]
        lines.append(line)
    subtotal = round(subtotal, 2)
    shipping = shipping_for(subtotal)
    return {
        "id": str(cart["_id"]),
        "items": lines,
        "subtotal": subtotal,
        "shipping": shipping,
        "total": round(subtotal + shipping, 2),
        "total_items": total_items,
    }


def add_item(db: Database, user_id: str, product_id: str, quantity: int, size: Optional[str] = None, color: Optional[str] = None) -> Dict[str, Any]:
    def mutate(items):
        product = load_product(db, product_id)
        stock = product.get("stock_quantity", 0)
        # merge if same product, size and color
        for it in items:
            if it["product_id"] == product_id and it.get("size") == size and it.get("color") == color:
                merged = it["quantity"] + quantity
                if stock < merged:
                    raise InsufficientStockError()
                it["quantity"] = merged
                return items
        if stock < quantity:
            raise InsufficientStockError()
        line = CartItemSchema(item_id=str(ObjectId()), product_id=product_id, quantity=quantity, size=size, color=color)
        items.append(line.model_dump())
        return items

    return mutate_cart(db, user_id, mutate)


def update_item(db: Database, user_id: str, item_id: str, quantity: int) -> Dict[str, Any]:
    def mutate(items):
        line = next((it for it in items if it["item_id"] == item_id), None)
        if line is None:
            raise NotFoundError("Item not found in cart")
        products = fetch_products(db, [line["product_id"]])
        product = products.get(line["product_id"])
        if not product:
            raise NotFoundError("Product not found")
        if product.get("stock_quantity", 0) < quantity:
            raise InsufficientStockError()
        line["quantity"] = quantity
        return items

    return mutate_cart(db, user_id, mutate, create=False)


def remove_item(db: Database, user_id: str, item_id: str) -> Dict[str, Any]:
    def mutate(items):
        remaining = [it for it in items if it["item_id"] != item_id]
        if len(remaining) == len(items):
            raise NotFoundError("Item not found in cart")
        return remaining

    return mutate_cart(db, user_id, mutate, create=False)


def clear_cart(db: Database, user_id: str) -> Dict[str, Any]:
    return mutate_cart(db, user_id, lambda items: [], create=False)


def release_stock(db: Database, reserved: List[Dict[str, Any]]) -> None:
    for item in reserved:
        db["product"].update_one(
            {"_id": ObjectId(item["product_id"])},
            {"$inc": {"stock_quantity": item["quantity"], "sales_count": -item["quantity"]}},
        )


def reserve_stock(db: Database, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Decrement stock and bump sales for every line, or for none of them."""
    reserved: List[Dict[str, Any]] = []
    for item in items:
        res = db["product"].update_one(
            {"_id": ObjectId(item["product_id"]), "stock_quantity": {"$gte": item["quantity"]}},
            {"$inc": {"stock_quantity": -item["quantity"], "sales_count": item["quantity"]}},
        )
        if res.modified_count != 1:
            release_stock(db, reserved)
            raise InsufficientStockError(f"Insufficient stock for {item['name']}")
        reserved.append(item)
    return reserved


def place_order(db: Database, user_id: str, shipping_address: str, payment_method: str, coupon_code: Optional[str] = None) -> Dict[str, Any]:
    cart = db["cart"].find_one({"user_id": user_id})
    return checkout_cart(db, cart, shipping_address, payment_method, coupon_code)


def checkout_cart(db: Database, cart: Optional[Dict[str, Any]], shipping_address: str, payment_method: str, coupon_code: Optional[str] = None) -> Dict[str, Any]:
    """Turn the cart as read into an order. Fails with ConflictError if the cart changed since."""
    if not cart or not cart.get("items"):
        raise EmptyCartError()
    user_id = cart["user_id"]

    products = fetch_products(db, [it["product_id"] for it in cart["items"]])
    order_items: List[Dict[str, Any]] = []
    subtotal = 0.0
    total_items = 0
    for it in cart["items"]:
        product = products.get(it["product_id"])
        if not product:
            raise BusinessRuleError("Product not found")
        if product.get("stock_quantity", 0) < it["quantity"]:
            raise InsufficientStockError(f"Insufficient stock for {product['name']}")
        line_total = product["price"] * it["quantity"]
        subtotal += line_total
        total_items += it["quantity"]
        order_items.append(OrderItem(
            product_id=it["product_id"],
            name=product["name"],
            price=product["price"],
            quantity=it["quantity"],
            size=it.get("size"),
            color=it.get("color"),
            total=round(line_total, 2),
        ).model_dump())

    subtotal = round(subtotal, 2)
    shipping = shipping_for(subtotal)
    discount = discount_for(subtotal, coupon_code)
    order = OrderSchema(
        user_id=user_id,
        items=order_items,
        subtotal=subtotal,
        shipping=shipping,
        discount=discount,
        total=round(subtotal + shipping - discount, 2),
        total_items=total_items,
        shipping_address=shipping_address,
        payment_method=payment_method,
        coupon_code=coupon_code if discount else None,
        # no payment capture: online orders are simply marked as processing
        status="pending" if payment_method == "cod" else "processing",
    )

    reserved = reserve_stock(db, order_items)
    claimed = False
    try:
        # empty the cart we priced; a concurrent edit or checkout makes this fail
        claimed = save_items(db, cart, [])
        if not claimed:
            raise ConflictError("Cart changed during checkout, please review it and try again")
        order_id = create_document(db, "order", order.model_dump())
    except Exception:
        release_stock(db, reserved)
        if claimed:
            # only undo our own emptying; a newer write to the cart wins
            db["cart"].update_one(
                {"_id": cart["_id"], "version": cart.get("version", 0) + 1},
                {"$set": {"items": cart["items"]}, "$inc": {"version": 1}},
            )
        raise

    logger.info(f"Order {order_id} placed by user {user_id}: {total_items} items, total {order.total}")
    return db["order"].find_one({"_id": ObjectId(order_id)})


# Cart
class AddItemInput(RequestModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class UpdateItemInput(RequestModel):
    quantity: int = Field(..., ge=1)


class CheckoutInput(RequestModel):
    shipping_address: str = Field(..., min_length=1)
    payment_method: PaymentMethod
    coupon_code: Optional[str] = None


@router.get("")
def get_cart(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = find_cart(db, current_user["id"])
    return envelope(cart_summary(db, cart))


@router.post("/add")
def add_to_cart(data: AddItemInput, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = add_item(db, current_user["id"], data.product_id, data.quantity, data.size, data.color)
    return envelope(cart_summary(db, cart), "Item added to cart successfully")


@router.put("/update/{item_id}")
def update_cart_item(item_id: str, data: UpdateItemInput, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = update_item(db, current_user["id"], item_id, data.quantity)
    return envelope(cart_summary(db, cart), "Cart updated successfully")


@router.delete("/remove/{item_id}")
def remove_cart_item(item_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    cart = remove_item(db, current_user["id"], item_id)
    return envelope(cart_summary(db, cart), "Item removed from cart successfully")


@router.delete("/clear")
def clear(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    clear_cart(db, current_user["id"])
    return envelope(message="Cart cleared successfully")


@router.post("/checkout")
def checkout(data: CheckoutInput, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = serialize_doc(place_order(db, current_user["id"], data.shipping_address, data.payment_method, data.coupon_code))
    return envelope({"order": order, "order_id": order["id"]}, "Order placed successfully")


# Wishlist
def wishlist_products(db: Database, user: Dict[str, Any]) -> List[Dict[str, Any]]:
    wishlist = user.get("wishlist", [])
    products = fetch_products(db, wishlist)
    out = []
    for pid in wishlist:
        product = products.get(pid)
        if product:
            out.append({"id": pid, "name": product.get("name"), "price": product.get("price"), "images": product.get("images", [])})
    return out


def load_user(db: Database, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise NotFoundError("User not found")
    return user


@router.get("/wishlist")
def get_wishlist(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    return envelope(wishlist_products(db, load_user(db, current_user["id"])))


@router.post("/wishlist/add/{product_id}")
def add_to_wishlist(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    load_product(db, product_id)
    user = load_user(db, current_user["id"])
    if product_id in user.get("wishlist", []):
        raise BusinessRuleError("Product already in wishlist")
    db["user"].update_one({"_id": user["_id"]}, {"$addToSet": {"wishlist": product_id}})
    return envelope(wishlist_products(db, load_user(db, current_user["id"])), "Product added to wishlist successfully")


@router.delete("/wishlist/remove/{product_id}")
def remove_from_wishlist(product_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    user = load_user(db, current_user["id"])
    db["user"].update_one({"_id": user["_id"]}, {"$pull": {"wishlist": product_id}})
    return envelope(wishlist_products(db, load_user(db, current_user["id"])), "Product removed from wishlist successfully")


# Orders
def serialize_order(db: Database, order: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize an order, attaching each line's current product images."""
    data = serialize_doc(order)
    products = fetch_products(db, [it["product_id"] for it in order.get("items", [])])
    items = []
    for it in order.get("items", []):
        line = dict(it)
        product = products.get(it["product_id"])
        line["images"] = product.get("images", []) if product else []
        items.append(line)
    data["items"] = items
    return data


@router.get("/orders")
def list_orders(current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    orders = db["order"].find({"user_id": current_user["id"]}).sort("created_at", -1)
    return envelope([serialize_order(db, o) for o in orders])


@router.get("/orders/{order_id}")
def get_order(order_id: str, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    order = db["order"].find_one({"_id": parse_object_id(order_id, "order")})
    if not order:
        raise NotFoundError("Order not found")
    if order["user_id"] != current_user["id"]:
        raise AuthorizationError("Not authorized to view this order")
    data = serialize_order(db, order)
    user = db["user"].find_one({"_id": ObjectId(order["user_id"])}, {"name": 1, "email": 1})
    data["user"] = {"id": order["user_id"], "name": user.get("name"), "email": user.get("email")} if user else None
    return envelope(data)
