import logging
import math
import re
from typing import Any, Dict, Iterable, List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pydantic import Field
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, now, serialize_doc
from errors import BusinessRuleError, DuplicateReviewError, NotFoundError, ValidationError, envelope
from schemas import Category as CategorySchema, Product as ProductSchema, RequestModel, Review
from security import get_current_user, get_db, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/products", tags=["products"])

FEATURED_LIMIT = 8
TRENDING_LIMIT = 6
SUGGESTION_LIMIT = 5

SortOrder = Literal["price_asc", "price_desc", "name_asc", "name_desc", "newest", "oldest"]

SORTS = {
    "price_asc": [("price", 1)],
    "price_desc": [("price", -1)],
    "name_asc": [("name", 1)],
    "name_desc": [("name", -1)],
    "newest": [("created_at", -1)],
    "oldest": [("created_at", 1)],
}


def parse_object_id(value: str, label: str = "product") -> ObjectId:
    if not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {label} id")
    return ObjectId(value)


def category_names(db: Database, category_ids: List[str]) -> Dict[str, str]:
    ids = [ObjectId(cid) for cid in set(category_ids) if cid and ObjectId.is_valid(cid)]
    if not ids:
        return {}
    return {str(c["_id"]): c.get("name") for c in db["category"].find({"_id": {"$in": ids}}, {"name": 1})}


def serialize_products(db: Database, docs: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Serialize products with their category joined in as {id, name}."""
    docs = list(docs)
    names = category_names(db, [d.get("category") for d in docs])
    products = []
    for doc in docs:
        product = serialize_doc(doc)
        product["reviews"] = [dict(r) for r in product.get("reviews", [])]
        category_id = product.get("category")
        # a deleted category leaves the name empty
        product["category"] = {"id": category_id, "name": names.get(category_id)}
        products.append(product)
    return products


def serialize_product(db: Database, doc: Dict[str, Any]) -> Dict[str, Any]:
    return serialize_products(db, [doc])[0]


def load_product(db: Database, product_id: str) -> Dict[str, Any]:
    product = db["product"].find_one({"_id": parse_object_id(product_id)})
    if not product:
        raise NotFoundError("Product not found")
    return product


def ensure_category(db: Database, category_id: str) -> None:
    if not ObjectId.is_valid(category_id) or not db["category"].find_one({"_id": ObjectId(category_id)}):
        raise ValidationError("Category not found")


def build_filter(
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if category:
        query["category"] = category
    if search:
        pattern = re.escape(search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    price_filter: Dict[str, Any] = {}
    if min_price is not None:
        price_filter["$gte"] = float(min_price)
    if max_price is not None:
        price_filter["$lte"] = float(max_price)
    if price_filter:
        query["price"] = price_filter
    if in_stock is not None:
        query["stock_quantity"] = {"$gt": 0} if in_stock else {"$lte": 0}
    return query


def paginate(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_products": total,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


# Products
class ProductIn(RequestModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    category: str = Field(..., min_length=1)
    stock_quantity: int = Field(..., ge=0)
    featured: bool = False
    images: List[str] = []
    tags: List[str] = []
    sizes: List[str] = []
    colors: List[str] = []


class ProductUpdate(RequestModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    category: Optional[str] = Field(None, min_length=1)
    stock_quantity: Optional[int] = Field(None, ge=0)
    featured: Optional[bool] = None
    images: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    colors: Optional[List[str]] = None


class CategoryIn(RequestModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None


class ReviewIn(RequestModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


@router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    category: Optional[str] = None,
    search: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    sort: SortOrder = "newest",
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    db: Database = Depends(get_db),
):
    query = build_filter(category, search, min_price, max_price, in_stock)
    skip = (page - 1) * limit
    cursor = db["product"].find(query).sort(SORTS[sort]).skip(skip).limit(limit)
    products = serialize_products(db, cursor)
    total = db["product"].count_documents(query)
    return envelope({"products": products, "pagination": paginate(page, limit, total)})


@router.get("/categories")
def list_categories(db: Database = Depends(get_db)):
    categories = db["category"].find().sort("name", 1)
    return envelope([serialize_doc(c) for c in categories])


@router.post("/categories", status_code=201)
def create_category(data: CategoryIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    category = CategorySchema(name=data.name.strip(), description=data.description)
    if db["category"].find_one({"name": category.name}):
        raise BusinessRuleError("Category already exists")
    try:
        category_id = create_document(db, "category", category.model_dump())
    except DuplicateKeyError:
        raise BusinessRuleError("Category already exists")
    created = db["category"].find_one({"_id": ObjectId(category_id)})
    return envelope(serialize_doc(created), "Category created successfully")


@router.get("/featured")
def featured_products(db: Database = Depends(get_db)):
    cursor = db["product"].find({"featured": True, "stock_quantity": {"$gt": 0}}).sort("created_at", -1).limit(FEATURED_LIMIT)
    return envelope(serialize_products(db, cursor))


@router.get("/trending")
def trending_products(db: Database = Depends(get_db)):
    cursor = (
        db["product"]
        .find({"stock_quantity": {"$gt": 0}})
        .sort([("average_rating", -1), ("sales_count", -1)])
        .limit(TRENDING_LIMIT)
    )
    return envelope(serialize_products(db, cursor))


@router.get("/search/suggestions")
def search_suggestions(q: str = Query(..., min_length=1), db: Database = Depends(get_db)):
    pattern = re.escape(q)
    query = {
        "$or": [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"tags": {"$regex": pattern, "$options": "i"}},
        ]
    }
    cursor = db["product"].find(query, {"name": 1, "tags": 1}).limit(SUGGESTION_LIMIT)
    return envelope([serialize_doc(d) for d in cursor])


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return envelope(serialize_product(db, load_product(db, product_id)))


@router.post("", status_code=201)
def create_product(data: ProductIn, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    ensure_category(db, data.category)
    product = ProductSchema(**data.model_dump())
    product_id = create_document(db, "product", product.model_dump())
    logger.info(f"Product created: {product_id} ({product.name}) with stock {product.stock_quantity}")
    created = db["product"].find_one({"_id": ObjectId(product_id)})
    return envelope(serialize_product(db, created), "Product created successfully")


@router.put("/{product_id}")
def update_product(product_id: str, data: ProductUpdate, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    obj_id = parse_object_id(product_id)
    update_dict = data.model_dump(exclude_unset=True, exclude_none=True)
    if not update_dict:
        raise ValidationError("No fields to update")
    if "category" in update_dict:
        ensure_category(db, update_dict["category"])
    update_dict["updated_at"] = now()
    res = db["product"].update_one({"_id": obj_id}, {"$set": update_dict})
    if res.matched_count == 0:
        raise NotFoundError("Product not found")
    product = db["product"].find_one({"_id": obj_id})
    return envelope(serialize_product(db, product), "Product updated successfully")


@router.delete("/{product_id}")
def delete_product(product_id: str, admin: dict = Depends(require_admin), db: Database = Depends(get_db)):
    obj_id = parse_object_id(product_id)
    res = db["product"].delete_one({"_id": obj_id})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    logger.info(f"Product deleted: {product_id}")
    return envelope(message="Product deleted successfully")


@router.post("/{product_id}/reviews")
def add_review(product_id: str, data: ReviewIn, current_user: dict = Depends(get_current_user), db: Database = Depends(get_db)):
    product = load_product(db, product_id)
    reviews = product.get("reviews", [])
    if any(r.get("user_id") == current_user["id"] for r in reviews):
        raise DuplicateReviewError()
    review = Review(
        user_id=current_user["id"],
        user_name=current_user.get("name"),
        rating=data.rating,
        comment=data.comment,
        date=now(),
    )
    reviews.append(review.model_dump())
    average = sum(r["rating"] for r in reviews) / len(reviews)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"reviews": reviews, "average_rating": average, "updated_at": now()}},
    )
    updated = db["product"].find_one({"_id": product["_id"]})
    return envelope(serialize_product(db, updated), "Review added successfully")
