"""Load a sample category and product catalogue. Run with `python seed.py`."""

import logging

from pymongo.database import Database

from config import Settings
from database import connect, create_document, ensure_indexes
from main import configure_logging
from schemas import Category, Product

logger = logging.getLogger(__name__)

SAMPLE_CATEGORY = Category(name="Kurtis", description="Everyday and festive kurtis")

SAMPLE_PRODUCTS = [
    {
        "name": "Floral Embroidered Kurti",
        "description": "Elegant floral embroidery on soft cotton fabric. Perfect for festive and casual occasions.",
        "price": 1299,
        "tags": ["floral", "embroidered", "cotton", "festive"],
        "stock_quantity": 20,
        "featured": True,
        "sizes": ["S", "M", "L", "XL"],
        "colors": ["Pink", "White"],
    },
    {
        "name": "Silk Anarkali Kurti",
        "description": "Luxurious silk Anarkali with golden zari work. A timeless classic for special events.",
        "price": 1599,
        "tags": ["silk", "anarkali", "zari", "party"],
        "stock_quantity": 15,
        "sizes": ["M", "L", "XL"],
        "colors": ["Blue", "Gold"],
    },
    {
        "name": "Cotton Printed Kurti",
        "description": "Breathable cotton kurti with vibrant prints. Ideal for daily wear and summer comfort.",
        "price": 899,
        "tags": ["cotton", "printed", "casual", "summer"],
        "stock_quantity": 30,
        "featured": True,
        "sizes": ["S", "M", "L"],
        "colors": ["Yellow", "Green"],
    },
    {
        "name": "Chikankari Straight Kurti",
        "description": "Hand-embroidered Lucknowi chikankari on georgette with a straight cut.",
        "price": 999,
        "tags": ["chikankari", "georgette", "handwork"],
        "stock_quantity": 0,
        "sizes": ["M", "L"],
        "colors": ["White"],
    },
]


def seed(db: Database) -> int:
    ensure_indexes(db)
    category = db["category"].find_one({"name": SAMPLE_CATEGORY.name})
    category_id = str(category["_id"]) if category else create_document(db, "category", SAMPLE_CATEGORY.model_dump())
    db["product"].delete_many({"category": category_id})
    for data in SAMPLE_PRODUCTS:
        product = Product(category=category_id, **data)
        create_document(db, "product", product.model_dump())
    logger.info(f"Seeded {len(SAMPLE_PRODUCTS)} products into category {category_id}")
    return len(SAMPLE_PRODUCTS)


if __name__ == "__main__":
    settings = Settings.from_env()
    configure_logging(settings)
    seed(connect(settings))
