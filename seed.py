"""Demo catalog inserted on startup when ``SEED_DEMO_DATA`` is enabled."""
import logging
from typing import Dict, List

from pymongo.database import Database

from catalog import CategoryService, ProductService

logger = logging.getLogger(__name__)

DEMO_CATEGORIES: List[dict] = [
    {"name": "Mobiles", "slug": "mobiles", "description": "Phones and tablets"},
    {"name": "Laptops", "slug": "laptops", "description": "Notebooks and ultrabooks"},
    {"name": "Accessories", "slug": "accessories", "description": "Headphones, mice and more"},
]

DEMO_PRODUCTS: List[dict] = [
    {
        "name": "iPhone 14",
        "slug": "iphone-14",
        "category": "mobiles",
        "description": "6.1-inch display, A15 chip, dual camera",
        "price": 699,
        "images": [
            "https://images.unsplash.com/photo-1670272508182-5b0df6812cee?q=80&w=1200&auto=format&fit=crop",
        ],
        "stock": 50,
        "is_best_seller": True,
    },
    {
        "name": "Galaxy S23",
        "slug": "galaxy-s23",
        "category": "mobiles",
        "description": "Dynamic AMOLED, Snapdragon 8 Gen 2",
        "price": 649,
        "images": [
            "https://images.unsplash.com/photo-1670272543330-01a57a97dc97?q=80&w=1200&auto=format&fit=crop",
        ],
        "stock": 70,
    },
    {
        "name": "MacBook Air M2",
        "slug": "macbook-air-m2",
        "category": "laptops",
        "description": "13.6-inch Liquid Retina, M2 chip",
        "price": 1099,
        "images": [
            "https://images.unsplash.com/photo-1517336714731-489689fd1ca8?q=80&w=1200&auto=format&fit=crop",
        ],
        "stock": 25,
        "is_new": True,
    },
    {
        "name": "Sony WH-1000XM5",
        "slug": "sony-wh-1000xm5",
        "category": "accessories",
        "description": "Noise-cancelling headphones",
        "price": 349,
        "images": [
            "https://images.unsplash.com/photo-1518441902110-9d8f13635159?q=80&w=1200&auto=format&fit=crop",
        ],
        "stock": 100,
    },
]


def seed_catalog_if_empty(db: Database) -> int:
    if db["product"].count_documents({}) > 0:
        return 0
    categories = CategoryService(db)
    products = ProductService(db)

    by_slug: Dict[str, str] = {}
    for data in DEMO_CATEGORIES:
        existing = db["category"].find_one({"slug": data["slug"]})
        category = existing or categories.create_category(data)
        by_slug[data["slug"]] = str(category["_id"])

    for data in DEMO_PRODUCTS:
        data = dict(data)
        data["category_id"] = by_slug[data.pop("category")]
        products.create_product(data)
    logger.info("Seeded %d demo products", len(DEMO_PRODUCTS))
    return len(DEMO_PRODUCTS)
