"""Category, product and variant services.

``category.product_count`` is a denormalized counter moved with ``$inc``
whenever a product is created, moved to another category or deleted. It is
never recomputed from the product collection.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, paginate, parse_object_id, total_pages, utcnow
from errors import Conflict, Internal, InvalidInput, NotFound
from recognition import ImageRecognizer
from schemas import Category as CategorySchema, Product as ProductSchema, Variant as VariantSchema

logger = logging.getLogger(__name__)

PRODUCT_SORT_FIELDS = {"created_at", "updated_at", "price", "name", "stock", "rating"}


def _parse_sort(sort: str) -> Tuple[str, int]:
    field, direction = (sort[1:], DESCENDING) if sort.startswith("-") else (sort, ASCENDING)
    if field not in PRODUCT_SORT_FIELDS:
        raise InvalidInput(f"Cannot sort by {field}")
    return field, direction


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


class CategoryService:
    def __init__(self, db: Database):
        self.db = db
        self.col = db["category"]

    def create_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if self.col.find_one({"slug": data["slug"]}):
            raise Conflict("Category with this slug already exists")
        category = CategorySchema(**data)
        category_id = create_document(self.db, "category", category)
        return self.col.find_one({"_id": ObjectId(category_id)})

    def get_category(self, category_id: str) -> Dict[str, Any]:
        category = self.col.find_one({"_id": parse_object_id(category_id, "category ID")})
        if not category:
            raise NotFound("Category not found")
        return category

    def get_category_by_slug(self, slug: str) -> Dict[str, Any]:
        category = self.col.find_one({"slug": slug})
        if not category:
            raise NotFound("Category not found")
        return category

    def list_categories(self, page: int = 1, limit: int = 10, search: Optional[str] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if search:
            query["$or"] = [
                {"name": {"$regex": search, "$options": "i"}},
                {"description": {"$regex": search, "$options": "i"}},
            ]
        skip, limit = paginate(page, limit)
        categories = list(self.col.find(query).sort("name", ASCENDING).skip(skip).limit(limit))
        count = self.col.count_documents(query)
        return {"categories": categories, "total_count": count, "total_pages": total_pages(count, limit)}

    def update_category(self, category_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        oid = parse_object_id(category_id, "category ID")
        if updates.get("slug") and self.col.find_one({"slug": updates["slug"], "_id": {"$ne": oid}}):
            raise Conflict("Category with this slug already exists")
        if not updates:
            raise InvalidInput("No updates provided")
        updated = self.col.find_one_and_update(
            {"_id": oid},
            {"$set": {**updates, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Category not found")
        return updated

    def delete_category(self, category_id: str) -> None:
        result = self.col.delete_one({"_id": parse_object_id(category_id, "category ID")})
        if result.deleted_count == 0:
            raise NotFound("Category not found")


class ProductService:
    def __init__(self, db: Database, recognizer: Optional[ImageRecognizer] = None):
        self.db = db
        self.col = db["product"]
        self.categories = db["category"]
        self.variants = db["variant"]
        self.recognizer = recognizer

    def _require_category(self, category_id: Any) -> ObjectId:
        oid = parse_object_id(category_id, "category ID")
        if not self.categories.find_one({"_id": oid}):
            raise NotFound("Category not found")
        return oid

    def _with_category(self, product: Dict[str, Any]) -> Dict[str, Any]:
        category = self.categories.find_one({"_id": product.get("category_id")}, {"name": 1, "slug": 1})
        product["category"] = category
        return product

    def create_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        if self.col.find_one({"slug": data["slug"]}):
            raise Conflict("Product with this slug already exists")
        category_oid = self._require_category(data.get("category_id"))

        doc = ProductSchema(**data).model_dump()
        doc["category_id"] = category_oid
        product_id = create_document(self.db, "product", doc)
        self.categories.update_one({"_id": category_oid}, {"$inc": {"product_count": 1}})
        logger.info("Product %s created in category %s", data["slug"], category_oid)
        return self.col.find_one({"_id": ObjectId(product_id)})

    def get_product(self, product_id: str) -> Dict[str, Any]:
        product = self.col.find_one({"_id": parse_object_id(product_id, "product ID")})
        if not product:
            raise NotFound("Product not found")
        return self._with_category(product)

    def get_product_by_slug(self, slug: str) -> Dict[str, Any]:
        product = self.col.find_one({"slug": slug})
        if not product:
            raise NotFound("Product not found")
        return self._with_category(product)

    def list_products(
        self,
        page: int = 1,
        limit: int = 10,
        filters: Optional[Dict[str, Any]] = None,
        sort: str = "-created_at",
    ) -> Dict[str, Any]:
        filters = filters or {}
        query: Dict[str, Any] = {}

        if filters.get("category_id"):
            query["category_id"] = parse_object_id(filters["category_id"], "category ID")
        if filters.get("supplier_id"):
            query["supplier_id"] = filters["supplier_id"]
        if filters.get("is_best_seller") is not None:
            query["is_best_seller"] = _as_bool(filters["is_best_seller"])
        if filters.get("is_new") is not None:
            query["is_new"] = _as_bool(filters["is_new"])

        price: Dict[str, float] = {}
        if filters.get("min_price") is not None:
            price["$gte"] = float(filters["min_price"])
        if filters.get("max_price") is not None:
            price["$lte"] = float(filters["max_price"])
        if price:
            query["price"] = price

        search = filters.get("search")
        if search:
            query["$or"] = [
                {field: {"$regex": search, "$options": "i"}}
                for field in ("name", "description", "short_description")
            ]

        skip, limit = paginate(page, limit)
        products = list(self.col.find(query).sort([_parse_sort(sort)]).skip(skip).limit(limit))
        count = self.col.count_documents(query)
        return {"products": products, "total_count": count, "total_pages": total_pages(count, limit)}

    def search_by_image(self, content: bytes, filename: str, content_type: str) -> Tuple[str, List[Dict[str, Any]]]:
        """Products whose name matches the flower recognized in an uploaded image."""
        if self.recognizer is None:
            raise Internal("Image search is not configured")
        if not content:
            raise InvalidInput("Image file is required")

        name = self.recognizer.identify(content, filename, content_type)
        products = list(self.col.find({"name": {"$regex": re.escape(name), "$options": "i"}}))
        if not products:
            raise NotFound(f"No product found for flower: {name}")
        return name, [self._with_category(p) for p in products]

    def update_product(self, product_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        oid = parse_object_id(product_id, "product ID")
        product = self.col.find_one({"_id": oid})
        if not product:
            raise NotFound("Product not found")
        if not updates:
            raise InvalidInput("No updates provided")

        if updates.get("slug") and updates["slug"] != product.get("slug"):
            if self.col.find_one({"slug": updates["slug"], "_id": {"$ne": oid}}):
                raise Conflict("Product with this slug already exists")

        if updates.get("category_id"):
            new_category = self._require_category(updates["category_id"])
            updates["category_id"] = new_category
            if new_category != product.get("category_id"):
                self.categories.update_one({"_id": product.get("category_id")}, {"$inc": {"product_count": -1}})
                self.categories.update_one({"_id": new_category}, {"$inc": {"product_count": 1}})

        updated = self.col.find_one_and_update(
            {"_id": oid},
            {"$set": {**updates, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Product not found after update")
        return self._with_category(updated)

    def delete_product(self, product_id: str) -> None:
        oid = parse_object_id(product_id, "product ID")
        product = self.col.find_one({"_id": oid})
        if not product:
            raise NotFound("Product not found")
        self.categories.update_one({"_id": product.get("category_id")}, {"$inc": {"product_count": -1}})
        self.variants.delete_many({"product_id": oid})
        self.col.delete_one({"_id": oid})
        logger.info("Product %s deleted", product.get("slug"))

    def get_product_with_variants(self, product_id: str) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        product = self.get_product(product_id)
        variants = list(self.variants.find({"product_id": product["_id"]}))
        return product, variants

    def create_variant(self, product_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        oid = parse_object_id(product_id, "product ID")
        if not self.col.find_one({"_id": oid}):
            raise NotFound("Product not found")
        doc = VariantSchema(**data).model_dump()
        doc["product_id"] = oid
        variant_id = create_document(self.db, "variant", doc)
        return self.variants.find_one({"_id": ObjectId(variant_id)})
