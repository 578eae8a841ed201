"""MongoDB access helpers shared by the services."""
import logging
import math
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from errors import InvalidInput

logger = logging.getLogger(__name__)


def connect(url: str, name: str) -> Database:
    # MongoClient connects lazily, so building the app never blocks on the server
    client = MongoClient(url)
    return client[name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def session_kwargs(session) -> Dict[str, Any]:
    return {"session": session} if session is not None else {}


@contextmanager
def transaction(db: Database, enabled: bool) -> Iterator[Any]:
    """Yield a session bound to an open transaction, or ``None`` when disabled."""
    if not enabled:
        yield None
        return
    with db.client.start_session() as session:
        with session.start_transaction():
            yield session


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]], session=None) -> str:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    now = utcnow()
    doc = {**data, "created_at": now, "updated_at": now}
    result = db[collection_name].insert_one(doc, **session_kwargs(session))
    return str(result.inserted_id)


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    skip: int = 0,
    limit: int = 100,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    return list(cursor.skip(skip).limit(limit))


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = doc.pop("_id")
    return _serialize_value(doc)


def parse_object_id(value: Any, label: str = "ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise InvalidInput(f"Invalid {label}")
    return ObjectId(value)


def paginate(page: int, limit: int) -> Tuple[int, int]:
    page = max(page, 1)
    limit = max(limit, 1)
    return (page - 1) * limit, limit


def total_pages(count: int, limit: int) -> int:
    return math.ceil(count / limit) if limit > 0 else 0


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["category"].create_index("slug", unique=True)
    db["product"].create_index("slug", unique=True)
    db["product"].create_index("category_id")
    db["variant"].create_index("product_id")
    db["order"].create_index("order_id", unique=True)
    db["order"].create_index([("created_at", DESCENDING)])
    db["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    db["order_item"].create_index("order_id")
    logger.info("Indexes ensured on %s", db.name)
