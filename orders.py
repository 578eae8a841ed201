"""Order workflow: creation with stock checks, status transitions, deletion.

Stock is adjusted with ``$inc`` against the ``product`` collection. The
multi-step sequences run inside :func:`database.transaction`, which only
opens a real MongoDB transaction when ``MONGO_TRANSACTIONS`` is enabled.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import (
    create_document,
    paginate,
    parse_object_id,
    session_kwargs,
    total_pages,
    transaction,
    utcnow,
)
from errors import Conflict, InsufficientStock, Internal, InvalidInput, NotFound
from schemas import ORDER_STATUSES, PAYMENT_STATUSES, Order as OrderSchema, OrderItem as OrderItemSchema

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ById:
    oid: ObjectId


@dataclass(frozen=True)
class ByCode:
    code: str


OrderRef = Union[ById, ByCode]


def parse_order_ref(value: Any) -> OrderRef:
    """Native ObjectIds win; anything else is treated as an external order code."""
    if isinstance(value, ObjectId):
        return ById(value)
    text = str(value).strip()
    if not text:
        raise InvalidInput("Invalid order ID")
    if ObjectId.is_valid(text):
        return ById(ObjectId(text))
    return ByCode(text)


def ref_filter(ref: OrderRef) -> Dict[str, Any]:
    if isinstance(ref, ById):
        return {"_id": ref.oid}
    if ref.code.isdigit():
        # codes may have been stored as numbers
        return {"order_id": {"$in": [ref.code, int(ref.code)]}}
    return {"order_id": ref.code}


def generate_order_code() -> str:
    return uuid.uuid4().hex[:12].upper()


def derive_payment_status(order: Dict[str, Any], new_status: str) -> Optional[str]:
    """Payment status implied by ``new_status``, or None when it must be left alone."""
    if order.get("payment_method") == "bank_transfer" and order.get("payment_status") == "paid":
        return None
    if new_status == "delivered":
        return "paid"
    if new_status == "cancelled":
        return "failed"
    return "pending"


class OrderService:
    def __init__(self, db: Database, transactions: bool = False):
        self.db = db
        self.transactions = transactions

    @property
    def orders(self):
        return self.db["order"]

    @property
    def items(self):
        return self.db["order_item"]

    @property
    def products(self):
        return self.db["product"]

    def _find(self, ref: OrderRef, session=None) -> Dict[str, Any]:
        order = self.orders.find_one(ref_filter(ref), **session_kwargs(session))
        if not order:
            raise NotFound("Order not found")
        return order

    def _adjust_stock(self, lines: List[Dict[str, Any]], sign: int, session=None) -> None:
        for line in lines:
            self.products.update_one(
                {"_id": line["product_id"]},
                {"$inc": {"stock": sign * int(line["quantity"])}},
                **session_kwargs(session),
            )

    def _restore_stock(self, order: Dict[str, Any], session=None) -> None:
        lines = list(self.items.find({"order_id": order["_id"]}, **session_kwargs(session)))
        self._adjust_stock(lines, +1, session)
        logger.info("Restored stock for %d line(s) of order %s", len(lines), order.get("order_id"))

    def _check_items(self, items: List[Dict[str, Any]], session=None) -> List[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """Resolve each line's product and check stock against the order's total per product."""
        checked = []
        requested: Dict[ObjectId, int] = {}
        products: Dict[ObjectId, Dict[str, Any]] = {}
        for item in items:
            product_id = parse_object_id(item.get("product_id"), "product ID")
            if product_id not in products:
                product = self.products.find_one({"_id": product_id}, **session_kwargs(session))
                if not product:
                    raise NotFound(f"Product with ID {product_id} not found")
                products[product_id] = product
            requested[product_id] = requested.get(product_id, 0) + int(item["quantity"])
            checked.append((item, products[product_id]))

        for product_id, quantity in requested.items():
            product = products[product_id]
            stock = product.get("stock")
            if stock is not None and stock < quantity:
                raise InsufficientStock(product.get("name", str(product_id)), quantity, stock)
        return checked

    def _check_order_code(self, code: str, session=None) -> None:
        if ObjectId.is_valid(code):
            # would always resolve as a native id
            raise InvalidInput("Order ID must not look like an internal ID")
        if self.orders.find_one(ref_filter(ByCode(code)), {"_id": 1}, **session_kwargs(session)):
            raise Conflict("Order with this order ID already exists")

    def create_order(self, payload: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        items = payload.get("items") or []
        if not items:
            raise InvalidInput("Order must have at least one item")

        header = {k: v for k, v in payload.items() if k != "items" and v is not None}
        header.setdefault("order_id", generate_order_code())
        header["order_id"] = str(header["order_id"])
        header["user_id"] = user_id
        order_doc = OrderSchema(**header).model_dump()

        with transaction(self.db, self.transactions) as session:
            self._check_order_code(order_doc["order_id"], session)
            checked = self._check_items(items, session)

            try:
                order_oid = ObjectId(create_document(self.db, "order", order_doc, session=session))
            except DuplicateKeyError:
                raise Conflict("Order with this order ID already exists")

            lines = []
            for item, product in checked:
                price = float(item["price"])
                quantity = int(item["quantity"])
                images = product.get("images") or []
                line = OrderItemSchema(
                    product_name=item.get("product_name") or product.get("name"),
                    product_image=item.get("product_image") or (images[0] if images else None),
                    quantity=quantity,
                    price=price,
                    subtotal=price * quantity,
                ).model_dump()
                line["order_id"] = order_oid
                line["product_id"] = product["_id"]
                create_document(self.db, "order_item", line, session=session)
                lines.append(line)

            self._adjust_stock(lines, -1, session)
            order = self.orders.find_one({"_id": order_oid}, **session_kwargs(session))

        logger.info("Order %s created with %d line(s)", order["order_id"], len(lines))
        return order

    def get_order(self, ref: OrderRef) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
        order = self._find(ref)
        items = list(self.items.find({"order_id": order["_id"]}))
        return order, items

    def _list(self, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
        skip, limit = paginate(page, limit)
        orders = list(self.orders.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit))
        count = self.orders.count_documents(query)
        return {"orders": orders, "total_count": count, "total_pages": total_pages(count, limit)}

    def list_user_orders(self, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        return self._list({"user_id": user_id}, page, limit)

    def list_orders(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if customer_phone:
            query["customer_phone"] = {"$regex": customer_phone, "$options": "i"}
        return self._list(query, page, limit)

    def update_order_status(self, ref: OrderRef, new_status: str) -> Dict[str, Any]:
        if new_status not in ORDER_STATUSES:
            raise InvalidInput(f"Invalid order status: {new_status}")

        with transaction(self.db, self.transactions) as session:
            order = self._find(ref, session)

            if new_status == "cancelled" and order.get("status") != "cancelled":
                self._restore_stock(order, session)

            update_fields: Dict[str, Any] = {"status": new_status, "updated_at": utcnow()}
            payment_status = derive_payment_status(order, new_status)
            if payment_status is not None:
                update_fields["payment_status"] = payment_status

            updated = self.orders.find_one_and_update(
                {"_id": order["_id"]},
                {"$set": update_fields},
                return_document=ReturnDocument.AFTER,
                **session_kwargs(session),
            )
        if not updated:
            raise Internal("Failed to update order")

        logger.info("Order %s status %s -> %s", order.get("order_id"), order.get("status"), new_status)
        return updated

    def delete_order(self, ref: OrderRef) -> None:
        with transaction(self.db, self.transactions) as session:
            order = self._find(ref, session)
            if order.get("status") != "cancelled":
                self._restore_stock(order, session)
            self.items.delete_many({"order_id": order["_id"]}, **session_kwargs(session))
            self.orders.delete_one({"_id": order["_id"]}, **session_kwargs(session))
        logger.info("Order %s deleted", order.get("order_id"))

    def update_payment_status(self, ref: OrderRef, payment_status: str) -> Dict[str, Any]:
        if payment_status not in PAYMENT_STATUSES:
            raise InvalidInput(f"Invalid payment status: {payment_status}")
        updated = self.orders.find_one_and_update(
            ref_filter(ref),
            {"$set": {"payment_status": payment_status, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("Order not found")
        return updated
