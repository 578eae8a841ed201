"""Bank-transfer payments through the ZaloPay-style provider.

Outbound: :class:`PaymentGateway` asks the provider to open a payment for an
order. Inbound: :class:`PaymentCallbackHandler` verifies the provider's
callback and marks the order as paid. The provider only understands its
own envelopes, so the callback never raises.
"""
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests
from pymongo.errors import PyMongoError

from database import serialize_doc
from errors import ApiError, Internal
from orders import OrderService, parse_order_ref

logger = logging.getLogger(__name__)


def sign(key: str, message: str) -> str:
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def failure(message: str) -> Dict[str, Any]:
    return {"return_code": 0, "return_message": message}


class PaymentGateway:
    def __init__(
        self,
        app_id: str,
        key1: str,
        endpoint: str,
        callback_url: str = "",
        redirect_url: str = "",
        timeout: float = 10,
        http=None,
    ):
        self.app_id = app_id
        self.key1 = key1
        self.endpoint = endpoint
        self.callback_url = callback_url
        self.redirect_url = redirect_url
        self.timeout = timeout
        self.http = http or requests.Session()

    def build_request(self, order: Dict[str, Any], items: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        now = datetime.now()
        code = order["order_id"]
        embed_data = json.dumps({"orderId": code, "redirecturl": self.redirect_url})
        item = json.dumps([
            {
                "itemid": str(line.get("product_id")),
                "itemname": line.get("product_name"),
                "itemprice": int(line.get("price", 0)),
                "itemquantity": int(line.get("quantity", 0)),
            }
            for line in items or []
        ])
        data = {
            "app_id": self.app_id,
            "app_trans_id": f"{now:%y%m%d}_{code}",
            "app_user": order.get("user_id") or order.get("customer_phone") or "guest",
            "app_time": int(time.time() * 1000),
            "amount": int(round(order.get("total", 0))),
            "embed_data": embed_data,
            "item": item,
            "description": f"Payment for order #{code}",
            "bank_code": "",
        }
        if self.callback_url:
            data["callback_url"] = self.callback_url
        mac_input = "|".join(str(data[k]) for k in (
            "app_id", "app_trans_id", "app_user", "amount", "app_time", "embed_data", "item"
        ))
        data["mac"] = sign(self.key1, mac_input)
        return data

    def create_payment(self, order: Dict[str, Any], items: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        data = self.build_request(order, items)
        logger.info("Requesting payment for order %s", order["order_id"])
        try:
            response = self.http.post(self.endpoint, data=data, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Payment provider request failed for order %s: %s", order["order_id"], exc)
            raise Internal("Failed to create payment")
        return response.json()


class PaymentCallbackHandler:
    def __init__(self, orders: OrderService, key2: str):
        self.orders = orders
        self.key2 = key2

    def verify(self, data: str, mac: str) -> bool:
        try:
            expected = sign(self.key2, data)
            given = mac.encode("utf-8")
        except UnicodeEncodeError:
            # lone surrogates from JSON escapes cannot match a hex digest
            return False
        return hmac.compare_digest(expected.encode("utf-8"), given)

    def handle(self, data: Any, mac: Any) -> Dict[str, Any]:
        """Apply a provider callback; always answers with an envelope, never raises."""
        if not isinstance(data, str) or not isinstance(mac, str):
            logger.warning("Rejected payment callback: data and mac must be strings")
            return failure("Invalid callback payload")
        if not self.verify(data, mac):
            logger.warning("Rejected payment callback: MAC mismatch")
            return failure("MAC not equal")

        try:
            payload = json.loads(data)
            embed = json.loads(payload["embed_data"])
            ref = parse_order_ref(embed["orderId"])

            self.orders.update_payment_status(ref, "paid")
            order = self.orders.update_order_status(ref, "processing")
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Malformed payment callback: %s", exc)
            return failure(str(exc))
        except ApiError as exc:
            logger.warning("Payment callback could not be applied: %s", exc.message)
            return failure(exc.message)
        except PyMongoError as exc:
            logger.exception("Database failure while applying payment callback")
            return failure(str(exc))

        logger.info("Payment confirmed for order %s", order.get("order_id"))
        return {"status": "success", "data": {"order": serialize_doc(order)}}
