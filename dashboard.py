"""Read-only admin aggregates over orders, users and the catalog.

Revenue counts orders in ``delivered``, the only status the order workflow
maps to a paid payment.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pymongo import DESCENDING
from pymongo.database import Database

from database import get_documents

REVENUE_STATUS = "delivered"
RECENT_ORDERS_LIMIT = 10


def month_window(now: datetime, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    """Start of the current and the next calendar month in ``tz``, as naive UTC."""
    local = now.astimezone(tz)
    start = local.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    # MongoDB hands back naive UTC datetimes
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


class DashboardService:
    def __init__(self, db: Database, tz_name: str = "UTC", clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.tz = ZoneInfo(tz_name)
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _income(self, query: Dict[str, Any]) -> float:
        rows = list(self.db["order"].aggregate([
            {"$match": query},
            {"$group": {"_id": None, "total": {"$sum": "$total"}}},
        ]))
        return rows[0]["total"] if rows else 0

    def order_counts(self) -> Dict[str, int]:
        orders = self.db["order"]
        return {
            "total_orders": orders.count_documents({}),
            "total_pending_orders": orders.count_documents({"status": "pending"}),
        }

    def income(self) -> Dict[str, float]:
        start, end = month_window(self.clock(), self.tz)
        return {
            "total_income": self._income({"status": REVENUE_STATUS}),
            "current_month_income": self._income({
                "status": REVENUE_STATUS,
                "created_at": {"$gte": start, "$lt": end},
            }),
        }

    def overview(self) -> Dict[str, Any]:
        return {
            **self.order_counts(),
            **self.income(),
            "total_users": self.db["user"].count_documents({}),
        }

    def recent_orders(self):
        return get_documents(self.db, "order", limit=RECENT_ORDERS_LIMIT, sort=[("created_at", DESCENDING)])

    def products_per_category(self) -> List[Dict[str, Any]]:
        rows = self.db["category"].aggregate([
            {"$lookup": {
                "from": "product",
                "localField": "_id",
                "foreignField": "category_id",
                "as": "products",
            }},
            {"$project": {"_id": 0, "category": "$name", "count": {"$size": "$products"}}},
            {"$sort": {"category": 1}},
        ])
        return list(rows)

    def statistics(self) -> Dict[str, Any]:
        total_orders = self.db["order"].count_documents({})
        delivered = self.db["order"].count_documents({"status": REVENUE_STATUS})
        return {
            "total_products": self.db["product"].count_documents({}),
            "total_categories": self.db["category"].count_documents({}),
            "order_completion_rate": delivered / total_orders if total_orders else 0,
            "products_per_category": self.products_per_category(),
        }
