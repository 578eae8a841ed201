from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from errors import Forbidden, Unauthorized

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


@dataclass(frozen=True)
class Principal:
    id: str
    role: str
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(user: Dict[str, Any]) -> str:
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "role": user.get("role", "customer"),
        "exp": datetime.now(timezone.utc) + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALG)


def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> Principal:
    if not authorization:
        raise Unauthorized("Authentication required")
    token = authorization.replace("Bearer ", "").strip()
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        raise Unauthorized("Invalid token")

    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise Unauthorized("Invalid token")
    user = request.app.state.db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise Unauthorized("Invalid token user")
    if user.get("status") == "inactive":
        raise Forbidden("Account is inactive")
    return Principal(id=str(user["_id"]), role=user.get("role", "customer"), email=user.get("email"))


def require_admin(user: Principal = Depends(get_current_user)) -> Principal:
    if not user.is_admin:
        raise Forbidden("Admin only")
    return user


# Order access policies

def is_owner(principal: Principal, order: Dict[str, Any]) -> bool:
    return order.get("user_id") is not None and str(order.get("user_id")) == principal.id


def ensure_can_view_order(principal: Principal, order: Dict[str, Any]) -> None:
    if not principal.is_admin and not is_owner(principal, order):
        raise Forbidden("You do not have permission to view this order")


def ensure_can_update_order_status(principal: Principal, order: Dict[str, Any], new_status: str) -> None:
    # owners may only cancel their own orders
    if principal.is_admin:
        return
    if new_status == "cancelled" and is_owner(principal, order):
        return
    raise Forbidden("You do not have permission to update this order")


def ensure_can_delete_order(principal: Principal) -> None:
    if not principal.is_admin:
        raise Forbidden("You do not have permission to delete orders")
