import logging
from typing import Any, Dict, Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import create_document, parse_object_id, utcnow
from errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthorized
from schemas import User as UserSchema
from security import create_token, hash_password, verify_password

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "phone", "address", "avatar")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "phone": user.get("phone"),
        "address": user.get("address"),
        "avatar": user.get("avatar"),
        "status": user.get("status", "active"),
        "role": user.get("role", "customer"),
    }


class UserService:
    def __init__(self, db: Database):
        self.db = db
        self.col = db["user"]

    def _create(self, name: str, email: str, password: str, role: str = "customer", **profile) -> Dict[str, Any]:
        if self.col.find_one({"email": email}):
            raise Conflict("Email already registered")
        user = UserSchema(name=name, email=email, password_hash=hash_password(password), role=role, **profile)
        user_id = create_document(self.db, "user", user)
        return self.col.find_one({"_id": ObjectId(user_id)})

    def register(self, data: Dict[str, Any]) -> Dict[str, Any]:
        profile = {k: data[k] for k in ("phone", "address", "avatar") if data.get(k) is not None}
        user = self._create(data["name"], data["email"], data["password"], **profile)
        logger.info("User %s registered", user["_id"])
        return {"token": create_token(user), "user": public_user(user)}

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.col.find_one({"email": email})
        if not user or not verify_password(password, user.get("password_hash", "")):
            raise Unauthorized("Invalid credentials")
        if user.get("status") == "inactive":
            raise Forbidden("Account is inactive")
        return {"token": create_token(user), "user": public_user(user)}

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.col.find_one({"_id": parse_object_id(user_id, "user ID")})
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        updates = {k: v for k, v in updates.items() if k in PROFILE_FIELDS and v is not None}
        if not updates:
            raise InvalidInput("No updates provided")
        updated = self.col.find_one_and_update(
            {"_id": parse_object_id(user_id, "user ID")},
            {"$set": {**updates, "updated_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFound("User not found")
        return updated

    def update_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.get_user(user_id)
        if not verify_password(current_password, user.get("password_hash", "")):
            raise InvalidInput("Current password is incorrect")
        self.col.update_one(
            {"_id": user["_id"]},
            {"$set": {"password_hash": hash_password(new_password), "updated_at": utcnow()}},
        )

    def ensure_admin(self, email: str, password: str, name: str = "Administrator") -> Optional[Dict[str, Any]]:
        if self.col.find_one({"email": email}):
            return None
        admin = self._create(name, email, password, role="admin")
        logger.info("Bootstrapped admin account %s", email)
        return admin
