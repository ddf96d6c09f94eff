# Credential store: administrator records in the `admins` collection

import logging
from typing import Optional

from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from . import config
from .database import new_id, utcnow
from .models import AdminResponse, AdminRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class AdminExistsError(Exception):
    """Raised when an administrator with the same email is already registered."""


def hash_password(password: str) -> str:
    if len(password.encode("utf-8")) > 72:
        raise ValueError("Password cannot exceed 72 bytes")
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def find_by_email(db, email: str) -> Optional[dict]:
    return db.admins.find_one({"email": email.strip().lower()})


def find_by_id(db, admin_id: str) -> Optional[dict]:
    return db.admins.find_one({"_id": admin_id})


def count_admins(db) -> int:
    return db.admins.count_documents({})


def create_admin(db, name: str, email: str, password: str,
                 role: AdminRole = AdminRole.ADMIN,
                 department: Optional[str] = None) -> dict:
    email = email.strip().lower()
    if db.admins.find_one({"email": email}):
        raise AdminExistsError(email)
    doc = {
        "_id": new_id(),
        "name": name.strip(),
        "email": email,
        "hashed_password": hash_password(password),
        "role": AdminRole(role).value,
        "department": department or config.DEFAULT_DEPARTMENT,
        "createdAt": utcnow(),
    }
    try:
        db.admins.insert_one(doc)
    except DuplicateKeyError:
        raise AdminExistsError(email)
    logger.info("Created administrator %s (%s)", email, doc["role"])
    return doc


def authenticate(db, email: str, password: str) -> Optional[dict]:
    admin = find_by_email(db, email)
    if not admin or not verify_password(password, admin["hashed_password"]):
        return None
    return admin


def admin_to_response(admin: dict) -> AdminResponse:
    return AdminResponse(
        id=str(admin["_id"]), name=admin["name"], email=admin["email"],
        role=admin["role"], department=admin.get("department"),
        createdAt=admin["createdAt"])
