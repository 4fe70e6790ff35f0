"""
Create the first admin account.

    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=... python seed_admin.py
"""
import logging
import os
import sys

import database
from database import create_document, ensure_indexes
from routers.auth import generate_referral_code
from schemas import Preferences, User as UserSchema
from security import get_password_hash

logger = logging.getLogger("seed_admin")


def seed_admin(email: str, password: str, username: str = "admin") -> str:
    """Insert the admin user unless the email is taken. Returns the user id."""
    db = database.db
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    ensure_indexes()

    email = email.lower()
    existing = db["user"].find_one({"email": email})
    if existing:
        if existing.get("role") != "admin":
            db["user"].update_one({"_id": existing["_id"]}, {"$set": {"role": "admin"}})
            logger.info("Promoted existing user %s to admin", email)
        else:
            logger.info("Admin %s already exists", email)
        return str(existing["_id"])

    admin = UserSchema(
        email=email,
        username=username,
        password_hash=get_password_hash(password),
        first_name="Site",
        last_name="Admin",
        role="admin",
        bio="System Administrator",
        preferences=Preferences(
            experience_level="advanced",
            systems=["dnd_5e", "pathfinder_2e", "call_of_cthulhu", "vampire_masquerade", "cyberpunk_red"],
            platforms=["online", "in_person", "hybrid"],
        ),
        referral_code=generate_referral_code(username),
    )
    user_id = create_document("user", admin)
    logger.info("Created admin %s (%s)", email, user_id)
    return user_id


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    admin_email = os.getenv("ADMIN_EMAIL")
    admin_password = os.getenv("ADMIN_PASSWORD")
    if not admin_email or not admin_password:
        logger.error("ADMIN_EMAIL and ADMIN_PASSWORD must be set")
        sys.exit(1)
    seed_admin(admin_email, admin_password, os.getenv("ADMIN_USERNAME", "admin"))
