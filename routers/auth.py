import logging
import secrets
import string
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from database import create_document, now_utc
from helpers import get_db, get_user_by_id, ok, serialize
from schemas import ExperienceLevel, GameSystem, Preferences, User as UserSchema
from security import create_access_token, get_current_user, get_password_hash, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    username: str = Field(..., min_length=3, max_length=30)
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    timezone: str = "UTC"
    experience_level: ExperienceLevel = "beginner"
    preferred_systems: List[GameSystem] = []


class LoginPayload(BaseModel):
    email: EmailStr
    password: str


def generate_referral_code(username: str) -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(6))
    return f"{username[:3].upper()}{suffix}"


def auth_response(user: dict):
    token = create_access_token({"sub": str(user["_id"])})
    return {"user": serialize(user), "token": token}


@router.post("/register", status_code=201)
def register(payload: RegisterPayload):
    db = get_db()
    email = payload.email.lower()
    username = payload.username.strip()

    existing = db["user"].find_one({"$or": [{"email": email}, {"username": username}]})
    if existing:
        field = "email" if existing.get("email") == email else "username"
        raise HTTPException(status_code=400, detail=f"User with this {field} already exists")

    user = UserSchema(
        email=email,
        username=username,
        password_hash=get_password_hash(payload.password),
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        role="player",
        timezone=payload.timezone,
        preferences=Preferences(
            experience_level=payload.experience_level,
            systems=payload.preferred_systems,
        ),
        referral_code=generate_referral_code(username),
        is_active=True,
    )
    inserted_id = create_document("user", user)
    logger.info("Registered user %s (%s)", username, inserted_id)

    return ok(auth_response(get_user_by_id(inserted_id)), "Registration successful")


@router.post("/login")
def login(payload: LoginPayload):
    db = get_db()
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=401, detail="Your account is currently inactive. Please contact support.")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": now_utc()}})
    user = db["user"].find_one({"_id": user["_id"]})
    return ok(auth_response(user), "Login successful")


@router.get("/me")
def me(current_user=Depends(get_current_user)):
    return ok(serialize(current_user))


@router.post("/logout")
def logout(current_user=Depends(get_current_user)):
    # Tokens are stateless; the client drops its copy.
    return ok(message="Logged out")
