import logging
import re
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import now_utc
from helpers import get_db, get_user_by_id, ok, pagination, serialize, split_param
from notifications import notify_many
from schemas import FeaturedPrompt, GMApplication, Preferences, Pricing, Profile
from security import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])

FEATURED_PROMPTS = [
    {"id": "became_gm_because", "text": "I became a GM because"},
    {"id": "favorite_system", "text": "My favorite system of all time is"},
    {"id": "best_moment", "text": "My best gaming moment was when"},
    {"id": "character_type", "text": "I always play the character who"},
    {"id": "dm_style", "text": "My DM style can best be described as"},
    {"id": "game_goal", "text": "What I want most from a game is"},
    {"id": "player_pet_peeve", "text": "My biggest pet peeve as a player is"},
    {"id": "memorable_npc", "text": "The most memorable NPC I created was"},
    {"id": "campaign_dream", "text": "My dream campaign would be"},
    {"id": "gaming_philosophy", "text": "My gaming philosophy is"},
]
PROMPT_IDS = {p["id"] for p in FEATURED_PROMPTS}

GM_PUBLIC_FIELDS = {
    "username": 1, "first_name": 1, "last_name": 1, "avatar": 1, "bio": 1, "pronouns": 1,
    "stats": 1, "identity_tags": 1, "game_styles": 1, "themes": 1, "created_at": 1,
    "timezone": 1, "pricing": 1, "role": 1,
}


class UpdateProfilePayload(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=2500)
    timezone: Optional[str] = None
    pronouns: Optional[List[str]] = None
    identity_tags: Optional[List[str]] = None
    game_styles: Optional[List[str]] = None
    themes: Optional[List[str]] = None
    preferences: Optional[dict] = None
    pricing: Optional[dict] = None
    profile: Optional[Profile] = None


class ApplyGMPayload(BaseModel):
    experience: str = Field(..., min_length=1, max_length=2000)
    preferred_systems: List[str] = Field(..., min_length=1)
    availability: str = Field(..., min_length=1, max_length=1000)
    sample_game_description: str = Field(..., min_length=1, max_length=2000)
    references: str = Field("", max_length=1000)


class FeaturedPromptsPayload(BaseModel):
    featured_prompts: List[FeaturedPrompt]


@router.get("/profile")
def get_profile(current_user=Depends(get_current_user)):
    return ok(serialize(current_user))


@router.put("/profile")
def update_profile(payload: UpdateProfilePayload, current_user=Depends(get_current_user)):
    update = payload.model_dump(exclude_unset=True, exclude={"preferences", "pricing"})
    update = {k: v for k, v in update.items() if v is not None}

    # preferences and pricing are merged, not replaced
    if payload.preferences:
        merged = {**(current_user.get("preferences") or {}), **payload.preferences}
        update["preferences"] = Preferences(**merged).model_dump()
    if payload.pricing:
        merged = {**(current_user.get("pricing") or {}), **payload.pricing}
        update["pricing"] = Pricing(**merged).model_dump()

    if update:
        update["updated_at"] = now_utc()
        get_db()["user"].update_one({"_id": current_user["_id"]}, {"$set": update})
    return ok(serialize(get_user_by_id(str(current_user["_id"]))))


@router.post("/apply-gm")
def apply_gm(payload: ApplyGMPayload, current_user=Depends(get_current_user)):
    role = current_user.get("role")
    if role == "approved_gm":
        raise HTTPException(status_code=400, detail="You are already an approved GM")
    if role == "gm_applicant":
        raise HTTPException(status_code=400, detail="You have already submitted a GM application")

    application = GMApplication(**payload.model_dump(), status="pending", submitted_at=now_utc())
    db = get_db()
    db["user"].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"role": "gm_applicant", "gm_application": application.model_dump(), "updated_at": now_utc()}},
    )

    admin_ids = [str(a["_id"]) for a in db["user"].find({"role": "admin"}, {"_id": 1})]
    notify_many(
        admin_ids,
        type="admin_action",
        title="New GM Application",
        message=f"{current_user.get('username')} applied to become a Game Master",
        category="system",
        related_id=str(current_user["_id"]),
        action_url="/admin/gm-applications",
    )
    logger.info("GM application submitted by %s", current_user.get("username"))

    return ok(serialize(get_user_by_id(str(current_user["_id"]))), "GM application submitted successfully")


@router.get("/featured-prompts")
def list_featured_prompts(current_user=Depends(get_current_user)):
    return ok(FEATURED_PROMPTS)


@router.put("/featured-prompts")
def update_featured_prompts(payload: FeaturedPromptsPayload, current_user=Depends(get_current_user)):
    if len(payload.featured_prompts) != 2:
        raise HTTPException(status_code=400, detail="You must select exactly 2 featured prompts")
    for prompt in payload.featured_prompts:
        if prompt.prompt_id not in PROMPT_IDS:
            raise HTTPException(status_code=400, detail=f"Unknown prompt: {prompt.prompt_id}")
        if not prompt.custom_text.strip():
            raise HTTPException(status_code=400, detail="Each featured prompt needs custom text")

    get_db()["user"].update_one(
        {"_id": current_user["_id"]},
        {"$set": {"featured_prompts": [p.model_dump() for p in payload.featured_prompts], "updated_at": now_utc()}},
    )
    return ok(serialize(get_user_by_id(str(current_user["_id"]))))


@router.get("/game-masters")
def list_game_masters(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = None,
    timezone: Optional[str] = None,
    language: Optional[str] = None,
    game_styles: Optional[str] = None,
    themes: Optional[str] = None,
    system: Optional[str] = None,
):
    query = {"role": "approved_gm", "is_active": {"$ne": False}}
    if search:
        query["$or"] = [
            {"username": {"$regex": re.escape(search), "$options": "i"}},
            {"first_name": {"$regex": re.escape(search), "$options": "i"}},
            {"last_name": {"$regex": re.escape(search), "$options": "i"}},
            {"bio": {"$regex": re.escape(search), "$options": "i"}},
        ]
    if timezone:
        query["timezone"] = timezone
    if language:
        query["profile.languages"] = {"$in": split_param(language)}
    if game_styles:
        query["game_styles"] = {"$in": split_param(game_styles)}
    if themes:
        query["themes"] = {"$in": split_param(themes)}
    if system:
        query["preferences.systems"] = {"$in": split_param(system)}

    db = get_db()
    docs = (
        db["user"].find(query, GM_PUBLIC_FIELDS)
        .sort("created_at", -1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    total = db["user"].count_documents(query)
    return ok({"data": [serialize(d) for d in docs], "pagination": pagination(page, limit, total)})


@router.get("/{user_id}/public")
def get_public_profile(user_id: str, current_user=Depends(get_current_user)):
    user = get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    public = serialize(user)
    for private in ("email", "gm_application", "referral_credits", "last_login_at"):
        public.pop(private, None)
    return ok(public)


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[str] = None,
    search: Optional[str] = None,
    current_user=Depends(get_current_user),
):
    require_admin(current_user)
    query = {}
    if role:
        query["role"] = role
    if search:
        query["$or"] = [
            {"username": {"$regex": re.escape(search), "$options": "i"}},
            {"email": {"$regex": re.escape(search), "$options": "i"}},
            {"first_name": {"$regex": re.escape(search), "$options": "i"}},
            {"last_name": {"$regex": re.escape(search), "$options": "i"}},
        ]
    db = get_db()
    docs = db["user"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    total = db["user"].count_documents(query)
    return ok({"users": [serialize(d) for d in docs], "pagination": pagination(page, limit, total)})
