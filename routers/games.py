import logging
import re
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import as_utc, create_document, now_utc
from helpers import get_db, ok, oid, pagination, serialize, user_summaries
from schemas import (
    AgeRestriction,
    BookingType,
    CancellationPolicy,
    ExperienceLevel,
    Game as GameSchema,
    GameSystem,
    GM_ROLES,
    Location,
    OnlineDetails,
    Platform,
    Schedule,
    SessionType,
)
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/games", tags=["games"])

SORT_FIELDS = {"date": "schedule.start_time", "price": "price", "created": "created_at"}


class CreateGamePayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    party_notes: str = Field("", max_length=500)
    system: GameSystem
    custom_system: Optional[str] = Field(None, max_length=50)
    platform: Platform
    session_type: SessionType
    experience_level: ExperienceLevel
    price: float = Field(..., ge=0)
    currency: str = "USD"
    capacity: int = Field(..., ge=1, le=20)
    schedule: Schedule
    location: Optional[Location] = None
    online_details: Optional[OnlineDetails] = None
    tags: List[str] = []
    age_restriction: Optional[AgeRestriction] = None
    booking_type: BookingType = "instant"
    cancellation_policy: CancellationPolicy = CancellationPolicy()
    is_active: bool = True
    is_early_bird: bool = False
    early_bird_discount: Optional[float] = Field(None, ge=0, le=50)
    banner_image: Optional[str] = Field(None, max_length=200)
    icon_image: Optional[str] = Field(None, max_length=200)


class UpdateGamePayload(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=2000)
    party_notes: Optional[str] = Field(None, max_length=500)
    system: Optional[GameSystem] = None
    custom_system: Optional[str] = Field(None, max_length=50)
    platform: Optional[Platform] = None
    session_type: Optional[SessionType] = None
    experience_level: Optional[ExperienceLevel] = None
    price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=1, le=20)
    schedule: Optional[Schedule] = None
    location: Optional[Location] = None
    online_details: Optional[OnlineDetails] = None
    tags: Optional[List[str]] = None
    age_restriction: Optional[AgeRestriction] = None
    booking_type: Optional[BookingType] = None
    cancellation_policy: Optional[CancellationPolicy] = None
    is_active: Optional[bool] = None
    is_early_bird: Optional[bool] = None
    early_bird_discount: Optional[float] = Field(None, ge=0, le=50)
    banner_image: Optional[str] = Field(None, max_length=200)
    icon_image: Optional[str] = Field(None, max_length=200)


def game_rule_errors(game: dict) -> List[str]:
    """Cross-field rules a single field validator cannot express."""
    errors = []
    platform = game.get("platform")
    location = game.get("location") or {}
    online = game.get("online_details") or {}

    if game.get("system") == "other" and not (game.get("custom_system") or "").strip():
        errors.append('Custom system is required when system is "other"')
    if platform in ("in_person", "hybrid"):
        if not (location.get("address") and location.get("city") and location.get("country")):
            errors.append("Location details are required for in-person or hybrid games")
    if platform in ("online", "hybrid") and not online.get("platform"):
        errors.append("Online platform is required for online or hybrid games")

    coords = location.get("coordinates")
    if coords and not (len(coords) == 2 and -180 <= coords[0] <= 180 and -90 <= coords[1] <= 90):
        errors.append("Invalid coordinates")

    schedule = game.get("schedule") or {}
    start, end = schedule.get("start_time"), schedule.get("end_time")
    if start and end and as_utc(end) <= as_utc(start):
        errors.append("End time must be after start time")
    recurring = schedule.get("recurring") or {}
    if start and recurring.get("end_date") and as_utc(recurring["end_date"]) <= as_utc(start):
        errors.append("Recurring end date must be after start time")

    ages = game.get("age_restriction") or {}
    if ages.get("min_age") and ages.get("max_age") and ages["max_age"] < ages["min_age"]:
        errors.append("Maximum age must be greater than or equal to minimum age")

    if game.get("early_bird_discount") and not game.get("is_early_bird"):
        errors.append("Early bird discount can only be set when early bird is enabled")
    return errors


def normalize_schedule(schedule: dict) -> dict:
    schedule = dict(schedule)
    schedule["start_time"] = as_utc(schedule["start_time"])
    schedule["end_time"] = as_utc(schedule["end_time"])
    if schedule.get("recurring") and schedule["recurring"].get("end_date"):
        schedule["recurring"] = {**schedule["recurring"], "end_date": as_utc(schedule["recurring"]["end_date"])}
    return schedule


def with_gm(games: List[dict]) -> List[dict]:
    gms = user_summaries(g.get("gm_id") for g in games)
    out = []
    for g in games:
        item = serialize(g)
        item["gm"] = gms.get(g.get("gm_id"))
        out.append(item)
    return out


def get_game_or_404(game_id: str) -> dict:
    game = get_db()["game"].find_one({"_id": oid(game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    return game


def require_owner_or_admin(game: dict, user: dict, action: str):
    if game.get("gm_id") != str(user["_id"]) and user.get("role") != "admin":
        raise HTTPException(status_code=403, detail=f"You can only {action} your own games")


@router.get("")
def list_games(
    keyword: Optional[str] = None,
    system: Optional[str] = None,
    platform: Optional[str] = None,
    session_type: Optional[str] = None,
    experience_level: Optional[str] = None,
    price_min: Optional[float] = None,
    price_max: Optional[float] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    tags: Optional[List[str]] = Query(None),
    available_seats: Optional[int] = Query(None, ge=0),
    age_appropriate: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort_by: str = Query("date", pattern="^(date|price|created)$"),
    sort_order: str = Query("asc", pattern="^(asc|desc)$"),
):
    query = {"is_active": True}
    clauses = []

    if keyword:
        clauses.append({"$or": [
            {"title": {"$regex": re.escape(keyword), "$options": "i"}},
            {"description": {"$regex": re.escape(keyword), "$options": "i"}},
            {"tags": {"$regex": re.escape(keyword), "$options": "i"}},
        ]})
    if age_appropriate:
        clauses.append({"$or": [
            {"age_restriction.max_age": {"$exists": False}},
            {"age_restriction.max_age": None},
            {"age_restriction.max_age": {"$gte": 18}},
        ]})
    if clauses:
        query["$and"] = clauses

    for field, value in (("system", system), ("platform", platform),
                         ("session_type", session_type), ("experience_level", experience_level)):
        if value:
            query[field] = value

    if price_min is not None or price_max is not None:
        query["price"] = {}
        if price_min is not None:
            query["price"]["$gte"] = price_min
        if price_max is not None:
            query["price"]["$lte"] = price_max

    if start_date or end_date:
        query["schedule.start_time"] = {}
        if start_date:
            query["schedule.start_time"]["$gte"] = as_utc(start_date)
        if end_date:
            query["schedule.start_time"]["$lte"] = as_utc(end_date)

    if tags:
        query["tags"] = {"$in": tags}
    if available_seats is not None:
        query["available_seats"] = {"$gte": available_seats}

    db = get_db()
    direction = -1 if sort_order == "desc" else 1
    docs = list(
        db["game"].find(query)
        .sort(SORT_FIELDS[sort_by], direction)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    total = db["game"].count_documents(query)
    return ok({"data": with_gm(docs), "pagination": pagination(page, limit, total)})


@router.get("/my-games")
def my_games(current_user=Depends(get_current_user)):
    docs = list(get_db()["game"].find({"gm_id": str(current_user["_id"])}).sort("created_at", -1))
    return ok(with_gm(docs), "My games fetched successfully")


@router.get("/gm/{gm_id}")
def games_by_gm(gm_id: str, page: int = Query(1, ge=1), limit: int = Query(12, ge=1, le=100)):
    db = get_db()
    query = {"gm_id": gm_id, "is_active": True}
    docs = list(
        db["game"].find(query)
        .sort("schedule.start_time", 1)
        .skip((page - 1) * limit)
        .limit(limit)
    )
    total = db["game"].count_documents(query)
    return ok({"data": with_gm(docs), "pagination": pagination(page, limit, total)})


@router.get("/{game_id}")
def get_game(game_id: str):
    return ok(with_gm([get_game_or_404(game_id)])[0])


@router.post("", status_code=201)
def create_game(payload: CreateGamePayload, current_user=Depends(get_current_user)):
    if current_user.get("role") not in GM_ROLES:
        raise HTTPException(status_code=403, detail="Only approved GMs can create games")

    data = payload.model_dump()
    errors = game_rule_errors(data)
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation failed", "errors": errors})

    data["schedule"] = normalize_schedule(data["schedule"])
    data["currency"] = data["currency"].upper()
    game = GameSchema(
        **data,
        gm_id=str(current_user["_id"]),
        booked_seats=0,
        available_seats=payload.capacity,
    )
    game_id = create_document("game", game)

    get_db()["user"].update_one({"_id": current_user["_id"]}, {"$inc": {"stats.games_hosted": 1}})
    logger.info("Game %s created by %s", game_id, current_user.get("username"))

    return ok(with_gm([get_game_or_404(game_id)])[0], "Game created successfully")


@router.put("/{game_id}")
def update_game(game_id: str, payload: UpdateGamePayload, current_user=Depends(get_current_user)):
    game = get_game_or_404(game_id)
    require_owner_or_admin(game, current_user, "update")

    updates = payload.model_dump(exclude_unset=True)
    updates = {k: v for k, v in updates.items() if v is not None}
    if "currency" in updates:
        updates["currency"] = updates["currency"].upper()
    if "schedule" in updates:
        updates["schedule"] = normalize_schedule(updates["schedule"])

    merged = {**game, **updates}
    errors = game_rule_errors(merged)
    booked = game.get("booked_seats", 0)
    if merged["capacity"] < booked:
        errors.append("Capacity cannot be lower than the number of booked seats")
    if errors:
        raise HTTPException(status_code=400, detail={"message": "Validation failed", "errors": errors})

    if updates:
        updates["available_seats"] = merged["capacity"] - booked
        updates["updated_at"] = now_utc()
        # booked_seats is part of the filter so a concurrent booking makes this a no-op
        res = get_db()["game"].update_one({"_id": game["_id"], "booked_seats": booked}, {"$set": updates})
        if res.matched_count == 0:
            raise HTTPException(status_code=409, detail="Game was booked while updating, please retry")

    return ok(with_gm([get_game_or_404(game_id)])[0], "Game updated successfully")


@router.delete("/{game_id}")
def delete_game(game_id: str, current_user=Depends(get_current_user)):
    game = get_game_or_404(game_id)
    require_owner_or_admin(game, current_user, "delete")

    if game.get("booked_seats", 0) > 0:
        raise HTTPException(status_code=400, detail="Cannot delete game with existing bookings")

    get_db()["game"].delete_one({"_id": game["_id"]})
    return ok(message="Game deleted successfully")
