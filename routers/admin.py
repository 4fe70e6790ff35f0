import logging
import re
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import now_utc
from helpers import get_db, get_user_by_id, ok, oid, pagination, serialize, user_summaries
from notifications import notify, notify_many
from schemas import NotificationMetadata, Setting, UserRole
from security import get_admin_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ApplicationDecisionPayload(BaseModel):
    action: Literal["approve", "reject"]
    notes: Optional[str] = Field(None, max_length=2000)


class RolePayload(BaseModel):
    role: UserRole


class StatusPayload(BaseModel):
    is_active: bool


class DeleteGamePayload(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    admin_notes: Optional[str] = Field(None, max_length=2000)


class UpdateSettingsPayload(BaseModel):
    site_name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    maintenance_mode: Optional[bool] = None
    registration_enabled: Optional[bool] = None
    max_games_per_user: Optional[int] = Field(None, ge=1, le=20)
    session_duration: Optional[int] = Field(None, ge=60, le=480)
    auto_approve_gms: Optional[bool] = None
    email_notifications: Optional[bool] = None
    system_notifications: Optional[bool] = None


def load_settings() -> dict:
    stored = get_db()["setting"].find_one({}, {"_id": 0, "created_at": 0, "updated_at": 0}) or {}
    return Setting(**stored).model_dump()


@router.get("/stats")
def stats(admin=Depends(get_admin_user)):
    db = get_db()
    revenue = sum(b.get("total_amount", 0) for b in db["booking"].find({"status": "confirmed"}, {"total_amount": 1}))
    return ok({
        "total_users": db["user"].count_documents({}),
        "total_players": db["user"].count_documents({"role": "player"}),
        "total_gms": db["user"].count_documents({"role": "approved_gm"}),
        "pending_gm_applications": db["user"].count_documents({"role": "gm_applicant"}),
        "active_games": db["game"].count_documents({"is_active": True}),
        "total_bookings": db["booking"].count_documents({}),
        "revenue": round(revenue, 2),
    })


@router.get("/activity")
def activity(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), admin=Depends(get_admin_user)):
    db = get_db()
    users = db["user"].find({}).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    entries = [
        {
            "id": str(u["_id"]),
            "type": "user_registration",
            "message": f"New user registration: {u.get('email')}",
            "details": {
                "user_name": f"{u.get('first_name', '')} {u.get('last_name', '')}".strip(),
                "user_email": u.get("email"),
                "user_role": u.get("role"),
            },
            "timestamp": u.get("created_at"),
        }
        for u in users
    ]
    total = db["user"].count_documents({})
    return ok({"activities": entries, "pagination": pagination(page, limit, total)})


@router.get("/gm-applications")
def gm_applications(admin=Depends(get_admin_user)):
    docs = get_db()["user"].find({"role": "gm_applicant"}).sort("gm_application.submitted_at", 1)
    return ok([serialize(d) for d in docs])


@router.put("/gm-applications/{user_id}")
def decide_gm_application(user_id: str, payload: ApplicationDecisionPayload, admin=Depends(get_admin_user)):
    user = get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if user.get("role") != "gm_applicant":
        raise HTTPException(status_code=400, detail="User is not a GM applicant")

    approved = payload.action == "approve"
    stamp = now_utc()
    update = {"role": "approved_gm" if approved else "player", "updated_at": stamp}
    if user.get("gm_application"):
        update.update({
            "gm_application.status": "approved" if approved else "rejected",
            "gm_application.reviewed_by": str(admin["_id"]),
            "gm_application.reviewed_at": stamp,
            "gm_application.review_notes": payload.notes or "",
        })
    get_db()["user"].update_one({"_id": user["_id"]}, {"$set": update})

    if approved:
        title = "GM Application Approved!"
        message = ("Congratulations! Your GM application has been approved. "
                   "You can now create and host games on the platform.")
        if payload.notes:
            message += f"\n\nAdmin Message:\n{payload.notes}"
    else:
        title = "GM Application Not Approved"
        message = "Your GM application has been reviewed and was not approved at this time."
        if payload.notes:
            message += f"\n\nAdmin Feedback:\n{payload.notes}\n\nYou are welcome to reapply once addressed."
        else:
            message += " Feel free to apply again in the future."
    notify(
        user_id,
        type="system_announcement",
        title=title,
        message=message,
        category="system",
        priority="high",
        metadata=NotificationMetadata(color="#10B981" if approved else "#F59E0B"),
    )
    logger.info("GM application of %s %sd by %s", user.get("username"), payload.action, admin.get("username"))

    return ok(
        {
            "user_id": user_id,
            "new_role": update["role"],
            "application_status": update.get("gm_application.status"),
            "notification_sent": True,
        },
        f"GM application {payload.action}d successfully",
    )


@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = None,
    search: Optional[str] = None,
    admin=Depends(get_admin_user),
):
    query = {}
    if role:
        query["role"] = role
    if search:
        query["$or"] = [
            {"first_name": {"$regex": re.escape(search), "$options": "i"}},
            {"last_name": {"$regex": re.escape(search), "$options": "i"}},
            {"email": {"$regex": re.escape(search), "$options": "i"}},
            {"username": {"$regex": re.escape(search), "$options": "i"}},
        ]
    db = get_db()
    docs = db["user"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    total = db["user"].count_documents(query)
    return ok({"users": [serialize(d) for d in docs], "pagination": pagination(page, limit, total)})


def _update_user(user_id: str, changes: dict) -> dict:
    db = get_db()
    res = db["user"].update_one({"_id": oid(user_id)}, {"$set": {**changes, "updated_at": now_utc()}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    return serialize(db["user"].find_one({"_id": oid(user_id)}))


@router.put("/users/{user_id}/role")
def update_role(user_id: str, payload: RolePayload, admin=Depends(get_admin_user)):
    if user_id == str(admin["_id"]) and payload.role != "admin":
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")
    user = _update_user(user_id, {"role": payload.role})
    logger.info("Role of %s set to %s by %s", user.get("username"), payload.role, admin.get("username"))
    return ok(user)


@router.put("/users/{user_id}/status")
def update_status(user_id: str, payload: StatusPayload, admin=Depends(get_admin_user)):
    if user_id == str(admin["_id"]) and not payload.is_active:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")
    user = _update_user(user_id, {"is_active": payload.is_active})
    logger.info("User %s %s by %s", user.get("username"),
                "activated" if payload.is_active else "deactivated", admin.get("username"))
    return ok(user)


@router.get("/games")
def list_games(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status: Literal["all", "active", "inactive"] = "all",
    admin=Depends(get_admin_user),
):
    query = {}
    if search:
        query["$or"] = [
            {"title": {"$regex": re.escape(search), "$options": "i"}},
            {"description": {"$regex": re.escape(search), "$options": "i"}},
        ]
    if status != "all":
        query["is_active"] = status == "active"

    db = get_db()
    docs = list(db["game"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    gms = user_summaries(g.get("gm_id") for g in docs)
    games = []
    for g in docs:
        item = serialize(g)
        item["gm"] = gms.get(g.get("gm_id"))
        games.append(item)
    total = db["game"].count_documents(query)
    return ok({"games": games, "pagination": pagination(page, limit, total)})


@router.delete("/games/{game_id}")
def delete_game(game_id: str, payload: Optional[DeleteGamePayload] = None, admin=Depends(get_admin_user)):
    db = get_db()
    payload = payload or DeleteGamePayload()
    game = db["game"].find_one({"_id": oid(game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")

    message = f'Your game "{game["title"]}" has been removed by an administrator.'
    if payload.reason:
        message += f"\n\nReason: {payload.reason}"
    if payload.admin_notes:
        message += f"\n\nAdmin Notes:\n{payload.admin_notes}"
    message += "\n\nIf you have any questions about this action, please contact our support team."
    notify(
        game["gm_id"],
        type="admin_action",
        title="Game Removed by Admin",
        message=message,
        category="system",
        priority="high",
    )

    active = list(db["booking"].find({"game_id": game_id, "status": {"$in": ["pending", "confirmed"]}}))
    if active:
        stamp = now_utc()
        # removal by the platform refunds in full
        for booking in active:
            db["booking"].update_one(
                {"_id": booking["_id"]},
                {"$set": {
                    "status": "cancelled",
                    "refund_amount": booking.get("total_amount", 0) if booking["status"] == "confirmed" else 0,
                    "cancelled_at": stamp,
                    "updated_at": stamp,
                }},
            )
            if booking["status"] == "confirmed":
                db["user"].update_one(
                    {"_id": oid(booking["player_id"]), "stats.games_played": {"$gt": 0}},
                    {"$inc": {"stats.games_played": -1}},
                )
        notify_many(
            [b["player_id"] for b in active],
            type="game_update",
            title="Game Cancelled",
            message=f'"{game["title"]}" was removed by an administrator and your booking has been cancelled.',
            category="booking",
            priority="high",
            related_id=game_id,
        )

    db["game"].delete_one({"_id": game["_id"]})
    logger.info("Game %s removed by %s, %d bookings cancelled", game_id, admin.get("username"), len(active))

    gm = get_user_by_id(game["gm_id"]) or {}
    gm_name = f"{gm.get('first_name', '')} {gm.get('last_name', '')}".strip() or gm.get("username")
    return ok(
        {"game_title": game["title"], "gm_name": gm_name, "gm_email": gm.get("email"), "cancelled_bookings": len(active)},
        "Game deleted successfully and GM has been notified",
    )


@router.get("/settings")
def get_settings(admin=Depends(get_admin_user)):
    return ok(load_settings())


@router.put("/settings")
def update_settings(payload: UpdateSettingsPayload, admin=Depends(get_admin_user)):
    changes = {k: v for k, v in payload.model_dump(exclude_unset=True).items() if v is not None}
    settings = Setting(**{**load_settings(), **changes}).model_dump()
    stamp = now_utc()
    get_db()["setting"].update_one(
        {},
        {"$set": {**settings, "updated_at": stamp}, "$setOnInsert": {"created_at": stamp}},
        upsert=True,
    )
    logger.info("Platform settings updated by %s: %s", admin.get("username"), sorted(changes))
    return ok(settings, "Platform settings updated successfully")
