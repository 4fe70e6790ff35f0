import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from database import create_document, now_utc
from helpers import get_db, ok, oid, serialize, user_summaries
from notifications import notify
from schemas import Booking as BookingSchema, Companion
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["bookings"])

ACTIVE_STATUSES = ["pending", "confirmed"]


class CreateBookingPayload(BaseModel):
    game_id: str
    number_of_seats: int = Field(..., ge=1, le=20)
    companions: List[Companion] = []
    special_requests: Optional[str] = Field(None, max_length=500)


class ConfirmBookingPayload(BaseModel):
    payment_intent_id: Optional[str] = None


def booking_total(game: dict, seats: int) -> float:
    total = float(game.get("price", 0)) * seats
    if game.get("is_early_bird") and game.get("early_bird_discount"):
        total *= 1 - game["early_bird_discount"] / 100
    return round(total, 2)


def reserve_seats(game_id, seats: int) -> bool:
    """Take `seats` from the game in one conditional update. False when not enough are left."""
    res = get_db()["game"].update_one(
        {"_id": game_id, "is_active": True, "available_seats": {"$gte": seats}},
        {"$inc": {"booked_seats": seats, "available_seats": -seats}, "$set": {"updated_at": now_utc()}},
    )
    return res.modified_count == 1


def release_seats(game_id, seats: int):
    get_db()["game"].update_one(
        {"_id": game_id, "booked_seats": {"$gte": seats}},
        {"$inc": {"booked_seats": -seats, "available_seats": seats}, "$set": {"updated_at": now_utc()}},
    )


def get_booking_or_404(booking_id: str) -> dict:
    booking = get_db()["booking"].find_one({"_id": oid(booking_id)})
    if not booking:
        raise HTTPException(status_code=404, detail="Booking not found")
    return booking


def with_details(bookings: List[dict]) -> List[dict]:
    db = get_db()
    game_ids = list({oid(b["game_id"]) for b in bookings})
    games = {str(g["_id"]): g for g in db["game"].find({"_id": {"$in": game_ids}})} if game_ids else {}
    users = user_summaries([b.get("player_id") for b in bookings] + [b.get("gm_id") for b in bookings])
    out = []
    for b in bookings:
        item = serialize(b)
        game = games.get(b["game_id"])
        item["game"] = {
            "id": b["game_id"],
            "title": game.get("title"),
            "schedule": game.get("schedule"),
            "platform": game.get("platform"),
        } if game else None
        item["player"] = users.get(b.get("player_id"))
        item["gm"] = users.get(b.get("gm_id"))
        out.append(item)
    return out


def is_party(booking: dict, user: dict) -> bool:
    user_id = str(user["_id"])
    return user_id in (booking.get("player_id"), booking.get("gm_id")) or user.get("role") == "admin"


@router.post("", status_code=201)
def create_booking(payload: CreateBookingPayload, current_user=Depends(get_current_user)):
    db = get_db()
    player_id = str(current_user["_id"])
    game_oid = oid(payload.game_id)

    game = db["game"].find_one({"_id": game_oid})
    if not game or not game.get("is_active", True):
        raise HTTPException(status_code=404, detail="Game not found")
    if game.get("gm_id") == player_id:
        raise HTTPException(status_code=400, detail="You cannot book your own game")
    if game["schedule"]["start_time"] <= now_utc():
        raise HTTPException(status_code=400, detail="This game has already started")
    if len(payload.companions) > payload.number_of_seats - 1:
        raise HTTPException(status_code=400, detail="Too many companions for the number of seats")

    existing = db["booking"].find_one({
        "game_id": payload.game_id,
        "player_id": player_id,
        "status": {"$in": ACTIVE_STATUSES},
    })
    if existing:
        raise HTTPException(status_code=400, detail="You already have a booking for this game")

    if not reserve_seats(game_oid, payload.number_of_seats):
        raise HTTPException(status_code=400, detail="Not enough seats available")

    instant = game.get("booking_type", "instant") == "instant"
    booking = BookingSchema(
        game_id=payload.game_id,
        player_id=player_id,
        gm_id=game["gm_id"],
        number_of_seats=payload.number_of_seats,
        companions=payload.companions,
        status="confirmed" if instant else "pending",
        total_amount=booking_total(game, payload.number_of_seats),
        currency=game.get("currency", "USD"),
        special_requests=payload.special_requests,
    )
    try:
        booking_id = create_document("booking", booking)
    except Exception:
        release_seats(game_oid, payload.number_of_seats)
        raise

    username = current_user.get("username")
    if instant:
        db["user"].update_one({"_id": current_user["_id"]}, {"$inc": {"stats.games_played": 1}})
        notify(
            player_id,
            type="booking_confirmed",
            title="Booking Confirmed",
            message=f"Your booking for {game['title']} is confirmed",
            category="booking",
            related_id=booking_id,
            action_url="/bookings",
        )
        gm_message = f"{username} booked {payload.number_of_seats} seat(s) for {game['title']}"
    else:
        gm_message = f"{username} requested {payload.number_of_seats} seat(s) for {game['title']}"
    notify(
        game["gm_id"],
        type="booking_confirmed" if instant else "game_update",
        title="New Booking" if instant else "New Booking Request",
        message=gm_message,
        category="booking",
        priority="medium" if instant else "high",
        related_id=booking_id,
        action_url=f"/games/{payload.game_id}",
    )
    logger.info("Booking %s created for game %s (%s)", booking_id, payload.game_id, booking.status)

    message = "Booking confirmed successfully" if instant else "Booking request sent to the Game Master"
    return ok(with_details([get_booking_or_404(booking_id)])[0], message)


@router.get("/user")
def user_bookings(status: Optional[str] = None, current_user=Depends(get_current_user)):
    query = {"player_id": str(current_user["_id"])}
    if status:
        query["status"] = status
    docs = list(get_db()["booking"].find(query).sort("created_at", -1))
    return ok(with_details(docs), "Bookings fetched successfully")


@router.get("/game/{game_id}")
def game_bookings(game_id: str, current_user=Depends(get_current_user)):
    game = get_db()["game"].find_one({"_id": oid(game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")
    if game.get("gm_id") != str(current_user["_id"]) and current_user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Only the Game Master can view bookings for this game")
    docs = list(get_db()["booking"].find({"game_id": game_id}).sort("created_at", 1))
    return ok(with_details(docs), "Bookings fetched successfully")


@router.get("/{booking_id}")
def get_booking(booking_id: str, current_user=Depends(get_current_user)):
    booking = get_booking_or_404(booking_id)
    if not is_party(booking, current_user):
        raise HTTPException(status_code=403, detail="You do not have access to this booking")
    return ok(with_details([booking])[0], "Booking fetched successfully")


@router.post("/{booking_id}/confirm")
def confirm_booking(booking_id: str, payload: ConfirmBookingPayload, current_user=Depends(get_current_user)):
    db = get_db()
    booking = get_booking_or_404(booking_id)
    user_id = str(current_user["_id"])

    is_player = booking["player_id"] == user_id
    is_gm = booking["gm_id"] == user_id
    if not (is_player or is_gm):
        raise HTTPException(status_code=403, detail="You do not have access to this booking")
    if is_player and not is_gm and not payload.payment_intent_id:
        raise HTTPException(status_code=400, detail="Payment intent ID is required")
    if booking["status"] != "pending":
        raise HTTPException(status_code=400, detail=f"Booking is already {booking['status']}")

    update = {"status": "confirmed", "updated_at": now_utc()}
    if payload.payment_intent_id:
        update["payment_intent_id"] = payload.payment_intent_id
    res = db["booking"].update_one({"_id": booking["_id"], "status": "pending"}, {"$set": update})
    if res.modified_count == 0:
        raise HTTPException(status_code=400, detail="Booking is no longer pending")

    db["user"].update_one({"_id": oid(booking["player_id"])}, {"$inc": {"stats.games_played": 1}})

    game = db["game"].find_one({"_id": oid(booking["game_id"])}) or {}
    notify(
        booking["player_id"],
        type="booking_confirmed",
        title="Booking Confirmed",
        message=f"Your booking for {game.get('title', 'a game')} is confirmed",
        category="booking",
        related_id=booking_id,
        action_url="/bookings",
    )
    return ok(with_details([get_booking_or_404(booking_id)])[0], "Booking confirmed successfully")


@router.post("/{booking_id}/cancel")
def cancel_booking(booking_id: str, current_user=Depends(get_current_user)):
    db = get_db()
    booking = get_booking_or_404(booking_id)
    if not is_party(booking, current_user):
        raise HTTPException(status_code=403, detail="You do not have access to this booking")
    if booking["status"] not in ACTIVE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Booking is already {booking['status']}")

    game = db["game"].find_one({"_id": oid(booking["game_id"])})
    refund = 0.0
    if game and booking["status"] == "confirmed":
        policy = game.get("cancellation_policy") or {}
        hours_left = (game["schedule"]["start_time"] - now_utc()).total_seconds() / 3600
        if hours_left >= policy.get("cutoff_hours", 24):
            refund = round(booking["total_amount"] * policy.get("refund_percentage", 100) / 100, 2)

    stamp = now_utc()
    res = db["booking"].update_one(
        {"_id": booking["_id"], "status": {"$in": ACTIVE_STATUSES}},
        {"$set": {"status": "cancelled", "refund_amount": refund, "cancelled_at": stamp, "updated_at": stamp}},
    )
    if res.modified_count == 0:
        raise HTTPException(status_code=400, detail="Booking is no longer active")

    if game:
        release_seats(game["_id"], booking["number_of_seats"])
    if booking["status"] == "confirmed":
        db["user"].update_one(
            {"_id": oid(booking["player_id"]), "stats.games_played": {"$gt": 0}},
            {"$inc": {"stats.games_played": -1}},
        )

    title = game.get("title", "a game") if game else "a game"
    if str(current_user["_id"]) == booking["player_id"]:
        recipient = booking["gm_id"]
        message = f"{current_user.get('username')} cancelled their booking for {title}"
    else:
        recipient = booking["player_id"]
        message = f"Your booking for {title} was cancelled"
    notify(
        recipient,
        type="booking_cancelled",
        title="Booking Cancelled",
        message=message,
        category="booking",
        related_id=booking_id,
        action_url="/bookings",
    )
    logger.info("Booking %s cancelled by %s, refund %.2f", booking_id, current_user.get("username"), refund)

    return ok(with_details([get_booking_or_404(booking_id)])[0], "Booking cancelled successfully")
