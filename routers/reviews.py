import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import create_document
from helpers import get_db, ok, oid, pagination, serialize, user_summaries
from notifications import notify
from schemas import Review as ReviewSchema
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["reviews"])


class CreateReviewPayload(BaseModel):
    game_id: str
    rating: int = Field(..., ge=1, le=5)
    title: str = Field(..., min_length=1, max_length=100)
    comment: str = Field(..., min_length=1, max_length=2000)
    private_feedback: Optional[str] = Field(None, max_length=2000)
    is_public: bool = True


def refresh_gm_rating(gm_id: str):
    """Recompute the GM's average rating and review count from the stored reviews."""
    db = get_db()
    ratings = [r["rating"] for r in db["review"].find({"gm_id": gm_id}, {"rating": 1})]
    average = round(sum(ratings) / len(ratings), 2) if ratings else 0
    db["user"].update_one(
        {"_id": oid(gm_id)},
        {"$set": {"stats.average_rating": average, "stats.total_reviews": len(ratings)}},
    )


def with_reviewer(reviews):
    reviewers = user_summaries(r.get("reviewer_id") for r in reviews)
    out = []
    for r in reviews:
        item = serialize(r)
        item.pop("private_feedback", None)
        item["reviewer"] = reviewers.get(r.get("reviewer_id"))
        out.append(item)
    return out


@router.post("", status_code=201)
def create_review(payload: CreateReviewPayload, current_user=Depends(get_current_user)):
    db = get_db()
    reviewer_id = str(current_user["_id"])

    game = db["game"].find_one({"_id": oid(payload.game_id)})
    if not game:
        raise HTTPException(status_code=404, detail="Game not found")

    attended = db["booking"].find_one({
        "game_id": payload.game_id,
        "player_id": reviewer_id,
        "status": {"$in": ["confirmed", "completed"]},
    })
    if not attended:
        raise HTTPException(status_code=400, detail="You can only review games you have booked")
    if db["review"].find_one({"game_id": payload.game_id, "reviewer_id": reviewer_id}):
        raise HTTPException(status_code=400, detail="You have already reviewed this game")

    review = ReviewSchema(**payload.model_dump(), reviewer_id=reviewer_id, gm_id=game["gm_id"])
    review_id = create_document("review", review)
    refresh_gm_rating(game["gm_id"])

    notify(
        game["gm_id"],
        type="review_received",
        title="New Review",
        message=f"{current_user.get('username')} left a {payload.rating}-star review on {game['title']}",
        category="game",
        related_id=review_id,
        action_url=f"/games/{payload.game_id}",
    )
    logger.info("Review %s left on game %s", review_id, payload.game_id)

    review_doc = db["review"].find_one({"_id": oid(review_id)})
    return ok(serialize(review_doc), "Review submitted successfully")


def _list_reviews(query: dict, page: int, limit: int):
    db = get_db()
    query = {**query, "is_public": True}
    docs = list(db["review"].find(query).sort("created_at", -1).skip((page - 1) * limit).limit(limit))
    total = db["review"].count_documents(query)
    return ok({"data": with_reviewer(docs), "pagination": pagination(page, limit, total)})


@router.get("/gm/{gm_id}")
def gm_reviews(gm_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    return _list_reviews({"gm_id": gm_id}, page, limit)


@router.get("/game/{game_id}")
def game_reviews(game_id: str, page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100)):
    return _list_reviews({"game_id": game_id}, page, limit)
