from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from database import create_document
from helpers import get_db, get_user_by_id, ok, user_summaries
from schemas import Favorite as FavoriteSchema, GM_ROLES
from security import get_current_user

router = APIRouter(prefix="/api/favorites", tags=["favorites"])


class AddFavoritePayload(BaseModel):
    gm_id: str


def get_gm_or_error(gm_id: str) -> dict:
    gm = get_user_by_id(gm_id)
    if not gm:
        raise HTTPException(status_code=404, detail="Game Master not found")
    if gm.get("role") not in GM_ROLES:
        raise HTTPException(status_code=400, detail="User is not a Game Master")
    return gm


@router.get("/game-masters")
def list_favorite_gms(current_user=Depends(get_current_user)):
    favorites = list(get_db()["favorite"].find({"user_id": str(current_user["_id"])}).sort("created_at", -1))
    gms = user_summaries(f["gm_id"] for f in favorites)
    # users that lost their GM role drop out of the list
    return ok([gms[f["gm_id"]] for f in favorites if gms.get(f["gm_id"], {}).get("role") in GM_ROLES])


@router.post("/game-masters", status_code=201)
def add_favorite_gm(payload: AddFavoritePayload, current_user=Depends(get_current_user)):
    get_gm_or_error(payload.gm_id)
    user_id = str(current_user["_id"])
    if get_db()["favorite"].find_one({"user_id": user_id, "gm_id": payload.gm_id}):
        raise HTTPException(status_code=400, detail="Game Master is already in favorites")
    create_document("favorite", FavoriteSchema(user_id=user_id, gm_id=payload.gm_id))
    return ok({"is_favorite": True}, "Game Master added to favorites")


@router.delete("/game-masters/{gm_id}")
def remove_favorite_gm(gm_id: str, current_user=Depends(get_current_user)):
    res = get_db()["favorite"].delete_one({"user_id": str(current_user["_id"]), "gm_id": gm_id})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Favorite not found")
    return ok({"is_favorite": False}, "Game Master removed from favorites")


@router.get("/game-masters/{gm_id}/status")
def favorite_status(gm_id: str, current_user=Depends(get_current_user)):
    favorite = get_db()["favorite"].find_one({"user_id": str(current_user["_id"]), "gm_id": gm_id})
    return ok({"is_favorite": favorite is not None})


@router.post("/game-masters/{gm_id}/toggle")
def toggle_favorite(gm_id: str, current_user=Depends(get_current_user)):
    get_gm_or_error(gm_id)
    user_id = str(current_user["_id"])
    res = get_db()["favorite"].delete_one({"user_id": user_id, "gm_id": gm_id})
    if res.deleted_count:
        return ok({"is_favorite": False})
    create_document("favorite", FavoriteSchema(user_id=user_id, gm_id=gm_id))
    return ok({"is_favorite": True})
