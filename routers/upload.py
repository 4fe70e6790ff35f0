import logging
import os
import secrets
import time
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from config import ADMIN_AVATAR_MAX_MB, AVATAR_MAX_MB, GAME_IMAGE_MAX_MB, UPLOAD_DIR
from database import now_utc
from helpers import get_db, ok
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/upload", tags=["upload"])

IMAGE_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def save_image(upload: UploadFile, folder: str, prefix: str, max_mb: int) -> str:
    """Validate an uploaded image, write it under UPLOAD_DIR/folder and return its public URL."""
    if not (upload.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    extension = IMAGE_EXTENSIONS.get(upload.content_type)
    if extension is None:
        raise HTTPException(status_code=400, detail="Only JPEG, PNG, WebP, and GIF images are allowed")

    limit = max_mb * 1024 * 1024
    # one byte past the limit is enough to reject
    content = upload.file.read(limit + 1)
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(content) > limit:
        raise HTTPException(
            status_code=400,
            detail=f"File too large. Maximum size allowed is {max_mb}MB for your account type.",
        )

    directory = os.path.join(UPLOAD_DIR, folder)
    os.makedirs(directory, exist_ok=True)
    filename = f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{extension}"
    with open(os.path.join(directory, filename), "wb") as fh:
        fh.write(content)
    return f"/uploads/{folder}/{filename}"


def remove_local_file(url: Optional[str]):
    if not url or not url.startswith("/uploads/"):
        return
    path = os.path.join(UPLOAD_DIR, url[len("/uploads/"):])
    if os.path.isfile(path):
        os.remove(path)


@router.post("/avatar")
def upload_avatar(avatar: UploadFile = File(...), current_user=Depends(get_current_user)):
    max_mb = ADMIN_AVATAR_MAX_MB if current_user.get("role") == "admin" else AVATAR_MAX_MB
    url = save_image(avatar, "avatars", "avatar", max_mb)

    previous = current_user.get("avatar")
    get_db()["user"].update_one({"_id": current_user["_id"]}, {"$set": {"avatar": url, "updated_at": now_utc()}})
    remove_local_file(previous)
    logger.info("Avatar updated for %s", current_user.get("username"))
    return ok({"avatar": url}, "Avatar uploaded successfully")


@router.delete("/avatar")
def delete_avatar(current_user=Depends(get_current_user)):
    remove_local_file(current_user.get("avatar"))
    get_db()["user"].update_one(
        {"_id": current_user["_id"]},
        {"$unset": {"avatar": ""}, "$set": {"updated_at": now_utc()}},
    )
    return ok(message="Avatar removed successfully")


@router.post("/game-images")
def upload_game_images(
    banner: Optional[UploadFile] = File(None),
    icon: Optional[UploadFile] = File(None),
    current_user=Depends(get_current_user),
):
    if banner is None and icon is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    uploaded = {}
    if banner is not None:
        uploaded["banner_image"] = save_image(banner, "games", "banner", GAME_IMAGE_MAX_MB)
    if icon is not None:
        uploaded["icon_image"] = save_image(icon, "games", "icon", GAME_IMAGE_MAX_MB)
    return ok(uploaded, "Images uploaded successfully")
