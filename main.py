import logging
import os
from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from config import CORS_ORIGINS, LOG_LEVEL, PORT, UPLOAD_DIR
from database import ensure_indexes, now_utc
from realtime import sio
from routers import admin, auth, bookings, favorites, games, messages, payments, reviews, upload, users
from schemas import (
    Booking as BookingSchema,
    Conversation as ConversationSchema,
    Favorite as FavoriteSchema,
    FriendRequest as FriendRequestSchema,
    Friendship as FriendshipSchema,
    Game as GameSchema,
    Message as MessageSchema,
    Notification as NotificationSchema,
    Review as ReviewSchema,
    Setting as SettingSchema,
    User as UserSchema,
)

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
# App & Middleware
# ----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, API will answer 500 on data routes")
    else:
        ensure_indexes()
    yield


app = FastAPI(
    title="Tabletop Tavern API",
    description="Tabletop RPG session marketplace backend",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials="*" not in CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/uploads", StaticFiles(directory=UPLOAD_DIR), name="uploads")

for module in (auth, users, games, bookings, reviews, messages, favorites, payments, upload, admin):
    app.include_router(module.router)


# ----------------------------------------------------------------------------
# Error envelope
# ----------------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    body = {"success": False}
    if isinstance(exc.detail, dict):
        body.update(exc.detail)
    else:
        body["message"] = exc.detail
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


def _validation_response(errors) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder({
            "success": False,
            "message": "Validation failed",
            "errors": [
                {"field": ".".join(str(p) for p in e.get("loc", ()) if p != "body"), "message": e.get("msg")}
                for e in errors
            ],
        }),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _validation_response(exc.errors())


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    return _validation_response(exc.errors())


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=400, content={"success": False, "message": "Duplicate entry"})


# ----------------------------------------------------------------------------
# Root & Health
# ----------------------------------------------------------------------------
@app.get("/")
def read_root():
    return {"message": "Tabletop Tavern Backend Running"}


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": now_utc().isoformat() + "Z"}


@app.get("/api")
def api_index():
    return {
        "success": True,
        "message": "Tabletop Tavern API is running",
        "version": app.version,
        "endpoints": sorted({f"/api/{r.path.split('/')[2]}" for r in app.routes
                             if getattr(r, "path", "").startswith("/api/")}),
    }


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = database.db
    if db is not None:
        response["database"] = "✅ Available"
        response["connection_status"] = "Connected"
        try:
            response["collections"] = db.list_collection_names()
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    else:
        response["database"] = "⚠️ Available but not initialized"
    return response


# ----------------------------------------------------------------------------
# Schema exposure for DB viewer
# ----------------------------------------------------------------------------
@app.get("/schema")
def get_schema():
    return {
        "user": UserSchema.model_json_schema(),
        "game": GameSchema.model_json_schema(),
        "booking": BookingSchema.model_json_schema(),
        "review": ReviewSchema.model_json_schema(),
        "conversation": ConversationSchema.model_json_schema(),
        "message": MessageSchema.model_json_schema(),
        "friendrequest": FriendRequestSchema.model_json_schema(),
        "friendship": FriendshipSchema.model_json_schema(),
        "notification": NotificationSchema.model_json_schema(),
        "favorite": FavoriteSchema.model_json_schema(),
        "setting": SettingSchema.model_json_schema(),
    }


# Socket.IO shares the port; uvicorn serves this wrapper
asgi_app = socketio.ASGIApp(sio, other_asgi_app=app)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(asgi_app, host="0.0.0.0", port=PORT)
