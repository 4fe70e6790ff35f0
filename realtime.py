"""
Socket.IO relay.

Clients join a room per conversation; events are forwarded to the other room
members as they arrive. Nothing is persisted here, messages are stored through
the REST API.
"""
import logging

import socketio

from config import CORS_ORIGINS
from database import now_utc

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins="*" if "*" in CORS_ORIGINS else CORS_ORIGINS,
)


@sio.event
async def connect(sid, environ):
    logger.debug("Socket connected: %s", sid)


@sio.event
async def disconnect(sid):
    logger.debug("Socket disconnected: %s", sid)


@sio.on("join-room")
async def join_room(sid, room_id):
    await sio.enter_room(sid, room_id)
    logger.debug("Socket %s joined room %s", sid, room_id)


@sio.on("leave-room")
async def leave_room(sid, room_id):
    await sio.leave_room(sid, room_id)


def stamp() -> str:
    return now_utc().isoformat() + "Z"


@sio.on("send-message")
async def send_message(sid, data):
    room = (data or {}).get("roomId")
    if not room:
        return
    await sio.emit("receive-message", data, room=room, skip_sid=sid)
    await sio.emit(
        "message-delivered-update",
        {"messageId": data.get("messageId"), "deliveredAt": stamp()},
        to=sid,
    )


@sio.on("message-read")
async def message_read(sid, data):
    room = (data or {}).get("roomId")
    if room:
        await sio.emit("message-read-update", {"messageId": data.get("messageId"), "readBy": sid, "readAt": stamp()},
                       room=room, skip_sid=sid)


@sio.on("message-delivered")
async def message_delivered(sid, data):
    room = (data or {}).get("roomId")
    if room:
        await sio.emit(
            "message-delivered-update",
            {"messageId": data.get("messageId"), "deliveredTo": sid, "deliveredAt": stamp()},
            room=room,
            skip_sid=sid,
        )


@sio.on("typing")
async def typing(sid, data):
    room = (data or {}).get("roomId")
    if room:
        await sio.emit("user-typing", {"userId": sid, "isTyping": bool(data.get("isTyping"))},
                       room=room, skip_sid=sid)
