import logging
import re
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from database import as_utc, create_document, now_utc
from helpers import get_db, get_user_by_id, ok, oid, pagination, serialize, user_summaries, user_summary
from notifications import notify, notify_many
from schemas import (
    Conversation as ConversationSchema,
    FriendRequest as FriendRequestSchema,
    Message as MessageSchema,
    MessageMetadata,
    MessageType,
    NotificationMetadata,
    NotificationPriority,
)
from security import get_current_user, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


class StartConversationPayload(BaseModel):
    participant_id: str


class GroupConversationPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    member_ids: List[str] = Field(..., min_length=1)


class SendMessagePayload(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    message_type: MessageType = "text"
    related_game_id: Optional[str] = None
    metadata: Optional[MessageMetadata] = None


class FriendRequestPayload(BaseModel):
    recipient_id: str
    message: Optional[str] = Field(None, max_length=500)


class FriendRequestByUsernamePayload(BaseModel):
    username: str = Field(..., min_length=1)
    message: Optional[str] = Field(None, max_length=500)


class RespondFriendRequestPayload(BaseModel):
    action: Literal["accept", "decline"]


class SystemNotificationPayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    type: Literal["system_announcement", "maintenance", "event_notification", "game_update"] = "system_announcement"
    priority: NotificationPriority = "medium"
    target_users: List[str] = []
    expires_at: Optional[datetime] = None


# -----------------------------------------------------------------------------
# Friendship helpers
# -----------------------------------------------------------------------------
def friend_pair(a: str, b: str) -> dict:
    user1, user2 = sorted([a, b])
    return {"user1": user1, "user2": user2}


def are_friends(a: str, b: str) -> bool:
    return get_db()["friendship"].find_one(friend_pair(a, b)) is not None


def friend_ids(user_id: str) -> List[str]:
    ships = get_db()["friendship"].find({"$or": [{"user1": user_id}, {"user2": user_id}]})
    return [s["user2"] if s["user1"] == user_id else s["user1"] for s in ships]


def send_friend_request(sender: dict, recipient: Optional[dict], message: Optional[str]):
    db = get_db()
    if recipient is None:
        raise HTTPException(status_code=404, detail="User not found")

    sender_id, recipient_id = str(sender["_id"]), str(recipient["_id"])
    if sender_id == recipient_id:
        raise HTTPException(status_code=400, detail="You cannot send a friend request to yourself")
    if are_friends(sender_id, recipient_id):
        raise HTTPException(status_code=400, detail="You are already friends with this user")

    pending = db["friendrequest"].find_one({
        "$or": [
            {"sender_id": sender_id, "recipient_id": recipient_id},
            {"sender_id": recipient_id, "recipient_id": sender_id},
        ],
        "status": "pending",
    })
    if pending:
        raise HTTPException(status_code=400, detail="A friend request is already pending between you and this user")

    previous = db["friendrequest"].find_one({"sender_id": sender_id, "recipient_id": recipient_id})
    if previous:
        # (sender, recipient) is unique, so an old request is reopened rather than inserted
        db["friendrequest"].update_one(
            {"_id": previous["_id"]},
            {"$set": {"status": "pending", "message": message, "updated_at": now_utc()}},
        )
        request_id = str(previous["_id"])
    else:
        request = FriendRequestSchema(sender_id=sender_id, recipient_id=recipient_id, message=message)
        request_id = create_document("friendrequest", request)

    notify(
        recipient_id,
        type="friend_request",
        title="New Friend Request",
        message=f"{sender.get('username')} sent you a friend request",
        category="social",
        related_id=request_id,
        action_url="/messages?tab=friends",
    )
    logger.info("Friend request %s from %s to %s", request_id, sender.get("username"), recipient.get("username"))

    doc = db["friendrequest"].find_one({"_id": ObjectId(request_id)})
    return ok(with_request_users([doc])[0], "Friend request sent successfully")


def with_request_users(requests: List[dict]) -> List[dict]:
    users = user_summaries([r["sender_id"] for r in requests] + [r["recipient_id"] for r in requests])
    out = []
    for r in requests:
        item = serialize(r)
        item["sender"] = users.get(r["sender_id"])
        item["recipient"] = users.get(r["recipient_id"])
        out.append(item)
    return out


# -----------------------------------------------------------------------------
# Conversations
# -----------------------------------------------------------------------------
def get_conversation_for(conversation_id: str, user_id: str) -> dict:
    conversation = get_db()["conversation"].find_one({"_id": oid(conversation_id), "participants": user_id})
    if not conversation:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def with_participants(conversations: List[dict]) -> List[dict]:
    db = get_db()
    users = user_summaries(p for c in conversations for p in c.get("participants", []))
    last_ids = [ObjectId(c["last_message_id"]) for c in conversations if c.get("last_message_id")]
    last_messages = {str(m["_id"]): serialize(m) for m in db["message"].find({"_id": {"$in": last_ids}})} if last_ids else {}
    out = []
    for c in conversations:
        item = serialize(c)
        item["participants"] = [users[p] for p in c.get("participants", []) if p in users]
        item["last_message"] = last_messages.get(c.get("last_message_id"))
        out.append(item)
    return out


def with_sender(messages: List[dict]) -> List[dict]:
    senders = user_summaries(m["sender_id"] for m in messages)
    out = []
    for m in messages:
        item = serialize(m)
        item["sender"] = senders.get(m["sender_id"])
        out.append(item)
    return out


@router.get("/conversations")
def list_conversations(current_user=Depends(get_current_user)):
    docs = list(get_db()["conversation"].find({"participants": str(current_user["_id"])}).sort("last_activity", -1))
    return ok(with_participants(docs))


@router.post("/conversations")
def start_conversation(payload: StartConversationPayload, current_user=Depends(get_current_user)):
    db = get_db()
    user_id = str(current_user["_id"])
    other_id = payload.participant_id

    if other_id == user_id:
        raise HTTPException(status_code=400, detail="You cannot start a conversation with yourself")
    if not are_friends(user_id, other_id):
        raise HTTPException(status_code=400, detail="Can only start conversations with friends")

    existing = db["conversation"].find_one({"participants": {"$all": [user_id, other_id]}, "is_group": False})
    if existing:
        return ok(with_participants([existing])[0])

    conversation = ConversationSchema(participants=[user_id, other_id], created_by=user_id, last_activity=now_utc())
    conversation_id = create_document("conversation", conversation)
    doc = db["conversation"].find_one({"_id": ObjectId(conversation_id)})
    return ok(with_participants([doc])[0], "Conversation created")


@router.post("/conversations/group")
def create_group_conversation(payload: GroupConversationPayload, current_user=Depends(get_current_user)):
    db = get_db()
    user_id = str(current_user["_id"])
    members = [m for m in dict.fromkeys(payload.member_ids) if m != user_id]
    if not members:
        raise HTTPException(status_code=400, detail="Group name and member IDs are required")

    friends = set(friend_ids(user_id))
    if any(m not in friends for m in members):
        raise HTTPException(status_code=400, detail="Can only add friends to group conversations")

    conversation = ConversationSchema(
        participants=[user_id] + members,
        is_group=True,
        group_name=payload.name.strip(),
        group_description=payload.description,
        created_by=user_id,
        last_activity=now_utc(),
    )
    conversation_id = create_document("conversation", conversation)
    logger.info("Group conversation %s created with %d members", conversation_id, len(members) + 1)
    doc = db["conversation"].find_one({"_id": ObjectId(conversation_id)})
    return ok(with_participants([doc])[0], "Group conversation created")


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    current_user=Depends(get_current_user),
):
    db = get_db()
    user_id = str(current_user["_id"])
    get_conversation_for(conversation_id, user_id)

    query = {"conversation_id": conversation_id}
    docs = list(
        db["message"].find(query)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    docs.reverse()
    total = db["message"].count_documents(query)

    db["message"].update_many(
        {"conversation_id": conversation_id, "recipient_id": user_id, "is_read": False},
        {"$set": {"is_read": True, "read_at": now_utc()}},
    )
    return ok(with_sender(docs), pagination=pagination(page, limit, total))


@router.post("/conversations/{conversation_id}/messages", status_code=201)
def send_message(conversation_id: str, payload: SendMessagePayload, current_user=Depends(get_current_user)):
    db = get_db()
    user_id = str(current_user["_id"])
    conversation = get_conversation_for(conversation_id, user_id)
    others = [p for p in conversation["participants"] if p != user_id]

    message = MessageSchema(
        sender_id=user_id,
        recipient_id=None if conversation.get("is_group") else (others[0] if others else None),
        conversation_id=conversation_id,
        **payload.model_dump(),
    )
    message_id = create_document("message", message)
    db["conversation"].update_one(
        {"_id": conversation["_id"]},
        {"$set": {"last_message_id": message_id, "last_activity": now_utc()}},
    )

    if conversation.get("is_group"):
        text = f"{current_user.get('username')} posted in {conversation.get('group_name')}"
    else:
        text = f"You received a new message from {current_user.get('username')}"
    notify_many(
        others,
        type="message_received",
        title="New Message",
        message=text,
        category="social",
        related_id=message_id,
        action_url=f"/messages/{conversation_id}",
    )

    doc = db["message"].find_one({"_id": ObjectId(message_id)})
    return ok(with_sender([doc])[0])


@router.get("/users/search")
def search_users(username: str = Query(..., min_length=1), current_user=Depends(get_current_user)):
    term = username.lstrip("@")
    docs = get_db()["user"].find(
        {"username": {"$regex": re.escape(term), "$options": "i"}, "_id": {"$ne": current_user["_id"]}}
    ).limit(10)
    return ok([user_summary(d) for d in docs])


# -----------------------------------------------------------------------------
# Friends
# -----------------------------------------------------------------------------
@router.post("/friends/request", status_code=201)
def request_friend(payload: FriendRequestPayload, current_user=Depends(get_current_user)):
    return send_friend_request(current_user, get_user_by_id(payload.recipient_id), payload.message)


@router.post("/friends/request-by-username", status_code=201)
def request_friend_by_username(payload: FriendRequestByUsernamePayload, current_user=Depends(get_current_user)):
    username = payload.username.strip().lstrip("@")
    recipient = get_db()["user"].find_one({"username": {"$regex": f"^{re.escape(username)}$", "$options": "i"}})
    return send_friend_request(current_user, recipient, payload.message)


@router.get("/friends/requests")
def list_friend_requests(current_user=Depends(get_current_user)):
    db = get_db()
    user_id = str(current_user["_id"])
    received = list(db["friendrequest"].find({"recipient_id": user_id, "status": "pending"}).sort("created_at", -1))
    sent = list(db["friendrequest"].find({"sender_id": user_id, "status": "pending"}).sort("created_at", -1))
    return ok({"received": with_request_users(received), "sent": with_request_users(sent)})


@router.patch("/friends/requests/{request_id}")
def respond_friend_request(
    request_id: str, payload: RespondFriendRequestPayload, current_user=Depends(get_current_user)
):
    db = get_db()
    user_id = str(current_user["_id"])
    request = db["friendrequest"].find_one({"_id": oid(request_id), "recipient_id": user_id})
    if not request:
        raise HTTPException(status_code=404, detail="Friend request not found")
    if request["status"] != "pending":
        raise HTTPException(status_code=400, detail="Friend request has already been handled")

    status = "accepted" if payload.action == "accept" else "declined"
    db["friendrequest"].update_one({"_id": request["_id"]}, {"$set": {"status": status, "updated_at": now_utc()}})

    if status == "accepted":
        stamp = now_utc()
        db["friendship"].update_one(
            friend_pair(request["sender_id"], user_id),
            {"$setOnInsert": {"created_at": stamp, "updated_at": stamp}},
            upsert=True,
        )
        notify(
            request["sender_id"],
            type="friend_accepted",
            title="Friend Request Accepted",
            message=f"{current_user.get('username')} accepted your friend request",
            category="social",
            related_id=user_id,
            action_url="/messages?tab=friends",
        )

    return ok(message=f"Friend request {status}")


@router.delete("/friends/requests/{request_id}")
def cancel_friend_request(request_id: str, current_user=Depends(get_current_user)):
    db = get_db()
    request = db["friendrequest"].find_one({"_id": oid(request_id), "sender_id": str(current_user["_id"])})
    if not request:
        raise HTTPException(status_code=404, detail="Friend request not found")
    if request["status"] != "pending":
        raise HTTPException(status_code=400, detail="Only pending friend requests can be canceled")

    db["friendrequest"].delete_one({"_id": request["_id"]})
    db["notification"].delete_many({"type": "friend_request", "related_id": request_id})
    return ok(message="Friend request canceled successfully")


@router.get("/friends")
def list_friends(current_user=Depends(get_current_user)):
    ids = friend_ids(str(current_user["_id"]))
    summaries = user_summaries(ids)
    return ok([summaries[i] for i in ids if i in summaries])


@router.delete("/friends/{friend_id}")
def remove_friend(friend_id: str, current_user=Depends(get_current_user)):
    db = get_db()
    user_id = str(current_user["_id"])
    res = db["friendship"].delete_one(friend_pair(user_id, friend_id))
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Friendship not found")

    db["friendrequest"].update_many(
        {
            "$or": [
                {"sender_id": user_id, "recipient_id": friend_id},
                {"sender_id": friend_id, "recipient_id": user_id},
            ],
            "status": {"$in": ["pending", "accepted"]},
        },
        {"$set": {"status": "declined", "updated_at": now_utc()}},
    )
    return ok(message="Friend removed successfully")


# -----------------------------------------------------------------------------
# Notifications
# -----------------------------------------------------------------------------
@router.get("/notifications")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    current_user=Depends(get_current_user),
):
    db = get_db()
    user_id = str(current_user["_id"])
    query = {"user_id": user_id}
    if unread_only:
        query["is_read"] = False
    docs = db["notification"].find(query).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    total = db["notification"].count_documents(query)
    unread = db["notification"].count_documents({"user_id": user_id, "is_read": False})
    return ok(
        [serialize(d) for d in docs],
        unread_count=unread,
        pagination=pagination(page, limit, total),
    )


@router.get("/notifications/unread-count")
def unread_notification_count(current_user=Depends(get_current_user)):
    count = get_db()["notification"].count_documents({"user_id": str(current_user["_id"]), "is_read": False})
    return ok({"unread_count": count})


@router.patch("/notifications/mark-all-read")
def mark_all_notifications_read(current_user=Depends(get_current_user)):
    res = get_db()["notification"].update_many(
        {"user_id": str(current_user["_id"]), "is_read": False},
        {"$set": {"is_read": True, "updated_at": now_utc()}},
    )
    return ok({"updated": res.modified_count}, "All notifications marked as read")


@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, current_user=Depends(get_current_user)):
    res = get_db()["notification"].update_one(
        {"_id": oid(notification_id), "user_id": str(current_user["_id"])},
        {"$set": {"is_read": True, "updated_at": now_utc()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return ok(message="Notification marked as read")


@router.delete("/notifications/clear-all")
def clear_notifications(current_user=Depends(get_current_user)):
    res = get_db()["notification"].delete_many({"user_id": str(current_user["_id"])})
    return ok({"deleted": res.deleted_count}, "All notifications cleared")


@router.delete("/notifications/{notification_id}")
def delete_notification(notification_id: str, current_user=Depends(get_current_user)):
    res = get_db()["notification"].delete_one({"_id": oid(notification_id), "user_id": str(current_user["_id"])})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Notification not found")
    return ok(message="Notification deleted")


@router.post("/notifications/system")
def system_notification(payload: SystemNotificationPayload, current_user=Depends(get_current_user)):
    require_admin(current_user)
    if payload.target_users:
        recipients = payload.target_users
    else:
        recipients = [str(u["_id"]) for u in get_db()["user"].find({}, {"_id": 1})]

    metadata = NotificationMetadata(expires_at=as_utc(payload.expires_at)) if payload.expires_at else None
    ids = notify_many(
        recipients,
        type=payload.type,
        title=payload.title,
        message=payload.message,
        category="system",
        priority=payload.priority,
        metadata=metadata,
    )
    logger.info("System notification '%s' sent by %s", payload.title, current_user.get("username"))
    return ok({"count": len(ids)}, f"System notification sent to {len(ids)} users")
