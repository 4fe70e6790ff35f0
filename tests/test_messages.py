from conftest import auth, make_friends, register, set_role


def test_friend_request_flow(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")

    res = client.post("/api/messages/friends/request", json={"recipient_id": bob["id"], "message": "hi"},
                      headers=auth(alice))
    assert res.status_code == 201
    request = res.json()["data"]
    assert request["status"] == "pending"
    assert request["sender"]["username"] == "alice"

    assert db["notification"].count_documents({"user_id": bob["id"], "type": "friend_request"}) == 1

    pending = client.get("/api/messages/friends/requests", headers=auth(bob)).json()["data"]
    assert [r["id"] for r in pending["received"]] == [request["id"]]
    assert pending["sent"] == []

    res = client.patch(f"/api/messages/friends/requests/{request['id']}", json={"action": "accept"},
                       headers=auth(bob))
    assert res.status_code == 200
    assert db["notification"].count_documents({"user_id": alice["id"], "type": "friend_accepted"}) == 1

    friends = client.get("/api/messages/friends", headers=auth(alice)).json()["data"]
    assert [f["username"] for f in friends] == ["bob"]
    friends = client.get("/api/messages/friends", headers=auth(bob)).json()["data"]
    assert [f["username"] for f in friends] == ["alice"]


def test_friend_request_guards(client):
    alice, bob = register(client, "alice"), register(client, "bob")

    res = client.post("/api/messages/friends/request", json={"recipient_id": alice["id"]}, headers=auth(alice))
    assert res.status_code == 400

    res = client.post("/api/messages/friends/request", json={"recipient_id": "64b7f0c2a1b2c3d4e5f60718"},
                      headers=auth(alice))
    assert res.status_code == 404

    client.post("/api/messages/friends/request", json={"recipient_id": bob["id"]}, headers=auth(alice))
    res = client.post("/api/messages/friends/request", json={"recipient_id": alice["id"]}, headers=auth(bob))
    assert res.status_code == 400


def test_request_by_username_strips_at(client):
    alice, bob = register(client, "alice"), register(client, "bob")
    res = client.post("/api/messages/friends/request-by-username", json={"username": "@Bob"}, headers=auth(alice))
    assert res.status_code == 201
    assert res.json()["data"]["recipient_id"] == bob["id"]

    res = client.post("/api/messages/friends/request-by-username", json={"username": "nobody"}, headers=auth(alice))
    assert res.status_code == 404


def test_declined_request_can_be_resent(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")
    first = client.post("/api/messages/friends/request", json={"recipient_id": bob["id"]},
                        headers=auth(alice)).json()["data"]
    client.patch(f"/api/messages/friends/requests/{first['id']}", json={"action": "decline"}, headers=auth(bob))

    res = client.post("/api/messages/friends/request", json={"recipient_id": bob["id"]}, headers=auth(alice))
    assert res.status_code == 201
    assert res.json()["data"]["id"] == first["id"]
    assert res.json()["data"]["status"] == "pending"
    assert db["friendrequest"].count_documents({}) == 1


def test_only_recipient_answers_and_sender_cancels(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")
    request = client.post("/api/messages/friends/request", json={"recipient_id": bob["id"]},
                          headers=auth(alice)).json()["data"]

    res = client.patch(f"/api/messages/friends/requests/{request['id']}", json={"action": "accept"},
                       headers=auth(alice))
    assert res.status_code == 404

    assert client.delete(f"/api/messages/friends/requests/{request['id']}", headers=auth(bob)).status_code == 404
    assert client.delete(f"/api/messages/friends/requests/{request['id']}", headers=auth(alice)).status_code == 200
    assert db["friendrequest"].count_documents({}) == 0
    assert db["notification"].count_documents({"type": "friend_request"}) == 0


def test_remove_friend(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")
    make_friends(client, alice, bob)

    assert client.delete(f"/api/messages/friends/{bob['id']}", headers=auth(alice)).status_code == 200
    assert client.get("/api/messages/friends", headers=auth(bob)).json()["data"] == []
    assert client.delete(f"/api/messages/friends/{bob['id']}", headers=auth(alice)).status_code == 404

    res = client.post("/api/messages/friends/request", json={"recipient_id": bob["id"]}, headers=auth(alice))
    assert res.status_code == 201


def test_conversations_require_friendship(client):
    alice, bob = register(client, "alice"), register(client, "bob")
    res = client.post("/api/messages/conversations", json={"participant_id": bob["id"]}, headers=auth(alice))
    assert res.status_code == 400


def test_direct_conversation_messages(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")
    make_friends(client, alice, bob)

    convo = client.post("/api/messages/conversations", json={"participant_id": bob["id"]},
                        headers=auth(alice)).json()["data"]
    again = client.post("/api/messages/conversations", json={"participant_id": alice["id"]},
                        headers=auth(bob)).json()["data"]
    assert again["id"] == convo["id"]

    url = f"/api/messages/conversations/{convo['id']}/messages"
    res = client.post(url, json={"content": "Session zero on Friday?"}, headers=auth(alice))
    assert res.status_code == 201
    message = res.json()["data"]
    assert message["recipient_id"] == bob["id"]
    assert message["sender"]["username"] == "alice"
    client.post(url, json={"content": "Bring dice"}, headers=auth(alice))

    assert db["notification"].count_documents({"user_id": bob["id"], "type": "message_received"}) == 2

    listing = client.get("/api/messages/conversations", headers=auth(bob)).json()["data"]
    assert listing[0]["id"] == convo["id"]
    assert listing[0]["last_message"]["content"] == "Bring dice"
    assert {p["username"] for p in listing[0]["participants"]} == {"alice", "bob"}

    res = client.get(url, headers=auth(bob))
    assert [m["content"] for m in res.json()["data"]] == ["Session zero on Friday?", "Bring dice"]
    assert db["message"].count_documents({"recipient_id": bob["id"], "is_read": False}) == 0

    stranger = register(client, "eve")
    assert client.get(url, headers=auth(stranger)).status_code == 404
    assert client.post(url, json={"content": "hi"}, headers=auth(stranger)).status_code == 404


def test_group_conversation(client, db):
    alice, bob, carol = register(client, "alice"), register(client, "bob"), register(client, "carol")
    make_friends(client, alice, bob)

    res = client.post("/api/messages/conversations/group",
                      json={"name": "Tomb Party", "member_ids": [bob["id"], carol["id"]]}, headers=auth(alice))
    assert res.status_code == 400

    make_friends(client, alice, carol)
    res = client.post("/api/messages/conversations/group",
                      json={"name": "Tomb Party", "member_ids": [bob["id"], carol["id"]]}, headers=auth(alice))
    assert res.status_code == 200
    group = res.json()["data"]
    assert group["is_group"] is True
    assert len(group["participants"]) == 3

    res = client.post(f"/api/messages/conversations/{group['id']}/messages", json={"content": "Roll initiative"},
                      headers=auth(bob))
    assert res.json()["data"]["recipient_id"] is None
    recipients = {n["user_id"] for n in db["notification"].find({"type": "message_received"})}
    assert recipients == {alice["id"], carol["id"]}


def test_user_search(client):
    alice = register(client, "alice")
    register(client, "alfred")
    register(client, "bob")
    res = client.get("/api/messages/users/search", params={"username": "AL"}, headers=auth(alice))
    assert [u["username"] for u in res.json()["data"]] == ["alfred"]


def test_notifications_lifecycle(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")
    client.post("/api/messages/friends/request", json={"recipient_id": alice["id"]}, headers=auth(bob))
    carol = register(client, "carol")
    client.post("/api/messages/friends/request", json={"recipient_id": alice["id"]}, headers=auth(carol))

    res = client.get("/api/messages/notifications", headers=auth(alice))
    body = res.json()
    assert len(body["data"]) == 2
    assert body["unread_count"] == 2
    assert body["data"][0]["message"].startswith("carol")

    first = body["data"][0]["id"]
    assert client.patch(f"/api/messages/notifications/{first}/read", headers=auth(alice)).status_code == 200
    assert client.patch(f"/api/messages/notifications/{first}/read", headers=auth(bob)).status_code == 404
    count = client.get("/api/messages/notifications/unread-count", headers=auth(alice)).json()["data"]
    assert count == {"unread_count": 1}

    client.patch("/api/messages/notifications/mark-all-read", headers=auth(alice))
    assert client.get("/api/messages/notifications", headers=auth(alice)).json()["unread_count"] == 0

    assert client.delete(f"/api/messages/notifications/{first}", headers=auth(alice)).status_code == 200
    assert client.delete(f"/api/messages/notifications/{first}", headers=auth(alice)).status_code == 404

    client.delete("/api/messages/notifications/clear-all", headers=auth(alice))
    assert db["notification"].count_documents({"user_id": alice["id"]}) == 0


def test_system_notification_fan_out(client, db):
    alice, bob = register(client, "alice"), register(client, "bob")
    payload = {"title": "Maintenance", "message": "Down at midnight", "type": "maintenance", "priority": "high"}

    assert client.post("/api/messages/notifications/system", json=payload, headers=auth(alice)).status_code == 403

    set_role(db, alice, "admin")
    res = client.post("/api/messages/notifications/system", json=payload, headers=auth(alice))
    assert res.status_code == 200
    assert res.json()["data"]["count"] == 2

    res = client.post("/api/messages/notifications/system",
                      json={**payload, "target_users": [bob["id"]], "expires_at": "2030-01-01T00:00:00Z"},
                      headers=auth(alice))
    assert res.json()["data"]["count"] == 1
    latest = list(db["notification"].find({"user_id": bob["id"]}).sort("_id", -1))[0]
    assert latest["metadata"]["expires_at"] is not None
    assert latest["category"] == "system"
    assert latest["priority"] == "high"
