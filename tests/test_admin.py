from bson import ObjectId

from conftest import auth, create_game, register

APPLICATION = {
    "experience": "Ran a West Marches server for two years.",
    "preferred_systems": ["pathfinder_2e"],
    "availability": "Weekends",
    "sample_game_description": "Hexcrawl through a haunted marsh.",
}


def test_admin_routes_reject_non_admins(client, player):
    for path in ("/api/admin/stats", "/api/admin/activity", "/api/admin/gm-applications",
                 "/api/admin/users", "/api/admin/games", "/api/admin/settings"):
        res = client.get(path, headers=auth(player))
        assert res.status_code == 403, path
        assert res.json()["message"] == "Admin access required"


def test_stats(client, admin, gm, player):
    game = create_game(client, gm, price=25)
    client.post("/api/bookings", json={"game_id": game["id"], "number_of_seats": 2}, headers=auth(player))

    stats = client.get("/api/admin/stats", headers=auth(admin)).json()["data"]
    assert stats["total_users"] == 3
    assert stats["total_players"] == 1
    assert stats["total_gms"] == 1
    assert stats["active_games"] == 1
    assert stats["total_bookings"] == 1
    assert stats["revenue"] == 50


def test_activity_lists_registrations(client, admin, player):
    body = client.get("/api/admin/activity", headers=auth(admin)).json()["data"]
    assert body["pagination"]["total"] == 2
    assert body["activities"][0]["type"] == "user_registration"


def test_approve_gm_application(client, db, admin, player):
    client.post("/api/users/apply-gm", json=APPLICATION, headers=auth(player))

    pending = client.get("/api/admin/gm-applications", headers=auth(admin)).json()["data"]
    assert [u["id"] for u in pending] == [player["id"]]

    res = client.put(f"/api/admin/gm-applications/{player['id']}", json={"action": "approve", "notes": "Welcome!"},
                     headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["data"]["new_role"] == "approved_gm"

    user = db["user"].find_one({"_id": ObjectId(player["id"])})
    assert user["gm_application"]["status"] == "approved"
    assert user["gm_application"]["reviewed_by"] == admin["id"]

    note = db["notification"].find_one({"user_id": player["id"]})
    assert note["priority"] == "high"
    assert "Welcome!" in note["message"]

    res = client.put(f"/api/admin/gm-applications/{player['id']}", json={"action": "approve"}, headers=auth(admin))
    assert res.status_code == 400


def test_reject_gm_application(client, db, admin, player):
    client.post("/api/users/apply-gm", json=APPLICATION, headers=auth(player))
    res = client.put(f"/api/admin/gm-applications/{player['id']}", json={"action": "reject"}, headers=auth(admin))
    assert res.json()["data"]["new_role"] == "player"
    user = db["user"].find_one({"_id": ObjectId(player["id"])})
    assert user["gm_application"]["status"] == "rejected"


def test_role_and_status_updates(client, admin, player):
    res = client.put(f"/api/admin/users/{player['id']}/role", json={"role": "approved_gm"}, headers=auth(admin))
    assert res.json()["data"]["role"] == "approved_gm"

    res = client.put(f"/api/admin/users/{player['id']}/role", json={"role": "emperor"}, headers=auth(admin))
    assert res.status_code == 400

    res = client.put(f"/api/admin/users/{player['id']}/status", json={"is_active": False}, headers=auth(admin))
    assert res.json()["data"]["is_active"] is False
    assert client.get("/api/auth/me", headers=auth(player)).status_code == 401

    res = client.put(f"/api/admin/users/{admin['id']}/status", json={"is_active": False}, headers=auth(admin))
    assert res.status_code == 400

    res = client.put("/api/admin/users/64b7f0c2a1b2c3d4e5f60718/role", json={"role": "player"}, headers=auth(admin))
    assert res.status_code == 404


def test_admin_user_search(client, admin, player):
    register(client, "zed")
    res = client.get("/api/admin/users", params={"search": "zed"}, headers=auth(admin))
    assert [u["username"] for u in res.json()["data"]["users"]] == ["zed"]


def test_admin_games_listing(client, admin, gm):
    create_game(client, gm, title="Open Table")
    create_game(client, gm, title="Shelved", is_active=False)

    res = client.get("/api/admin/games", params={"status": "inactive"}, headers=auth(admin))
    assert [g["title"] for g in res.json()["data"]["games"]] == ["Shelved"]
    res = client.get("/api/admin/games", params={"search": "open"}, headers=auth(admin))
    assert [g["title"] for g in res.json()["data"]["games"]] == ["Open Table"]


def test_admin_delete_game_cancels_bookings(client, db, admin, gm, player):
    game = create_game(client, gm)
    client.post("/api/bookings", json={"game_id": game["id"], "number_of_seats": 1}, headers=auth(player))

    assert db["user"].find_one({"_id": ObjectId(player["id"])})["stats"]["games_played"] == 1

    res = client.request("DELETE", f"/api/admin/games/{game['id']}",
                         json={"reason": "Inappropriate content"}, headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["data"]["cancelled_bookings"] == 1

    assert db["game"].count_documents({}) == 0
    assert db["booking"].find_one({})["status"] == "cancelled"

    gm_note = db["notification"].find_one({"user_id": gm["id"], "type": "admin_action"})
    assert "Inappropriate content" in gm_note["message"]
    assert db["notification"].count_documents({"user_id": player["id"], "type": "game_update"}) == 1
    assert db["user"].find_one({"_id": ObjectId(player["id"])})["stats"]["games_played"] == 0


def test_admin_delete_game_without_body(client, admin, gm):
    game = create_game(client, gm)
    assert client.delete(f"/api/admin/games/{game['id']}", headers=auth(admin)).status_code == 200
    assert client.delete(f"/api/admin/games/{game['id']}", headers=auth(admin)).status_code == 404


def test_settings_are_persisted(client, admin):
    defaults = client.get("/api/admin/settings", headers=auth(admin)).json()["data"]
    assert defaults["max_games_per_user"] == 5

    res = client.put("/api/admin/settings", json={"max_games_per_user": 10, "maintenance_mode": True},
                     headers=auth(admin))
    assert res.status_code == 200

    settings = client.get("/api/admin/settings", headers=auth(admin)).json()["data"]
    assert settings["max_games_per_user"] == 10
    assert settings["maintenance_mode"] is True
    assert settings["session_duration"] == 240

    res = client.put("/api/admin/settings", json={"session_duration": 30}, headers=auth(admin))
    assert res.status_code == 400
    res = client.put("/api/admin/settings", json={"max_games_per_user": 21}, headers=auth(admin))
    assert res.status_code == 400


def test_admin_searches_escape_special_characters(client, admin, gm):
    create_game(client, gm, title="Deep Dive (Part 1)")
    res = client.get("/api/admin/games", params={"search": "(Part 1)"}, headers=auth(admin))
    assert res.status_code == 200
    assert [g["title"] for g in res.json()["data"]["games"]] == ["Deep Dive (Part 1)"]

    res = client.get("/api/admin/users", params={"search": "*"}, headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["data"]["users"] == []
