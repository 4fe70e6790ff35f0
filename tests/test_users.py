from conftest import auth, register, set_role

APPLICATION = {
    "experience": "Ten years running homebrew campaigns.",
    "preferred_systems": ["dnd_5e", "call_of_cthulhu"],
    "availability": "Weekday evenings",
    "sample_game_description": "A heist in a floating city.",
}


def test_update_profile_merges_preferences(client, player):
    res = client.put("/api/users/profile", json={
        "bio": "Dice goblin",
        "preferences": {"platforms": ["online", "hybrid"]},
        "pricing": {"session_price": 25},
    }, headers=auth(player))
    assert res.status_code == 200
    user = res.json()["data"]
    assert user["bio"] == "Dice goblin"
    assert user["preferences"]["platforms"] == ["online", "hybrid"]
    assert user["preferences"]["experience_level"] == "beginner"
    assert user["pricing"] == {"session_price": 25, "currency": "USD"}


def test_update_profile_rejects_bad_preferences(client, player):
    res = client.put("/api/users/profile", json={"preferences": {"platforms": ["carrier_pigeon"]}},
                     headers=auth(player))
    assert res.status_code == 400


def test_apply_gm_notifies_admins(client, db, player, admin):
    res = client.post("/api/users/apply-gm", json=APPLICATION, headers=auth(player))
    assert res.status_code == 200
    user = res.json()["data"]
    assert user["role"] == "gm_applicant"
    assert user["gm_application"]["status"] == "pending"

    notes = list(db["notification"].find({"user_id": admin["id"]}))
    assert len(notes) == 1
    assert notes[0]["type"] == "admin_action"
    assert notes[0]["related_id"] == player["id"]

    res = client.post("/api/users/apply-gm", json=APPLICATION, headers=auth(player))
    assert res.status_code == 400


def test_apply_gm_rejected_for_approved_gm(client, gm):
    res = client.post("/api/users/apply-gm", json=APPLICATION, headers=auth(gm))
    assert res.status_code == 400
    assert res.json()["message"] == "You are already an approved GM"


def test_apply_gm_requires_systems(client, player):
    res = client.post("/api/users/apply-gm", json={**APPLICATION, "preferred_systems": []}, headers=auth(player))
    assert res.status_code == 400


def test_featured_prompts(client, player):
    res = client.get("/api/users/featured-prompts", headers=auth(player))
    assert len(res.json()["data"]) == 10

    chosen = [
        {"prompt_id": "favorite_system", "custom_text": "Mothership"},
        {"prompt_id": "best_moment", "custom_text": "A natural 20 on a death save"},
    ]
    res = client.put("/api/users/featured-prompts", json={"featured_prompts": chosen}, headers=auth(player))
    assert res.status_code == 200
    assert res.json()["data"]["featured_prompts"] == chosen

    res = client.put("/api/users/featured-prompts", json={"featured_prompts": chosen[:1]}, headers=auth(player))
    assert res.status_code == 400

    bogus = [chosen[0], {"prompt_id": "nope", "custom_text": "x"}]
    res = client.put("/api/users/featured-prompts", json={"featured_prompts": bogus}, headers=auth(player))
    assert res.status_code == 400


def test_game_masters_listing_is_public_and_filtered(client, db, gm, player):
    client.put("/api/users/profile", json={"game_styles": ["roleplay"]}, headers=auth(gm))

    res = client.get("/api/users/game-masters")
    assert res.status_code == 200
    body = res.json()["data"]
    assert [u["username"] for u in body["data"]] == ["gamemaster"]
    assert body["pagination"] == {"page": 1, "limit": 12, "total": 1, "pages": 1}
    assert "email" not in body["data"][0]

    res = client.get("/api/users/game-masters", params={"game_styles": "combat"})
    assert res.json()["data"]["data"] == []


def test_public_profile_hides_private_fields(client, player, gm):
    res = client.get(f"/api/users/{gm['id']}/public", headers=auth(player))
    assert res.status_code == 200
    profile = res.json()["data"]
    assert profile["username"] == "gamemaster"
    assert "email" not in profile

    res = client.get("/api/users/64b7f0c2a1b2c3d4e5f60718/public", headers=auth(player))
    assert res.status_code == 404


def test_user_list_is_admin_only(client, db, player):
    assert client.get("/api/users", headers=auth(player)).status_code == 403

    admin = register(client, "boss")
    set_role(db, admin, "admin")
    res = client.get("/api/users", params={"search": "play"}, headers=auth(admin))
    assert res.status_code == 200
    assert [u["username"] for u in res.json()["data"]["users"]] == ["player"]


def test_user_searches_escape_special_characters(client, db, gm, player):
    res = client.get("/api/users/game-masters", params={"search": "["})
    assert res.status_code == 200
    assert res.json()["data"]["data"] == []

    res = client.get("/api/users/game-masters", params={"search": "game.aster"})
    assert res.json()["data"]["data"] == []

    admin = register(client, "boss")
    set_role(db, admin, "admin")
    res = client.get("/api/users", params={"search": "(play"}, headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["data"]["users"] == []
