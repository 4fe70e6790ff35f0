from conftest import auth


def test_favorite_game_masters(client, gm, player):
    res = client.post("/api/favorites/game-masters", json={"gm_id": gm["id"]}, headers=auth(player))
    assert res.status_code == 201

    res = client.post("/api/favorites/game-masters", json={"gm_id": gm["id"]}, headers=auth(player))
    assert res.status_code == 400
    assert res.json()["message"] == "Game Master is already in favorites"

    favorites = client.get("/api/favorites/game-masters", headers=auth(player)).json()["data"]
    assert [f["username"] for f in favorites] == ["gamemaster"]

    status = client.get(f"/api/favorites/game-masters/{gm['id']}/status", headers=auth(player)).json()["data"]
    assert status == {"is_favorite": True}

    assert client.delete(f"/api/favorites/game-masters/{gm['id']}", headers=auth(player)).status_code == 200
    assert client.delete(f"/api/favorites/game-masters/{gm['id']}", headers=auth(player)).status_code == 404


def test_only_game_masters_can_be_favorited(client, player):
    other = client.post("/api/auth/register", json={
        "email": "plain@example.com", "password": "secret123", "username": "plain",
        "first_name": "Plain", "last_name": "Player",
    }).json()["data"]["user"]

    res = client.post("/api/favorites/game-masters", json={"gm_id": other["id"]}, headers=auth(player))
    assert res.status_code == 400
    res = client.post("/api/favorites/game-masters", json={"gm_id": "64b7f0c2a1b2c3d4e5f60718"}, headers=auth(player))
    assert res.status_code == 404


def test_toggle_favorite(client, gm, player):
    url = f"/api/favorites/game-masters/{gm['id']}/toggle"
    assert client.post(url, headers=auth(player)).json()["data"] == {"is_favorite": True}
    assert client.post(url, headers=auth(player)).json()["data"] == {"is_favorite": False}
    assert client.get("/api/favorites/game-masters", headers=auth(player)).json()["data"] == []
