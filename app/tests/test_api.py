from market import models


def register(client, username="20230001", password="secret123", nickname="Bob", phone=None):
    payload = {"username": username, "password": password, "nickname": nickname}
    if phone is not None:
        payload["phone"] = phone
    return client.post("/api/auth/register", json=payload)


def test_read_root(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"


def test_register_and_login(client):
    response = register(client, phone="13800000000")
    assert response.status_code == 200
    data = response.json()
    assert data["access_token"]
    assert data["nickname"] == "Bob"
    assert data["role"] == "USER"

    response = client.post("/api/auth/login", json={"username_or_phone": "13800000000", "password": "secret123"})
    assert response.status_code == 200
    token = response.json()["access_token"]

    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["username"] == "20230001"
    assert response.json()["access_token"] is None


def test_register_rejects_duplicates(client):
    register(client, phone="13800000000")

    response = register(client, nickname="Other")
    assert response.status_code == 400

    response = register(client, username="20230002", phone="13800000000")
    assert response.status_code == 400


def test_login_with_wrong_password(client):
    register(client)
    response = client.post("/api/auth/login", json={"username_or_phone": "20230001", "password": "nope"})
    assert response.status_code == 401


def test_disabled_user_is_rejected(client, db, make_user, headers_for):
    user = make_user("ghost")
    headers = headers_for(user)
    user.enabled = False
    db.commit()

    assert client.get("/api/auth/me", headers=headers).status_code == 401
    response = client.post("/api/auth/login", json={"username_or_phone": "ghost", "password": "secret123"})
    assert response.status_code == 401


def test_invalid_token(client):
    response = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_reset_password(client):
    register(client, phone="13800000000")

    response = client.post("/api/auth/reset-password",
                           json={"username": "20230001", "phone": "13900000000", "new_password": "newpass1"})
    assert response.status_code == 400

    response = client.post("/api/auth/reset-password",
                           json={"username": "unknown", "phone": "13800000000", "new_password": "newpass1"})
    assert response.status_code == 404

    response = client.post("/api/auth/reset-password",
                           json={"username": "20230001", "phone": "13800000000", "new_password": "newpass1"})
    assert response.status_code == 200

    response = client.post("/api/auth/login", json={"username_or_phone": "20230001", "password": "newpass1"})
    assert response.status_code == 200


def test_profile_counts_and_update(client, make_user, make_product, headers_for):
    seller = make_user("alice")
    make_product(seller, title="Fan")
    make_product(seller, title="Heater", status=models.ProductStatus.SOLD)

    response = client.get(f"/api/users/{seller.id}")
    assert response.status_code == 200
    profile = response.json()
    assert profile["selling_count"] == 1
    assert profile["sold_count"] == 1
    assert profile["credit"] == 700

    response = client.put("/api/users/me", json={"nickname": " ", "bio": "Selling my dorm stuff"},
                          headers=headers_for(seller))
    assert response.status_code == 200
    assert response.json()["nickname"] == "Alice"
    assert response.json()["bio"] == "Selling my dorm stuff"

    response = client.get(f"/api/users/{seller.id}/products", params={"status": "SOLD"})
    assert [p["title"] for p in response.json()["items"]] == ["Heater"]

    response = client.get("/api/users/me/products", headers=headers_for(seller))
    assert response.json()["total"] == 2

    assert client.get("/api/users/999").status_code == 404
