import hmac
import json
import hashlib
from urllib.parse import urlencode

from storefront import config
from storefront.auth import check_webapp_signature

from conftest import auth_headers, make_user


async def test_login_with_email_and_password(client, customer):
    r = await client.post("/api/auth/login", json={"email": "max@example.com", "password": "geheim123"})
    assert r.status_code == 200
    body = r.json()
    assert body["token"]
    assert body["user"]["id"] == customer.id
    assert "token" in r.cookies


async def test_login_with_username(client, customer):
    r = await client.post("/api/auth/login", json={"username": "max", "password": "geheim123"})
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "max@example.com"


async def test_login_wrong_password(client, customer):
    r = await client.post("/api/auth/login", json={"email": "max@example.com", "password": "falsch"})
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthorized", "message": "Invalid credentials"}


async def test_login_without_credentials(client, fresh_db):
    r = await client.post("/api/auth/login", json={})
    assert r.status_code == 400
    assert r.json()["message"] == "Telegram ID or credentials are required"


async def test_login_with_telegram_id_creates_and_updates_user(client, fresh_db):
    r = await client.post("/api/auth/login", json={"telegram_id": 4242, "full_name": "Lena"})
    assert r.status_code == 200
    first = r.json()["user"]
    assert first["telegram_id"] == "4242"
    assert first["role"] == "user"

    r = await client.post("/api/auth/login", json={"telegram_id": "4242", "username": "lena_b"})
    second = r.json()["user"]
    assert second["id"] == first["id"]
    assert second["username"] == "lena_b"
    assert second["full_name"] == "Lena"


async def test_register_and_duplicate(client, fresh_db):
    payload = {"email": "neu@nebula.shop", "password": "pw123456", "full_name": "Neu"}
    r = await client.post("/api/auth/register", json=payload)
    assert r.status_code == 201
    assert r.json()["user"]["email"] == "neu@nebula.shop"

    r = await client.post("/api/auth/register", json=payload)
    assert r.status_code == 409
    assert r.json()["message"] == "User already exists"


async def test_register_requires_identifier(client, fresh_db):
    r = await client.post("/api/auth/register", json={"full_name": "Niemand"})
    assert r.status_code == 400


async def test_me_requires_token(client, fresh_db):
    r = await client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["message"] == "No token provided"


async def test_me_rejects_bad_token(client, fresh_db):
    r = await client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid or expired token"


async def test_me_and_update(client, customer, customer_headers):
    r = await client.get("/api/auth/me", headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["username"] == "max"

    r = await client.patch("/api/auth/me", json={"phone": "+49 170 1234567"}, headers=customer_headers)
    assert r.status_code == 200
    assert r.json()["phone"] == "+49 170 1234567"


async def test_logout_clears_cookie(client, fresh_db):
    r = await client.post("/api/auth/logout")
    assert r.status_code == 200
    assert r.json()["message"] == "Logged out successfully"
    assert "token=" in r.headers.get("set-cookie", "")


async def test_admin_guard(client, customer_headers):
    r = await client.get("/api/admin/stats", headers=customer_headers)
    assert r.status_code == 403
    assert r.json() == {"error": "Forbidden", "message": "Admin access required"}


def _signed_init_data(bot_token: str, user: dict) -> str:
    params = {"auth_date": "1700000000", "query_id": "AAE", "user": json.dumps(user)}
    data_check = "\n".join(f"{k}={params[k]}" for k in sorted(params))
    secret = hmac.new(b"WebAppData", bot_token.encode(), hashlib.sha256).digest()
    params["hash"] = hmac.new(secret, data_check.encode(), hashlib.sha256).hexdigest()
    return urlencode(params)


def test_webapp_signature_check():
    init_data = _signed_init_data("123:abc", {"id": 77, "first_name": "Tom"})
    assert check_webapp_signature(init_data, "123:abc")
    assert not check_webapp_signature(init_data, "123:other")
    assert not check_webapp_signature("user=%7B%7D", "123:abc")


async def test_telegram_webapp_unverified_user_gets_403(client, fresh_db):
    init_data = _signed_init_data("123:abc", {"id": 555, "first_name": "Tom", "username": "tommy"})
    r = await client.post("/api/auth/telegram-webapp", json={"initData": init_data})
    assert r.status_code == 403
    body = r.json()
    assert body["verification_status"] == "pending"


async def test_telegram_webapp_verified_user_gets_token(client, fresh_db):
    await make_user(telegram_id="556", full_name="Verified", verification_status="verified")
    init_data = _signed_init_data("123:abc", {"id": 556, "first_name": "Vera"})
    r = await client.post("/api/auth/telegram-webapp", json={"initData": init_data})
    assert r.status_code == 200
    assert r.json()["user"]["full_name"] == "Vera"


async def test_telegram_webapp_bad_signature(client, fresh_db, monkeypatch):
    monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:abc")
    init_data = _signed_init_data("999:zzz", {"id": 1})
    r = await client.post("/api/auth/telegram-webapp", json={"initData": init_data})
    assert r.status_code == 401
    assert r.json()["message"] == "Invalid Telegram WebApp signature"


async def test_telegram_webapp_missing_user(client, fresh_db):
    r = await client.post("/api/auth/telegram-webapp", json={"initData": "auth_date=1"})
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid Telegram WebApp data"


async def test_cookie_token_is_accepted(client, customer):
    token = auth_headers(customer)["Authorization"].split(" ", 1)[1]
    client.cookies.set("token", token)
    r = await client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json()["id"] == customer.id
