import asyncio
import json

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from slidegate import build_app
from slidegate.dependencies import require_email_captcha, require_image_captcha
from slidegate.lifecycle import CaptchaEngine
from slidegate.services.trajectory import MAX_TRAIL_POINTS

from conftest import human_trail


class CapturingChannel:
    def __init__(self):
        self.sent = []

    async def deliver(self, recipient, purpose, code, ttl_seconds):
        self.sent.append({"recipient": recipient, "purpose": purpose, "code": code})


@pytest.fixture
def engine(store, image_service, email_service):
    return CaptchaEngine(store=store, image=image_service, email=email_service, delivery=CapturingChannel())


@pytest.fixture
def client(engine):
    app = build_app(engine)

    @app.post("/register", dependencies=[Depends(require_image_captcha("register"))])
    async def register():
        return {"registered": True}

    @app.post("/reset-password", dependencies=[Depends(require_email_captcha("reset_password"))])
    async def reset_password():
        return {"reset": True}

    with TestClient(app) as test_client:
        yield test_client


def expected_offset(engine, record_id):
    raw = asyncio.run(engine.store.get(engine.image.records.key(record_id)))
    return json.loads(raw)["x"]


def solve_image_captcha(client, engine, purpose="register"):
    created = client.post("/captcha/image/create", json={"purpose": purpose}).json()
    record_id = created["data"]["id"]
    x = expected_offset(engine, record_id)
    verified = client.post(
        "/captcha/image/verify",
        json={"id": record_id, "x": x, "slider_offset_x": x, "duration": 1200, "trail": human_trail(x)},
    ).json()
    return verified


def test_create_image_captcha(client):
    response = client.post("/captcha/image/create", json={"purpose": "register"})
    body = response.json()

    assert response.status_code == 200
    assert body["success"] is True
    assert body["data"]["bg_url"].startswith("data:image/webp;base64,")
    assert body["data"]["puzzle_url"].startswith("data:image/png;base64,")
    assert body["data"]["width"] == 360
    assert body["data"]["piece_width"] == 60
    assert response.cookies.get("captcha_id") == body["data"]["id"]


def test_create_rejects_oversized_piece(client):
    body = client.post("/captcha/image/create", json={"purpose": "register", "width": 999}).json()
    assert body["success"] is False
    assert body["code"] == 400
    assert body["details"] == {"kind": "VALIDATION"}


def test_verify_issues_token(client, engine):
    body = solve_image_captcha(client, engine)
    assert body["success"] is True
    assert body["data"]["token"]
    assert body["data"]["expires_in"] == 300


def test_verify_unknown_id(client):
    body = client.post(
        "/captcha/image/verify",
        json={"id": "missing", "x": 100, "slider_offset_x": 100, "duration": 1200, "trail": human_trail(100)},
    ).json()
    assert body["success"] is False
    assert body["code"] == 410
    assert body["details"]["kind"] == "NOT_FOUND"


def test_verify_requires_trail(client):
    response = client.post("/captcha/image/verify", json={"id": "x", "x": 1, "slider_offset_x": 1, "duration": 1})
    assert response.status_code == 422


def test_guard_consumes_token_once(client, engine):
    data = solve_image_captcha(client, engine)["data"]
    headers = {"x-captcha-id": data["id"], "x-captcha-token": data["token"]}

    assert client.post("/register", headers=headers).json() == {"registered": True}
    second = client.post("/register", headers=headers)
    assert second.status_code == 400
    assert second.json()["detail"] == "Captcha token is invalid"


def test_guard_reads_cookies(client, engine):
    solve_image_captcha(client, engine)
    # captcha_id and captcha_token cookies were set by create/verify.
    assert client.post("/register").status_code == 200


def test_guard_without_credentials(client):
    response = client.post("/register")
    assert response.status_code == 400
    assert response.json()["detail"] == "Captcha token is missing"


def test_guard_rejects_wrong_purpose(client, engine):
    data = solve_image_captcha(client, engine, purpose="login")
    headers = {"x-captcha-id": data["id"], "x-captcha-token": data["token"]}
    assert client.post("/register", headers=headers).status_code == 400


def test_email_flow(client, engine):
    image = solve_image_captcha(client, engine, purpose="reset_password")["data"]
    sent = client.post(
        "/captcha/email/send",
        json={"email": "someone@example.com", "purpose": "reset_password"},
        headers={"x-captcha-id": image["id"], "x-captcha-token": image["token"]},
    ).json()
    assert sent["success"] is True
    assert "code" not in sent["data"]

    delivered = engine.delivery.sent[-1]
    assert delivered["recipient"] == "someone@example.com"
    verified = client.post(
        "/captcha/email/verify",
        json={"code": delivered["code"], "purpose": "reset_password"},
    ).json()
    assert verified["success"] is True
    assert verified["data"]["id"] == sent["data"]["id"]

    headers = {"x-email-captcha-id": verified["data"]["id"], "x-email-captcha-token": verified["data"]["token"]}
    assert client.post("/reset-password", headers=headers).json() == {"reset": True}
    assert client.post("/reset-password", headers=headers).status_code == 400


def test_email_send_requires_image_captcha(client, engine):
    response = client.post("/captcha/email/send", json={"email": "someone@example.com", "purpose": "register"})
    assert response.status_code == 400
    assert engine.delivery.sent == []


def test_email_wrong_code(client, engine):
    image = solve_image_captcha(client, engine)["data"]
    sent = client.post(
        "/captcha/email/send",
        json={"email": "someone@example.com", "purpose": "register"},
        headers={"x-captcha-id": image["id"], "x-captcha-token": image["token"]},
    ).json()
    code = engine.delivery.sent[-1]["code"]
    wrong = "".join("1" if digit != "1" else "2" for digit in code)

    body = client.post(
        "/captcha/email/verify", json={"id": sent["data"]["id"], "code": wrong, "purpose": "register"}
    ).json()
    assert body["success"] is False
    assert body["details"]["kind"] == "CODE_MISMATCH"


def test_redeem_endpoint(client, engine):
    data = solve_image_captcha(client, engine)["data"]
    payload = {"id": data["id"], "token": data["token"], "purpose": "register", "kind": "image"}

    assert client.post("/captcha/token/redeem", json=payload).json()["data"] == {"valid": True}
    assert client.post("/captcha/token/redeem", json=payload).json()["data"] == {"valid": False}
    garbage = dict(payload, token="garbage")
    assert client.post("/captcha/token/redeem", json=garbage).json()["data"] == {"valid": False}


def test_verify_rejects_oversized_trail(client):
    trail = [[index * 0.05, 100] for index in range(MAX_TRAIL_POINTS + 1)]
    response = client.post(
        "/captcha/image/verify",
        json={"id": "x", "x": 250, "slider_offset_x": 250, "duration": 5000, "trail": trail},
    )
    assert response.status_code == 422


def test_wildcard_cors_disables_credentials(client):
    response = client.options(
        "/captcha/image/create",
        headers={"Origin": "https://shop.example.com", "Access-Control-Request-Method": "POST"},
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "access-control-allow-credentials" not in response.headers
