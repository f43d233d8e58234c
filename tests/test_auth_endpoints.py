import pyotp
import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.main import app
from conftest import DEFAULT_PASSWORD, enable_totp, make_user

BASE = "/api/v1/auth"


@pytest.fixture
def client(auth_service):
    async def _get_auth_service():
        return auth_service

    app.dependency_overrides[deps.get_auth_service] = _get_auth_service
    yield TestClient(app)
    app.dependency_overrides.pop(deps.get_auth_service, None)


def _login(client, email="user@example.com", password=DEFAULT_PASSWORD):
    return client.post(f"{BASE}/login", json={"email": email, "password": password})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_register_endpoint(client):
    res = client.post(
        f"{BASE}/register",
        json={"email": "new@example.com", "password": "Str0ng!Pass", "display_name": "New"},
    )
    assert res.status_code == 201
    body = res.json()
    assert body["access_token"] and body["refresh_token"]
    assert body["mfa_required"] is False
    assert body["user"]["email"] == "new@example.com"
    assert "password_hash" not in body["user"]


def test_register_duplicate_and_weak_password(client):
    dup = client.post(
        f"{BASE}/register",
        json={"email": "user@example.com", "password": "Str0ng!Pass", "display_name": "Dup"},
    )
    assert dup.status_code == 409
    assert dup.json()["code"] == "duplicate_email"

    weak = client.post(
        f"{BASE}/register",
        json={"email": "weak@example.com", "password": "weakpass", "display_name": "Weak"},
    )
    assert weak.status_code == 400
    assert weak.json()["code"] == "weak_password"


def test_validation_error_does_not_echo_body(client):
    res = client.post(f"{BASE}/login", json={"email": "not-an-email", "password": "Secret!123"})
    assert res.status_code == 422
    assert res.json()["code"] == "validation_error"
    assert "Secret!123" not in res.text


def test_login_and_me(client, test_user):
    res = _login(client)
    assert res.status_code == 200
    access = res.json()["access_token"]

    me = client.get(f"{BASE}/me", headers=_bearer(access))
    assert me.status_code == 200
    assert me.json()["id"] == str(test_user.id)
    assert me.headers.get("x-request-id")


def test_login_failure_shape(client):
    res = _login(client, password="WrongPassword1!")
    assert res.status_code == 401
    body = res.json()
    assert body == {
        "code": "invalid_credentials",
        "message": "Invalid credentials",
        "data": None,
        "details": {},
    }
    assert res.headers.get("www-authenticate") == "Bearer"


def test_me_requires_token(client):
    assert client.get(f"{BASE}/me").status_code == 401
    res = client.get(f"{BASE}/me", headers=_bearer("garbage"))
    assert res.status_code == 401
    assert res.json()["code"] == "token_invalid"


def test_deactivated_principal_is_rejected(client, test_user):
    access = _login(client).json()["access_token"]
    test_user.is_active = False
    res = client.get(f"{BASE}/me", headers=_bearer(access))
    assert res.status_code == 403
    assert res.json()["code"] == "account_deactivated"


def test_mfa_login_flow(client, test_user):
    secret, _ = enable_totp(test_user)

    res = _login(client)
    body = res.json()
    assert body["mfa_required"] is True
    assert body["access_token"] is None

    # The challenge token is not a bearer credential.
    assert client.get(f"{BASE}/me", headers=_bearer(body["challenge_token"])).status_code == 401

    verified = client.post(
        f"{BASE}/mfa/login",
        json={"challenge_token": body["challenge_token"], "code": pyotp.TOTP(secret).now()},
    )
    assert verified.status_code == 200
    assert verified.json()["access_token"]


def test_challenge_token_rejected_by_refresh_and_me(client, test_user):
    enable_totp(test_user)
    challenge = _login(client).json()["challenge_token"]

    refreshed = client.post(f"{BASE}/refresh", json={"refresh_token": challenge})
    assert refreshed.status_code == 401
    assert refreshed.json()["code"] == "token_wrong_type"

    me = client.get(f"{BASE}/me", headers=_bearer(challenge))
    assert me.status_code == 401
    assert me.json()["code"] == "token_wrong_type"


def test_mfa_login_bad_code(client, test_user):
    enable_totp(test_user)
    challenge = _login(client).json()["challenge_token"]
    res = client.post(f"{BASE}/mfa/login", json={"challenge_token": challenge, "code": "abcdef"})
    assert res.status_code == 401
    assert res.json()["code"] == "invalid_mfa_code"


def test_refresh_endpoint(client):
    tokens = _login(client).json()

    wrong_type = client.post(f"{BASE}/refresh", json={"refresh_token": tokens["access_token"]})
    assert wrong_type.status_code == 401
    assert wrong_type.json()["code"] == "token_wrong_type"

    rotated = client.post(f"{BASE}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200

    reused = client.post(f"{BASE}/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401
    assert reused.json()["code"] == "token_revoked"


def test_logout_revokes_access_token(client):
    tokens = _login(client).json()
    res = client.post(
        f"{BASE}/logout",
        json={"refresh_token": tokens["refresh_token"]},
        headers=_bearer(tokens["access_token"]),
    )
    assert res.status_code == 204

    me = client.get(f"{BASE}/me", headers=_bearer(tokens["access_token"]))
    assert me.status_code == 401
    assert me.json()["code"] == "token_revoked"


def test_logout_with_malformed_refresh_token(client):
    access = _login(client).json()["access_token"]
    res = client.post(f"{BASE}/logout", json={"refresh_token": "garbage"}, headers=_bearer(access))
    assert res.status_code == 204

    me = client.get(f"{BASE}/me", headers=_bearer(access))
    assert me.json()["code"] == "token_revoked"


def test_change_password_endpoint(client):
    access = _login(client).json()["access_token"]
    res = client.post(
        f"{BASE}/change-password",
        json={"current_password": DEFAULT_PASSWORD, "new_password": "N3w!Password"},
        headers=_bearer(access),
    )
    assert res.status_code == 204
    assert _login(client, password="N3w!Password").status_code == 200


def test_mfa_setup_verify_and_status(client):
    headers = _bearer(_login(client).json()["access_token"])

    wrong = client.post(f"{BASE}/mfa/setup", json={"password": "WrongPassword1!"}, headers=headers)
    assert wrong.status_code == 401

    setup = client.post(f"{BASE}/mfa/setup", json={"password": DEFAULT_PASSWORD}, headers=headers)
    assert setup.status_code == 200
    payload = setup.json()
    assert len(payload["recovery_codes"]) == 8
    assert payload["provisioning_uri"].startswith("otpauth://totp/")

    verify = client.post(
        f"{BASE}/mfa/verify",
        json={"code": pyotp.TOTP(payload["secret"]).now()},
        headers=headers,
    )
    assert verify.status_code == 200
    assert verify.json() == {"enabled": True, "method": "TOTP", "remaining_recovery_codes": 8}

    again = client.post(f"{BASE}/mfa/setup", json={"password": DEFAULT_PASSWORD}, headers=headers)
    assert again.status_code == 409

    status = client.get(f"{BASE}/mfa/status", headers=headers)
    assert status.json()["enabled"] is True


def test_email_mfa_endpoints(client, code_sender):
    headers = _bearer(_login(client).json()["access_token"])

    setup = client.post(f"{BASE}/mfa/email/setup", json={"password": DEFAULT_PASSWORD}, headers=headers)
    assert setup.status_code == 200
    assert len(setup.json()["recovery_codes"]) == 8

    verify = client.post(f"{BASE}/mfa/email/verify", json={"code": code_sender.last_code}, headers=headers)
    assert verify.status_code == 200
    assert verify.json()["method"] == "EMAIL"

    challenge = _login(client).json()["challenge_token"]
    resend = client.post(f"{BASE}/mfa/resend", json={"challenge_token": challenge})
    assert resend.status_code == 204

    res = client.post(f"{BASE}/mfa/login", json={"challenge_token": challenge, "code": code_sender.last_code})
    assert res.status_code == 200


def test_recovery_codes_and_disable(client, test_user):
    secret, _ = enable_totp(test_user)
    challenge = _login(client).json()["challenge_token"]
    access = client.post(
        f"{BASE}/mfa/login",
        json={"challenge_token": challenge, "code": pyotp.TOTP(secret).now()},
    ).json()["access_token"]
    headers = _bearer(access)

    regen = client.post(f"{BASE}/mfa/recovery-codes", json={"password": DEFAULT_PASSWORD}, headers=headers)
    assert regen.status_code == 200
    assert len(regen.json()["recovery_codes"]) == 8

    disabled = client.post(f"{BASE}/mfa/disable", json={"password": DEFAULT_PASSWORD}, headers=headers)
    assert disabled.status_code == 200
    assert disabled.json() == {"enabled": False, "method": "NONE", "remaining_recovery_codes": None}


def test_admin_reset_requires_admin_role(client, user_repo):
    target = make_user(email="target@example.com")
    enable_totp(target)
    user_repo.users[target.id] = target

    member_headers = _bearer(_login(client).json()["access_token"])
    denied = client.post(f"{BASE}/admin/users/{target.id}/mfa/reset", headers=member_headers)
    assert denied.status_code == 403
    assert denied.json()["code"] == "forbidden"

    admin = make_user(email="admin@example.com")
    user_repo.users[admin.id] = admin
    user_repo.grant(admin, "ADMIN")
    admin_headers = _bearer(_login(client, email="admin@example.com").json()["access_token"])

    allowed = client.post(f"{BASE}/admin/users/{target.id}/mfa/reset", headers=admin_headers)
    assert allowed.status_code == 204
    assert target.mfa_enabled is False

    missing = client.post(
        f"{BASE}/admin/users/00000000-0000-0000-0000-000000000000/mfa/reset",
        headers=admin_headers,
    )
    assert missing.status_code == 404
