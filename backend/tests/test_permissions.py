"""Token extraction and role checks."""
from medstock.core.config import settings
from medstock.core.security import create_access_token

from conftest import auth, make_user


def test_role_check_is_case_insensitive(client, db):
    user = make_user(db, "Upper Case Hospital", "Institute")

    resp = client.get("/seller/orders", headers=auth(user))

    assert resp.status_code == 200


def test_wrong_role_is_forbidden(client, pharmacy):
    resp = client.get("/seller/orders", headers=auth(pharmacy))

    assert resp.status_code == 403
    assert resp.json()["detail"] == "Access Denied"


def test_cookie_token_is_accepted(client, institute):
    client.cookies.set(settings.AUTH_COOKIE_NAME, create_access_token(str(institute.id)))

    resp = client.get("/drugs")

    assert resp.status_code == 200


def test_invalid_token(client):
    resp = client.get("/drugs", headers={"Authorization": "Bearer not-a-jwt"})

    assert resp.status_code == 401
    assert resp.headers["www-authenticate"] == "Bearer"


def test_expired_token(client, institute):
    token = create_access_token(str(institute.id), expires_minutes=-1)

    resp = client.get("/drugs", headers={"Authorization": f"Bearer {token}"})

    assert resp.status_code == 401


def test_inactive_user_is_rejected(client, db):
    user = make_user(db, "Closed Clinic", "institute", status="Inactive")

    resp = client.get("/drugs", headers=auth(user))

    assert resp.status_code == 401


def test_unknown_user_is_rejected(client):
    resp = client.get("/drugs", headers={"Authorization": f"Bearer {create_access_token('9999')}"})

    assert resp.status_code == 401
