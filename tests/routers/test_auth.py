from urllib.parse import parse_qs, urlsplit

from fastapi import status

from app import auth
from app.i18n import _
from app.settings import app_settings
from tests import assert_ok


def test_login_and_callback(client):
    response = client.get("/auth/login", follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == f"{app_settings.callback_url}?user_index=0"

    response = client.get("/auth/callback?user_index=2", follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND
    location = urlsplit(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}" == app_settings.frontend_url
    assert location.path == "/auth/callback"

    token = parse_qs(location.fragment)["access_token"][0]
    response = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert_ok(response)
    assert response.json()["id"] == "mock-cfs-admin"
    assert response.json()["roles"] == ["reviewer"]


def test_callback_post(client):
    response = client.post("/auth/callback", data={"user_index": "1"}, follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND

    token = parse_qs(urlsplit(response.headers["location"]).fragment)["access_token"][0]
    assert auth.decode_session_token(token).external_account_id == "MA-ORG-10099"


def test_callback_failed(client):
    response = client.get("/auth/callback?user_index=abc", follow_redirects=False)
    assert response.status_code == status.HTTP_302_FOUND
    assert response.headers["location"] == f"{app_settings.frontend_url}/login?error=auth_failed"


def test_mock_login(client):
    response = client.post("/auth/mock-login", json={"user_index": 0})
    assert_ok(response)
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["user"]["email"] == "jdoe@safehaven.org"

    response = client.get("/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert_ok(response)
    assert response.json()["external_account_id"] == "MA-ORG-10001"

    # Out-of-range indexes fall back to the first user.
    response = client.post("/auth/mock-login", json={"user_index": 99, "external_account_id": "MA-ORG-20000"})
    assert_ok(response)
    assert response.json()["user"]["id"] == "mock-applicant-1"
    assert response.json()["user"]["external_account_id"] == "MA-ORG-20000"


def test_mock_login_other_driver(client, app):
    app.state.authenticator = auth.EntraIdAuthenticator(app_settings)

    response = client.post("/auth/mock-login", json={"user_index": 0})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json() == {"detail": _("Mock login is only available with the mock auth driver")}


def test_me(client, applicant_header):
    response = client.get("/auth/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"detail": _("Not authenticated")}

    response = client.get("/auth/me", headers={"Authorization": "Bearer invalid"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"detail": _("Invalid or expired session token")}

    response = client.get("/auth/me", headers=applicant_header)
    assert_ok(response)
    assert response.json()["roles"] == ["applicant"]


def test_status(client, reviewer_header):
    response = client.get("/auth/status")
    assert_ok(response)
    assert response.json() == {"driver": "mock", "configured": True, "authenticated": False, "user": None}

    response = client.get("/auth/status", headers=reviewer_header)
    assert_ok(response)
    assert response.json()["authenticated"] is True
    assert response.json()["user"]["id"] == "mock-cfs-admin"


def test_logout(client, applicant_header):
    response = client.post("/auth/logout", headers=applicant_header)
    assert_ok(response)
    assert response.json() == {"detail": _("Logged out successfully"), "redirect_url": None}
