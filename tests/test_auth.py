"""Authentication tests."""
from answerlinks.app import app
from answerlinks.auth import create_session, get_session, invalidate_session, validate_session, verify_password
from answerlinks.config import Settings
from answerlinks.dependencies import get_settings


def test_verify_password_correct():
    """Test correct password verification."""
    assert verify_password("trainingadmin") is True


def test_verify_password_incorrect():
    """Test incorrect password rejection."""
    assert verify_password("wrongpassword") is False
    assert verify_password("") is False


def test_session_lifecycle():
    """Test session creation, validation, and invalidation."""
    token = create_session("registry-token")

    assert token is not None
    assert len(token) > 20
    assert validate_session(token) is True
    assert get_session(token).api_token == "registry-token"

    invalidate_session(token)
    assert validate_session(token) is False


def test_invalid_session():
    """Test invalid session token."""
    assert validate_session("invalid-token") is False
    assert validate_session("") is False


def test_login_page_renders(client):
    """Test login page renders correctly."""
    response = client.get("/login")
    assert response.status_code == 200
    assert b"Login" in response.content or b"login" in response.content


def test_login_success(client):
    """Test successful login."""
    response = client.post(
        "/login",
        data={"password": "trainingadmin", "api_token": "admin-token"},
        follow_redirects=False,
    )
    assert response.status_code in (302, 303)
    assert "session_token" in response.cookies


def test_login_failure(client):
    """Test wrong password sends the user back to the login page."""
    response = client.post("/login", data={"password": "nope"}, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/login"
    assert "session_token" not in response.cookies


def test_logout(authenticated_client):
    """Test logout ends the session."""
    response = authenticated_client.get("/logout", follow_redirects=False)
    assert response.status_code == 303
    assert authenticated_client.get("/admin").status_code == 401


def test_login_returns_to_requested_admin_page(client):
    response = client.post(
        "/login",
        data={"password": "trainingadmin", "api_token": "admin-token", "next_url": "/admin/survey/S1/links"},
        follow_redirects=False,
    )
    assert response.headers["location"] == "/admin/survey/S1/links"


def test_login_ignores_foreign_return_targets(client):
    response = client.post(
        "/login",
        data={"password": "trainingadmin", "api_token": "admin-token", "next_url": "https://evil.test/admin"},
        follow_redirects=False,
    )
    assert response.headers["location"] == "/admin"


def test_login_without_any_registry_token_is_refused(client):
    """With no token configured, staff must supply one."""
    app.dependency_overrides[get_settings] = lambda: Settings(REGISTRY_TOKEN="")
    response = client.post("/login", data={"password": "trainingadmin"}, follow_redirects=False)
    assert response.headers["location"] == "/login"
    assert "session_token" not in response.cookies
