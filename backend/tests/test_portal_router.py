"""End-to-end tests for the portal pages through the FastAPI app."""
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from portal.auth.hosted_ui import ADMIN_SCOPE
from portal.auth.schemas import (
    AuthResult,
    Challenge,
    ChallengeName,
    SignInOutcome,
    Tokens,
    UserProfile,
)
from portal.config import AppSettings, CognitoSettings, set_config
from portal.main import app

TOKENS = Tokens(id_token="id", access_token="access", refresh_token="refresh")
PROFILE = UserProfile(
    username="ada",
    attributes={"email": "ada@example.com", "email_verified": "false", "given_name": "Ada"},
)


@pytest.fixture
def cognito(portal_config):
    """Patch the Cognito client used by the router; yield the instance mock."""
    with patch("portal.ui.router.CognitoAuthService") as mock_cls:
        service = mock_cls.return_value
        service.current_authenticated_user.return_value = AuthResult.ok(PROFILE)
        yield service


def _login(api_client, cognito):
    cognito.sign_in.return_value = AuthResult.ok(SignInOutcome(username="ada", tokens=TOKENS))
    return api_client.post("/login", data={"username": "ada@example.com", "password": "Passw0rd!"})


def test_health(api_client):
    resp = api_client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestPages:

    def test_login_page_sets_session_cookie(self, api_client):
        resp = api_client.get("/")

        assert resp.status_code == 200
        assert "<h2>Login</h2>" in resp.text
        assert 'href="/auth/social/Google"' in resp.text
        assert 'href="/auth/social/LoginWithAmazon"' in resp.text
        assert "portal_session" in resp.cookies

    def test_social_placeholder_without_domain(self):
        set_config(AppSettings(cognito=CognitoSettings(
            user_pool_id="us-east-1_TestPool",
            user_pool_web_client_id="test-client-id",
        )))
        try:
            resp = TestClient(app).get("/")
        finally:
            set_config(None)

        assert "Social sign-in available after domain setup" in resp.text
        assert "/auth/social/" not in resp.text

    def test_switch_view(self, api_client):
        resp = api_client.get("/switch/phone-register")
        assert resp.status_code == 200
        assert 'action="/register/phone"' in resp.text

    def test_switch_to_private_view_is_ignored(self, api_client):
        resp = api_client.get("/switch/dashboard")
        assert "<h2>Login</h2>" in resp.text

    def test_unconfigured_pool_returns_503(self):
        set_config(AppSettings())
        try:
            resp = TestClient(app).post("/login", data={"username": "a", "password": "b"})
        finally:
            set_config(None)

        assert resp.status_code == 503


class TestLoginFlow:

    def test_login_lands_on_dashboard(self, api_client, cognito):
        resp = _login(api_client, cognito)

        assert resp.status_code == 200
        assert "Welcome, ada" in resp.text
        assert "ada@example.com" in resp.text
        cognito.sign_in.assert_called_once_with("ada@example.com", "Passw0rd!")
        cognito.current_authenticated_user.assert_called_with("access")

    def test_login_redirects_after_post(self, api_client, cognito):
        cognito.sign_in.return_value = AuthResult.fail("Incorrect username or password.")

        resp = api_client.post(
            "/login",
            data={"username": "ada@example.com", "password": "nope"},
            follow_redirects=False,
        )

        assert resp.status_code == 303
        assert resp.headers["location"] == "/"

    def test_error_shown_once(self, api_client, cognito):
        cognito.sign_in.return_value = AuthResult.fail("Incorrect username or password.")

        first = api_client.post("/login", data={"username": "ada@example.com", "password": "nope"})
        second = api_client.get("/")

        assert "Incorrect username or password." in first.text
        assert 'value="ada@example.com"' in first.text
        assert "Incorrect username or password." not in second.text

    def test_login_type_toggle(self, api_client):
        resp = api_client.post("/login/type", data={"login_type": "phone", "username": ""})
        assert "Phone Number:" in resp.text
        assert 'type="tel"' in resp.text

    def test_totp_challenge_then_code(self, api_client, cognito):
        cognito.sign_in.return_value = AuthResult.ok(SignInOutcome(
            username="ada",
            challenge=Challenge(
                name=ChallengeName.SOFTWARE_TOKEN_MFA, username="ada", session="opaque"
            ),
        ))
        cognito.confirm_sign_in.return_value = AuthResult.ok(
            SignInOutcome(username="ada", tokens=TOKENS)
        )

        challenged = api_client.post("/login", data={"username": "ada", "password": "Passw0rd!"})
        assert "Two-Factor Authentication" in challenged.text
        assert "authenticator app" in challenged.text

        resp = api_client.post("/login/mfa", data={"code": "123456"})

        assert "Welcome, ada" in resp.text
        cognito.confirm_sign_in.assert_called_once_with(
            "ada", "opaque", "123456", ChallengeName.SOFTWARE_TOKEN_MFA
        )

    def test_repeated_mfa_submit_stays_on_dashboard(self, api_client, cognito):
        cognito.sign_in.return_value = AuthResult.ok(SignInOutcome(
            username="ada",
            challenge=Challenge(name=ChallengeName.SMS_MFA, username="ada", session="opaque"),
        ))
        cognito.confirm_sign_in.return_value = AuthResult.ok(
            SignInOutcome(username="ada", tokens=TOKENS)
        )
        api_client.post("/login", data={"username": "ada", "password": "Passw0rd!"})
        api_client.post("/login/mfa", data={"code": "123456"})

        resp = api_client.post("/login/mfa", data={"code": "123456"})

        assert "Welcome, ada" in resp.text
        assert "sign-in session has ended" not in resp.text
        cognito.confirm_sign_in.assert_called_once()

    def test_mfa_back_returns_to_login(self, api_client, cognito):
        cognito.sign_in.return_value = AuthResult.ok(SignInOutcome(
            username="ada",
            challenge=Challenge(name=ChallengeName.SMS_MFA, username="ada", session="opaque"),
        ))
        api_client.post("/login", data={"username": "ada", "password": "Passw0rd!"})

        resp = api_client.post("/login/mfa/back")
        assert "<h2>Login</h2>" in resp.text

    def test_logout(self, api_client, cognito):
        _login(api_client, cognito)

        resp = api_client.post("/logout")

        assert "<h2>Login</h2>" in resp.text
        cognito.sign_out.assert_called_once_with("access")


class TestRegistration:

    def test_password_mismatch(self, api_client, cognito):
        api_client.get("/switch/register")

        resp = api_client.post("/register", data={
            "username": "ada",
            "email": "ada@example.com",
            "phone_number": "1234567890",
            "password": "Passw0rd!",
            "confirm_password": "Passw0rd?",
        })

        assert "Passwords do not match" in resp.text
        assert 'value="ada@example.com"' in resp.text
        cognito.sign_up.assert_not_called()

    def test_phone_registration_and_verification(self, api_client, cognito):
        cognito.sign_up_with_phone.return_value = AuthResult.ok({"user_confirmed": False})
        cognito.confirm_sign_up.return_value = AuthResult.ok()
        api_client.get("/switch/phone-register")

        resp = api_client.post("/register/phone", data={
            "phone_number": "(123) 456-7890",
            "password": "Passw0rd!",
            "confirm_password": "Passw0rd!",
        })
        assert "+11234567890" in resp.text
        assert "Verify Phone Number" in resp.text

        resp = api_client.post("/register/verify", data={"code": "123456"})

        cognito.confirm_sign_up.assert_called_once_with("+11234567890", "123456")
        assert "Phone number verified successfully! You can now login." in resp.text
        assert 'value="+11234567890"' in resp.text


def _token_response(**payload):
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {"id_token": "id", "access_token": "access", **payload}
    return resp


def _user_info_response():
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {
        "sub": "5f0c7b7e",
        "username": "Google_1234",
        "email": "ada@example.com",
        "email_verified": True,
    }
    return resp


class TestSocialSignIn:

    def _start(self, api_client):
        resp = api_client.get("/auth/social/Google", follow_redirects=False)
        assert resp.status_code == 303
        location = urlparse(resp.headers["location"])
        assert location.netloc == "test.auth.us-east-1.amazoncognito.com"
        return parse_qs(location.query)["state"][0]

    def test_unknown_provider(self, api_client):
        resp = api_client.get("/auth/social/MySpace", follow_redirects=False)
        assert resp.status_code == 400

    def test_not_configured(self):
        set_config(AppSettings(cognito=CognitoSettings(
            user_pool_id="us-east-1_TestPool",
            user_pool_web_client_id="test-client-id",
        )))
        try:
            resp = TestClient(app).get("/auth/social/Google", follow_redirects=False)
        finally:
            set_config(None)
        assert resp.status_code == 400

    @patch("portal.auth.hosted_ui.httpx.get")
    @patch("portal.auth.hosted_ui.httpx.post")
    @patch("portal.auth.service.boto3")
    def test_callback_without_admin_scope_reads_user_info(
        self, mock_boto3, mock_post, mock_get, api_client
    ):
        """GetUser rejects Hosted UI tokens lacking the admin scope; userInfo is used instead."""
        client = MagicMock()
        client.get_user.side_effect = ClientError(
            {"Error": {"Code": "NotAuthorizedException",
                       "Message": "Access Token does not have required scopes"}},
            "GetUser",
        )
        mock_boto3.client.return_value = client
        mock_post.return_value = _token_response()
        mock_get.return_value = _user_info_response()
        state = self._start(api_client)

        resp = api_client.get(f"/auth/callback?code=auth-code&state={state}")

        assert "Welcome, Google_1234" in resp.text
        assert "ada@example.com" in resp.text
        assert "Account settings are managed by your social sign-in provider." in resp.text
        assert 'action="/account/password"' not in resp.text
        assert 'action="/logout"' in resp.text
        client.get_user.assert_not_called()
        assert mock_post.call_args.kwargs["data"]["code"] == "auth-code"
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer access"

        # Still signed in on the next page load.
        assert "Welcome, Google_1234" in api_client.get("/").text

    @patch("portal.auth.hosted_ui.httpx.get")
    @patch("portal.auth.hosted_ui.httpx.post")
    def test_callback_with_admin_scope_uses_get_user(
        self, mock_post, mock_get, api_client, cognito, portal_config
    ):
        portal_config.cognito.oauth.scopes = ["openid", "email", ADMIN_SCOPE]
        mock_post.return_value = _token_response()
        state = self._start(api_client)

        resp = api_client.get(f"/auth/callback?code=auth-code&state={state}")

        assert "Welcome, ada" in resp.text
        assert 'action="/account/password"' in resp.text
        cognito.current_authenticated_user.assert_called_with("access")
        mock_get.assert_not_called()

    @patch("portal.auth.hosted_ui.httpx.get")
    @patch("portal.auth.hosted_ui.httpx.post")
    def test_social_session_cannot_use_account_actions(
        self, mock_post, mock_get, api_client, cognito
    ):
        mock_post.return_value = _token_response()
        mock_get.return_value = _user_info_response()
        state = self._start(api_client)
        api_client.get(f"/auth/callback?code=auth-code&state={state}")

        resp = api_client.post("/account/password", data={
            "old_password": "a", "new_password": "b", "confirm_password": "b",
        })

        assert "Welcome, Google_1234" in resp.text
        assert "Account settings are managed by your social sign-in provider." in resp.text
        cognito.change_password.assert_not_called()

    @patch("portal.auth.hosted_ui.httpx.post")
    def test_callback_with_forged_state(self, mock_post, api_client):
        self._start(api_client)

        resp = api_client.get("/auth/callback?code=auth-code&state=forged")

        assert "Social sign-in could not be verified" in resp.text
        mock_post.assert_not_called()

    @patch("portal.auth.hosted_ui.httpx.get")
    @patch("portal.auth.hosted_ui.httpx.post")
    def test_federated_logout_goes_through_hosted_ui(self, mock_post, mock_get, api_client, cognito):
        mock_post.return_value = _token_response()
        mock_get.return_value = _user_info_response()
        state = self._start(api_client)
        api_client.get(f"/auth/callback?code=auth-code&state={state}")

        resp = api_client.post("/logout", follow_redirects=False)

        location = urlparse(resp.headers["location"])
        assert location.path == "/logout"
        assert parse_qs(location.query)["logout_uri"] == ["http://testserver/"]


class TestDashboardActions:

    def test_actions_require_login(self, api_client, cognito):
        resp = api_client.post("/account/mfa/sms")
        assert "Please log in first." in resp.text
        cognito.set_preferred_mfa.assert_not_called()

    def test_totp_setup_shows_secret(self, api_client, cognito):
        cognito.setup_totp.return_value = AuthResult.ok("JBSWY3DPEHPK3PXP")
        _login(api_client, cognito)

        resp = api_client.post("/account/mfa/totp")

        assert "JBSWY3DPEHPK3PXP" in resp.text
        assert "otpauth://totp/" in resp.text

    def test_unverified_email_offers_verification(self, api_client, cognito):
        resp = _login(api_client, cognito)
        assert 'action="/account/attributes/email/send"' in resp.text

    def test_expired_token_returns_to_login(self, api_client, cognito):
        _login(api_client, cognito)
        cognito.current_authenticated_user.return_value = AuthResult.fail("Access Token has expired")

        resp = api_client.get("/")

        assert "<h2>Login</h2>" in resp.text
        assert "Access Token has expired" in resp.text

    def test_delete_account(self, api_client, cognito):
        cognito.delete_user.return_value = AuthResult.ok()
        _login(api_client, cognito)

        resp = api_client.post("/account/delete")

        assert "Your account has been deleted." in resp.text
        cognito.delete_user.assert_called_once_with("access")
