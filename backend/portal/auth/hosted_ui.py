"""Federated (social) sign-in through the Cognito Hosted UI.

Implements the redirect-based authorization-code flow:
1. Send the browser to ``/oauth2/authorize`` with ``identity_provider`` set
2. Cognito bounces through Google / Facebook / Amazon and back to our callback
3. Exchange the returned code at ``/oauth2/token`` for user pool tokens
4. Read the user's claims from ``/oauth2/userInfo`` when the tokens lack the admin scope
"""
import base64
import logging
from typing import List, Optional
from urllib.parse import urlencode

import httpx

from .schemas import AuthResult, Tokens, UserProfile

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("Google", "Facebook", "LoginWithAmazon")

# Hosted UI access tokens can call GetUser and the other self-service
# user pool APIs only when issued with this scope.
ADMIN_SCOPE = "aws.cognito.signin.user.admin"

PROVIDER_LABELS = {
    "Google": "Google",
    "Facebook": "Facebook",
    "LoginWithAmazon": "Amazon",
}


class HostedUIService:
    """Builds Hosted UI URLs, redeems authorization codes and reads userInfo."""

    def __init__(
        self,
        domain: str,
        client_id: str,
        redirect_sign_in: str,
        redirect_sign_out: str = "",
        scopes: Optional[List[str]] = None,
        client_secret: Optional[str] = None,
        response_type: str = "code",
        timeout: float = 10.0,
    ):
        self.domain = domain
        self.client_id = client_id
        self.redirect_sign_in = redirect_sign_in
        self.redirect_sign_out = redirect_sign_out
        self.scopes = scopes or ["email", "profile", "openid"]
        self.client_secret = client_secret or None
        self.response_type = response_type
        self.timeout = timeout

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}"

    @property
    def can_manage_account(self) -> bool:
        """Whether issued access tokens are accepted by the user pool self-service APIs."""
        return ADMIN_SCOPE in self.scopes

    def authorize_url(self, provider: str, state: str) -> str:
        """Return the URL that starts sign-in with *provider*.

        Raises:
            ValueError: If *provider* is not one of SUPPORTED_PROVIDERS.
        """
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported identity provider: {provider}")
        query = urlencode({
            "identity_provider": provider,
            "redirect_uri": self.redirect_sign_in,
            "response_type": self.response_type,
            "client_id": self.client_id,
            "scope": " ".join(self.scopes),
            "state": state,
        })
        return f"{self.base_url}/oauth2/authorize?{query}"

    def logout_url(self) -> str:
        query = urlencode({
            "client_id": self.client_id,
            "logout_uri": self.redirect_sign_out or self.redirect_sign_in,
        })
        return f"{self.base_url}/logout?{query}"

    def exchange_code(self, code: str) -> AuthResult:
        """Redeem an authorization code for tokens.

        Returns:
            AuthResult with Tokens on success, or the OAuth error description.
        """
        data = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code": code,
            "redirect_uri": self.redirect_sign_in,
        }
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if self.client_secret:
            basic = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
            headers["Authorization"] = f"Basic {basic}"

        try:
            resp = httpx.post(
                f"{self.base_url}/oauth2/token",
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Hosted UI token exchange failed: {e}")
            return AuthResult.fail(str(e))

        if resp.status_code != 200 or "access_token" not in payload:
            error = payload.get("error_description") or payload.get("error") or f"HTTP {resp.status_code}"
            logger.info(f"Hosted UI rejected authorization code: {error}")
            return AuthResult.fail(error)

        return AuthResult.ok(Tokens.from_oauth_response(payload))

    def user_info(self, access_token: str) -> AuthResult:
        """Fetch the signed-in user's claims from ``/oauth2/userInfo``.

        Works with any Hosted UI access token, including ones issued without
        the admin scope that ``GetUser`` requires.

        Returns:
            AuthResult with a UserProfile (``manageable=False``) on success.
        """
        try:
            resp = httpx.get(
                f"{self.base_url}/oauth2/userInfo",
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Hosted UI userInfo request failed: {e}")
            return AuthResult.fail(str(e))

        if resp.status_code != 200:
            error = payload.get("error_description") or payload.get("error") or f"HTTP {resp.status_code}"
            logger.info(f"Hosted UI rejected access token: {error}")
            return AuthResult.fail(error)

        attributes = {}
        for name, value in payload.items():
            if name == "username" or value is None:
                continue
            # email_verified / phone_number_verified may arrive as JSON booleans
            attributes[name] = str(value).lower() if isinstance(value, bool) else str(value)

        return AuthResult.ok(UserProfile(
            username=payload.get("username") or payload.get("sub", ""),
            attributes=attributes,
            manageable=False,
        ))
