"""Pydantic schemas for the Cognito auth module."""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ChallengeName(str, Enum):
    SMS_MFA = "SMS_MFA"
    SOFTWARE_TOKEN_MFA = "SOFTWARE_TOKEN_MFA"
    NEW_PASSWORD_REQUIRED = "NEW_PASSWORD_REQUIRED"


class MfaType(str, Enum):
    """Preferred MFA kinds accepted by ``set_preferred_mfa``."""
    SMS = "SMS"
    TOTP = "TOTP"
    NOMFA = "NOMFA"


MFA_CHALLENGES = {
    ChallengeName.SMS_MFA: MfaType.SMS,
    ChallengeName.SOFTWARE_TOKEN_MFA: MfaType.TOTP,
}


class AuthResult(BaseModel):
    """Uniform outcome of every vendor call: success flag, payload or message."""
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "AuthResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "AuthResult":
        return cls(success=False, error=error)


class Tokens(BaseModel):
    id_token: str = ""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    token_type: str = "Bearer"

    @classmethod
    def from_authentication_result(cls, result: Dict[str, Any]) -> "Tokens":
        """Build from a Cognito ``AuthenticationResult`` dict."""
        return cls(
            id_token=result.get("IdToken", ""),
            access_token=result["AccessToken"],
            refresh_token=result.get("RefreshToken"),
            expires_in=result.get("ExpiresIn", 3600),
            token_type=result.get("TokenType", "Bearer"),
        )

    @classmethod
    def from_oauth_response(cls, data: Dict[str, Any]) -> "Tokens":
        """Build from a Hosted UI ``/oauth2/token`` JSON response."""
        return cls(
            id_token=data.get("id_token", ""),
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in", 3600),
            token_type=data.get("token_type", "Bearer"),
        )


class Challenge(BaseModel):
    """An in-progress multi-step sign-in.

    ``session`` is Cognito's continuation token; it is opaque and must be
    sent back exactly as received.
    """
    name: ChallengeName
    username: str
    session: str
    parameters: Dict[str, str] = Field(default_factory=dict)

    @property
    def mfa_type(self) -> Optional[MfaType]:
        return MFA_CHALLENGES.get(self.name)


class SignInOutcome(BaseModel):
    """Result payload of ``sign_in``: either tokens or a pending challenge."""
    username: str
    tokens: Optional[Tokens] = None
    challenge: Optional[Challenge] = None

    @property
    def challenge_name(self) -> Optional[ChallengeName]:
        return self.challenge.name if self.challenge else None


class UserProfile(BaseModel):
    """What ``GetUser`` (or the Hosted UI userInfo endpoint) tells us about the user.

    ``manageable`` is False when the profile came from userInfo: the access
    token cannot be used for attribute, MFA, password or delete calls.
    """
    username: str
    attributes: Dict[str, str] = Field(default_factory=dict)
    preferred_mfa: MfaType = MfaType.NOMFA
    mfa_methods: list[str] = Field(default_factory=list)
    manageable: bool = True
