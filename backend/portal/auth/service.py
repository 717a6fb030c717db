"""Cognito user pool client used by every form in the portal.

Wraps the ``cognito-idp`` API the way the UI consumes it:
1. Sign-up, confirmation and code resend
2. Sign-in, including MFA and new-password challenges
3. Profile attributes and attribute verification
4. MFA preferences (SMS, TOTP)
5. Password change / reset and account deletion

Each public method returns an :class:`AuthResult`. Vendor errors are turned
into ``AuthResult(success=False, error=<message>)`` and are otherwise left
alone: no retries, no reclassification.
"""
import base64
import functools
import hashlib
import hmac
import logging
from typing import Any, Callable, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .schemas import (
    AuthResult,
    Challenge,
    ChallengeName,
    MfaType,
    SignInOutcome,
    Tokens,
    UserProfile,
)

logger = logging.getLogger(__name__)

# GetUser.PreferredMfaSetting -> MfaType
_PREFERRED_MFA = {
    "SMS_MFA": MfaType.SMS,
    "SOFTWARE_TOKEN_MFA": MfaType.TOTP,
}


def error_message(exc: Exception) -> str:
    """Extract the human-readable message Cognito attached to *exc*."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        return error.get("Message") or error.get("Code") or str(exc)
    return str(exc)


def vendor_call(operation: str) -> Callable:
    """Decorator: map any botocore failure to ``AuthResult.fail``."""

    def decorator(fn: Callable[..., AuthResult]) -> Callable[..., AuthResult]:
        @functools.wraps(fn)
        def wrapper(*args, **kwargs) -> AuthResult:
            try:
                return fn(*args, **kwargs)
            except (ClientError, BotoCoreError) as e:
                message = error_message(e)
                logger.info(f"Cognito {operation} failed: {message}")
                return AuthResult.fail(message)

        return wrapper

    return decorator


class CognitoAuthService:
    """Thin client over the Cognito user pool API for one app client."""

    def __init__(
        self,
        user_pool_id: str,
        client_id: str,
        region: str = "us-east-1",
        client_secret: Optional[str] = None,
        identity_pool_id: str = "",
    ):
        self.user_pool_id = user_pool_id
        self.client_id = client_id
        self.region = region
        self.client_secret = client_secret or None
        self.identity_pool_id = identity_pool_id
        self._client = boto3.client("cognito-idp", region_name=region)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _secret_hash(self, username: str) -> str:
        """SECRET_HASH parameter required when the app client has a secret."""
        message = username + self.client_id
        digest = hmac.new(
            key=self.client_secret.encode("utf-8"),
            msg=message.encode("utf-8"),
            digestmod=hashlib.sha256,
        ).digest()
        return base64.b64encode(digest).decode()

    def _with_secret(self, username: str, params: Dict[str, Any]) -> Dict[str, Any]:
        if self.client_secret:
            params["SecretHash"] = self._secret_hash(username)
        return params

    def _outcome(self, username: str, response: Dict[str, Any]) -> AuthResult:
        """Turn an InitiateAuth / RespondToAuthChallenge response into an outcome."""
        auth_result = response.get("AuthenticationResult")
        if auth_result:
            return AuthResult.ok(SignInOutcome(
                username=username,
                tokens=Tokens.from_authentication_result(auth_result),
            ))

        name = response.get("ChallengeName", "")
        try:
            challenge_name = ChallengeName(name)
        except ValueError:
            logger.warning(f"Unsupported challenge for {username}: {name}")
            return AuthResult.fail(f"Unsupported sign-in challenge: {name or 'unknown'}")

        params = response.get("ChallengeParameters") or {}
        return AuthResult.ok(SignInOutcome(
            username=username,
            challenge=Challenge(
                name=challenge_name,
                # Cognito hands back the canonical username for aliases.
                username=params.get("USER_ID_FOR_SRP", username),
                session=response.get("Session", ""),
                parameters={k: str(v) for k, v in params.items()},
            ),
        ))

    @staticmethod
    def _attribute_list(attributes: Dict[str, str]) -> list:
        return [{"Name": k, "Value": v} for k, v in attributes.items() if v is not None]

    # -----------------------------------------------------------------------
    # Sign-up
    # -----------------------------------------------------------------------

    @vendor_call("SignUp")
    def sign_up(
        self, identifier: str, password: str, attributes: Optional[Dict[str, str]] = None
    ) -> AuthResult:
        """Register a new user; the account stays unconfirmed until a code is entered.

        Returns:
            AuthResult whose data holds user_confirmed, user_sub and the
            code delivery details.
        """
        params = self._with_secret(identifier, {
            "ClientId": self.client_id,
            "Username": identifier,
            "Password": password,
            "UserAttributes": self._attribute_list(attributes or {}),
        })
        response = self._client.sign_up(**params)
        logger.info(f"Signed up {identifier} (confirmed={response.get('UserConfirmed', False)})")
        return AuthResult.ok({
            "user_confirmed": response.get("UserConfirmed", False),
            "user_sub": response.get("UserSub", ""),
            "code_delivery": response.get("CodeDeliveryDetails", {}),
        })

    def sign_up_with_phone(
        self, phone_number: str, password: str, additional_attributes: Optional[Dict[str, str]] = None
    ) -> AuthResult:
        attributes = {"phone_number": phone_number, **(additional_attributes or {})}
        return self.sign_up(phone_number, password, attributes)

    def sign_up_with_email_and_phone(
        self,
        email: str,
        phone_number: str,
        password: str,
        additional_attributes: Optional[Dict[str, str]] = None,
    ) -> AuthResult:
        attributes = {"email": email, "phone_number": phone_number, **(additional_attributes or {})}
        return self.sign_up(email, password, attributes)

    def sign_up_with_custom_attributes(
        self,
        username: str,
        password: str,
        email: str,
        custom_attributes: Optional[Dict[str, str]] = None,
    ) -> AuthResult:
        attributes = {"email": email, **(custom_attributes or {})}
        return self.sign_up(username, password, attributes)

    @vendor_call("ConfirmSignUp")
    def confirm_sign_up(self, identifier: str, code: str) -> AuthResult:
        params = self._with_secret(identifier, {
            "ClientId": self.client_id,
            "Username": identifier,
            "ConfirmationCode": code,
        })
        self._client.confirm_sign_up(**params)
        logger.info(f"Confirmed sign-up for {identifier}")
        return AuthResult.ok()

    @vendor_call("ResendConfirmationCode")
    def resend_sign_up(self, identifier: str) -> AuthResult:
        params = self._with_secret(identifier, {
            "ClientId": self.client_id,
            "Username": identifier,
        })
        response = self._client.resend_confirmation_code(**params)
        return AuthResult.ok(response.get("CodeDeliveryDetails", {}))

    # -----------------------------------------------------------------------
    # Sign-in and challenges
    # -----------------------------------------------------------------------

    @vendor_call("InitiateAuth")
    def sign_in(self, identifier: str, password: str) -> AuthResult:
        """Start a USER_PASSWORD_AUTH sign-in.

        Returns:
            AuthResult whose data is a SignInOutcome carrying either tokens
            or a challenge with its continuation token.
        """
        auth_params = {"USERNAME": identifier, "PASSWORD": password}
        if self.client_secret:
            auth_params["SECRET_HASH"] = self._secret_hash(identifier)

        response = self._client.initiate_auth(
            ClientId=self.client_id,
            AuthFlow="USER_PASSWORD_AUTH",
            AuthParameters=auth_params,
        )
        return self._outcome(identifier, response)

    @vendor_call("RespondToAuthChallenge")
    def confirm_sign_in(
        self,
        username: str,
        continuation_token: str,
        code: str,
        challenge: ChallengeName,
    ) -> AuthResult:
        """Answer an SMS_MFA or SOFTWARE_TOKEN_MFA challenge with a code."""
        challenge = ChallengeName(challenge)
        if challenge == ChallengeName.SMS_MFA:
            responses = {"USERNAME": username, "SMS_MFA_CODE": code}
        elif challenge == ChallengeName.SOFTWARE_TOKEN_MFA:
            responses = {"USERNAME": username, "SOFTWARE_TOKEN_MFA_CODE": code}
        else:
            return AuthResult.fail(f"{challenge.value} cannot be answered with a code")

        if self.client_secret:
            responses["SECRET_HASH"] = self._secret_hash(username)

        response = self._client.respond_to_auth_challenge(
            ClientId=self.client_id,
            ChallengeName=challenge.value,
            Session=continuation_token,
            ChallengeResponses=responses,
        )
        return self._outcome(username, response)

    @vendor_call("RespondToAuthChallenge")
    def complete_new_password(
        self,
        username: str,
        continuation_token: str,
        new_password: str,
        required_attributes: Optional[Dict[str, str]] = None,
    ) -> AuthResult:
        responses = {"USERNAME": username, "NEW_PASSWORD": new_password}
        for name, value in (required_attributes or {}).items():
            responses[f"userAttributes.{name}"] = value
        if self.client_secret:
            responses["SECRET_HASH"] = self._secret_hash(username)

        response = self._client.respond_to_auth_challenge(
            ClientId=self.client_id,
            ChallengeName=ChallengeName.NEW_PASSWORD_REQUIRED.value,
            Session=continuation_token,
            ChallengeResponses=responses,
        )
        return self._outcome(username, response)

    @staticmethod
    def check_user_status(outcome: SignInOutcome) -> AuthResult:
        """Report whether a sign-in outcome still needs a new password."""
        return AuthResult.ok({
            "requires_password_change": outcome.challenge_name == ChallengeName.NEW_PASSWORD_REQUIRED,
            "user": outcome,
        })

    @vendor_call("GlobalSignOut")
    def sign_out(self, access_token: str) -> AuthResult:
        self._client.global_sign_out(AccessToken=access_token)
        return AuthResult.ok()

    # -----------------------------------------------------------------------
    # Current user
    # -----------------------------------------------------------------------

    @vendor_call("GetUser")
    def current_authenticated_user(self, access_token: str) -> AuthResult:
        response = self._client.get_user(AccessToken=access_token)
        attributes = {a["Name"]: a.get("Value", "") for a in response.get("UserAttributes", [])}
        return AuthResult.ok(UserProfile(
            username=response.get("Username", ""),
            attributes=attributes,
            preferred_mfa=_PREFERRED_MFA.get(response.get("PreferredMfaSetting", ""), MfaType.NOMFA),
            mfa_methods=response.get("UserMFASettingList", []),
        ))

    def user_attributes(self, access_token: str) -> AuthResult:
        result = self.current_authenticated_user(access_token)
        if not result.success:
            return result
        return AuthResult.ok(result.data.attributes)

    @vendor_call("UpdateUserAttributes")
    def update_user_attributes(self, access_token: str, attributes: Dict[str, str]) -> AuthResult:
        response = self._client.update_user_attributes(
            AccessToken=access_token,
            UserAttributes=self._attribute_list(attributes),
        )
        return AuthResult.ok(response.get("CodeDeliveryDetailsList", []))

    @vendor_call("GetUserAttributeVerificationCode")
    def send_attribute_verification_code(self, access_token: str, attribute_name: str) -> AuthResult:
        response = self._client.get_user_attribute_verification_code(
            AccessToken=access_token,
            AttributeName=attribute_name,
        )
        return AuthResult.ok(response.get("CodeDeliveryDetails", {}))

    @vendor_call("VerifyUserAttribute")
    def verify_user_attribute(self, access_token: str, attribute_name: str, code: str) -> AuthResult:
        self._client.verify_user_attribute(
            AccessToken=access_token,
            AttributeName=attribute_name,
            Code=code,
        )
        return AuthResult.ok()

    @vendor_call("GetId")
    def get_identity_id(self, id_token: str) -> AuthResult:
        """Resolve the identity pool id for a signed-in user, if a pool is configured."""
        if not self.identity_pool_id:
            return AuthResult.fail("Identity pool is not configured")
        identity_client = boto3.client("cognito-identity", region_name=self.region)
        provider = f"cognito-idp.{self.region}.amazonaws.com/{self.user_pool_id}"
        response = identity_client.get_id(
            IdentityPoolId=self.identity_pool_id,
            Logins={provider: id_token},
        )
        return AuthResult.ok(response["IdentityId"])

    # -----------------------------------------------------------------------
    # MFA
    # -----------------------------------------------------------------------

    @vendor_call("SetUserMFAPreference")
    def set_preferred_mfa(self, access_token: str, mfa_type: MfaType) -> AuthResult:
        mfa_type = MfaType(mfa_type)
        self._client.set_user_mfa_preference(
            AccessToken=access_token,
            SMSMfaSettings={
                "Enabled": mfa_type == MfaType.SMS,
                "PreferredMfa": mfa_type == MfaType.SMS,
            },
            SoftwareTokenMfaSettings={
                "Enabled": mfa_type == MfaType.TOTP,
                "PreferredMfa": mfa_type == MfaType.TOTP,
            },
        )
        logger.info(f"Preferred MFA set to {mfa_type.value}")
        return AuthResult.ok(mfa_type.value)

    def get_preferred_mfa(self, access_token: str) -> AuthResult:
        result = self.current_authenticated_user(access_token)
        if not result.success:
            return result
        return AuthResult.ok(result.data.preferred_mfa.value)

    @vendor_call("AssociateSoftwareToken")
    def setup_totp(self, access_token: str) -> AuthResult:
        """Start TOTP enrolment.

        Returns:
            AuthResult whose data is the shared secret to load into an
            authenticator app.
        """
        response = self._client.associate_software_token(AccessToken=access_token)
        return AuthResult.ok(response["SecretCode"])

    @vendor_call("VerifySoftwareToken")
    def verify_totp_token(self, access_token: str, code: str, device_name: str = "") -> AuthResult:
        """Verify the first TOTP code, then make TOTP the preferred MFA."""
        params = {"AccessToken": access_token, "UserCode": code}
        if device_name:
            params["FriendlyDeviceName"] = device_name
        response = self._client.verify_software_token(**params)
        if response.get("Status") != "SUCCESS":
            return AuthResult.fail("Authenticator code could not be verified")
        return self.set_preferred_mfa(access_token, MfaType.TOTP)

    # -----------------------------------------------------------------------
    # Password lifecycle and account
    # -----------------------------------------------------------------------

    @vendor_call("ChangePassword")
    def change_password(self, access_token: str, old_password: str, new_password: str) -> AuthResult:
        self._client.change_password(
            AccessToken=access_token,
            PreviousPassword=old_password,
            ProposedPassword=new_password,
        )
        return AuthResult.ok()

    @vendor_call("ForgotPassword")
    def forgot_password(self, identifier: str) -> AuthResult:
        params = self._with_secret(identifier, {
            "ClientId": self.client_id,
            "Username": identifier,
        })
        response = self._client.forgot_password(**params)
        return AuthResult.ok(response.get("CodeDeliveryDetails", {}))

    @vendor_call("ConfirmForgotPassword")
    def forgot_password_submit(self, identifier: str, code: str, new_password: str) -> AuthResult:
        params = self._with_secret(identifier, {
            "ClientId": self.client_id,
            "Username": identifier,
            "ConfirmationCode": code,
            "Password": new_password,
        })
        self._client.confirm_forgot_password(**params)
        logger.info(f"Password reset confirmed for {identifier}")
        return AuthResult.ok()

    @vendor_call("DeleteUser")
    def delete_user(self, access_token: str) -> AuthResult:
        self._client.delete_user(AccessToken=access_token)
        return AuthResult.ok()
