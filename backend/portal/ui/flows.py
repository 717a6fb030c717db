"""Form handlers for the portal pages.

Every handler follows the same shape: clear the previous message, check the
form locally, make at most one Cognito call, and map the ``AuthResult`` onto
the :class:`UISession` (next view, error or success text). Handlers return
``True`` when the vendor call (or local step) succeeded.
"""
import logging
import secrets
from typing import Callable, Dict, Optional

from portal.auth.hosted_ui import HostedUIService
from portal.auth.phone import format_phone_number
from portal.auth.schemas import AuthResult, ChallengeName, MfaType, Tokens, UserProfile
from portal.auth.service import CognitoAuthService

from .session import (
    VIEW_DASHBOARD,
    VIEW_LOGIN,
    VIEW_MFA,
    VIEW_NEW_PASSWORD,
    VIEW_RESET_PASSWORD,
    VIEW_VERIFY_EMAIL,
    VIEW_VERIFY_PHONE,
    UISession,
)

logger = logging.getLogger(__name__)

PASSWORDS_DO_NOT_MATCH = "Passwords do not match"
LOGIN_REQUIRED = "Please log in first."
SOCIAL_ACCOUNT_READ_ONLY = "Account settings are managed by your social sign-in provider."

VERIFIABLE_ATTRIBUTES = ("email", "phone_number")
EDITABLE_ATTRIBUTES = ("given_name", "family_name", "email", "phone_number")


class AuthFlow:
    """Drives one browser's :class:`UISession` through the auth forms.

    Args:
        session: The UI state to read and update.
        service: Cognito user pool client. Required by every handler except
            the social sign-in ones.
        hosted_ui: Hosted UI client for social sign-in, ``None`` when no
            domain is configured.
        on_login: Called with the session each time a login completes.
    """

    def __init__(
        self,
        session: UISession,
        service: Optional[CognitoAuthService] = None,
        hosted_ui: Optional[HostedUIService] = None,
        on_login: Optional[Callable[[UISession], None]] = None,
    ) -> None:
        self.session = session
        self.service = service
        self.hosted_ui = hosted_ui
        self.on_login = on_login

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    def _error(self, message: str) -> bool:
        self.session.error = message
        return False

    def _failed(self, result: AuthResult) -> bool:
        return self._error(result.error or "Something went wrong. Please try again.")

    def _missing(self, **fields: str) -> bool:
        """Set an error naming the first empty field; True if any was empty."""
        for label, value in fields.items():
            if not (value or "").strip():
                self._error(f"Please enter your {label.replace('_', ' ')}.")
                return True
        return False

    def _identifier(self, value: str, login_type: str) -> str:
        return format_phone_number(value) if login_type == "phone" else value.strip()

    def _complete_login(self, tokens: Tokens, username: Optional[str], federated: bool = False) -> bool:
        session = self.session
        session.switch_to(VIEW_DASHBOARD)
        session.tokens = tokens
        session.username = username
        session.federated = federated
        session.pending_identifier = None
        logger.info(f"Login successful: {username or '<federated>'}")
        if self.on_login is not None:
            self.on_login(session)
        return True

    def _apply_sign_in(self, result: AuthResult) -> bool:
        """Route a sign-in style result to the dashboard or the next challenge."""
        if not result.success:
            return self._failed(result)

        outcome = result.data
        if outcome.tokens is not None:
            return self._complete_login(outcome.tokens, outcome.username)

        challenge = outcome.challenge
        if challenge.mfa_type is not None:
            self.session.switch_to(VIEW_MFA)
        else:
            self.session.switch_to(VIEW_NEW_PASSWORD)
        self.session.challenge = challenge
        logger.info(f"Sign-in for {challenge.username} needs {challenge.name.value}")
        return True

    def _require_auth(self) -> bool:
        if self.session.is_authenticated:
            return True
        self.session.switch_to(VIEW_LOGIN)
        return self._error(LOGIN_REQUIRED)

    @property
    def _limited_token(self) -> bool:
        """True for social sessions whose access token lacks the admin scope."""
        return (
            self.session.federated
            and self.hosted_ui is not None
            and not self.hosted_ui.can_manage_account
        )

    def _require_account_access(self) -> bool:
        if not self._require_auth():
            return False
        if self._limited_token:
            return self._error(SOCIAL_ACCOUNT_READ_ONLY)
        return True

    @property
    def _access_token(self) -> str:
        return self.session.tokens.access_token

    # -----------------------------------------------------------------------
    # Login and challenges
    # -----------------------------------------------------------------------

    def submit_login(self, identifier: str, password: str, login_type: str = "email") -> bool:
        session = self.session
        session.clear_messages()
        session.login_type = "phone" if login_type == "phone" else "email"
        session.form = {"username": identifier}

        label = "phone_number" if session.login_type == "phone" else "email"
        if self._missing(**{label: identifier}, password=password):
            return False

        username = self._identifier(identifier, session.login_type)
        if self._missing(**{label: username}):
            return False
        return self._apply_sign_in(self.service.sign_in(username, password))

    def submit_mfa(self, code: str) -> bool:
        session = self.session
        if session.is_authenticated:
            # Repeated submit after the challenge was already answered.
            return True
        session.clear_messages()
        challenge = session.challenge
        if challenge is None or challenge.mfa_type is None:
            session.switch_to(VIEW_LOGIN)
            return self._error("Your sign-in session has ended. Please log in again.")
        if self._missing(verification_code=code):
            return False

        result = self.service.confirm_sign_in(
            challenge.username, challenge.session, code.strip(), challenge.name
        )
        return self._apply_sign_in(result)

    def reset_mfa(self) -> None:
        """Abandon the pending challenge and go back to the login form."""
        self.session.switch_to(VIEW_LOGIN)

    def submit_new_password(
        self,
        password: str,
        confirm_password: str,
        attributes: Optional[Dict[str, str]] = None,
    ) -> bool:
        session = self.session
        if session.is_authenticated:
            return True
        session.clear_messages()
        challenge = session.challenge
        if challenge is None or challenge.name != ChallengeName.NEW_PASSWORD_REQUIRED:
            session.switch_to(VIEW_LOGIN)
            return self._error("Your sign-in session has ended. Please log in again.")
        if password != confirm_password:
            return self._error(PASSWORDS_DO_NOT_MATCH)
        if self._missing(new_password=password):
            return False

        result = self.service.complete_new_password(
            challenge.username,
            challenge.session,
            password,
            {k: v for k, v in (attributes or {}).items() if v},
        )
        return self._apply_sign_in(result)

    # -----------------------------------------------------------------------
    # Registration
    # -----------------------------------------------------------------------

    def submit_email_registration(
        self,
        username: str,
        email: str,
        phone_number: str,
        password: str,
        confirm_password: str,
    ) -> bool:
        session = self.session
        session.clear_messages()
        session.form = {"username": username, "email": email, "phone_number": phone_number}

        if password != confirm_password:
            return self._error(PASSWORDS_DO_NOT_MATCH)
        if self._missing(username=username, email=email, phone_number=phone_number,
                         password=password):
            return False

        formatted_phone = format_phone_number(phone_number)
        if self._missing(phone_number=formatted_phone):
            return False
        result = self.service.sign_up(
            username.strip(),
            password,
            {"email": email.strip(), "phone_number": formatted_phone},
        )
        if not result.success:
            return self._failed(result)

        session.switch_to(VIEW_VERIFY_EMAIL)
        session.pending_identifier = username.strip()
        session.success = "Registration successful! Check your email for verification code."
        return True

    def submit_phone_registration(
        self,
        phone_number: str,
        password: str,
        confirm_password: str,
        first_name: str = "",
        last_name: str = "",
    ) -> bool:
        session = self.session
        session.clear_messages()
        session.form = {
            "phone_number": phone_number,
            "first_name": first_name,
            "last_name": last_name,
        }

        if password != confirm_password:
            return self._error(PASSWORDS_DO_NOT_MATCH)
        if self._missing(phone_number=phone_number, password=password):
            return False

        formatted_phone = format_phone_number(phone_number)
        if self._missing(phone_number=formatted_phone):
            return False
        additional = {}
        if first_name.strip():
            additional["given_name"] = first_name.strip()
        if last_name.strip():
            additional["family_name"] = last_name.strip()

        result = self.service.sign_up_with_phone(formatted_phone, password, additional)
        if not result.success:
            return self._failed(result)

        session.switch_to(VIEW_VERIFY_PHONE)
        session.pending_identifier = formatted_phone
        session.success = "Registration successful! Check your phone for verification code."
        return True

    def submit_verification(self, code: str) -> bool:
        session = self.session
        session.clear_messages()
        identifier = session.pending_identifier
        if not identifier:
            session.switch_to(VIEW_LOGIN)
            return self._error("There is no registration to verify.")
        if self._missing(verification_code=code):
            return False

        result = self.service.confirm_sign_up(identifier, code.strip())
        if not result.success:
            return self._failed(result)

        by_phone = session.view == VIEW_VERIFY_PHONE
        session.switch_to(VIEW_LOGIN)
        session.pending_identifier = None
        session.login_type = "phone" if by_phone else "email"
        session.form = {"username": identifier}
        session.success = (
            "Phone number verified successfully! You can now login."
            if by_phone
            else "Email verified successfully! You can now login."
        )
        return True

    def resend_code(self) -> bool:
        session = self.session
        session.clear_messages()
        identifier = session.pending_identifier
        if not identifier:
            return self._error("There is no registration to verify.")

        result = self.service.resend_sign_up(identifier)
        if not result.success:
            return self._failed(result)
        where = "phone" if session.view == VIEW_VERIFY_PHONE else "email"
        session.success = f"Verification code resent to your {where}."
        return True

    # -----------------------------------------------------------------------
    # Forgotten password
    # -----------------------------------------------------------------------

    def submit_forgot_password(self, identifier: str, login_type: str = "email") -> bool:
        session = self.session
        session.clear_messages()
        session.form = {"username": identifier}
        if self._missing(username=identifier):
            return False

        username = self._identifier(identifier, login_type)
        if self._missing(phone_number=username):
            return False
        result = self.service.forgot_password(username)
        if not result.success:
            return self._failed(result)

        session.switch_to(VIEW_RESET_PASSWORD)
        session.pending_identifier = username
        session.success = "Password reset code sent. Check your email or phone."
        return True

    def submit_reset_password(self, code: str, password: str, confirm_password: str) -> bool:
        session = self.session
        session.clear_messages()
        identifier = session.pending_identifier
        if not identifier:
            session.switch_to(VIEW_LOGIN)
            return self._error("Start the password reset again.")
        if password != confirm_password:
            return self._error(PASSWORDS_DO_NOT_MATCH)
        if self._missing(verification_code=code, new_password=password):
            return False

        result = self.service.forgot_password_submit(identifier, code.strip(), password)
        if not result.success:
            return self._failed(result)

        session.switch_to(VIEW_LOGIN)
        session.pending_identifier = None
        session.form = {"username": identifier}
        session.success = "Password reset successfully! You can now login."
        return True

    # -----------------------------------------------------------------------
    # Social sign-in
    # -----------------------------------------------------------------------

    def start_social_sign_in(self, provider: str) -> Optional[str]:
        """Return the Hosted UI URL to redirect to, or None on error."""
        self.session.clear_messages()
        if self.hosted_ui is None:
            self._error("Social sign-in available after domain setup")
            return None

        state = secrets.token_urlsafe(16)
        try:
            url = self.hosted_ui.authorize_url(provider, state)
        except ValueError as e:
            self._error(str(e))
            return None

        self.session.oauth_state = state
        logger.info(f"Redirecting to {provider} sign-in")
        return url

    def complete_social_sign_in(
        self, code: Optional[str], state: Optional[str], error: Optional[str] = None
    ) -> bool:
        session = self.session
        session.clear_messages()
        expected_state, session.oauth_state = session.oauth_state, None

        if error:
            session.switch_to(VIEW_LOGIN)
            return self._error(f"Social sign-in failed: {error}")
        if not code or not state or state != expected_state:
            session.switch_to(VIEW_LOGIN)
            return self._error("Social sign-in could not be verified. Please try again.")
        if self.hosted_ui is None:
            session.switch_to(VIEW_LOGIN)
            return self._error("Social sign-in available after domain setup")

        result = self.hosted_ui.exchange_code(code)
        if not result.success:
            session.switch_to(VIEW_LOGIN)
            return self._failed(result)
        return self._complete_login(result.data, None, federated=True)

    # -----------------------------------------------------------------------
    # Dashboard
    # -----------------------------------------------------------------------

    def load_profile(self) -> Optional[UserProfile]:
        """Fetch the signed-in user's profile; does not touch messages on success.

        A rejected access token (expired or revoked) ends the UI session.
        Social sessions without the admin scope read the Hosted UI userInfo
        endpoint instead of ``GetUser``.
        """
        if not self._require_auth():
            return None
        if self._limited_token:
            result = self.hosted_ui.user_info(self._access_token)
        else:
            result = self.service.current_authenticated_user(self._access_token)
        if not result.success:
            self.session.sign_out()
            self._failed(result)
            return None
        if self.session.username is None:
            self.session.username = result.data.username
        return result.data

    def update_profile(self, attributes: Dict[str, str]) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        changes = {}
        for name in EDITABLE_ATTRIBUTES:
            value = (attributes.get(name) or "").strip()
            if name == "phone_number":
                value = format_phone_number(value)
            if value:
                changes[name] = value
        if not changes:
            return self._error("Nothing to update.")

        result = self.service.update_user_attributes(self._access_token, changes)
        if not result.success:
            return self._failed(result)
        self.session.success = "Profile updated."
        return True

    def send_attribute_code(self, attribute_name: str) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        if attribute_name not in VERIFIABLE_ATTRIBUTES:
            return self._error(f"{attribute_name} cannot be verified.")

        result = self.service.send_attribute_verification_code(self._access_token, attribute_name)
        if not result.success:
            return self._failed(result)
        self.session.success = f"Verification code sent for {attribute_name.replace('_', ' ')}."
        return True

    def verify_attribute(self, attribute_name: str, code: str) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        if attribute_name not in VERIFIABLE_ATTRIBUTES:
            return self._error(f"{attribute_name} cannot be verified.")
        if self._missing(verification_code=code):
            return False

        result = self.service.verify_user_attribute(self._access_token, attribute_name, code.strip())
        if not result.success:
            return self._failed(result)
        self.session.success = f"{attribute_name.replace('_', ' ').capitalize()} verified."
        return True

    def enable_sms_mfa(self) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        result = self.service.set_preferred_mfa(self._access_token, MfaType.SMS)
        if not result.success:
            return self._failed(result)
        self.session.success = "SMS two-factor authentication enabled."
        return True

    def start_totp_setup(self) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        result = self.service.setup_totp(self._access_token)
        if not result.success:
            return self._failed(result)
        self.session.totp_secret = result.data
        self.session.success = "Add this key to your authenticator app, then enter the code it shows."
        return True

    def verify_totp_setup(self, code: str) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        if self._missing(verification_code=code):
            return False

        result = self.service.verify_totp_token(self._access_token, code.strip())
        if not result.success:
            return self._failed(result)
        self.session.totp_secret = None
        self.session.success = "Authenticator app enabled for two-factor authentication."
        return True

    def disable_mfa(self) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        result = self.service.set_preferred_mfa(self._access_token, MfaType.NOMFA)
        if not result.success:
            return self._failed(result)
        self.session.totp_secret = None
        self.session.success = "Two-factor authentication disabled."
        return True

    def change_password(self, old_password: str, new_password: str, confirm_password: str) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        if new_password != confirm_password:
            return self._error(PASSWORDS_DO_NOT_MATCH)
        if self._missing(current_password=old_password, new_password=new_password):
            return False

        result = self.service.change_password(self._access_token, old_password, new_password)
        if not result.success:
            return self._failed(result)
        self.session.success = "Password changed."
        return True

    def delete_account(self) -> bool:
        self.session.clear_messages()
        if not self._require_account_access():
            return False
        result = self.service.delete_user(self._access_token)
        if not result.success:
            return self._failed(result)
        logger.info(f"Deleted account {self.session.username}")
        self.session.sign_out()
        self.session.success = "Your account has been deleted."
        return True

    def sign_out(self) -> bool:
        """Revoke tokens at Cognito (best effort) and reset the UI to login."""
        session = self.session
        if session.tokens is not None and self.service is not None:
            result = self.service.sign_out(self._access_token)
            if not result.success:
                logger.warning(f"Global sign-out failed for {session.username}: {result.error}")
        logger.info(f"User logged out: {session.username}")
        session.sign_out()
        return True
