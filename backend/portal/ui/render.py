"""HTML rendering for the portal pages.

Templates are plain HTML files under ``templates/`` with ``{{ name }}``
placeholders. Values are HTML-escaped unless wrapped in :class:`Markup`
(fragments we built ourselves). No Jinja2 dependency.
"""
import html
import re
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import quote

from portal.auth.hosted_ui import PROVIDER_LABELS
from portal.auth.schemas import MfaType, UserProfile
from portal.config import AppSettings

from .session import (
    VIEW_DASHBOARD,
    VIEW_FORGOT_PASSWORD,
    VIEW_LOGIN,
    VIEW_MFA,
    VIEW_NEW_PASSWORD,
    VIEW_PHONE_REGISTER,
    VIEW_REGISTER,
    VIEW_RESET_PASSWORD,
    VIEW_VERIFY_EMAIL,
    VIEW_VERIFY_PHONE,
    UISession,
)

# HTML template directory
TEMPLATES_DIR = Path(__file__).parent / "templates"

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")

_TITLES = {
    VIEW_LOGIN: "Login",
    VIEW_REGISTER: "Register",
    VIEW_PHONE_REGISTER: "Register with Phone",
    VIEW_VERIFY_EMAIL: "Verify Email",
    VIEW_VERIFY_PHONE: "Verify Phone Number",
    VIEW_MFA: "Two-Factor Authentication",
    VIEW_NEW_PASSWORD: "Set a New Password",
    VIEW_FORGOT_PASSWORD: "Forgot Password",
    VIEW_RESET_PASSWORD: "Reset Password",
    VIEW_DASHBOARD: "Dashboard",
}


class Markup(str):
    """A string that is already safe HTML and must not be escaped again."""


def _fill(template: str, context: dict) -> str:
    def replace(match: re.Match) -> str:
        value = context.get(match.group(1), "")
        if isinstance(value, Markup):
            return value
        return html.escape(str(value))

    return _PLACEHOLDER.sub(replace, template)


def render_template(name: str, **context) -> Markup:
    """Load ``templates/<name>`` and substitute its placeholders."""
    template = (TEMPLATES_DIR / name).read_text(encoding="utf-8")
    return Markup(_fill(template, context))


def _checked(flag: bool) -> Markup:
    return Markup(" checked" if flag else "")


def messages(session: UISession) -> Markup:
    parts = []
    if session.error:
        parts.append(f'<div class="error-message">{html.escape(session.error)}</div>')
    if session.success:
        parts.append(f'<div class="success-message">{html.escape(session.success)}</div>')
    return Markup("\n".join(parts))


def social_buttons(providers: Iterable[str], enabled: bool) -> Markup:
    if not enabled:
        return Markup(
            '<div class="social-signin-placeholder"><div class="divider">'
            "<span>Social sign-in available after domain setup</span></div></div>"
        )
    buttons = "\n".join(
        render_template(
            "social_button.html",
            provider=provider,
            provider_class=provider.lower(),
            label=PROVIDER_LABELS.get(provider, provider),
        )
        for provider in providers
    )
    return render_template("social.html", buttons=Markup(buttons))


def _attribute_rows(profile: UserProfile) -> Markup:
    rows = []
    for name, value in sorted(profile.attributes.items()):
        rows.append(
            f"<tr><th>{html.escape(name)}</th><td>{html.escape(value)}</td></tr>"
        )
    return Markup("\n".join(rows))


def _verify_forms(profile: UserProfile) -> Markup:
    forms = []
    for name in ("email", "phone_number"):
        if name not in profile.attributes:
            continue
        if profile.attributes.get(f"{name}_verified") == "true":
            continue
        forms.append(render_template(
            "verify_attribute.html",
            attribute=name,
            label=name.replace("_", " "),
        ))
    return Markup("\n".join(forms))


def _mfa_section(profile: UserProfile, totp_secret: Optional[str]) -> Markup:
    labels = {
        MfaType.SMS: "SMS text message",
        MfaType.TOTP: "Authenticator app",
        MfaType.NOMFA: "Off",
    }
    setup = ""
    if totp_secret:
        issuer = "CognitoAuthPortal"
        label = quote(f"{issuer}:{profile.username}")
        uri = f"otpauth://totp/{label}?secret={totp_secret}&issuer={issuer}"
        setup = render_template("totp_setup.html", secret=totp_secret, otpauth_uri=uri)
    return render_template(
        "mfa_settings.html",
        current=labels[profile.preferred_mfa],
        totp_setup=Markup(setup),
    )


def _account_section(profile: UserProfile, totp_secret: Optional[str]) -> Markup:
    if not profile.manageable:
        return Markup(
            '<p class="account-note">Account settings are managed by your '
            "social sign-in provider.</p>"
        )
    return render_template(
        "account_settings.html",
        verify_forms=_verify_forms(profile),
        given_name=profile.attributes.get("given_name", ""),
        family_name=profile.attributes.get("family_name", ""),
        mfa=_mfa_section(profile, totp_secret),
    )


def render_view(
    session: UISession,
    config: AppSettings,
    profile: Optional[UserProfile] = None,
    identity_id: Optional[str] = None,
) -> Markup:
    """Render the full page for the session's current view."""
    view = session.view
    if view == VIEW_DASHBOARD and profile is None:
        view = VIEW_LOGIN
    form = session.form
    msgs = messages(session)

    if view == VIEW_LOGIN:
        phone = session.login_type == "phone"
        oauth = config.cognito.oauth
        content = render_template(
            "login.html",
            messages=msgs,
            email_checked=_checked(not phone),
            phone_checked=_checked(phone),
            username_label="Phone Number:" if phone else "Email:",
            username_type="tel" if phone else "email",
            username_placeholder="Enter your phone number" if phone else "Enter your email address",
            username=form.get("username", ""),
            social=social_buttons(oauth.providers, oauth.enabled),
        )
    elif view == VIEW_MFA:
        by_sms = session.challenge is not None and session.challenge.mfa_type == MfaType.SMS
        content = render_template(
            "mfa.html",
            messages=msgs,
            prompt=(
                "Enter the code sent to your phone number"
                if by_sms
                else "Enter the code from your authenticator app"
            ),
        )
    elif view == VIEW_NEW_PASSWORD:
        content = render_template("new_password.html", messages=msgs)
    elif view == VIEW_REGISTER:
        content = render_template(
            "register.html",
            messages=msgs,
            username=form.get("username", ""),
            email=form.get("email", ""),
            phone_number=form.get("phone_number", ""),
        )
    elif view == VIEW_PHONE_REGISTER:
        content = render_template(
            "phone_register.html",
            messages=msgs,
            phone_number=form.get("phone_number", ""),
            first_name=form.get("first_name", ""),
            last_name=form.get("last_name", ""),
        )
    elif view in (VIEW_VERIFY_EMAIL, VIEW_VERIFY_PHONE):
        content = render_template(
            "verify.html",
            messages=msgs,
            destination=session.pending_identifier or "",
            button_label="Verify Phone Number" if view == VIEW_VERIFY_PHONE else "Verify Email",
        )
    elif view == VIEW_FORGOT_PASSWORD:
        content = render_template(
            "forgot_password.html",
            messages=msgs,
            username=form.get("username", ""),
        )
    elif view == VIEW_RESET_PASSWORD:
        content = render_template(
            "reset_password.html",
            messages=msgs,
            destination=session.pending_identifier or "",
        )
    else:
        content = render_template(
            "dashboard.html",
            messages=msgs,
            username=profile.username,
            identity_id=identity_id or "",
            attribute_rows=_attribute_rows(profile),
            account=_account_section(profile, session.totp_secret),
        )
    return render_template(
        "layout.html",
        title=_TITLES.get(view, "Login"),
        content=content,
    )
