"""Portal router serving the HTML auth pages.

GET renders whichever view the browser's session is on; every form POSTs to
its own endpoint, runs one :class:`AuthFlow` handler and redirects back to
``/`` (Post/Redirect/Get), so a refresh never re-submits a password.

Endpoints:
    GET  /                                 - Current view
    GET  /switch/{view}                    - Switch between signed-out views
    POST /login, /login/type               - Sign in / toggle email vs phone
    POST /login/mfa, /login/mfa/back       - MFA code / abandon challenge
    POST /login/new-password               - NEW_PASSWORD_REQUIRED challenge
    POST /register, /register/phone        - Sign up by email / phone
    POST /register/verify, /register/resend
    POST /password/forgot, /password/reset
    GET  /auth/social/{provider}           - Hosted UI redirect
    GET  /auth/callback                    - Hosted UI return
    POST /account/...                      - Dashboard actions
    POST /logout
"""
import logging
from typing import Optional

from fastapi import APIRouter, Form, HTTPException, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from portal.auth.hosted_ui import HostedUIService
from portal.auth.service import CognitoAuthService
from portal.config import AppSettings, get_config

from .flows import AuthFlow
from .render import render_view
from .session import PUBLIC_VIEWS, VIEW_DASHBOARD, UISession, get_session_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["portal"])


# =============================================================================
# Helpers
# =============================================================================


def _auth_service(config: AppSettings) -> CognitoAuthService:
    cognito = config.cognito
    if not cognito.configured:
        raise HTTPException(status_code=503, detail="Cognito user pool is not configured")
    return CognitoAuthService(
        user_pool_id=cognito.user_pool_id,
        client_id=cognito.user_pool_web_client_id,
        region=cognito.region,
        client_secret=config.secrets.cognito.client_secret,
        identity_pool_id=cognito.identity_pool_id,
    )


def _hosted_ui(config: AppSettings) -> Optional[HostedUIService]:
    oauth = config.cognito.oauth
    if not oauth.enabled or not config.cognito.user_pool_web_client_id:
        return None
    return HostedUIService(
        domain=oauth.domain,
        client_id=config.cognito.user_pool_web_client_id,
        redirect_sign_in=oauth.redirect_sign_in,
        redirect_sign_out=oauth.redirect_sign_out,
        scopes=oauth.scopes,
        client_secret=config.secrets.cognito.client_secret,
        response_type=oauth.response_type,
    )


def _session(request: Request, config: AppSettings) -> UISession:
    return get_session_store().get_or_create(request.cookies.get(config.session.cookie_name))


def _with_cookie(response: Response, session: UISession, config: AppSettings) -> Response:
    response.set_cookie(
        key=config.session.cookie_name,
        value=session.id,
        max_age=config.session.ttl_minutes * 60,
        httponly=True,
        secure=config.session.secure_cookie,
        samesite="lax",
    )
    return response


def _redirect(session: UISession, config: AppSettings, url: str = "/") -> Response:
    return _with_cookie(RedirectResponse(url=url, status_code=303), session, config)


def _flow(request: Request, need_service: bool = True):
    """Return (config, session, flow) for the calling browser."""
    config = get_config()
    session = _session(request, config)
    service = _auth_service(config) if need_service else None
    return config, session, AuthFlow(session, service=service, hosted_ui=_hosted_ui(config))


# =============================================================================
# Pages
# =============================================================================


@router.get("/", response_class=HTMLResponse)
async def index(request: Request) -> Response:
    """Render the current view. Messages are shown once, then cleared."""
    config = get_config()
    session = _session(request, config)

    profile = None
    identity_id = None
    if session.view == VIEW_DASHBOARD:
        flow = AuthFlow(session, service=_auth_service(config), hosted_ui=_hosted_ui(config))
        profile = flow.load_profile()
        if profile is not None and config.cognito.identity_pool_id and session.tokens.id_token:
            identity = flow.service.get_identity_id(session.tokens.id_token)
            identity_id = identity.data if identity.success else None

    content = render_view(session, config, profile=profile, identity_id=identity_id)
    session.clear_messages()
    return _with_cookie(HTMLResponse(content=content), session, config)


@router.get("/switch/{view}")
async def switch_view(view: str, request: Request) -> Response:
    config = get_config()
    session = _session(request, config)
    if view in PUBLIC_VIEWS and not session.is_authenticated:
        session.switch_to(view)
    return _redirect(session, config)


# =============================================================================
# Login
# =============================================================================


@router.post("/login")
async def login(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    login_type: str = Form("email"),
) -> Response:
    config, session, flow = _flow(request)
    flow.submit_login(username, password, login_type)
    return _redirect(session, config)


@router.post("/login/type")
async def login_type(
    request: Request,
    username: str = Form(""),
    login_type: str = Form("email"),
) -> Response:
    config = get_config()
    session = _session(request, config)
    session.login_type = "phone" if login_type == "phone" else "email"
    session.form = {"username": username}
    return _redirect(session, config)


@router.post("/login/mfa")
async def login_mfa(request: Request, code: str = Form("")) -> Response:
    config, session, flow = _flow(request)
    flow.submit_mfa(code)
    return _redirect(session, config)


@router.post("/login/mfa/back")
async def login_mfa_back(request: Request) -> Response:
    config = get_config()
    session = _session(request, config)
    AuthFlow(session).reset_mfa()
    return _redirect(session, config)


@router.post("/login/new-password")
async def login_new_password(
    request: Request,
    password: str = Form(""),
    confirm_password: str = Form(""),
) -> Response:
    config, session, flow = _flow(request)
    flow.submit_new_password(password, confirm_password)
    return _redirect(session, config)


# =============================================================================
# Registration
# =============================================================================


@router.post("/register")
async def register(
    request: Request,
    username: str = Form(""),
    email: str = Form(""),
    phone_number: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
) -> Response:
    config, session, flow = _flow(request)
    flow.submit_email_registration(username, email, phone_number, password, confirm_password)
    return _redirect(session, config)


@router.post("/register/phone")
async def register_phone(
    request: Request,
    phone_number: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
    first_name: str = Form(""),
    last_name: str = Form(""),
) -> Response:
    config, session, flow = _flow(request)
    flow.submit_phone_registration(phone_number, password, confirm_password, first_name, last_name)
    return _redirect(session, config)


@router.post("/register/verify")
async def register_verify(request: Request, code: str = Form("")) -> Response:
    config, session, flow = _flow(request)
    flow.submit_verification(code)
    return _redirect(session, config)


@router.post("/register/resend")
async def register_resend(request: Request) -> Response:
    config, session, flow = _flow(request)
    flow.resend_code()
    return _redirect(session, config)


# =============================================================================
# Forgotten password
# =============================================================================


@router.post("/password/forgot")
async def password_forgot(
    request: Request,
    username: str = Form(""),
    login_type: str = Form("email"),
) -> Response:
    config, session, flow = _flow(request)
    flow.submit_forgot_password(username, login_type)
    return _redirect(session, config)


@router.post("/password/reset")
async def password_reset(
    request: Request,
    code: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
) -> Response:
    config, session, flow = _flow(request)
    flow.submit_reset_password(code, password, confirm_password)
    return _redirect(session, config)


# =============================================================================
# Social sign-in (Hosted UI)
# =============================================================================


@router.get("/auth/social/{provider}")
async def social_sign_in(provider: str, request: Request) -> Response:
    """Redirect the browser to the Hosted UI for *provider*."""
    config, session, flow = _flow(request, need_service=False)
    if flow.hosted_ui is None:
        raise HTTPException(status_code=400, detail="Social sign-in is not configured")

    url = flow.start_social_sign_in(provider)
    if url is None:
        raise HTTPException(status_code=400, detail=session.error)
    return _redirect(session, config, url)


@router.get("/auth/callback")
async def social_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
) -> Response:
    """Hosted UI redirect target: redeem the code and land on the dashboard."""
    config, session, flow = _flow(request, need_service=False)
    flow.complete_social_sign_in(code, state, error_description or error)
    return _redirect(session, config)


# =============================================================================
# Dashboard actions
# =============================================================================


@router.post("/account/profile")
async def account_profile(
    request: Request,
    given_name: str = Form(""),
    family_name: str = Form(""),
) -> Response:
    config, session, flow = _flow(request)
    flow.update_profile({"given_name": given_name, "family_name": family_name})
    return _redirect(session, config)


@router.post("/account/attributes/{name}/send")
async def account_attribute_send(name: str, request: Request) -> Response:
    config, session, flow = _flow(request)
    flow.send_attribute_code(name)
    return _redirect(session, config)


@router.post("/account/attributes/{name}/verify")
async def account_attribute_verify(name: str, request: Request, code: str = Form("")) -> Response:
    config, session, flow = _flow(request)
    flow.verify_attribute(name, code)
    return _redirect(session, config)


@router.post("/account/mfa/sms")
async def account_mfa_sms(request: Request) -> Response:
    config, session, flow = _flow(request)
    flow.enable_sms_mfa()
    return _redirect(session, config)


@router.post("/account/mfa/totp")
async def account_mfa_totp(request: Request) -> Response:
    config, session, flow = _flow(request)
    flow.start_totp_setup()
    return _redirect(session, config)


@router.post("/account/mfa/totp/verify")
async def account_mfa_totp_verify(request: Request, code: str = Form("")) -> Response:
    config, session, flow = _flow(request)
    flow.verify_totp_setup(code)
    return _redirect(session, config)


@router.post("/account/mfa/disable")
async def account_mfa_disable(request: Request) -> Response:
    config, session, flow = _flow(request)
    flow.disable_mfa()
    return _redirect(session, config)


@router.post("/account/password")
async def account_password(
    request: Request,
    old_password: str = Form(""),
    new_password: str = Form(""),
    confirm_password: str = Form(""),
) -> Response:
    config, session, flow = _flow(request)
    flow.change_password(old_password, new_password, confirm_password)
    return _redirect(session, config)


@router.post("/account/delete")
async def account_delete(request: Request) -> Response:
    config, session, flow = _flow(request)
    flow.delete_account()
    return _redirect(session, config)


@router.post("/logout")
async def logout(request: Request) -> Response:
    """Sign out everywhere; bounce through the Hosted UI logout when configured."""
    config, session, flow = _flow(request)
    was_federated = session.federated
    flow.sign_out()
    if flow.hosted_ui is not None and was_federated and config.cognito.oauth.redirect_sign_out:
        return _redirect(session, config, flow.hosted_ui.logout_url())
    return _redirect(session, config)
