"""Portal application configuration.

Loads settings from two YAML files:
  * portal.settings.yaml: non-secret configuration
  * portal.secrets.yaml : secrets (never committed)

Both files are looked up in the working directory first, then in ``./config``.
Environment variables override anything read from YAML, so a deployment can
run with no files at all.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("portal.settings.yaml")
SECRETS_FILE  = Path("portal.secrets.yaml")
CONFIG_DIR    = Path("config")

DEFAULT_SCOPES = ["email", "profile", "openid"]


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _resolve(path: Path) -> Path:
    """Return *path* if it exists, else the same name under ``./config``."""
    if path.exists():
        return path
    candidate = CONFIG_DIR / path.name
    return candidate if candidate.exists() else path


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class CognitoSecrets(BaseModel):
    client_secret: Optional[str] = None


class Secrets(BaseModel):
    cognito: CognitoSecrets = Field(default_factory=CognitoSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:    str  = "0.0.0.0"
    port:    int  = 8000
    debug:   bool = False
    reload:  bool = False


class LoggingSettings(BaseModel):
    level: str = "info"


class OAuthSettings(BaseModel):
    """Cognito Hosted UI settings used for social sign-in."""
    domain:              str       = ""
    scopes:              List[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    redirect_sign_in:    str       = ""
    redirect_sign_out:   str       = ""
    response_type:       Literal["code"] = "code"
    providers:           List[str] = Field(
        default_factory=lambda: ["Google", "Facebook", "LoginWithAmazon"]
    )

    @field_validator("domain")
    @classmethod
    def _strip_scheme(cls, value: str) -> str:
        # The Hosted UI domain is configured without scheme or trailing slash.
        value = value.strip()
        for prefix in ("https://", "http://"):
            if value.startswith(prefix):
                value = value[len(prefix):]
        return value.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.domain and self.redirect_sign_in)


class CognitoSettings(BaseModel):
    region:                  str = "us-east-1"
    user_pool_id:            str = ""
    identity_pool_id:        str = ""
    user_pool_web_client_id: str = ""
    oauth:                   OAuthSettings = Field(default_factory=OAuthSettings)

    @property
    def configured(self) -> bool:
        return bool(self.user_pool_id and self.user_pool_web_client_id)


class SessionSettings(BaseModel):
    cookie_name:   str  = "portal_session"
    ttl_minutes:   int  = Field(default=60, ge=1)
    secure_cookie: bool = False


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    cognito:  CognitoSettings  = Field(default_factory=CognitoSettings)
    session:  SessionSettings  = Field(default_factory=SessionSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

# env var -> path inside the merged settings dict
_ENV_OVERRIDES = {
    "COGNITO_REGION":                  ("cognito", "region"),
    "COGNITO_USER_POOL_ID":            ("cognito", "user_pool_id"),
    "COGNITO_IDENTITY_POOL_ID":        ("cognito", "identity_pool_id"),
    "COGNITO_USER_POOL_WEB_CLIENT_ID": ("cognito", "user_pool_web_client_id"),
    "COGNITO_DOMAIN":                  ("cognito", "oauth", "domain"),
    "COGNITO_REDIRECT_SIGN_IN":        ("cognito", "oauth", "redirect_sign_in"),
    "COGNITO_REDIRECT_SIGN_OUT":       ("cognito", "oauth", "redirect_sign_out"),
    "COGNITO_CLIENT_SECRET":           ("secrets", "cognito", "client_secret"),
    "PORTAL_LOG_LEVEL":                ("logging", "level"),
}


def _set_path(data: Dict[str, Any], path: tuple, value: Any) -> None:
    node = data
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


def _apply_env_overrides(data: Dict[str, Any], environ: Dict[str, str]) -> None:
    for var, path in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            _set_path(data, path, value)

    scopes = environ.get("COGNITO_OAUTH_SCOPES")
    if scopes:
        parsed = [s.strip() for s in scopes.replace(" ", ",").split(",") if s.strip()]
        _set_path(data, ("cognito", "oauth", "scopes"), parsed)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> AppSettings:
    """Load and merge settings + secrets + env overrides into *AppSettings*."""
    settings_data = _load_yaml(Path(settings_path) if settings_path else _resolve(SETTINGS_FILE))
    secrets_data  = _load_yaml(Path(secrets_path) if secrets_path else _resolve(SECRETS_FILE))

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data
    _apply_env_overrides(settings_data, dict(os.environ) if environ is None else environ)

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (region=%s, user_pool=%s, hosted_ui=%s)",
        app_settings.cognito.region,
        app_settings.cognito.user_pool_id or "<unset>",
        app_settings.cognito.oauth.domain or "<unset>",
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppSettings]) -> None:
    """Replace (or clear, with ``None``) the process-wide settings."""
    global _config
    _config = config
