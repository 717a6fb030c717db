"""Cognito Auth Portal Application.

This is the main entry point for the portal service: a set of HTML forms for
signing users up and logging them in against an Amazon Cognito user pool.
All credential checks, MFA, token issuance and password resets happen in
Cognito; this service only renders forms and forwards input.

Modules:
    - auth: Cognito user pool client and Hosted UI (social sign-in)
    - ui: Per-browser session state, form handlers and HTML pages
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from portal.config import get_config
from portal.ui.router import router as portal_router
from portal.ui.session import SessionStore, set_session_store

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# botocore logs request bodies at DEBUG, which include passwords and
# MFA codes for the cognito-idp calls made here.
for _noisy in (
    "botocore",
    "boto3",
    "urllib3",
    "urllib3.connectionpool",
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in portal.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    set_session_store(SessionStore(ttl_seconds=config.session.ttl_minutes * 60))

    if config.cognito.configured:
        logger.info(
            f"Cognito user pool {config.cognito.user_pool_id} "
            f"({config.cognito.region}), client {config.cognito.user_pool_web_client_id}"
        )
    else:
        logger.warning(
            "Cognito is not configured; set COGNITO_USER_POOL_ID and "
            "COGNITO_USER_POOL_WEB_CLIENT_ID (or portal.settings.yaml)"
        )

    if config.cognito.oauth.enabled:
        logger.info(f"Social sign-in enabled via {config.cognito.oauth.domain}")
    else:
        logger.info("Social sign-in disabled (no Hosted UI domain configured)")

    logger.info(
        f"Portal running on http://{config.server.host}:{config.server.port}"
    )

    yield  # Application runs here

    # Shutdown
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Cognito Auth Portal",
    description="Sign-up and login pages backed by Amazon Cognito",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(portal_router)


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}


def run() -> None:
    """Console entry point: serve the app with uvicorn using configured host/port."""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "portal.main:app",
        host=config.server.host,
        port=config.server.port,
        reload=config.server.reload,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    run()
