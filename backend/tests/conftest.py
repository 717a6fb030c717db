"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from portal.config import AppSettings, CognitoSettings, OAuthSettings, set_config
from portal.main import app
from portal.ui.session import SessionStore, set_session_store


@pytest.fixture
def portal_config():
    """A fully configured AppSettings, installed as the process-wide config."""
    config = AppSettings(
        cognito=CognitoSettings(
            region="us-east-1",
            user_pool_id="us-east-1_TestPool",
            user_pool_web_client_id="test-client-id",
            oauth=OAuthSettings(
                domain="test.auth.us-east-1.amazoncognito.com",
                redirect_sign_in="http://testserver/auth/callback",
                redirect_sign_out="http://testserver/",
            ),
        )
    )
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture(autouse=True)
def fresh_session_store():
    """Each test starts with no UI sessions."""
    store = SessionStore()
    set_session_store(store)
    yield store
    set_session_store(None)


@pytest.fixture
def api_client(portal_config):
    """Provide a TestClient for the main FastAPI app with Cognito configured.

    Named api_client (not client) so it does not collide with the boto3
    client mocks used in the service tests.
    """
    return TestClient(app)
