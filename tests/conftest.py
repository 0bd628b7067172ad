"""Pytest configuration and shared fixtures."""

import base64
import shutil
import tempfile
from datetime import datetime
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from trustboot.models.config import CASettings, DistributionSettings
from trustboot.models.pki import Key
from trustboot.services.auth_service import Authenticator
from trustboot.services.ca_service import CertificateAuthority
from trustboot.services.credential_service import CredentialService
from trustboot.services.token_service import TokenStore
from trustboot.services.transport import BootstrapClient

TEST_USER = "admin"
TEST_PASSWORD = "secret"
UNREACHABLE_HOST = "dead-node"


@pytest.fixture(scope="session")
def test_data_dir():
    """Create a temporary directory for test data."""
    temp_dir = tempfile.mkdtemp(prefix="trustboot_test_")
    yield Path(temp_dir)
    # Cleanup
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def work_dir(test_data_dir):
    """Create a fresh working directory for each test."""
    path = test_data_dir / f"work_{datetime.now().timestamp()}"
    path.mkdir(parents=True, exist_ok=True)
    yield path
    # Cleanup after test
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture(scope="session")
def signing_key():
    """Operator key signing request bodies."""
    return Key.generate()


@pytest.fixture(scope="session")
def other_key():
    """Key unrelated to the configured verification key."""
    return Key.generate()


@pytest.fixture
def ca_settings():
    """Create sample root CA settings."""
    return CASettings(common_name="Test Root CA", organization="Test Organization")


@pytest.fixture
def certificate_authority(work_dir, ca_settings):
    """Create a CA in the test directory."""
    return CertificateAuthority.initialize(work_dir / "ca", ca_settings)


@pytest.fixture
def authenticator(signing_key):
    """Create an authenticator trusting the operator key."""
    return Authenticator(TEST_USER, TEST_PASSWORD, signing_key.public_key_pem())


@pytest.fixture
def token_store(work_dir):
    """Create a token store in the test directory."""
    return TokenStore(work_dir / "tokens", ttl_minutes=60)


@pytest.fixture
def basic_auth():
    """Get a valid Basic authorization header value."""
    return "Basic " + base64.b64encode(f"{TEST_USER}:{TEST_PASSWORD}".encode()).decode()


@pytest.fixture
def unreachable_host():
    """Address the test client treats as refusing connections."""
    return UNREACHABLE_HOST


@pytest.fixture
def client(work_dir, certificate_authority, authenticator, token_store, signing_key):
    """
    Create FastAPI test client with isolated test directories.

    Outbound calls of the credential service are routed back into the same
    app, so every target address resolves to this node except
    ``UNREACHABLE_HOST``, which refuses connections.
    """
    from main import app
    from trustboot.api.dependencies import (
        get_authenticator,
        get_certificate_authority,
        get_credential_service,
        get_token_store,
        reset_services,
    )

    loopback = TestClient(app)

    def forward(request: httpx.Request) -> httpx.Response:
        if request.url.host == UNREACHABLE_HOST:
            raise httpx.ConnectError("Connection refused", request=request)
        answer = loopback.request(
            request.method,
            request.url.path,
            content=request.content,
            headers=dict(request.headers),
        )
        return httpx.Response(answer.status_code, content=answer.content, headers=answer.headers)

    bootstrap_client = BootstrapClient(
        DistributionSettings(timeout_seconds=10),
        signing_key=signing_key,
        transport=httpx.MockTransport(forward),
    )
    credential_service = CredentialService(work_dir / "certs", bootstrap_client, token_store)

    app.dependency_overrides[get_certificate_authority] = lambda: certificate_authority
    app.dependency_overrides[get_authenticator] = lambda: authenticator
    app.dependency_overrides[get_token_store] = lambda: token_store
    app.dependency_overrides[get_credential_service] = lambda: credential_service

    client = TestClient(app)
    yield client

    # Clean up
    app.dependency_overrides.clear()
    bootstrap_client.close()
    reset_services()
