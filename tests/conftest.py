# Shared fixtures.
# Created: 2026-03-02

import pytest

from tokenwarden import lifecycle
from tokenwarden.config import reset_settings
from tokenwarden.oauth2.clients import ClientRegistration, ClientRegistry
from tokenwarden.oauth2.pkce import generate_pkce_pair
from tokenwarden.oauth2.server import AuthorizationServer, reset_oauth_server
from tokenwarden.oauth2.storage import FileOAuthStore, reset_oauth_store
from tokenwarden.oauth2.tokens import AccessTokenCodec, TokenService
from tokenwarden.security.rate_limiter import reset_limiters
from tokenwarden.webhooks.delivery import reset_delivery_engine

SIGNING_KEY = "test-signing-key-0123456789abcdef0123456789abcdef"
ISSUER = "https://auth.example.test"
REDIRECT_URI = "https://app.example.test/callback"


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    monkeypatch.setenv("TOKENWARDEN_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("TOKENWARDEN_PERSIST", "false")
    monkeypatch.setenv("TOKENWARDEN_JWT_SECRET", SIGNING_KEY)
    monkeypatch.setenv("TOKENWARDEN_ISSUER", ISSUER)
    monkeypatch.setenv("TOKENWARDEN_BACKGROUND_TASKS", "false")
    reset_settings()
    yield
    lifecycle.reset_all()
    reset_oauth_store()
    reset_oauth_server()
    reset_delivery_engine()
    reset_limiters()
    reset_settings()


@pytest.fixture
def store():
    return FileOAuthStore()


@pytest.fixture
def registry(store):
    return ClientRegistry(store, supported_scopes=["read", "write", "profile"])


@pytest.fixture
def tokens(store):
    return TokenService(store, AccessTokenCodec(SIGNING_KEY, ISSUER))


@pytest.fixture
def server(store, registry, tokens):
    return AuthorizationServer(store, registry, tokens)


@pytest.fixture
def pkce_pair():
    return generate_pkce_pair()


@pytest.fixture
def make_client(registry):
    """Register a client and return ``(client, secret)``."""

    def _make(
        owner_id="user-1",
        scopes=("read", "write"),
        grant_types=("authorization_code", "refresh_token"),
        is_confidential=True,
        redirect_uris=(REDIRECT_URI,),
        name="Test App",
    ):
        return registry.register(
            owner_id,
            ClientRegistration(
                name=name,
                redirect_uris=list(redirect_uris),
                scopes=list(scopes),
                grant_types=list(grant_types),
                is_confidential=is_confidential,
            ),
        )

    return _make
