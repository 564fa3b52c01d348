"""Global pytest configuration and fixtures."""

# Standard library imports
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

# Load test environment variables
from dotenv import load_dotenv

test_env_path = Path(__file__).parent.parent / ".env.test"
if test_env_path.exists():
    load_dotenv(test_env_path, override=True)

# Third-party imports
import httpx
import pytest

# Local imports
from connect_auth.auth.background import BackgroundTaskRunner
from connect_auth.auth.jwt_service import JWTService
from connect_auth.auth.models import Account
from connect_auth.auth.oauth import (
    OAuthClient,
    OAuthFederator,
    OAuthStateSigner,
    ProviderRegistry,
    RedirectPolicy,
)
from connect_auth.auth.repositories import AccountRepository
from connect_auth.auth.services import (
    AuthenticationService,
    PasswordHasher,
    PasswordService,
    RegistrationService,
    VerificationTokenManager,
)
from connect_auth.auth.types import TokenPurpose
from connect_auth.config import OAuthProviderSettings
from connect_auth.database import (
    build_engine,
    create_session_factory,
    init_schema,
    session_scope,
)

TEST_SECRET = "test-signing-secret-0123456789abcdef0123456789"
FRONTEND_URL = "https://app.connect.io"
STRONG_PASSWORD = "Str0ng!Passw0rd"


class FrozenClock:
    """Controllable clock returning naive UTC, like the persistence layer."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(UTC).replace(tzinfo=None, microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingDelivery:
    """Token delivery that remembers what it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[Any, TokenPurpose, str]] = []

    def deliver(self, account: Account, purpose: TokenPurpose, token: str) -> None:
        self.sent.append((account.id, purpose, token))

    def tokens_for(self, purpose: TokenPurpose) -> list[str]:
        return [token for _, kind, token in self.sent if kind == purpose]


# ============================================================================
# Persistence
# ============================================================================


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so worker threads get their own connections."""
    engine = build_engine(f"sqlite:///{tmp_path / 'connect_auth.db'}")
    init_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def count_rows(session_factory) -> Callable[[type], int]:
    from sqlalchemy import func, select

    def _count(model: type) -> int:
        with session_scope(session_factory) as db:
            return db.scalar(select(func.count()).select_from(model))

    return _count


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def password_service() -> PasswordService:
    """Argon2 with minimal cost parameters to keep tests fast."""
    return PasswordService(PasswordHasher(time_cost=1, memory_cost=8192, parallelism=1))


@pytest.fixture
def jwt_service() -> JWTService:
    return JWTService(secret=TEST_SECRET, access_token_ttl=3600, refresh_token_ttl=604800)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def token_manager(session_factory, clock) -> VerificationTokenManager:
    return VerificationTokenManager(session_factory, clock=clock)


@pytest.fixture
def accounts(session_factory) -> AccountRepository:
    return AccountRepository(session_factory)


@pytest.fixture
def background() -> BackgroundTaskRunner:
    return BackgroundTaskRunner(max_concurrency=2)


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def registration(session_factory, password_service, token_manager, accounts, delivery):
    return RegistrationService(
        session_factory,
        password_service,
        token_manager,
        accounts,
        delivery,
        email_verification_ttl=86400,
    )


@pytest.fixture
def auth_service(
    session_factory,
    jwt_service,
    password_service,
    token_manager,
    registration,
    accounts,
    background,
    delivery,
) -> AuthenticationService:
    return AuthenticationService(
        session_factory,
        jwt_service,
        password_service,
        token_manager,
        registration,
        accounts,
        background,
        delivery,
        password_reset_ttl=3600,
    )


@pytest.fixture
def create_account(session_factory, password_service) -> Callable[..., Account]:
    """Insert an account directly, bypassing registration."""

    def _create(
        email: str = "alice@acme.io",
        username: str = "alice",
        password: str = STRONG_PASSWORD,
        **fields: Any,
    ) -> Account:
        with session_scope(session_factory) as db:
            account = Account(
                email=email,
                username=username,
                password_hash=password_service.hash_password(password),
                display_name=fields.pop("display_name", username),
                role=fields.pop("role", "user"),
                email_verified=fields.pop("email_verified", True),
                is_active=fields.pop("is_active", True),
                **fields,
            )
            db.add(account)
        return account

    return _create


# ============================================================================
# OAuth
# ============================================================================

IDP_TOKEN_URL = "https://idp.connect.io/oauth/token"
IDP_PROFILE_URL = "https://idp.connect.io/user"


def provider_settings(provider_key: str = "github", **overrides: Any) -> OAuthProviderSettings:
    values: dict[str, Any] = {
        "provider_key": provider_key,
        "display_name": provider_key.title(),
        "client_id": f"{provider_key}-client-id",
        "client_secret": f"{provider_key}-client-secret",
        "auth_url": f"https://idp.connect.io/{provider_key}/authorize",
        "token_url": IDP_TOKEN_URL,
        "user_info_url": IDP_PROFILE_URL,
        "redirect_url": f"https://api.connect.io/api/auth/oauth/{provider_key}/callback",
        "scope": "read:user user:email",
    }
    values.update(overrides)
    return OAuthProviderSettings(**values)


class FakeProvider:
    """
    Mock transport standing in for a provider's token and profile endpoints.

    Records every request so tests can assert on what was sent.
    """

    def __init__(
        self,
        profile: dict[str, Any] | None = None,
        token_payload: dict[str, Any] | None = None,
        token_status: int = 200,
        profile_status: int = 200,
    ) -> None:
        self.profile = profile or {
            "id": 583231,
            "login": "octocat",
            "name": "The Octocat",
            "email": None,
            "avatar_url": "https://avatars.githubusercontent.com/u/583231",
        }
        self.token_payload = token_payload or {
            "access_token": "provider-access-token",
            "refresh_token": "provider-refresh-token",
            "expires_in": 28800,
            "token_type": "bearer",
        }
        self.token_status = token_status
        self.profile_status = profile_status
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == IDP_TOKEN_URL:
            return httpx.Response(self.token_status, json=self.token_payload)
        if str(request.url) == IDP_PROFILE_URL:
            return httpx.Response(self.profile_status, json=self.profile)
        return httpx.Response(404, json={"error": "not_found"})

    def client_factory(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provider_registry(session_factory) -> ProviderRegistry:
    registry = ProviderRegistry(session_factory)
    registry.save(provider_settings("github"))
    registry.save(provider_settings("google", scope="email profile"))
    return registry


@pytest.fixture
def state_signer() -> OAuthStateSigner:
    return OAuthStateSigner(TEST_SECRET, ttl_seconds=600)


@pytest.fixture
def redirect_policy() -> RedirectPolicy:
    return RedirectPolicy(FRONTEND_URL, ["https://admin.connect.io"])


@pytest.fixture
def federator(
    session_factory,
    provider_registry,
    fake_provider,
    state_signer,
    redirect_policy,
    jwt_service,
    password_service,
    accounts,
) -> OAuthFederator:
    return OAuthFederator(
        session_factory,
        provider_registry,
        OAuthClient(timeout=5.0, client_factory=fake_provider.client_factory),
        state_signer,
        redirect_policy,
        jwt_service,
        password_service,
        accounts,
    )
