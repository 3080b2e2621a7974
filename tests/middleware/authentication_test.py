from typing import AsyncGenerator, Callable
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from faker import Faker
from fastapi import Depends, FastAPI, Request
from fastapi.responses import PlainTextResponse
from httpx import ASGITransport, AsyncClient

from app.api.v1.deps.auth import get_current_principal
from app.core.config import settings
from app.core.token_types import TOKEN_TYPES, TokenType
from app.core.utils import sha256_hex
from app.main import create_app
from app.schemas.principal import API_SUBSCRIBER_ROLE, ApiCredential
from app.schemas.token import ValidatedClaims
from app.services.cache.bucket_store import InMemoryBucketStore
from app.services.principals import ApiKeyAuthenticator, ClaimHashVerifier
from app.services.token_service import TokenService

UNAUTHORIZED_BODY = {"detail": "Could not validate credentials"}


def _add_test_routes(application: FastAPI) -> FastAPI:
    @application.get("/currentuser", tags=["Test"])
    async def current_user(principal: ValidatedClaims = Depends(get_current_principal)):
        return {"subject": principal.subject, "token_type": principal.token_type}

    @application.put("/pw_update", tags=["Test"])
    async def pw_update(principal: ValidatedClaims = Depends(get_current_principal)):
        return {"subject": principal.subject, "token_type": principal.token_type}

    @application.get("/verify/{token}", tags=["Test"])
    async def verify(token: str):
        return {"verified": token}

    @application.get("/boom", tags=["Test"])
    async def boom():
        raise RuntimeError("unexpected")

    return application


@pytest.fixture
def make_client() -> Callable[..., AsyncClient]:
    def _make(application: FastAPI) -> AsyncClient:
        transport = ASGITransport(app=application, raise_app_exceptions=False)
        return AsyncClient(transport=transport, base_url="http://test")

    return _make


@pytest_asyncio.fixture
async def pipeline_client(
    test_app: FastAPI, make_client: Callable[..., AsyncClient]
) -> AsyncGenerator[AsyncClient, None]:
    async with make_client(_add_test_routes(test_app)) as ac:
        yield ac


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _cookie(name: str, token: str) -> dict[str, str]:
    return {"Cookie": f"{name}={token}"}


@pytest.mark.anyio
class TestBearerTokenStage:
    """Test bearer token authentication through the full application."""

    async def test_valid_token(self, pipeline_client: AsyncClient, token_service: TokenService):
        token = token_service.issue("alice", {}, TokenType.APP_AUTH)

        response = await pipeline_client.get("/api/v1/principal", headers=_bearer(token))

        assert response.status_code == 200
        assert response.json()["subject"] == "alice"
        assert response.json()["token_type"] == "APP_AUTH"

    async def test_anonymous_on_protected_route(self, pipeline_client: AsyncClient):
        response = await pipeline_client.get("/api/v1/principal")

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED_BODY
        assert response.headers["WWW-Authenticate"] == "Bearer"

    async def test_invalid_token_never_reaches_rate_limiter(
        self, pipeline_client: AsyncClient, bucket_store: InMemoryBucketStore
    ):
        with patch.object(bucket_store, "acquire", wraps=bucket_store.acquire) as spy:
            response = await pipeline_client.get("/api/v1/principal", headers=_bearer("garbage"))

            assert response.status_code == 401
            spy.assert_not_called()

    async def test_same_body_for_every_failure(
        self, pipeline_client: AsyncClient, token_service: TokenService, clock
    ):
        """Expired, forged and wrong-type tokens are indistinguishable to the caller."""
        wrong_type = token_service.issue("alice", {}, TokenType.PW_RESET)
        forged = TokenService(secret_key="forger-secret-key-that-is-32-chars!!", clock=clock).issue(
            "alice", {}, TokenType.APP_AUTH
        )
        expired = token_service.issue("alice", {}, TokenType.APP_AUTH)
        clock.advance(301)

        bodies = []
        for token in (wrong_type, forged, expired, "garbage"):
            response = await pipeline_client.get("/api/v1/principal", headers=_bearer(token))
            assert response.status_code == 401
            bodies.append(response.json())

        assert all(body == UNAUTHORIZED_BODY for body in bodies)

    async def test_non_bearer_scheme_is_anonymous(self, pipeline_client: AsyncClient):
        response = await pipeline_client.get(
            "/api/v1/principal", headers={"Authorization": "Basic YWxpY2U6cHc="}
        )

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED_BODY

    async def test_public_route_ignores_invalid_token(self, pipeline_client: AsyncClient):
        response = await pipeline_client.get("/health", headers=_bearer("garbage"))

        assert response.status_code == 200

    async def test_public_route_keys_valid_token_by_principal(
        self,
        pipeline_client: AsyncClient,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
    ):
        token = token_service.issue("alice", {}, TokenType.APP_AUTH)

        with patch.object(bucket_store, "acquire", wraps=bucket_store.acquire) as spy:
            response = await pipeline_client.get("/verify/abc", headers=_bearer(token))

            assert response.status_code == 200
            assert spy.await_args[0][0] == "ratelimit:auth:user:alice"

    async def test_public_prefix(self, pipeline_client: AsyncClient):
        response = await pipeline_client.get("/verify/abc", headers=_bearer("garbage"))

        assert response.status_code == 200
        assert response.json() == {"verified": "abc"}

    async def test_cors_preflight_is_public(self, pipeline_client: AsyncClient):
        response = await pipeline_client.options(
            "/api/v1/principal",
            headers={**_bearer("garbage"), "Access-Control-Request-Method": "GET"},
        )

        assert response.status_code != 401

    async def test_options_without_preflight_header_is_checked(self, pipeline_client: AsyncClient):
        response = await pipeline_client.options("/api/v1/principal", headers=_bearer("garbage"))

        assert response.status_code == 401


@pytest.mark.anyio
class TestCookieRoutes:
    """Test routes bound to a cookie token."""

    async def test_currentuser_reads_refresh_cookie(
        self, pipeline_client: AsyncClient, token_service: TokenService
    ):
        token = token_service.issue("alice", {}, TokenType.APP_AUTH_REFRESH)
        cookie = TOKEN_TYPES[TokenType.APP_AUTH_REFRESH].cookie_name

        response = await pipeline_client.get("/currentuser", headers=_cookie(cookie, token))

        assert response.status_code == 200
        assert response.json() == {"subject": "alice", "token_type": "APP_AUTH_REFRESH"}

    async def test_currentuser_rejects_access_token_in_cookie(
        self, pipeline_client: AsyncClient, token_service: TokenService
    ):
        token = token_service.issue("alice", {}, TokenType.APP_AUTH)
        cookie = TOKEN_TYPES[TokenType.APP_AUTH_REFRESH].cookie_name

        response = await pipeline_client.get("/currentuser", headers=_cookie(cookie, token))

        assert response.status_code == 401

    async def test_currentuser_ignores_bearer_header(
        self, pipeline_client: AsyncClient, token_service: TokenService
    ):
        token = token_service.issue("alice", {}, TokenType.APP_AUTH)

        response = await pipeline_client.get("/currentuser", headers=_bearer(token))

        assert response.status_code == 401

    async def test_pw_update_reads_pw_auth_cookie(
        self, pipeline_client: AsyncClient, token_service: TokenService
    ):
        token = token_service.issue("alice", {}, TokenType.PW_AUTH)
        cookie = TOKEN_TYPES[TokenType.PW_AUTH].cookie_name

        response = await pipeline_client.put("/pw_update", headers=_cookie(cookie, token))

        assert response.status_code == 200
        assert response.json()["token_type"] == "PW_AUTH"


@pytest.mark.anyio
class TestPrincipalVerifier:
    """Test validation claim verification in the pipeline."""

    async def test_rotated_secret_is_rejected(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
    ):
        lookup = AsyncMock(return_value="rotated")
        application = create_app(
            bucket_store=bucket_store, tokens=token_service, verifier=ClaimHashVerifier(lookup)
        )
        issued = token_service.issue_with_validation_claim("alice", TokenType.APP_AUTH, "original")

        async with make_client(application) as ac:
            response = await ac.get("/api/v1/principal", headers=_bearer(issued.token))
            health = await ac.get("/health")

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED_BODY
        assert health.json()["details"]["PrincipalRejectedCount"] == 1

    async def test_current_secret_is_accepted(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
    ):
        application = create_app(
            bucket_store=bucket_store,
            tokens=token_service,
            verifier=ClaimHashVerifier(AsyncMock(return_value="current")),
        )
        issued = token_service.issue_with_validation_claim("alice", TokenType.APP_AUTH, "current")

        async with make_client(application) as ac:
            response = await ac.get("/api/v1/principal", headers=_bearer(issued.token))

        assert response.status_code == 200


@pytest.mark.anyio
class TestRateLimitStage:
    """Test rate limiting through the full application."""

    async def test_rejects_after_capacity(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
    ):
        with patch.object(settings, "rate_limit_api_capacity", 2):
            with patch.object(settings, "rate_limit_api_refill_rate", 0.0):
                application = create_app(bucket_store=bucket_store, tokens=token_service)

        token = token_service.issue("alice", {}, TokenType.APP_AUTH)

        async with make_client(application) as ac:
            statuses = [
                (await ac.get("/api/v1/principal", headers=_bearer(token))).status_code
                for _ in range(3)
            ]
            rejected = await ac.get("/api/v1/principal", headers=_bearer(token))
            health = await ac.get("/health")

        assert statuses == [200, 200, 429]
        assert rejected.json() == {"detail": "Too many requests"}
        assert not any(name.lower().startswith("x-ratelimit") for name in rejected.headers)
        assert "retry-after" not in rejected.headers
        assert health.json()["details"]["RateLimitExceededCount"] == 2

    async def test_principals_have_separate_buckets(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
    ):
        with patch.object(settings, "rate_limit_api_capacity", 1):
            with patch.object(settings, "rate_limit_api_refill_rate", 0.0):
                application = create_app(bucket_store=bucket_store, tokens=token_service)

        alice = token_service.issue("alice", {}, TokenType.APP_AUTH)
        bob = token_service.issue("bob", {}, TokenType.APP_AUTH)

        async with make_client(application) as ac:
            assert (await ac.get("/api/v1/principal", headers=_bearer(alice))).status_code == 200
            assert (await ac.get("/api/v1/principal", headers=_bearer(alice))).status_code == 429
            assert (await ac.get("/api/v1/principal", headers=_bearer(bob))).status_code == 200

    async def test_auth_routes_use_auth_limiter(
        self, pipeline_client: AsyncClient, bucket_store: InMemoryBucketStore
    ):
        with patch.object(bucket_store, "acquire", wraps=bucket_store.acquire) as spy:
            await pipeline_client.get("/verify/abc")

            spy.assert_awaited_once()
            assert spy.await_args[0][0] == "ratelimit:auth:ip:127.0.0.1"

    async def test_forwarded_header_does_not_open_new_bucket(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
        faker: Faker,
    ):
        with patch.object(settings, "rate_limit_auth_capacity", 1):
            with patch.object(settings, "rate_limit_auth_refill_rate", 0.0):
                application = _add_test_routes(
                    create_app(bucket_store=bucket_store, tokens=token_service)
                )

        async with make_client(application) as ac:
            statuses = [
                (
                    await ac.get("/verify/abc", headers={"X-Forwarded-For": faker.ipv4_public()})
                ).status_code
                for _ in range(20)
            ]

        assert statuses == [200] + [429] * 19

    async def test_trusted_proxy_forwards_client_address(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
    ):
        with patch.object(settings, "rate_limit_auth_capacity", 1):
            with patch.object(settings, "rate_limit_auth_refill_rate", 0.0):
                application = _add_test_routes(
                    create_app(bucket_store=bucket_store, tokens=token_service)
                )

        with patch.object(settings, "trusted_proxies", "127.0.0.1"):
            async with make_client(application) as ac:
                first = await ac.get("/verify/abc", headers={"X-Forwarded-For": "203.0.113.9"})
                again = await ac.get("/verify/abc", headers={"X-Forwarded-For": "203.0.113.9"})
                other = await ac.get("/verify/abc", headers={"X-Forwarded-For": "198.51.100.4"})

        assert [first.status_code, again.status_code, other.status_code] == [200, 429, 200]

    async def test_store_down_fails_closed(
        self, token_service: TokenService, make_client: Callable[..., AsyncClient]
    ):
        from app.core.exceptions.rate_limiter import StoreUnavailable

        store = InMemoryBucketStore()
        store.acquire = AsyncMock(side_effect=StoreUnavailable("down"))  # type: ignore[method-assign]
        application = create_app(bucket_store=store, tokens=token_service)

        async with make_client(application) as ac:
            response = await ac.get("/health")

        assert response.status_code == 429
        assert application.state.error_counter.snapshot() == {"StoreUnavailable": 1}


API_CREDENTIALS = {
    "sub-key": ApiCredential(
        subject="billing-service",
        api_key="sub-key",
        secret_hash=sha256_hex("sub-secret"),
        roles=frozenset({API_SUBSCRIBER_ROLE}),
    ),
    "plain-key": ApiCredential(
        subject="reporting", api_key="plain-key", secret_hash=sha256_hex("plain-secret")
    ),
}


async def _lookup_api_key(api_key: str) -> ApiCredential | None:
    return API_CREDENTIALS.get(api_key)


@pytest.mark.anyio
class TestApiKeys:
    """Test API key authentication and the subscriber exemption."""

    @pytest.fixture
    def api_key_app(self, bucket_store: InMemoryBucketStore, token_service: TokenService) -> FastAPI:
        with patch.object(settings, "rate_limit_api_capacity", 1):
            with patch.object(settings, "rate_limit_api_refill_rate", 0.0):
                return create_app(
                    bucket_store=bucket_store,
                    tokens=token_service,
                    api_key_authenticator=ApiKeyAuthenticator(_lookup_api_key),
                )

    async def test_principal_endpoint(
        self, api_key_app: FastAPI, make_client: Callable[..., AsyncClient]
    ):
        async with make_client(api_key_app) as ac:
            response = await ac.get(
                "/api/v1/principal", headers={"X-API-Key": "sub-key", "X-API-Secret": "sub-secret"}
            )

        assert response.status_code == 200
        assert response.json() == {
            "subject": "billing-service",
            "auth_method": "api_key",
            "token_type": None,
            "expires_at": None,
            "roles": ["API_SUBSCRIBER"],
        }

    async def test_subscriber_is_not_rate_limited(
        self, api_key_app: FastAPI, make_client: Callable[..., AsyncClient]
    ):
        headers = {"X-API-Key": "sub-key", "X-API-Secret": "sub-secret"}

        async with make_client(api_key_app) as ac:
            statuses = [(await ac.get("/api/v1/principal", headers=headers)).status_code for _ in range(5)]

        assert statuses == [200] * 5

    async def test_other_api_keys_are_rate_limited(
        self, api_key_app: FastAPI, make_client: Callable[..., AsyncClient]
    ):
        headers = {"X-API-Key": "plain-key", "X-API-Secret": "plain-secret"}

        async with make_client(api_key_app) as ac:
            statuses = [(await ac.get("/api/v1/principal", headers=headers)).status_code for _ in range(2)]

        assert statuses == [200, 429]

    async def test_wrong_secret(self, api_key_app: FastAPI, make_client: Callable[..., AsyncClient]):
        async with make_client(api_key_app) as ac:
            response = await ac.get(
                "/api/v1/principal", headers={"X-API-Key": "sub-key", "X-API-Secret": "guess"}
            )
            health = await ac.get("/health")

        assert response.status_code == 401
        assert response.json() == UNAUTHORIZED_BODY
        assert health.json()["details"]["ApiKeyRejectedCount"] == 1


@pytest.mark.anyio
class TestOAuth2DelegateStage:
    """Test the delegated OAuth2 stage."""

    async def test_delegate_answers_oauth2_routes(
        self,
        bucket_store: InMemoryBucketStore,
        token_service: TokenService,
        make_client: Callable[..., AsyncClient],
    ):
        async def delegate(request: Request):
            return PlainTextResponse(f"delegated {request.url.path}")

        application = create_app(
            bucket_store=bucket_store, tokens=token_service, oauth2_delegate=delegate
        )

        async with make_client(application) as ac:
            authorize = await ac.get("/oauth2/authorize")
            callback = await ac.get("/oauth2/callback/google")
            other = await ac.get("/oauth2/other")

        assert authorize.text == "delegated /oauth2/authorize"
        assert callback.text == "delegated /oauth2/callback/google"
        assert other.status_code == 404

    async def test_without_delegate_routes_normally(self, pipeline_client: AsyncClient):
        response = await pipeline_client.get("/oauth2/authorize")

        assert response.status_code == 404


@pytest.mark.anyio
class TestErrorHandling:
    """Test error counting and the internal error response."""

    async def test_unhandled_exception(self, pipeline_client: AsyncClient, token_service: TokenService):
        token = token_service.issue("alice", {}, TokenType.APP_AUTH)

        response = await pipeline_client.get("/boom", headers=_bearer(token))
        health = await pipeline_client.get("/health")

        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error"}
        assert health.json()["details"]["RuntimeErrorCount"] == 1

    async def test_token_failures_are_counted(
        self, pipeline_client: AsyncClient, token_service: TokenService, clock
    ):
        expired = token_service.issue("alice", {}, TokenType.APP_AUTH)
        wrong_type = token_service.issue("alice", {}, TokenType.VERIFICATION)
        clock.advance(600)

        await pipeline_client.get("/api/v1/principal", headers=_bearer(expired))
        await pipeline_client.get("/api/v1/principal", headers=_bearer(wrong_type))
        await pipeline_client.get("/api/v1/principal", headers=_bearer("garbage"))
        health = await pipeline_client.get("/health")

        assert health.json()["details"] == {
            "AudienceMismatchCount": 1,
            "MalformedTokenCount": 1,
            "TokenExpiredCount": 1,
        }
