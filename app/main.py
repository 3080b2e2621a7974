from fastapi import FastAPI, Request
from fastapi.concurrency import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette import status

from app.api.routes import api_router
from app.core.config import Environment, settings
from app.core.logger import configure_uvicorn_logging, setup_logger, shutdown_logger
from app.middleware.authentication import AuthenticationPipelineMiddleware
from app.middleware.logging import LoggingMiddleware
from app.services.cache import BucketStore, InMemoryBucketStore, RedisBucketStore, build_rate_limiters
from app.services.cache.base import close_redis_pool
from app.services.error_counter import ErrorStatusCounter
from app.services.pipeline import (
    BearerTokenStage,
    OAuth2Delegate,
    OAuth2DelegateStage,
    RateLimitExemption,
    RateLimitStage,
    exempt_api_subscribers,
)
from app.services.principals import ApiKeyAuthenticator, PrincipalVerifier
from app.services.token_service import TokenService, token_service

INTERNAL_SERVER_ERROR_DETAIL = "Internal server error"


def create_bucket_store() -> BucketStore:
    """Process local buckets when running locally, Redis everywhere else"""
    if settings.current_environment == Environment.LOCAL:
        return InMemoryBucketStore()

    return RedisBucketStore()


async def _check_dependencies(app: FastAPI):
    """Check essential dependencies before starting the app"""

    is_healthy = await app.state.bucket_store.health_check()

    if not is_healthy:
        logger.error("Bucket store health check failed. Exiting application.")
        raise RuntimeError("Bucket store is not healthy.")

    logger.success("Bucket store is healthy.")


async def _shutdown_dependencies(app: FastAPI):
    """Shutdown essential dependencies gracefully"""

    await app.state.bucket_store.close()
    await close_redis_pool()
    logger.success("Bucket store connection closed.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""

    setup_logger()
    configure_uvicorn_logging()

    logger.info("Initializing resources...")
    await _check_dependencies(app)
    logger.success("Resources initialized.")

    yield  # Application runs here

    logger.info("Cleaning up resources...")
    await _shutdown_dependencies(app)
    logger.success("Resources cleaned up.")
    shutdown_logger()


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    category = type(exc).__name__
    request.app.state.error_counter.increment(category)
    logger.opt(exception=exc).error(
        f"eventType={category}, path={request.url.path}, message={exc}"
    )
    return JSONResponse(
        content={"detail": INTERNAL_SERVER_ERROR_DETAIL},
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


ALLOWED_ENVIRONMENTS = {Environment.LOCAL, Environment.DEV, Environment.STG}


def create_app(
    bucket_store: BucketStore | None = None,
    tokens: TokenService = token_service,
    verifier: PrincipalVerifier | None = None,
    oauth2_delegate: OAuth2Delegate | None = None,
    api_key_authenticator: ApiKeyAuthenticator | None = None,
    rate_limit_exempt: RateLimitExemption | None = exempt_api_subscribers,
) -> FastAPI:
    """
    Build the application with its admission pipeline.

    Args:
        bucket_store: Rate limit storage, chosen from the environment when omitted
        tokens: Token service validating bearer and cookie tokens
        verifier: Optional check of the validation claim against stored state
        oauth2_delegate: Optional handler of the OAuth2 authorization routes
        api_key_authenticator: Optional API key check, API key headers are ignored without it
        rate_limit_exempt: Principals this returns True for are never rate limited

    Returns:
        FastAPI: Configured application
    """
    application = FastAPI(
        title=settings.app_title,
        version=settings.app_version,
        description=settings.app_description,
        openapi_url=(
            "/openapi.json" if settings.current_environment in ALLOWED_ENVIRONMENTS else None
        ),
        docs_url="/docs" if settings.current_environment in ALLOWED_ENVIRONMENTS else None,
        redoc_url="/redoc" if settings.current_environment in ALLOWED_ENVIRONMENTS else None,
        lifespan=lifespan,
        generate_unique_id_function=lambda route: f"{route.tags[0]}-{route.name}",
    )

    error_counter = ErrorStatusCounter()
    store = bucket_store or create_bucket_store()
    limiters = build_rate_limiters(store, error_counter)

    application.state.error_counter = error_counter
    application.state.bucket_store = store
    application.state.rate_limiters = limiters

    application.add_exception_handler(Exception, unhandled_exception_handler)

    # Bearer token -> rate limit -> OAuth2 delegate -> routes
    application.add_middleware(
        AuthenticationPipelineMiddleware,
        stages=[
            BearerTokenStage(
                tokens,
                error_counter=error_counter,
                verifier=verifier,
                api_key_authenticator=api_key_authenticator,
            ),
            RateLimitStage(limiters, error_counter=error_counter, exempt=rate_limit_exempt),
            OAuth2DelegateStage(oauth2_delegate),
        ],
    )

    # Set CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Set logging middleware
    application.add_middleware(LoggingMiddleware)

    # Include API router
    application.include_router(api_router)

    return application


app = create_app()
