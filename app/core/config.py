import ipaddress
import logging
import os
import tomllib
from enum import StrEnum
from pathlib import Path

from pydantic import computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from yarl import URL

PROJECT_DIR = Path(__file__).parent.parent.parent
PROJECT_TOML_PATH = PROJECT_DIR / "pyproject.toml"

with open(PROJECT_TOML_PATH, "rb") as f:
    PYPROJECT_CONTENT = tomllib.load(f)["project"]

SUPPORTED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")
MIN_SECRET_KEY_LENGTH = 32


class Environment(StrEnum):
    LOCAL = "local"
    DEV = "dev"
    STG = "stg"
    PRD = "prd"


class FailPolicy(StrEnum):
    """What the rate limiter answers when its backing store cannot be reached."""

    OPEN = "open"
    CLOSED = "closed"


def convert_app_name(s: str) -> str:
    return " ".join(word.capitalize() for word in s.split("-"))


def split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Application settings.

    These parameters can be configured
    with environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=False,
        extra="ignore",
    )

    # App variables
    app_name: str = PYPROJECT_CONTENT["name"]
    app_title: str = os.getenv("APP_TITLE", convert_app_name(app_name))
    app_version: str = PYPROJECT_CONTENT["version"]
    app_description: str = PYPROJECT_CONTENT["description"]

    backend_host: str = "127.0.0.1"
    backend_port: int = 8000

    cors_origins: str = ""

    # Number of workers for uvicorn
    workers_count: int = 1

    # Enable uvicorn reloading
    reload_uvicorn: bool = False

    # Current working environment
    current_environment: Environment = Environment.LOCAL
    log_level: int = logging.INFO
    log_to_file: bool = False
    debug: bool = False

    # Token signing
    secret_key: str
    jwt_algorithm: str = "HS256"
    # Per token type max age in seconds, keyed by token type name (e.g. {"APP_AUTH": 600})
    token_max_age_overrides: dict[str, int] = {}

    # Variables for Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_user: str | None = None
    redis_pass: str | None = None
    redis_base: int | None = None
    redis_max_pool_connections: int = 20  # Maximum number of connections in the Redis pool
    redis_socket_connect_timeout: int = 2  # Socket connect timeout in seconds
    redis_socket_timeout: int = 2  # Socket timeout in seconds

    # Rate limiting settings (token bucket per limiter)
    rate_limit_enabled: bool = True
    rate_limit_fail_policy: FailPolicy = FailPolicy.CLOSED
    rate_limit_store_timeout: float = 0.25  # Bound on one store round trip in seconds
    rate_limit_idle_ttl: int = 3600  # Idle buckets expire from the store after this many seconds
    rate_limit_auth_capacity: int = 10  # Login, registration, password reset, verification
    rate_limit_auth_refill_rate: float = 10 / 60
    rate_limit_api_capacity: int = 20  # Everything else
    rate_limit_api_refill_rate: float = 20 / 60

    # Routes that skip bearer token enforcement (still rate limited)
    public_paths: str = "/,/health,/authenticate,/deauthenticate,/register,/docs,/redoc,/openapi.json"
    public_path_prefixes: str = "/pw_reset,/verify,/v3/api-docs"
    # Routes rate limited with the strict "auth" limiter
    auth_path_prefixes: str = "/authenticate,/register,/pw_reset,/verify"
    # Headers carrying API key credentials, read only when an API key lookup is configured
    api_key_header: str = "X-API-Key"
    api_secret_header: str = "X-API-Secret"
    # Reverse proxies (addresses or CIDR networks) whose forwarding headers are trusted
    trusted_proxies: str = ""

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if len(v) < MIN_SECRET_KEY_LENGTH:
            raise ValueError(
                f"secret_key must be at least {MIN_SECRET_KEY_LENGTH} characters long"
            )

        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        if v not in SUPPORTED_JWT_ALGORITHMS:
            raise ValueError(f"jwt_algorithm must be one of {SUPPORTED_JWT_ALGORITHMS}, got {v}")

        return v

    @field_validator("trusted_proxies")
    @classmethod
    def validate_trusted_proxies(cls, v: str) -> str:
        for proxy in split_csv(v):
            try:
                ipaddress.ip_network(proxy, strict=False)
            except ValueError as e:
                raise ValueError(f"Invalid trusted proxy {proxy!r}: {e}")

        return v

    @field_validator("token_max_age_overrides")
    @classmethod
    def validate_token_max_age_overrides(cls, v: dict[str, int]) -> dict[str, int]:
        for name, max_age in v.items():
            if max_age <= 0:
                raise ValueError(f"Max age for token type {name} must be positive, got {max_age}")

        return v

    @computed_field
    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parse CORS origins from a comma-separated string.
        """
        return split_csv(self.cors_origins)

    @computed_field
    @property
    def public_paths_list(self) -> list[str]:
        return split_csv(self.public_paths)

    @computed_field
    @property
    def public_path_prefixes_list(self) -> list[str]:
        return split_csv(self.public_path_prefixes)

    @computed_field
    @property
    def auth_path_prefixes_list(self) -> list[str]:
        return split_csv(self.auth_path_prefixes)

    @computed_field
    @property
    def trusted_proxies_list(self) -> list[str]:
        return split_csv(self.trusted_proxies)

    @computed_field
    @property
    def redis_url(self) -> URL:
        """
        Assemble REDIS URL from settings.
        """
        path = ""

        if self.redis_base is not None:
            path = f"/{self.redis_base}"

        return URL.build(
            scheme="redis",
            host=self.redis_host,
            port=self.redis_port,
            user=self.redis_user,
            password=self.redis_pass,
            path=path,
        )


settings = Settings()  # type: ignore
