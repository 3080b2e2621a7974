from typing import Mapping

from fastapi import Request, Response
from fastapi.security.utils import get_authorization_scheme_param
from loguru import logger

from app.core.config import settings
from app.core.exceptions.http_exceptions import UnauthorizedException
from app.core.exceptions.principals import PrincipalRejected
from app.core.exceptions.tokens import TokenValidationError
from app.core.token_types import TokenType, get_token_type_spec
from app.core.utils import path_matches
from app.schemas.principal import Principal
from app.services.error_counter import ErrorStatusCounter
from app.services.pipeline.base import PipelineStage
from app.services.principals import ApiKeyAuthenticator, PrincipalVerifier
from app.services.token_service import TokenService

CREDENTIALS_DETAIL = "Could not validate credentials"

# Route prefixes whose token travels in the cookie of the given type
DEFAULT_COOKIE_ROUTES: Mapping[str, TokenType] = {
    "/currentuser": TokenType.APP_AUTH_REFRESH,
    "/pw_update": TokenType.PW_AUTH,
}


def credentials_exception() -> UnauthorizedException:
    return UnauthorizedException(
        detail=CREDENTIALS_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )


class BearerTokenStage(PipelineStage):
    """
    Authenticate the caller from its token or API key.

    Routes listed in `cookie_routes` read the token from the cookie of their
    token type. On every other route an API key header is checked first when an
    `api_key_authenticator` is configured; otherwise `Authorization: Bearer
    <token>` is read and expected to hold an APP_AUTH token. No credentials mean
    an anonymous caller.

    On protected routes, credentials that fail validation or verification end
    the request with 401. On public routes they are ignored and the caller stays
    anonymous. CORS pre-flight requests skip this stage.

    On success the principal is stored in `request.state.principal`.
    """

    def __init__(
        self,
        token_service: TokenService,
        error_counter: ErrorStatusCounter | None = None,
        verifier: PrincipalVerifier | None = None,
        public_paths: list[str] | None = None,
        public_path_prefixes: list[str] | None = None,
        cookie_routes: Mapping[str, TokenType] = DEFAULT_COOKIE_ROUTES,
        api_key_authenticator: ApiKeyAuthenticator | None = None,
    ):
        super().__init__(error_counter)
        self.token_service = token_service
        self.verifier = verifier
        self.public_paths = (
            public_paths if public_paths is not None else settings.public_paths_list
        )
        self.public_path_prefixes = (
            public_path_prefixes
            if public_path_prefixes is not None
            else settings.public_path_prefixes_list
        )
        self.cookie_routes = cookie_routes
        self.api_key_authenticator = api_key_authenticator

    @staticmethod
    def is_preflight(request: Request) -> bool:
        return request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers

    def is_public(self, request: Request) -> bool:
        return path_matches(request.url.path, self.public_paths, self.public_path_prefixes)

    def cookie_token_type(self, request: Request) -> TokenType | None:
        for prefix, token_type in self.cookie_routes.items():
            if path_matches(request.url.path, [], [prefix]):
                return token_type

        return None

    def extract_token(self, request: Request) -> tuple[str | None, TokenType]:
        """
        Find the token presented with the request and the type it is presented as.

        Returns:
            tuple[str | None, TokenType]: Token (None when absent) and its expected type
        """
        token_type = self.cookie_token_type(request)
        if token_type is not None:
            cookie_name = get_token_type_spec(token_type, self.token_service.token_types).cookie_name
            return request.cookies.get(cookie_name), token_type

        authorization = request.headers.get("Authorization")
        scheme, token = get_authorization_scheme_param(authorization)
        if not authorization or scheme.lower() != "bearer":
            return None, TokenType.APP_AUTH

        return token, TokenType.APP_AUTH

    def extract_api_key(self, request: Request) -> str | None:
        """API key header value, None when API keys are off or on cookie routes"""
        if self.api_key_authenticator is None or self.cookie_token_type(request) is not None:
            return None

        return request.headers.get(settings.api_key_header) or None

    async def authenticate(self, request: Request) -> Principal | None:
        """
        Resolve the principal behind the request's credentials.

        Returns:
            Principal | None: The principal, None when no credentials were presented

        Raises:
            TokenValidationError: If the token cannot be trusted
            PrincipalRejected: If the credentials do not match stored state
        """
        api_key = self.extract_api_key(request)
        if api_key is not None:
            return await self.api_key_authenticator(
                api_key, request.headers.get(settings.api_secret_header)
            )

        token, token_type = self.extract_token(request)
        if token is None:
            return None

        claims = self.token_service.validate(token, token_type)

        if self.verifier is not None and not await self.verifier(claims):
            raise PrincipalRejected(
                f"Outdated or unknown validation claim on {token_type} token",
                subject=claims.subject,
            )

        return claims

    async def __call__(self, request: Request) -> Response | None:
        if self.is_preflight(request):
            return None

        try:
            principal = await self.authenticate(request)
        except (TokenValidationError, PrincipalRejected) as e:
            if self.is_public(request):
                logger.debug(f"Ignoring {e.category} credentials on public route {request.url.path}")
                return None

            subject = e.subject if isinstance(e, PrincipalRejected) else None
            self.report(e.category, request, subject, str(e))
            raise credentials_exception()

        request.state.principal = principal
        return None
