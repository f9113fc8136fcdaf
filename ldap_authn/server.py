"""HTTP front end for the LDAP TokenReview webhook."""

import os
import time
from typing import Any

import structlog
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import ClientDisconnect, Request
from starlette.responses import JSONResponse, PlainTextResponse, Response
from starlette.routing import Route

from .config import AuthnConfig, parse_listen_address
from .credentials import decode_review, split_token
from .directory import DirectoryValidator
from .errors import AuthnError
from .logging import get_uvicorn_log_config, token_fingerprint
from .review import AuthenticationResult, respond

logger = structlog.get_logger()


def error_response(message: str) -> PlainTextResponse:
    return PlainTextResponse(f"Error: {message}\n", status_code=500)


def create_app(config: AuthnConfig, validator: Any = None) -> Starlette:
    """Build the ASGI application.

    ``validator`` defaults to a DirectoryValidator for ``config``; anything
    with a ``validate(principal, secret)`` method will do.
    """
    if validator is None:
        validator = DirectoryValidator(config)
    started = time.time()

    async def review(request: Request) -> Response:
        """Answer a single TokenReview."""
        principal = None
        fingerprint = None
        try:
            try:
                body = await request.body()
            except (ClientDisconnect, OSError) as e:
                raise AuthnError(f"failed to read request body: {e}", stage="read") from e

            token_review = decode_review(body)
            fingerprint = token_fingerprint(token_review.token)
            credential = split_token(token_review.token)
            principal = credential.principal

            # ldap3 blocks; keep the event loop free for other reviews
            identity = await run_in_threadpool(
                validator.validate, credential.principal, credential.secret
            )
            result = AuthenticationResult.from_identity(identity)
            payload = respond(result, token_review)

        except AuthnError as e:
            logger.error(
                "Token review failed",
                stage=e.stage,
                error=e.message,
                error_type=type(e).__name__,
                principal=principal,
                token_fingerprint=fingerprint,
            )
            return error_response(e.public_message)
        except Exception as e:
            logger.exception(
                "Unexpected error during token review",
                error_type=type(e).__name__,
                principal=principal,
                token_fingerprint=fingerprint,
            )
            return error_response("internal error")

        logger.info(
            "Token review completed",
            principal=principal,
            authenticated=result.authenticated,
            groups=result.identity.groups if result.identity else [],
            token_fingerprint=fingerprint,
        )
        return Response(payload, media_type="application/json")

    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "status": "healthy",
                "uptime_seconds": time.time() - started,
                "ldap_url": config.ldap_url,
                "bind_mode": config.bind_mode,
            }
        )

    return Starlette(
        routes=[
            Route("/", review, methods=["POST"]),
            Route("/health", health, methods=["GET"]),
        ]
    )


def main(config: AuthnConfig) -> None:
    """Run the webhook until interrupted."""
    import uvicorn

    host, port = parse_listen_address(config.listen_address)
    timeout_graceful_shutdown = int(os.getenv("SHUTDOWN_TIMEOUT_SECONDS", "8"))

    logger.info(f"Using LDAP directory {config.ldap_url}", bind_dn=config.bind_dn)
    logger.info(f"Listening on {config.listen_address} ...", tls=config.tls_enabled)
    if not config.tls_enabled:
        logger.warning("TLS certificate not configured - serving plain HTTP")

    try:
        uvicorn.run(
            create_app(config),
            host=host,
            port=port,
            ssl_certfile=config.tls_cert,
            ssl_keyfile=config.tls_key,
            timeout_graceful_shutdown=timeout_graceful_shutdown,
            log_level="info",
            log_config=get_uvicorn_log_config(),
        )
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully...")
    except Exception as e:
        logger.error(f"Server error: {e}")
        raise
