"""
FastAPI integration: error translation and the per-route auth dependency.

Routes themselves belong to the host application. It registers the
exception handler once and declares each route's RoutePolicy through
require_auth().
"""

import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from tenant_auth.exceptions import AuthError
from tenant_auth.login import AuthenticatedRequest, LoginOrchestrator
from tenant_auth.policies import AUTHENTICATED, RoutePolicy
from tenant_auth.tokens import ACCESS_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE, TokenAuthority

logger = logging.getLogger(__name__)


def auth_error_response(exc: AuthError) -> JSONResponse:
    """
    JSON body and status for an AuthError.

    Errors in the logged-out class also clear the access and refresh
    cookies so the client re-prompts for sign-in instead of retrying.
    """
    response = JSONResponse(status_code=exc.status_code, content=exc.to_dict())
    if exc.code.logs_out:
        for cookie in TokenAuthority.logout_cookies():
            response.headers.append("set-cookie", cookie)
    return response


def register_exception_handlers(app: FastAPI) -> None:
    """Install the AuthError handler on an application."""

    @app.exception_handler(AuthError)
    async def handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code.response_code} {exc.message}")
        return auth_error_response(exc)


def require_auth(
    orchestrator: LoginOrchestrator,
    policy: RoutePolicy = AUTHENTICATED
) -> Callable:
    """
    Build the dependency enforcing `policy` on a route.

    The dependency authenticates from cookies, forwards a renewed access
    cookie on the response, authorizes against the policy and stores the
    user on request.state.
    """

    async def dependency(request: Request, response: Response) -> Optional[AuthenticatedRequest]:
        if policy.public:
            return None

        result = await orchestrator.authenticate_request(
            request.cookies.get(ACCESS_TOKEN_COOKIE),
            request.cookies.get(REFRESH_TOKEN_COOKIE),
        )
        for cookie in result.cookies:
            response.headers.append("set-cookie", cookie)

        policy.authorize(result.user)

        request.state.user = result.user
        request.state.session = result.session
        return result

    return dependency
