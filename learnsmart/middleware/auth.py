from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

OPEN_ENDPOINTS = frozenset({"/api/auth/register", "/api/auth/login"})


def needs_token(method: str, path: str) -> bool:
    """Only /api/* needs a token; /functions/* and /health check their own access."""
    if method == "OPTIONS" or not path.startswith("/api/"):
        return False
    return path not in OPEN_ENDPOINTS


class AuthMiddleware(BaseHTTPMiddleware):
    """Turn away protected requests that carry no bearer token.

    Validating the token is left to the route, which also loads the user.
    """

    async def dispatch(self, request: Request, call_next):
        if needs_token(request.method, request.url.path):
            scheme = request.headers.get("Authorization", "").split(" ", 1)[0]
            if scheme.lower() != "bearer":
                return JSONResponse(status_code=401, content={"error": "Not authenticated"})
        return await call_next(request)
