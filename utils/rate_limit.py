import asyncio
import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from time import time
from typing import Dict, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from auth_utils import decode_jwt
from config.settings import settings

logger = logging.getLogger(__name__)

ANONYMOUS_KEY = "anonymous"
CLEANUP_INTERVAL_SECONDS = 5 * 60


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float  # epoch seconds


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: int = 0

    @property
    def reset_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_time, tz=timezone.utc).isoformat()


class RateLimiter:
    """
    Fixed-window request counter keyed by identity.
    Default: 30 requests per 60 seconds per key.

    The store is owned by the instance and lives in process memory, so limits
    are per-process and best-effort. ``check`` does not await, which keeps
    each update atomic on a single event loop.
    """

    def __init__(self, window_ms: int = 60_000, max_requests: int = 30, name: str = "general"):
        self.window_ms = window_ms
        self.max_requests = max_requests
        self.name = name
        self._store: Dict[str, RateLimitEntry] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0

    def __len__(self) -> int:
        return len(self._store)

    def check(self, key: str, now: Optional[float] = None) -> RateLimitDecision:
        """
        Count one request for ``key`` and decide whether to admit it.

        Args:
            key: Identity string (user id, client address or "anonymous")
            now: Current epoch seconds; defaults to time()

        Returns:
            RateLimitDecision with the remaining quota or the retry delay
        """
        now = time() if now is None else now
        entry = self._store.get(key)

        if entry is None or now >= entry.reset_time:
            entry = RateLimitEntry(count=1, reset_time=now + self.window_seconds)
            self._store[key] = entry
            return RateLimitDecision(True, self.max_requests, self.max_requests - 1, entry.reset_time)

        if entry.count < self.max_requests:
            entry.count += 1
            return RateLimitDecision(True, self.max_requests, self.max_requests - entry.count, entry.reset_time)

        retry_after = max(1, math.ceil(entry.reset_time - now))
        logger.warning(
            f"Rate limit exceeded for {key} ({self.name}): "
            f"count={entry.count} limit={self.max_requests} reset_in={retry_after}s"
        )
        return RateLimitDecision(False, self.max_requests, 0, entry.reset_time, retry_after)

    def reset(self) -> None:
        self._store.clear()

    def cleanup(self, now: Optional[float] = None) -> int:
        """Drop entries whose window has already closed. Returns how many were removed."""
        now = time() if now is None else now
        expired = [key for key, entry in self._store.items() if entry.reset_time <= now]
        for key in expired:
            del self._store[key]
        return len(expired)

    def start_cleanup(self, interval_seconds: float = CLEANUP_INTERVAL_SECONDS) -> asyncio.Task:
        """Sweep expired entries every ``interval_seconds`` on the running loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop(interval_seconds))
        return self._cleanup_task

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _cleanup_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = self.cleanup()
            if removed:
                logger.debug(f"Rate limiter '{self.name}' dropped {removed} expired entries")


def _get_client_ip(request: Request) -> Optional[str]:
    xff = request.headers.get("x-forwarded-for")
    if xff:
        # Take first IP in the list
        return xff.split(",")[0].strip() or None
    client = request.client
    return client.host if client else None


def _get_token_subject(request: Request) -> Optional[str]:
    token = request.cookies.get("auth_token")
    authorization = request.headers.get("authorization")
    if not token and authorization and authorization.startswith("Bearer "):
        token = authorization.replace("Bearer ", "").strip()
    if not token or not settings.jwt_secret_key:
        return None
    payload = decode_jwt(token)
    return str(payload["sub"]) if payload and payload.get("sub") else None


def _get_body_user_id(body: bytes) -> Optional[str]:
    if not body:
        return None
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    user_id = data.get("userId") or data.get("user_id")
    return str(user_id) if user_id else None


def resolve_rate_limit_key(request: Request, body: bytes = b"") -> str:
    """
    Identity for rate limiting: authenticated user id, else the user id the
    JSON body declares, else the client address, else "anonymous".
    """
    user_id = _get_token_subject(request)
    if user_id:
        return f"user:{user_id}"
    user_id = _get_body_user_id(body)
    if user_id:
        return f"user:{user_id}"
    return _get_client_ip(request) or ANONYMOUS_KEY


def rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": decision.reset_iso,
    }


def rate_limit_exceeded_response(limiter: RateLimiter, decision: RateLimitDecision) -> JSONResponse:
    headers = rate_limit_headers(decision)
    headers["Retry-After"] = str(decision.retry_after)
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded. Please wait before making another request.",
            "retryAfter": decision.retry_after,
            "limit": limiter.max_requests,
            "windowMs": limiter.window_ms,
        },
        headers=headers,
    )


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Admission control in front of the routers.
    Only requests whose path starts with one of ``path_prefixes`` are counted.
    """

    def __init__(
        self,
        app,
        limiter: RateLimiter,
        path_prefixes: Iterable[str] = ("/api",),
        exempt_paths: Iterable[str] = ("/api/billing/webhook",),
    ):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefixes = tuple(path_prefixes)
        self.exempt_paths = tuple(exempt_paths)

    def _applies_to(self, path: str) -> bool:
        if path in self.exempt_paths:
            return False
        return any(path.startswith(prefix) for prefix in self.path_prefixes)

    async def dispatch(self, request: Request, call_next) -> Response:
        if not self._applies_to(request.url.path):
            return await call_next(request)

        body = b""
        if request.headers.get("content-type", "").startswith("application/json"):
            body = await request.body()

        key = resolve_rate_limit_key(request, body)
        decision = self.limiter.check(key)
        if not decision.allowed:
            return rate_limit_exceeded_response(self.limiter, decision)

        response = await call_next(request)
        response.headers.update(rate_limit_headers(decision))
        return response


# Separate limiters for different kinds of traffic
general_rate_limiter = RateLimiter(settings.general_rate_window_ms, settings.general_rate_max, "general")
ai_chat_rate_limiter = RateLimiter(settings.ai_chat_rate_window_ms, settings.ai_chat_rate_max, "ai_chat")
auth_rate_limiter = RateLimiter(settings.auth_rate_window_ms, settings.auth_rate_max, "auth")

ALL_RATE_LIMITERS = (general_rate_limiter, ai_chat_rate_limiter, auth_rate_limiter)
