"""Redis-backed rate limiting for the unauthenticated token endpoints."""
import hashlib
import ipaddress
import logging

import redis
from redis.exceptions import RedisError
from fastapi import HTTPException, Request, status

from .config import settings

logger = logging.getLogger(__name__)

_redis_client = None


def _get_redis():
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def get_client_ip(request: Request) -> str:
    if settings.TRUST_PROXY_HEADERS:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    if request.client:
        return request.client.host
    return "unknown"


def _incr_with_ttl(key: str, ttl_seconds: int) -> tuple[int, int]:
    """
    Increment a Redis counter and ensure it has an expiry.
    Returns (value, ttl_remaining_seconds).
    """
    r = _get_redis()
    value = r.incr(key)
    if value == 1:
        r.expire(key, ttl_seconds)
    ttl = r.ttl(key)
    if ttl is None or ttl < 0:
        ttl = ttl_seconds
    return int(value), int(ttl)


def enforce_public_token_rate_limit(token: str, request: Request) -> None:
    """FastAPI dependency: limit attempts per token and per client address."""
    window = int(settings.PUBLIC_TOKEN_RATE_WINDOW_SECONDS)
    limit = int(settings.PUBLIC_TOKEN_RATE_LIMIT)
    ip = get_client_ip(request)
    # Keys carry a digest, never the secret itself.
    token_key = hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]

    try:
        for key in (f"handoff:rl:token:{token_key}", f"handoff:rl:ip:{ip}"):
            attempts, ttl = _incr_with_ttl(key, window)
            if attempts > limit:
                logger.warning("Public token rate limit exceeded for %s (ip=%s)", key.split(":")[2], ip)
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Too many confirmation attempts. Try again later.",
                    headers={"Retry-After": str(ttl)},
                )
    except RedisError:
        # Fail open if Redis is down so receivers can still confirm.
        logger.exception("Redis error during public token rate limiting (fail-open)")
